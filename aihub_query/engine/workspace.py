"""Per-execution relational workspace.

Every query gets its own in-memory DuckDB database. The database is opened
with external access disabled and its configuration locked, so the caller's
SQL can only see the relations loaded into this workspace.
"""

import asyncio
from dataclasses import dataclass, field
import datetime
import decimal
import logging
import math
import re
import uuid

import duckdb

from aihub_query.config import WORKSPACE_MEMORY_LIMIT, WORKSPACE_THREADS
from aihub_query.errors import (
    QueryCancelled,
    QueryExecutionError,
    ResourceExceeded,
    SchemaError,
)

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 500
SAMPLE_SIZE = 5
DRAIN_POLL_SECONDS = 0.05

_RELATION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# checked in order, the first predicate every non-empty value passes wins
INFERRED_TYPES = [
    ("integer", "regexp_full_match(trim({col}), '[+-]?[0-9]+')"),
    ("number", "TRY_CAST(trim({col}) AS DOUBLE) IS NOT NULL"),
    ("boolean", "lower(trim({col})) IN ('true', 'false')"),
    ("date", "TRY_CAST(trim({col}) AS DATE) IS NOT NULL"),
    ("timestamp", "TRY_CAST(trim({col}) AS TIMESTAMP) IS NOT NULL"),
]


@dataclass
class ResultSet:
    columns: list[str]
    rows: list[tuple] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class ColumnStats:
    name: str
    inferred_type: str
    nullable: bool
    unique_values: int
    sample_values: list


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def to_transport_value(value):
    """Leave JSON scalars alone and render everything else as text."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (decimal.Decimal, uuid.UUID, datetime.timedelta)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [to_transport_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_transport_value(v) for k, v in value.items()}
    return str(value)


class Workspace:
    def __init__(
        self,
        threads: int = WORKSPACE_THREADS,
        memory_limit: str = WORKSPACE_MEMORY_LIMIT,
    ):
        self._conn = duckdb.connect(
            ":memory:",
            config={
                "threads": threads,
                "memory_limit": memory_limit,
                "enable_external_access": False,
                "autoinstall_known_extensions": False,
                "autoload_known_extensions": False,
                "lock_configuration": True,
            },
        )
        self._relations: dict[str, list[str]] = {}

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def relations(self) -> dict[str, list[str]]:
        return dict(self._relations)

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise SchemaError("workspace is closed")
        return self._conn

    def create_relation(self, name: str, columns: list[str]):
        if not _RELATION_NAME.match(name):
            raise SchemaError(f"invalid relation name: {name}")
        if name in self._relations:
            raise SchemaError(f"relation {name} already exists in this workspace")
        if not columns:
            raise SchemaError(f"relation {name} must have at least one column")
        column_defs = ", ".join(f"{quote_identifier(c)} VARCHAR" for c in columns)
        self._connection().execute(
            f"CREATE TABLE {quote_identifier(name)} ({column_defs})"
        )
        self._relations[name] = list(columns)

    def insert_row(self, name: str, values: list):
        self.insert_rows(name, [values])

    def insert_rows(self, name: str, rows: list[list]):
        columns = self._relations.get(name)
        if columns is None:
            raise SchemaError(f"relation {name} does not exist in this workspace")
        width = len(columns)
        for row in rows:
            if len(row) != width:
                raise SchemaError(
                    f"relation {name} has {width} columns, got a row with {len(row)} values"
                )

        conn = self._connection()
        row_placeholder = "(" + ", ".join(["?"] * width) + ")"
        for start in range(0, len(rows), INSERT_BATCH_SIZE):
            batch = rows[start : start + INSERT_BATCH_SIZE]
            placeholders = ", ".join([row_placeholder] * len(batch))
            params = [value for row in batch for value in row]
            conn.execute(
                f"INSERT INTO {quote_identifier(name)} VALUES {placeholders}", params
            )

    def create_relation_with_rows(self, name: str, columns: list[str], rows: list[list]):
        self.create_relation(name, columns)
        self.insert_rows(name, rows)

    def execute(self, query: str, max_rows: int) -> ResultSet:
        conn = self._connection()
        try:
            cursor = conn.execute(query)
            if cursor.description is None:
                return ResultSet(columns=[], rows=[])
            columns = [d[0] for d in cursor.description]
            rows = cursor.fetchmany(max_rows + 1)
        except duckdb.InterruptException as e:
            raise QueryCancelled("Query execution was interrupted") from e
        except duckdb.Error as e:
            raise QueryExecutionError(str(e)) from e

        if len(rows) > max_rows:
            raise ResourceExceeded(
                f"Query returned more than {max_rows} rows; add a LIMIT clause or narrow the query"
            )
        return ResultSet(
            columns=columns,
            rows=[tuple(to_transport_value(v) for v in row) for row in rows],
        )

    async def load(self, name: str, columns: list[str], rows: list[list]):
        await self._in_thread(self.create_relation_with_rows, name, columns, rows)

    async def run(self, query: str, max_rows: int, timeout: float) -> ResultSet:
        """Execute on a worker thread, interrupting the engine on timeout or cancellation."""
        try:
            return await self._in_thread(self.execute, query, max_rows, timeout=timeout)
        except TimeoutError:
            logger.warning(f"query exceeded {timeout:g}s, workspace interrupted")
            raise ResourceExceeded(
                f"Query exceeded the {timeout:g} second execution timeout"
            )

    async def profile(self, name: str) -> tuple[int, list[ColumnStats]]:
        return await self._in_thread(self.describe, name)

    async def _in_thread(self, fn, *args, timeout: float | None = None):
        # the connection must not be closed while a worker thread still holds it
        future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except (TimeoutError, asyncio.CancelledError):
            await self._drain(future)
            raise

    async def _drain(self, future: asyncio.Future):
        # interrupt until the worker thread lets go of the connection
        while not future.done():
            self.interrupt()
            await asyncio.wait({future}, timeout=DRAIN_POLL_SECONDS)
        if not future.cancelled():
            future.exception()

    def interrupt(self):
        conn = self._conn
        if conn is not None:
            conn.interrupt()

    def describe(self, name: str) -> tuple[int, list[ColumnStats]]:
        columns = self._relations.get(name)
        if columns is None:
            raise SchemaError(f"relation {name} does not exist in this workspace")
        conn = self._connection()
        table = quote_identifier(name)
        row_count = conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]

        stats = []
        for column in columns:
            col = quote_identifier(column)
            empties, unique_values = conn.execute(
                f"SELECT count(*) FILTER (WHERE {col} IS NULL OR trim({col}) = ''), "
                f"count(DISTINCT {col}) FROM {table}"
            ).fetchone()
            samples = conn.execute(
                f"SELECT DISTINCT {col} FROM {table} "
                f"WHERE {col} IS NOT NULL AND trim({col}) <> '' LIMIT {SAMPLE_SIZE}"
            ).fetchall()
            stats.append(
                ColumnStats(
                    name=column,
                    inferred_type=self._infer_type(table, col),
                    nullable=empties > 0,
                    unique_values=unique_values,
                    sample_values=[s[0] for s in samples],
                )
            )
        return row_count, stats

    def _infer_type(self, table: str, col: str) -> str:
        non_empty = f"{col} IS NOT NULL AND trim({col}) <> ''"
        total = self._conn.execute(
            f"SELECT count(*) FROM {table} WHERE {non_empty}"
        ).fetchone()[0]
        if total == 0:
            return "text"
        for label, predicate in INFERRED_TYPES:
            matching = self._conn.execute(
                f"SELECT count(*) FROM {table} WHERE {non_empty} AND "
                + predicate.format(col=col)
            ).fetchone()[0]
            if matching == total:
                return label
        return "text"

    def close(self):
        conn, self._conn = self._conn, None
        self._relations.clear()
        if conn is not None:
            conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
