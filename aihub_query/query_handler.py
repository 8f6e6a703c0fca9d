import asyncio
import logging
import os

from fastapi import HTTPException, status
from prometheus_client import Counter, Histogram

from aihub_query.common import epoch_ms
from aihub_query.config import (
    LATENCY_BUCKETS,
    MAX_RESULT_ROWS,
    MAX_STRUCTURED_DATASETS,
    QUERY_TIMEOUT_SECONDS,
)
from aihub_query.db.manifest import (
    get_owned_manifest,
    list_owned_manifests,
    to_dataset_reference,
)
from aihub_query.db.queries import (
    create_query_record,
    get_query_record,
    list_query_records,
    update_query_record,
)
from aihub_query.engine.binder import bind_datasets, relation_name
from aihub_query.engine.formatter import format_result
from aihub_query.engine.loader import load_dataset
from aihub_query.engine.workspace import Workspace
from aihub_query.errors import InvalidTransition, LoadError, QueryServiceError
from aihub_query.types.connections import Connections
from aihub_query.types.query import (
    DatasetReference,
    QueryRecord,
    QueryRequest,
    QueryStatus,
)
from aihub_query.types.service import (
    ColumnProfile,
    DatasetSchema,
    QueryExample,
    StructuredDataset,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Query was cancelled."

QUERIES_TOTAL = Counter(
    "query_executions", "# of query executions per terminal status", ["status"]
)
QUERY_LATENCY = Histogram(
    "query_execution_latency_ms",
    "Latency of query executions from load to result",
    ["status"],
    buckets=LATENCY_BUCKETS,
)

QUERY_EXAMPLES = [
    QueryExample(
        name="Basic SELECT",
        description="Select all columns from a dataset",
        query="SELECT * FROM dataset_1 LIMIT 10",
        category="basics",
    ),
    QueryExample(
        name="Filter by condition",
        description="Filter rows based on a condition",
        query="SELECT * FROM dataset_1 WHERE column_name = 'value'",
        category="filtering",
    ),
    QueryExample(
        name="Numeric aggregation",
        description="Columns are loaded as text, cast them before doing arithmetic",
        query=(
            "SELECT category, AVG(CAST(price AS DOUBLE)) AS avg_price "
            "FROM dataset_1 GROUP BY category ORDER BY avg_price DESC"
        ),
        category="aggregation",
    ),
    QueryExample(
        name="Count rows per value",
        description="Count how often each value occurs in a column",
        query=(
            "SELECT column_name, COUNT(*) AS occurrences "
            "FROM dataset_1 GROUP BY column_name ORDER BY occurrences DESC"
        ),
        category="aggregation",
    ),
    QueryExample(
        name="Join two datasets",
        description="Datasets are bound in submission order as dataset_1, dataset_2, ...",
        query=(
            "SELECT a.*, b.* FROM dataset_1 a "
            "JOIN dataset_2 b ON a.id = b.id LIMIT 100"
        ),
        category="joins",
    ),
]


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)


async def resolve_datasets(
    conn: Connections, user_id: str, dataset_ids: list[str]
) -> dict[str, DatasetReference]:
    """Look up every dataset before anything is loaded. Missing and foreign ids look the same."""
    datasets = {}
    async with conn.get_query_db_session() as session:
        for dataset_id in dataset_ids:
            if dataset_id in datasets:
                continue
            manifest = await get_owned_manifest(session, dataset_id, user_id)
            if manifest is None:
                raise _not_found(f"Dataset {dataset_id} not found or access denied.")
            datasets[dataset_id] = to_dataset_reference(manifest)
    return datasets


class QueryRunner:
    """Runs query submissions as independent tasks, each in its own workspace."""

    def __init__(
        self,
        conn: Connections,
        timeout: float = QUERY_TIMEOUT_SECONDS,
        max_rows: int = MAX_RESULT_ROWS,
    ):
        self.conn = conn
        self.timeout = timeout
        self.max_rows = max_rows
        self._running: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> list[str]:
        return list(self._running)

    async def submit(self, user_id: str, request: QueryRequest) -> QueryRecord:
        datasets = await resolve_datasets(self.conn, user_id, request.dataset_ids)
        async with self.conn.get_query_db_session() as session:
            record = await create_query_record(session, user_id, request)
        logger.info(
            f"query {record.id} submitted by {user_id} over {len(datasets)} datasets"
        )

        task = asyncio.create_task(
            self._execute(record, request, datasets), name=f"query-{record.id}"
        )
        self._running[record.id] = task
        task.add_done_callback(lambda _: self._running.pop(record.id, None))
        return await self._wait(record, task)

    async def cancel(self, user_id: str, record_id: str) -> QueryRecord:
        async with self.conn.get_query_db_session() as session:
            record = await get_query_record(session, record_id, user_id)
        if record is None:
            raise _not_found("Query result not found or access denied.")
        if record.status.is_terminal:
            return record

        task = self._running.get(record_id)
        if task is not None:
            logger.info(f"cancelling query {record_id} on behalf of {user_id}")
            task.cancel()
            return await self._wait(record, task)

        # not running in this process, so nothing to stop
        return await self._fail(record, CANCELLED_MESSAGE)

    async def shutdown(self):
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _wait(self, record: QueryRecord, task: asyncio.Task) -> QueryRecord:
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            # cancelled before its first step, so it never recorded anything
            return await self._fail(record, CANCELLED_MESSAGE)

    async def _execute(
        self,
        record: QueryRecord,
        request: QueryRequest,
        datasets: dict[str, DatasetReference],
    ) -> QueryRecord:
        start_time = epoch_ms()
        try:
            await self._transition(record, QueryStatus.executing)
            bound = bind_datasets(request.dataset_ids, request.query, request.limit)
            async with Workspace() as workspace:
                for binding in bound.bindings:
                    await load_dataset(
                        workspace,
                        binding.relation,
                        datasets[binding.dataset_id],
                        self.conn.storage,
                    )
                result_set = await workspace.run(bound.query, self.max_rows, self.timeout)
            payload = format_result(result_set, request.output_format)
            elapsed = epoch_ms() - start_time
            completed = await self._transition(
                record,
                QueryStatus.completed,
                result=payload,
                row_count=result_set.row_count,
                columns=result_set.columns,
                execution_time=elapsed,
            )
            QUERIES_TOTAL.labels(QueryStatus.completed.value).inc()
            QUERY_LATENCY.labels(QueryStatus.completed.value).observe(elapsed)
            logger.info(
                f"query {record.id} completed: {result_set.row_count} rows in {elapsed}ms"
            )
            return completed
        except asyncio.CancelledError:
            logger.info(f"query {record.id} cancelled")
            return await self._fail(record, CANCELLED_MESSAGE, start_time)
        except QueryServiceError as e:
            logger.info(f"query {record.id} failed: {e.message}")
            return await self._fail(record, e.message, start_time)
        except Exception as e:
            logger.exception(f"query {record.id} failed unexpectedly")
            return await self._fail(record, f"Internal error: {e}", start_time)

    async def _transition(
        self, record: QueryRecord, new_status: QueryStatus, **fields
    ) -> QueryRecord:
        async with self.conn.get_query_db_session() as session:
            updated = await update_query_record(session, record.id, new_status, **fields)
        if updated is None:
            raise InvalidTransition(f"query {record.id} no longer exists")
        return updated

    async def _fail(
        self, record: QueryRecord, message: str, start_time: int | None = None
    ) -> QueryRecord:
        fields = {"error": message}
        if start_time is not None:
            fields["execution_time"] = epoch_ms() - start_time
        try:
            failed = await self._transition(record, QueryStatus.failed, **fields)
        except InvalidTransition:
            # somebody else already moved it to a terminal state
            async with self.conn.get_query_db_session() as session:
                current = await get_query_record(session, record.id, record.user_id)
            return current if current is not None else record
        QUERIES_TOTAL.labels(QueryStatus.failed.value).inc()
        if start_time is not None:
            QUERY_LATENCY.labels(QueryStatus.failed.value).observe(fields["execution_time"])
        return failed


async def handle_get_result(conn: Connections, user_id: str, record_id: str) -> QueryRecord:
    async with conn.get_query_db_session() as session:
        record = await get_query_record(session, record_id, user_id)
    if record is None:
        raise _not_found("Query result not found or access denied.")
    return record


async def handle_list_results(
    conn: Connections, user_id: str, limit: int, offset: int
) -> list[QueryRecord]:
    async with conn.get_query_db_session() as session:
        return await list_query_records(session, user_id, limit, offset)


async def handle_list_structured_datasets(
    conn: Connections, user_id: str
) -> list[StructuredDataset]:
    async with conn.get_query_db_session() as session:
        manifests = await list_owned_manifests(session, user_id, MAX_STRUCTURED_DATASETS, 0)
    return [
        StructuredDataset(
            id=m.id,
            filename=m.filename,
            size=m.size,
            hash=m.hash,
            content_type=m.content_type,
            tags=m.tags or "",
            is_ml_data=bool(m.is_ml_data),
            metadata=m.extra_metadata or "{}",
            user_id=m.user_id,
            s3_key=m.s3_key,
            created_at=m.uploaded_at,
            updated_at=m.uploaded_at,
        )
        for m in manifests
    ]


def file_type_of(dataset: DatasetReference) -> str:
    extension = os.path.splitext(dataset.filename)[1].lstrip(".").lower()
    if extension:
        return extension
    content_type = dataset.content_type.split(";")[0].strip().lower()
    if "tab-separated" in content_type:
        return "tsv"
    if "csv" in content_type:
        return "csv"
    return "unknown"


async def handle_dataset_schema(
    conn: Connections, user_id: str, dataset_id: str
) -> DatasetSchema:
    datasets = await resolve_datasets(conn, user_id, [dataset_id])
    dataset = datasets[dataset_id]
    relation = relation_name(1)
    try:
        async with Workspace() as workspace:
            loaded = await load_dataset(workspace, relation, dataset, conn.storage)
            row_count, stats = await workspace.profile(relation)
    except LoadError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Dataset could not be loaded: {e.message}",
        )
    return DatasetSchema(
        columns=[
            ColumnProfile(
                name=s.name,
                type=s.inferred_type,
                nullable=s.nullable,
                unique_values=s.unique_values,
                sample_values=s.sample_values,
            )
            for s in stats
        ],
        row_count=row_count,
        skipped_rows=loaded.skipped,
        file_type=file_type_of(dataset),
    )
