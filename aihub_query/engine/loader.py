import asyncio
import csv
from dataclasses import dataclass, field
import io
import logging
import re

from prometheus_client import Counter

from aihub_query.config import MAX_DATASET_BYTES
from aihub_query.engine.workspace import Workspace
from aihub_query.errors import LoadError
from aihub_query.types.query import DatasetReference

logger = logging.getLogger(__name__)

ROWS_LOADED = Counter("dataset_rows_loaded", "# of dataset rows loaded into workspaces")
ROWS_SKIPPED = Counter(
    "dataset_rows_skipped", "# of malformed dataset rows skipped while loading"
)

_NON_IDENTIFIER = re.compile(r"[^A-Za-z0-9_]")

TSV_CONTENT_TYPES = ("text/tab-separated-values", "text/tsv")


@dataclass
class ParsedTable:
    columns: list[str]
    rows: list[list[str]] = field(default_factory=list)
    skipped: int = 0


@dataclass
class LoadResult:
    relation: str
    row_count: int
    columns: list[str]
    skipped: int = 0


def sanitize_column_names(header: list[str]) -> list[str]:
    columns = []
    seen = set()
    for position, raw in enumerate(header, start=1):
        name = _NON_IDENTIFIER.sub("_", raw.strip().strip('"'))
        if not name:
            name = f"column_{position}"
        candidate = name
        suffix = 2
        while candidate.lower() in seen:
            candidate = f"{name}_{suffix}"
            suffix += 1
        seen.add(candidate.lower())
        columns.append(candidate)
    return columns


def delimiter_for(dataset: DatasetReference) -> str:
    content_type = (dataset.content_type or "").split(";")[0].strip().lower()
    if content_type in TSV_CONTENT_TYPES or dataset.filename.lower().endswith(".tsv"):
        return "\t"
    return ","


def parse_delimited(raw: bytes, delimiter: str = ",") -> ParsedTable:
    """Parse delimited text into a header and text rows.

    Rows whose field count differs from the header are skipped, not fatal.
    """
    if not raw:
        raise LoadError("Dataset is empty")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise LoadError(f"Dataset is not valid UTF-8 text: {e}") from e

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    try:
        header = next(reader, None)
        while header is not None and not any(f.strip() for f in header):
            header = next(reader, None)
        if header is None:
            raise LoadError("Dataset is empty")

        table = ParsedTable(columns=sanitize_column_names(header))
        width = len(table.columns)
        for fields in reader:
            if not fields:
                continue
            if len(fields) != width:
                table.skipped += 1
                continue
            table.rows.append(fields)
    except csv.Error as e:
        raise LoadError(f"Dataset could not be parsed: {e}") from e
    return table


async def load_dataset(
    workspace: Workspace, relation: str, dataset: DatasetReference, storage
) -> LoadResult:
    """Fetch a dataset's bytes and materialize them as `relation` in the workspace."""
    try:
        raw = await storage.fetch(dataset.s3_key)
    except LoadError:
        raise
    except Exception as e:
        raise LoadError(f"Failed to fetch dataset {dataset.id}: {e}") from e

    if len(raw) > MAX_DATASET_BYTES:
        raise LoadError(
            f"Dataset {dataset.id} is {len(raw)} bytes, larger than the {MAX_DATASET_BYTES} byte limit"
        )

    table = await asyncio.to_thread(parse_delimited, raw, delimiter_for(dataset))
    del raw
    await workspace.load(relation, table.columns, table.rows)
    result = LoadResult(
        relation=relation,
        row_count=len(table.rows),
        columns=table.columns,
        skipped=table.skipped,
    )
    del table

    ROWS_LOADED.inc(result.row_count)
    ROWS_SKIPPED.inc(result.skipped)
    if result.skipped:
        logger.warning(
            f"dataset {dataset.id}: skipped {result.skipped} malformed rows while loading {relation}"
        )
    logger.info(
        f"loaded dataset {dataset.id} into {relation}: {result.row_count} rows, {len(result.columns)} columns"
    )
    return result
