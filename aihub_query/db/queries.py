import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aihub_query.common import utcnow
from aihub_query.db.orm.query_result import QueryResult
from aihub_query.errors import InvalidTransition
from aihub_query.types.query import QueryRecord, QueryRequest, QueryStatus

logger = logging.getLogger(__name__)

# statuses a record may be in for it to move to the key status
ALLOWED_FROM = {
    QueryStatus.executing: (QueryStatus.pending,),
    QueryStatus.completed: (QueryStatus.executing,),
    QueryStatus.failed: (QueryStatus.pending, QueryStatus.executing),
}

FIELDS_BY_STATUS = {
    QueryStatus.executing: frozenset(),
    QueryStatus.completed: frozenset(
        {"result", "row_count", "columns", "execution_time", "completed_at"}
    ),
    QueryStatus.failed: frozenset({"error", "execution_time", "completed_at"}),
}


def to_query_record(row: QueryResult) -> QueryRecord:
    return QueryRecord.model_validate(row)


async def create_query_record(
    session: AsyncSession, user_id: str, request: QueryRequest
) -> QueryRecord:
    row = QueryResult(
        query=request.query,
        dataset_ids=list(request.dataset_ids),
        output_format=request.output_format.value,
        status=QueryStatus.pending.value,
        created_at=utcnow(),
        user_id=user_id,
    )
    session.add(row)
    await session.flush()  # To get the ID
    return to_query_record(row)


async def update_query_record(
    session: AsyncSession, record_id: str, status: QueryStatus, **fields
) -> QueryRecord | None:
    """Move a record forward to `status`, attaching the fields legal for it.

    Returns None when no record has this id. Raises InvalidTransition when the
    record exists but is not in a state it may leave for `status`.
    """
    if status not in ALLOWED_FROM:
        raise InvalidTransition(f"cannot move a query record to {status.value}")
    illegal = set(fields) - FIELDS_BY_STATUS[status]
    if illegal:
        raise InvalidTransition(
            f"fields {sorted(illegal)} cannot be set on a {status.value} query record"
        )
    if status.is_terminal and fields.get("completed_at") is None:
        fields["completed_at"] = utcnow()

    allowed = [s.value for s in ALLOWED_FROM[status]]
    stmt = (
        update(QueryResult)
        .where(QueryResult.id == record_id, QueryResult.status.in_(allowed))
        .values(status=status.value, **fields)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    row = await _select_record(session, record_id)
    if row is None:
        return None
    if result.rowcount == 0:
        raise InvalidTransition(
            f"query {record_id} cannot move from {row.status} to {status.value}"
        )
    return to_query_record(row)


async def get_query_record(
    session: AsyncSession, record_id: str, user_id: str
) -> QueryRecord | None:
    row = await _select_record(session, record_id, user_id)
    return to_query_record(row) if row is not None else None


async def list_query_records(
    session: AsyncSession, user_id: str, limit: int = 10, offset: int = 0
) -> list[QueryRecord]:
    stmt = (
        select(QueryResult)
        .where(QueryResult.user_id == user_id)
        .order_by(QueryResult.created_at.desc(), QueryResult.id.desc())
        .offset(offset)
        .limit(limit)
    )
    rows = (await session.execute(stmt)).scalars().all()
    return [to_query_record(row) for row in rows]


async def _select_record(
    session: AsyncSession, record_id: str, user_id: str | None = None
) -> QueryResult | None:
    stmt = select(QueryResult).where(QueryResult.id == record_id)
    if user_id is not None:
        stmt = stmt.where(QueryResult.user_id == user_id)
    stmt = stmt.execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()
