import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from aihub_query.db.orm.manifest import Manifest
from aihub_query.errors import LoadError


class FakeStorage:
    """In-memory stand-in for the dataset bucket, keyed by storage key."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects = dict(objects or {})
        self.fetched: list[str] = []

    def put(self, key: str, content: bytes | str):
        self.objects[key] = content.encode() if isinstance(content, str) else content

    async def fetch(self, key: str) -> bytes:
        self.fetched.append(key)
        if key not in self.objects:
            raise LoadError("Failed to fetch dataset content: NoSuchKey")
        return self.objects[key]


def csv_rows(header: str, rows: int) -> str:
    lines = [header]
    width = len(header.split(","))
    for i in range(rows):
        lines.append(",".join(f"{i}" if c == 0 else f"v{i}_{c}" for c in range(width)))
    return "\n".join(lines) + "\n"


async def add_manifest(
    session: AsyncSession,
    dataset_id: str,
    user_id: str,
    filename: str | None = None,
    content_type: str = "text/csv",
    uploaded_at: datetime.datetime | None = None,
    size: int = 0,
):
    session.add(
        Manifest(
            id=dataset_id,
            filename=filename or f"{dataset_id}.csv",
            size=size,
            hash=f"hash-{dataset_id}",
            content_type=content_type,
            uploaded_at=uploaded_at
            or datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
            tags="",
            is_ml_data=False,
            extra_metadata="{}",
            user_id=user_id,
            s3_key=f"uploads/{user_id}/{dataset_id}",
        )
    )
    await session.flush()


async def seed_dataset(
    conn,
    storage: FakeStorage,
    dataset_id: str,
    user_id: str,
    content: str,
    **kwargs,
):
    """Register a manifest and put its content where the loader will fetch it."""
    async with conn.get_query_db_session() as session:
        await add_manifest(session, dataset_id, user_id, size=len(content), **kwargs)
    storage.put(f"uploads/{user_id}/{dataset_id}", content)
