from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aihub_query.db.orm.manifest import Manifest
from aihub_query.types.query import DatasetReference


def to_dataset_reference(manifest: Manifest) -> DatasetReference:
    return DatasetReference(
        id=manifest.id,
        user_id=manifest.user_id,
        s3_key=manifest.s3_key,
        content_type=manifest.content_type,
        size=manifest.size,
        filename=manifest.filename,
    )


async def get_manifest(session: AsyncSession, manifest_id: str) -> Manifest | None:
    stmt = select(Manifest).where(Manifest.id == manifest_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_owned_manifest(
    session: AsyncSession, manifest_id: str, user_id: str
) -> Manifest | None:
    """Missing and foreign manifests both come back as None."""
    manifest = await get_manifest(session, manifest_id)
    if manifest is None or manifest.user_id != user_id:
        return None
    return manifest


async def list_owned_manifests(
    session: AsyncSession, user_id: str, limit: int = 100, offset: int = 0
) -> list[Manifest]:
    stmt = (
        select(Manifest)
        .where(Manifest.user_id == user_id)
        .order_by(Manifest.uploaded_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return (await session.execute(stmt)).scalars().all()
