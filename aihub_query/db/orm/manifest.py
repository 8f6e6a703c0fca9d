from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from aihub_query.db.orm.base import Base


class Manifest(Base):
    """Uploaded file descriptor. Written by the upload service, read-only here."""

    __tablename__ = "manifests"

    id = Column(String(36), primary_key=True)
    filename = Column(String(255), nullable=False)
    size = Column(Integer, nullable=False)
    hash = Column(String(128), nullable=False)
    content_type = Column(String(255), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())
    tags = Column(Text, default="")
    is_ml_data = Column(Boolean, default=False)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", Text, default="{}")
    user_id = Column(String(255), nullable=False)
    s3_key = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_manifests_user_id", user_id),
        Index("idx_manifests_uploaded_at", uploaded_at),
    )

    def __repr__(self):
        return f"<Manifest(id={self.id}, filename='{self.filename}', user_id='{self.user_id}')>"
