from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from aihub_query.db.orm.base import Base


class QueryResult(Base):
    __tablename__ = "query_results"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    query = Column(Text, nullable=False)
    dataset_ids = Column(JSON, nullable=False)
    output_format = Column(String(10), nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    result = Column(JSON)
    error = Column(Text)
    execution_time = Column(Integer)
    row_count = Column(Integer)
    columns = Column(JSON)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    completed_at = Column(DateTime(timezone=True))
    user_id = Column(String(255), nullable=False)

    __table_args__ = (
        Index("idx_query_results_user_created", user_id, created_at),
        Index("idx_query_results_status", status),
    )

    def __repr__(self):
        return f"<QueryResult(id={self.id}, query='{self.query[:50]}...', status='{self.status}', user_id='{self.user_id}')>"
