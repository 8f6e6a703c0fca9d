from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QueryStatus(str, Enum):
    pending = "pending"
    executing = "executing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.completed, QueryStatus.failed)


class OutputFormat(str, Enum):
    json = "json"
    csv = "csv"
    table = "table"


class DatasetReference(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    user_id: str = Field(alias="userId")
    s3_key: str = Field(alias="s3Key")
    content_type: str = Field(alias="contentType", default="text/csv")
    size: int = Field(default=0)
    filename: str = Field(default="")


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    dataset_ids: list[str] = Field(alias="datasetIds", min_length=1)
    output_format: OutputFormat = Field(alias="outputFormat")
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be empty")
        return v

    @field_validator("dataset_ids")
    @classmethod
    def dataset_ids_not_blank(cls, v: list[str]) -> list[str]:
        if any(not dataset_id.strip() for dataset_id in v):
            raise ValueError("datasetIds must not contain empty ids")
        return v


class QueryRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    query: str
    dataset_ids: list[str] = Field(alias="datasetIds")
    output_format: OutputFormat = Field(alias="outputFormat")
    status: QueryStatus
    result: Optional[Any] = Field(default=None)
    error: Optional[str] = Field(default=None)
    execution_time: Optional[int] = Field(alias="executionTime", default=None)
    row_count: Optional[int] = Field(alias="rowCount", default=None)
    columns: Optional[list[str]] = Field(default=None)
    created_at: datetime = Field(alias="createdAt")
    completed_at: Optional[datetime] = Field(alias="completedAt", default=None)
    user_id: str = Field(alias="userId")
