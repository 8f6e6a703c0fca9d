from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class StructuredDataset(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    filename: str
    size: int
    hash: str
    content_type: str = Field(alias="contentType")
    tags: str = Field(default="")
    is_ml_data: bool = Field(alias="isMLData", default=False)
    metadata: str = Field(default="{}")
    user_id: str = Field(alias="userId")
    s3_key: str = Field(alias="s3Key")
    created_at: Optional[datetime] = Field(alias="createdAt", default=None)
    updated_at: Optional[datetime] = Field(alias="updatedAt", default=None)


class ColumnProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str
    nullable: bool
    unique_values: int = Field(alias="uniqueValues")
    sample_values: list[Any] = Field(alias="sampleValues", default=[])


class DatasetSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    columns: list[ColumnProfile] = Field(default=[])
    row_count: int = Field(alias="rowCount")
    skipped_rows: int = Field(alias="skippedRows", default=0)
    file_type: str = Field(alias="fileType")


class QueryExample(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str
    query: str
    category: str
