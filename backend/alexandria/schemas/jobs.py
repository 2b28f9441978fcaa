"""Pydantic payloads carried by queued jobs."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from alexandria.services.import_strategy import ImportStrategy


class IngestionJobPayload(BaseModel):
    """Payload of an ``INGEST_ARCHIVE`` job."""

    model_id: str
    temp_path: str = Field(description="Uploaded archive awaiting extraction")
    original_filename: str
    user_id: str
    library_id: str | None = None
    slug: str = Field(description="Slug the model was created with")
    metadata: dict[str, str] = Field(default_factory=dict)


class FolderImportJobPayload(BaseModel):
    """Payload of an ``IMPORT_FOLDER`` job."""

    source_path: str
    pattern: str
    strategy: ImportStrategy = ImportStrategy.HARDLINK
    user_id: str
    library_id: str | None = None

    @field_validator("source_path")
    @classmethod
    def source_path_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("source_path cannot be empty")
        return v


class FolderImportResult(BaseModel):
    """Summary stored as the result of a folder-import job."""

    discovered: int = 0
    imported: int = 0
    failed: int = 0
    failed_models: list[str] = Field(default_factory=list)
    model_ids: list[str] = Field(default_factory=list)
