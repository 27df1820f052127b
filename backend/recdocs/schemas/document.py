from typing import Literal

from pydantic import BaseModel, Field

DocumentStatus = Literal["pending", "submitted", "revision_submitted", "accepted", "rejected"]


class ProtocolDocumentResponse(BaseModel):
    id: str
    application_code: str
    field_key: str
    title: str
    file_name: str | None
    original_file_name: str | None
    content_type: str | None
    size_bytes: int | None
    status: DocumentStatus
    version: int
    request_reason: str | None
    uploaded_at: int | None


class DocumentRequestCreate(BaseModel):
    field_key: str = Field(min_length=1)
    title: str = Field(min_length=1)
    request_reason: str | None = None


class DocumentStatusUpdate(BaseModel):
    status: DocumentStatus
