from pydantic import BaseModel, ConfigDict, Field


class ManifestEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(alias="fileName")
    original_title: str = Field(alias="originalTitle")
    size: int
    type: str
    uploaded_at: int = Field(alias="uploadedAt")


class DocumentCacheMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    zip_hash: str = Field(alias="zipHash", min_length=1)
    zip_last_modified: int = Field(alias="zipLastModified")
    zip_download_url: str = Field(alias="zipDownloadUrl", min_length=1)
    file_manifest: list[ManifestEntry] = Field(alias="fileManifest", default_factory=list)


class ApplicationCreate(BaseModel):
    title: str = Field(min_length=1)
    code: str | None = None
    proponent_name: str | None = None
    proponent_email: str | None = None


class ApplicationResponse(BaseModel):
    code: str
    title: str
    proponent_name: str | None
    proponent_email: str | None
    zip_hash: str | None
    created_at: str
    updated_at: str


class ArchiveFileMetadata(BaseModel):
    key: str
    title: str
    originalFileName: str
    zipFileName: str


class SubmissionResponse(BaseModel):
    application_code: str
    zip_hash: str
    zip_size_bytes: int
    storage_path: str
    files: list[ArchiveFileMetadata]
    documents_meta: DocumentCacheMeta
