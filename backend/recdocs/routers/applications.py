import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from recdocs.config import settings
from recdocs.database import get_db
from recdocs.dependencies import get_blob_store
from recdocs.errors import (
    BadRequestError,
    MetadataMissingError,
    MultipleFilesPerFieldError,
    PayloadTooLargeError,
)
from recdocs.models.application import Application
from recdocs.models.protocol_document import ProtocolDocument
from recdocs.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    ArchiveFileMetadata,
    DocumentCacheMeta,
    SubmissionResponse,
)
from recdocs.schemas.document import (
    DocumentRequestCreate,
    DocumentStatusUpdate,
    ProtocolDocumentResponse,
)
from recdocs.services import application_service
from recdocs.services.archive_service import SubmittedFile
from recdocs.services.storage_service import BlobStore

router = APIRouter(prefix="/applications", tags=["applications"])


def _app_to_response(app: Application) -> ApplicationResponse:
    return ApplicationResponse(
        code=app.code,
        title=app.title,
        proponent_name=app.proponent_name,
        proponent_email=app.proponent_email,
        zip_hash=app.zip_hash,
        created_at=app.created_at,
        updated_at=app.updated_at,
    )


def _doc_to_response(doc: ProtocolDocument) -> ProtocolDocumentResponse:
    return ProtocolDocumentResponse(
        id=doc.id,
        application_code=doc.application_code,
        field_key=doc.field_key,
        title=doc.title,
        file_name=doc.file_name,
        original_file_name=doc.original_file_name,
        content_type=doc.content_type,
        size_bytes=doc.size_bytes,
        status=doc.status,
        version=doc.version,
        request_reason=doc.request_reason,
        uploaded_at=doc.uploaded_at,
    )


def _parse_titles(raw) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, str):
        raise BadRequestError("titles must be a JSON object")
    try:
        titles = json.loads(raw)
    except ValueError as exc:
        raise BadRequestError("titles must be a JSON object") from exc
    if not isinstance(titles, dict) or not all(isinstance(v, str) for v in titles.values()):
        raise BadRequestError("titles must be a JSON object")
    return titles


async def _read_limited(upload: UploadFile, field_key: str) -> bytes:
    max_bytes = settings.max_upload_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await upload.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise PayloadTooLargeError(f"File for field '{field_key}' is too large (max {max_bytes} bytes)")
        chunks.append(chunk)
    content = b"".join(chunks)
    if not content:
        raise BadRequestError(f"Empty file for field '{field_key}'")
    return content


@router.post("", response_model=ApplicationResponse, status_code=201)
async def create_application(req: ApplicationCreate, db: Session = Depends(get_db)):
    app = application_service.create_application(
        db,
        title=req.title,
        code=req.code,
        proponent_name=req.proponent_name,
        proponent_email=req.proponent_email,
    )
    return _app_to_response(app)


@router.get("/{code}", response_model=ApplicationResponse)
async def get_application(code: str, db: Session = Depends(get_db)):
    return _app_to_response(application_service.get_application(db, code))


@router.post("/{code}/submission", response_model=SubmissionResponse, status_code=201)
async def submit_documents(
    code: str,
    request: Request,
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    """Package every uploaded file into one archive and record its manifest.

    Each file part is named by its field key; the optional ``titles`` form
    field maps field keys to document titles.
    """
    form = await request.form()
    titles = _parse_titles(form.get("titles"))

    uploads: dict[str, list[UploadFile]] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            uploads.setdefault(key, []).append(value)
    for key, parts in uploads.items():
        if len(parts) > 1:
            raise MultipleFilesPerFieldError(titles.get(key) or key)

    files: list[SubmittedFile] = []
    for key, (upload,) in uploads.items():
        content = await _read_limited(upload, key)
        files.append(SubmittedFile(
            field_key=key,
            title=titles.get(key) or key,
            file_name=upload.filename or key,
            content=content,
            content_type=upload.content_type,
        ))

    result = application_service.submit_documents(db, store, code, files)
    meta = result.application.documents_meta()
    return SubmissionResponse(
        application_code=result.application.code,
        zip_hash=result.archive.zip_hash,
        zip_size_bytes=result.archive.size,
        storage_path=result.storage_path,
        files=[ArchiveFileMetadata(**m) for m in result.archive.metadata],
        documents_meta=DocumentCacheMeta.model_validate(meta),
    )


@router.get("/{code}/documents-meta", response_model=DocumentCacheMeta)
async def get_documents_meta(code: str, db: Session = Depends(get_db)):
    meta = application_service.get_application(db, code).documents_meta()
    if meta is None:
        raise MetadataMissingError()
    return DocumentCacheMeta.model_validate(meta)


@router.get("/{code}/documents", response_model=list[ProtocolDocumentResponse])
async def list_documents(code: str, db: Session = Depends(get_db)):
    return [_doc_to_response(d) for d in application_service.list_documents(db, code)]


@router.post("/{code}/documents/requests", response_model=ProtocolDocumentResponse, status_code=201)
async def request_document(code: str, req: DocumentRequestCreate, db: Session = Depends(get_db)):
    doc = application_service.request_document(
        db, code, field_key=req.field_key, title=req.title, request_reason=req.request_reason
    )
    return _doc_to_response(doc)


@router.put("/{code}/documents/{doc_id}/status", response_model=ProtocolDocumentResponse)
async def update_document_status(
    code: str, doc_id: str, req: DocumentStatusUpdate, db: Session = Depends(get_db)
):
    doc = application_service.update_document_status(db, code, doc_id, req.status)
    return _doc_to_response(doc)
