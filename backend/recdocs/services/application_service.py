import json
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import quote

from sqlalchemy.orm import Session

from recdocs.config import settings
from recdocs.errors import BadRequestError, ConflictError, NotFoundError
from recdocs.models.application import Application
from recdocs.models.protocol_document import ProtocolDocument
from recdocs.services.archive_service import BuiltArchive, SubmittedFile, build_archive, extract_archive
from recdocs.services.storage_service import BlobStore
from recdocs.services.workflow_service import check_transition, apply_transition, resubmission_status
from recdocs.utils.hashing import content_hash

logger = logging.getLogger("recdocs.applications")

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_CODE_PATTERN = re.compile(r"^REC\d{4}[A-Z0-9]{6}$")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def generate_application_code(year: int | None = None) -> str:
    """Application codes look like ``REC2026AB12CD``."""
    year = year or datetime.now(timezone.utc).year
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(6))
    return f"REC{year}{suffix}"


def is_valid_application_code(code: str) -> bool:
    return bool(_CODE_PATTERN.match(code))


def archive_storage_path(application_code: str, zip_hash: str) -> str:
    return f"applications/{application_code}/documents/{zip_hash}.zip"


def archive_download_url(storage_path: str) -> str:
    return f"{settings.api_prefix}/proxy-storage/path?path={quote(storage_path, safe='')}"


def create_application(
    db: Session,
    title: str,
    code: str | None = None,
    proponent_name: str | None = None,
    proponent_email: str | None = None,
) -> Application:
    if code is None:
        code = generate_application_code()
        while db.get(Application, code) is not None:
            code = generate_application_code()
    elif not is_valid_application_code(code):
        raise BadRequestError("Invalid application code")
    elif db.get(Application, code) is not None:
        raise ConflictError("Application already exists")

    now = _now()
    app = Application(
        code=code,
        title=title,
        proponent_name=proponent_name,
        proponent_email=proponent_email,
        created_at=now,
        updated_at=now,
    )
    db.add(app)
    db.commit()
    db.refresh(app)
    return app


def get_application(db: Session, code: str) -> Application:
    app = db.get(Application, code)
    if app is None:
        raise NotFoundError("Application not found")
    return app


@dataclass
class SubmissionResult:
    archive: BuiltArchive
    storage_path: str
    application: Application


def _plan_documents(
    app: Application, files: list[SubmittedFile], archive: BuiltArchive, uploaded_at: int
) -> list[tuple[ProtocolDocument, str | None, dict]]:
    """Work out every document change before touching storage.

    Returns ``(document, target_status, fields)`` triples; ``target_status`` is
    None for new documents and for unchanged content.
    """
    existing = {d.field_key: d for d in app.documents}
    plan = []
    for f, entry in zip(files, archive.manifest):
        fields = {
            "title": f.title,
            "file_name": entry["fileName"],
            "original_file_name": f.file_name,
            "content_type": entry["type"],
            "size_bytes": len(f.content),
            "content_hash": content_hash(f.content),
            "uploaded_at": uploaded_at,
        }
        doc = existing.get(f.field_key)
        if doc is None:
            doc = ProtocolDocument(
                id=str(uuid.uuid4()),
                application_code=app.code,
                field_key=f.field_key,
                status="submitted",
                version=1,
            )
            plan.append((doc, None, fields))
        elif doc.content_hash == fields["content_hash"] and doc.status != "pending":
            plan.append((doc, None, fields))
        else:
            target = resubmission_status(doc)
            check_transition(doc.status, target)
            plan.append((doc, target, fields))
    return plan


def _carried_files(
    app: Application, store: BlobStore, submitted_keys: set[str]
) -> list[SubmittedFile]:
    """Documents of the current archive that this submission leaves untouched.

    They keep their entry names and upload times so that every submitted
    document stays reachable through the newest manifest.
    """
    kept = [
        d for d in app.documents
        if d.field_key not in submitted_keys and d.status != "pending" and d.file_name
    ]
    if not kept or not app.zip_storage_path:
        return []

    current = extract_archive(store.download(app.zip_storage_path))
    order = {entry["fileName"]: i for i, entry in enumerate(app.manifest)}
    carried = []
    for doc in sorted(kept, key=lambda d: order.get(d.file_name, len(order))):
        content = current.get(doc.file_name)
        if content is None:
            logger.warning(
                "Document %s of %s is missing from %s", doc.file_name, app.code, app.zip_storage_path
            )
            continue
        carried.append(SubmittedFile(
            field_key=doc.field_key,
            title=doc.title,
            file_name=doc.original_file_name or doc.file_name,
            content=content,
            content_type=doc.content_type,
            zip_name=doc.file_name,
            uploaded_at=doc.uploaded_at,
        ))
    return carried


def submit_documents(
    db: Session,
    store: BlobStore,
    application_code: str,
    files: list[SubmittedFile],
) -> SubmissionResult:
    """Package, upload and record a submission.

    Fields not in ``files`` are carried over from the current archive, so
    the new archive always holds every submitted document. Validation (one
    file per field, status transitions) completes before the upload. If
    recording fails after the upload, the new archive is removed again unless
    an earlier submission already references it.
    """
    if not files:
        raise BadRequestError("No files submitted")
    app = get_application(db, application_code)
    uploaded_at = _now_ms()
    carried = _carried_files(app, store, {f.field_key for f in files})
    archive = build_archive(files + carried, uploaded_at=uploaded_at)
    plan = _plan_documents(app, files, archive, uploaded_at)

    storage_path = archive_storage_path(app.code, archive.zip_hash)
    previously_stored = app.zip_storage_path == storage_path
    store.upload(storage_path, archive.content, "application/zip")
    logger.info(
        "Uploaded archive for %s: %s (%d bytes, %d files)",
        app.code, storage_path, archive.size, len(archive.manifest),
    )

    try:
        for doc, target, fields in plan:
            for name, value in fields.items():
                setattr(doc, name, value)
            if target is not None:
                apply_transition(doc, target)
            if doc not in app.documents:
                app.documents.append(doc)
        if app.zip_hash != archive.zip_hash:
            app.zip_hash = archive.zip_hash
            app.zip_last_modified = uploaded_at
            app.zip_storage_path = storage_path
            app.zip_download_url = archive_download_url(storage_path)
            app.file_manifest = json.dumps(archive.manifest)
        app.updated_at = _now()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Recording submission for %s failed", app.code)
        if not previously_stored:
            store.delete(storage_path)
        raise

    db.refresh(app)
    return SubmissionResult(archive=archive, storage_path=storage_path, application=app)


def list_documents(db: Session, application_code: str) -> list[ProtocolDocument]:
    app = get_application(db, application_code)
    return sorted(app.documents, key=lambda d: d.field_key)


def request_document(
    db: Session, application_code: str, field_key: str, title: str, request_reason: str | None = None
) -> ProtocolDocument:
    app = get_application(db, application_code)
    if any(d.field_key == field_key for d in app.documents):
        raise ConflictError("A document already exists for this field")
    doc = ProtocolDocument(
        id=str(uuid.uuid4()),
        application_code=app.code,
        field_key=field_key,
        title=title,
        status="pending",
        version=1,
        request_reason=request_reason or "",
    )
    app.documents.append(doc)
    app.updated_at = _now()
    db.commit()
    db.refresh(doc)
    return doc


def update_document_status(
    db: Session, application_code: str, document_id: str, status: str
) -> ProtocolDocument:
    doc = db.get(ProtocolDocument, document_id)
    if doc is None or doc.application_code != application_code:
        raise NotFoundError("Document not found")
    apply_transition(doc, status)
    db.commit()
    db.refresh(doc)
    return doc
