import io
import time
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Callable

from recdocs.errors import CorruptArchiveError, MultipleFilesPerFieldError
from recdocs.utils.filesystem import file_extension, sanitize_title
from recdocs.utils.hashing import content_hash
from recdocs.utils.mime import resolve

# Fixed entry timestamp and permissions keep archive bytes a pure function of
# the input files and their order.
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
ZIP_FILE_MODE = 0o644 << 16


@dataclass
class SubmittedFile:
    field_key: str
    title: str
    file_name: str
    content: bytes
    content_type: str | None = None
    # Set when the entry is carried over from an earlier archive.
    zip_name: str | None = None
    uploaded_at: int | None = None


@dataclass
class BuiltArchive:
    content: bytes
    zip_hash: str
    metadata: list[dict] = field(default_factory=list)
    manifest: list[dict] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.content)


def check_one_file_per_field(files: list[SubmittedFile]) -> None:
    seen: set[str] = set()
    for f in files:
        if f.field_key in seen:
            raise MultipleFilesPerFieldError(f.title or f.field_key)
        seen.add(f.field_key)


def archive_entry_name(title: str, field_key: str, original_name: str) -> str:
    stem = sanitize_title(title) or sanitize_title(field_key) or "document"
    ext = file_extension(original_name)
    return f"{stem}.{ext}" if ext else stem


def _dedupe(name: str, taken: set[str]) -> str:
    if name not in taken:
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    n = 2
    while True:
        candidate = f"{stem}_{n}.{ext}" if dot else f"{stem}_{n}"
        if candidate not in taken:
            return candidate
        n += 1


def build_archive(files: list[SubmittedFile], uploaded_at: int | None = None) -> BuiltArchive:
    """Package submitted files into a single deterministic zip archive.

    Entry order follows ``files``. Entries with a ``zip_name`` keep it; the
    others are named from their titles around them. Raises
    MultipleFilesPerFieldError before writing anything if a field supplies
    more than one file.
    """
    check_one_file_per_field(files)
    uploaded_at = uploaded_at if uploaded_at is not None else int(time.time() * 1000)

    metadata: list[dict] = []
    manifest: list[dict] = []
    taken: set[str] = {f.zip_name for f in files if f.zip_name}
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for f in files:
            zip_name = f.zip_name
            if not zip_name:
                zip_name = _dedupe(archive_entry_name(f.title, f.field_key, f.file_name), taken)
                taken.add(zip_name)

            info = zipfile.ZipInfo(zip_name, date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = ZIP_FILE_MODE
            zf.writestr(info, f.content)

            metadata.append({
                "key": f.field_key,
                "title": f.title,
                "originalFileName": f.file_name,
                "zipFileName": zip_name,
            })
            manifest.append({
                "fileName": zip_name,
                "originalTitle": f.title,
                "size": len(f.content),
                "type": f.content_type or resolve(f.file_name),
                "uploadedAt": f.uploaded_at if f.uploaded_at is not None else uploaded_at,
            })

    data = buf.getvalue()
    return BuiltArchive(content=data, zip_hash=content_hash(data), metadata=metadata, manifest=manifest)


def _open(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, EOFError) as exc:
        raise CorruptArchiveError() from exc


def _read(zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
    try:
        return zf.read(info)
    except (zipfile.BadZipFile, zlib.error, NotImplementedError, EOFError) as exc:
        raise CorruptArchiveError(f"Archive entry '{info.filename}' is unreadable") from exc


def extract_archive(data: bytes) -> dict[str, bytes]:
    files: dict[str, bytes] = {}
    with _open(data) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            files[info.filename] = _read(zf, info)
    return files


def extract_first(data: bytes, predicate: Callable[[str], bool]) -> tuple[str, bytes] | None:
    """Decompress only the first file entry whose name satisfies ``predicate``."""
    with _open(data) as zf:
        for info in zf.infolist():
            if not info.is_dir() and predicate(info.filename):
                return info.filename, _read(zf, info)
    return None


def is_pdf_entry(name: str) -> bool:
    return name.lower().endswith(".pdf")
