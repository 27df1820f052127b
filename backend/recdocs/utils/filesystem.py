import re
from pathlib import Path, PurePosixPath

from recdocs.config import settings
from recdocs.errors import BadRequestError

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^A-Za-z0-9._-]")


def ensure_data_dirs(data_path: Path | None = None) -> Path:
    path = data_path or settings.data_path
    path.mkdir(parents=True, exist_ok=True)
    (path / "blobs").mkdir(exist_ok=True)
    return path


def sanitize_title(title: str) -> str:
    """Turn a document title into a flat, portable archive entry stem.

    Whitespace runs become ``_``; anything else outside ``[A-Za-z0-9._-]`` is
    dropped so titles can never introduce sub-folders into an archive.
    """
    collapsed = _WHITESPACE.sub("_", title.strip())
    return _DISALLOWED.sub("", collapsed)


def file_extension(filename: str) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name
    if "." not in name.strip("."):
        return ""
    return name.rsplit(".", 1)[1]


def normalize_object_path(path: str) -> str:
    """Validate a blob path and return it in canonical ``a/b/c`` form."""
    candidate = path.strip().replace("\\", "/")
    if not candidate or candidate.startswith("/"):
        raise BadRequestError("Invalid storage path")
    parts = candidate.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise BadRequestError("Invalid storage path")
    return "/".join(parts)
