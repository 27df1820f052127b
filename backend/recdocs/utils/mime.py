import re

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "js": "text/javascript",
    "json": "application/json",
    "xml": "application/xml",
    "zip": "application/zip",
    "rar": "application/x-rar-compressed",
    "7z": "application/x-7z-compressed",
    "tar": "application/x-tar",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "wav": "audio/wav",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "wmv": "video/x-ms-wmv",
    "csv": "text/csv",
    "md": "text/markdown",
    "rtf": "application/rtf",
}

TYPE_CLASSES: dict[str, frozenset[str]] = {
    "pdf": frozenset({"application/pdf"}),
    "document": frozenset({
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "application/rtf",
    }),
    "spreadsheet": frozenset({
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/csv",
    }),
    "presentation": frozenset({
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    }),
    "archive": frozenset({
        "application/zip",
        "application/x-rar-compressed",
        "application/x-7z-compressed",
        "application/x-tar",
    }),
}

_EXTENSION = re.compile(r"[A-Za-z0-9]+")


def extension_of(name_or_url: str) -> str:
    """Lower-cased extension of a filename or URL, or "" when there is none."""
    name = re.split(r"[?#]", name_or_url, maxsplit=1)[0]
    name = name.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    match = _EXTENSION.match(name.rsplit(".", 1)[1])
    return match.group(0).lower() if match else ""


def resolve(name_or_url: str) -> str:
    return MIME_TYPES.get(extension_of(name_or_url), DEFAULT_MIME_TYPE)


def is_of_type(name_or_url: str, kind: str) -> bool:
    mime_type = resolve(name_or_url)
    kind = kind.lower()
    if kind == "image":
        return mime_type.startswith("image/")
    return mime_type in TYPE_CLASSES.get(kind, frozenset())
