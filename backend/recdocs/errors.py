"""Error taxonomy shared by the archive codec, the cache and the gateway.

Every error carries the HTTP status it maps to and a message that is safe to
return to a client. Internal details belong in the logs, not in ``message``.
"""


class RecDocsError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class BadRequestError(RecDocsError):
    status_code = 400
    default_message = "Bad request"


class ForbiddenError(RecDocsError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(RecDocsError):
    status_code = 404
    default_message = "Not found"


class ConflictError(RecDocsError):
    status_code = 409
    default_message = "Conflict"


class InvalidTransitionError(ConflictError):
    default_message = "Invalid document status transition"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change document status from '{current}' to '{target}'")


class MultipleFilesPerFieldError(BadRequestError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(
            f"Field '{field}' has more than one file. Only one file per field is allowed."
        )


class CorruptArchiveError(RecDocsError):
    status_code = 422
    default_message = "Archive is corrupt or not a ZIP file"


class MetadataMissingError(RecDocsError):
    status_code = 404
    default_message = "No zip metadata found"


class ArchiveHashMismatchError(RecDocsError):
    status_code = 502
    default_message = "Downloaded archive does not match its recorded hash"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__()


class UpstreamFetchError(RecDocsError):
    status_code = 500
    default_message = "Failed to retrieve file from storage"


class BlobStoreError(RecDocsError):
    """Raised by blob store backends; the gateway falls back to HTTP on it."""

    status_code = 500
    default_message = "Storage error"


class PayloadTooLargeError(RecDocsError):
    status_code = 413
    default_message = "File too large"
