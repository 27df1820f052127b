import hashlib


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used as the content identity of an archive."""
    return hashlib.sha256(data).hexdigest()


def same_content(expected_hash: str, actual_hash: str) -> bool:
    return expected_hash.strip().lower() == actual_hash.strip().lower()
