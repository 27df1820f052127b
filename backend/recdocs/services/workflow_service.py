from recdocs.errors import InvalidTransitionError
from recdocs.models.protocol_document import ProtocolDocument

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"submitted"}),
    "submitted": frozenset({"revision_submitted", "accepted", "rejected"}),
    "revision_submitted": frozenset({"revision_submitted", "accepted", "rejected"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def check_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def apply_transition(document: ProtocolDocument, target: str) -> ProtocolDocument:
    """Move a document to ``target``; every revision bumps the version."""
    check_transition(document.status, target)
    if target == "revision_submitted":
        document.version = (document.version or 1) + 1
    document.status = target
    return document


def resubmission_status(document: ProtocolDocument) -> str:
    """Status a document moves to when a new file is uploaded for its field."""
    return "submitted" if document.status == "pending" else "revision_submitted"
