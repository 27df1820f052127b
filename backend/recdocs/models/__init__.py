from recdocs.models.application import Application
from recdocs.models.protocol_document import ProtocolDocument
from recdocs.models.cache import CacheRecord, CachedFile

__all__ = ["Application", "ProtocolDocument", "CacheRecord", "CachedFile"]
