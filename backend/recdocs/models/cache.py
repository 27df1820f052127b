from sqlalchemy import Column, ForeignKey, Integer, LargeBinary, Text
from recdocs.database import Base


# Both tables live in their own SQLite file (settings.cache_db_path), never in
# the application database.


class CacheRecord(Base):
    """One cached archive version; exists even when the archive was empty."""

    __tablename__ = "cache_records"

    cache_key = Column(Text, primary_key=True)
    cached_at = Column(Integer, nullable=False)


class CachedFile(Base):
    __tablename__ = "cached_files"

    cache_key = Column(
        Text, ForeignKey("cache_records.cache_key", ondelete="CASCADE"), primary_key=True
    )
    file_name = Column(Text, primary_key=True)
    content = Column(LargeBinary, nullable=False)
