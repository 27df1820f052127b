import json

from sqlalchemy import Column, Integer, Text
from sqlalchemy.orm import relationship
from recdocs.database import Base


class Application(Base):
    __tablename__ = "applications"

    code = Column(Text, primary_key=True)
    title = Column(Text, nullable=False)
    proponent_name = Column(Text)
    proponent_email = Column(Text)
    zip_hash = Column(Text)
    zip_last_modified = Column(Integer)
    zip_download_url = Column(Text)
    zip_storage_path = Column(Text)
    file_manifest = Column(Text)  # JSON list
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    documents = relationship(
        "ProtocolDocument", back_populates="application", cascade="all, delete-orphan"
    )

    @property
    def manifest(self) -> list[dict]:
        return json.loads(self.file_manifest) if self.file_manifest else []

    def documents_meta(self) -> dict | None:
        """The archive metadata a reader needs to populate its cache."""
        if not self.zip_hash or not self.zip_download_url:
            return None
        return {
            "zipHash": self.zip_hash,
            "zipLastModified": self.zip_last_modified,
            "zipDownloadUrl": self.zip_download_url,
            "fileManifest": self.manifest,
        }
