from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from recdocs.database import Base


class ProtocolDocument(Base):
    __tablename__ = "protocol_documents"

    id = Column(Text, primary_key=True)
    application_code = Column(
        Text, ForeignKey("applications.code", ondelete="CASCADE"), nullable=False
    )
    field_key = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    file_name = Column(Text)
    original_file_name = Column(Text)
    content_type = Column(Text)
    size_bytes = Column(Integer)
    content_hash = Column(Text)
    status = Column(Text, nullable=False, default="pending")
    version = Column(Integer, nullable=False, default=1)
    request_reason = Column(Text)
    uploaded_at = Column(Integer)

    application = relationship("Application", back_populates="documents")
