import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, BigInteger, Integer, ForeignKey
from artqueue.db import Base

DEVIATION_STATUSES = ("review", "draft", "scheduled", "uploading", "publishing", "published", "failed")

class Deviation(Base):
    __tablename__ = "deviation"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False, index=True)
    automation_id = Column(String(36), ForeignKey("automation.id"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="draft")
    scheduled_at = Column(DateTime, nullable=True)
    jitter_seconds = Column(Integer, nullable=False, default=0)
    actual_publish_at = Column(DateTime, nullable=True)  # scheduled_at + jitter_seconds
    error_message = Column(Text, nullable=True)
    deviation_url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class DeviationFile(Base):
    __tablename__ = "deviation_file"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    deviation_id = Column(String(36), ForeignKey("deviation.id"), nullable=False, index=True)
    storage_key = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size = Column(BigInteger, nullable=False)
    checksum = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
