import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from artqueue.db import Base

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"
SALE_QUEUE_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED, SKIPPED)
ACTIVE_STATUSES = (PENDING, PROCESSING)
MAX_ATTEMPTS = 3


class SaleQueueItem(Base):
    __tablename__ = "sale_queue_item"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False, index=True)
    deviation_id = Column(String(36), ForeignKey("deviation.id"), nullable=False, index=True)
    price_preset_id = Column(String(36), ForeignKey("price_preset.id"), nullable=True)
    price = Column(Integer, nullable=True)  # resolved when a worker claims the item
    status = Column(String(16), nullable=False, default=PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)
    processing_by = Column(String, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
