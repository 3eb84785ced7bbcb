import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from artqueue.db import Base


class PricePreset(Base):
    __tablename__ = "price_preset"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    pricing_mode = Column(String(16), nullable=False, default="fixed")  # fixed | range
    price = Column(Integer, nullable=True)  # minor units (cents)
    min_price = Column(Integer, nullable=True)
    max_price = Column(Integer, nullable=True)
    currency = Column(String(8), nullable=False, default="USD")
    description = Column(String, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
