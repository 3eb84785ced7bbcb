import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from artqueue.db import Base

class User(Base):
    __tablename__ = "user"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String, nullable=False)
    api_token = Column(String(64), nullable=False, unique=True)
    timezone = Column(String, nullable=False, default="UTC")
    created_at = Column(DateTime, default=datetime.utcnow)
