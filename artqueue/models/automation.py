import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String

from artqueue.db import Base


class Automation(Base):
    __tablename__ = "automation"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    color = Column(String(7), nullable=False, default="#6366f1")
    enabled = Column(Boolean, nullable=False, default=False)
    draft_selection_method = Column(String(16), nullable=False, default="fifo")
    jitter_min_seconds = Column(Integer, nullable=False, default=0)
    jitter_max_seconds = Column(Integer, nullable=False, default=300)
    sort_order = Column(Integer, nullable=False, default=0)
    auto_add_to_sale_queue = Column(Boolean, nullable=False, default=False)
    sale_queue_preset_id = Column(String(36), ForeignKey("price_preset.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AutomationScheduleRule(Base):
    __tablename__ = "automation_schedule_rule"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    automation_id = Column(String(36), ForeignKey("automation.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False)  # fixed_time | fixed_interval | daily_quota
    time_of_day = Column(String(5), nullable=True)  # HH:MM
    interval_minutes = Column(Integer, nullable=True)
    deviations_per_interval = Column(Integer, nullable=True)
    daily_quota = Column(Integer, nullable=True)
    days_of_week = Column(JSON, nullable=True)  # ["monday", ...]
    priority = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AutomationExecutionLog(Base):
    __tablename__ = "automation_execution_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    automation_id = Column(String(36), ForeignKey("automation.id"), nullable=False, index=True)
    executed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    scheduled_count = Column(Integer, nullable=False, default=0)
    error_message = Column(String, nullable=True)
    triggered_by_rule_type = Column(String(32), nullable=True)
