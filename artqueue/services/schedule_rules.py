import logging
from datetime import datetime

from sqlalchemy.orm import Session

from artqueue.errors import AppError
from artqueue.models.automation import Automation, AutomationScheduleRule
from artqueue.schemas.schedule_rule import (
    FOREIGN_FIELD_ERRORS,
    RULE_TYPE_FIELDS,
    TYPE_SPECIFIC_FIELDS,
    DailyQuotaRule,
    FixedIntervalRule,
    FixedTimeRule,
    foreign_rule_fields,
)

logger = logging.getLogger(__name__)

LAST_ENABLED_RULE_ERROR = "Cannot delete the last enabled rule while automation is enabled"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_rule(rule: AutomationScheduleRule) -> dict:
    return {
        "id": rule.id,
        "automationId": rule.automation_id,
        "type": rule.type,
        "timeOfDay": rule.time_of_day,
        "intervalMinutes": rule.interval_minutes,
        "deviationsPerInterval": rule.deviations_per_interval,
        "dailyQuota": rule.daily_quota,
        "daysOfWeek": rule.days_of_week,
        "priority": rule.priority,
        "enabled": bool(rule.enabled),
        "createdAt": _iso(rule.created_at),
        "updatedAt": _iso(rule.updated_at),
    }


def rule_attributes(payload: FixedTimeRule | FixedIntervalRule | DailyQuotaRule) -> dict:
    """Column values for a new rule, holding only the fields its type owns."""
    if isinstance(payload, FixedTimeRule):
        own = {"time_of_day": payload.time_of_day}
    elif isinstance(payload, FixedIntervalRule):
        own = {
            "interval_minutes": payload.interval_minutes,
            "deviations_per_interval": payload.deviations_per_interval,
        }
    elif isinstance(payload, DailyQuotaRule):
        own = {"daily_quota": payload.daily_quota}
    else:
        raise AppError(400, f"Unknown rule type: {getattr(payload, 'type', None)}")

    attributes = {field: None for field in TYPE_SPECIFIC_FIELDS}
    attributes.update(own)
    attributes.update(
        automation_id=payload.automation_id,
        type=payload.type,
        days_of_week=list(payload.days_of_week) if payload.days_of_week is not None else None,
        priority=payload.priority,
        enabled=payload.enabled,
    )
    return attributes


def apply_rule_update(rule: AutomationScheduleRule, changes: dict) -> None:
    if rule.type not in RULE_TYPE_FIELDS:
        raise AppError(400, f"Unknown rule type: {rule.type}")
    if foreign_rule_fields(rule.type, changes.keys()):
        raise AppError(400, FOREIGN_FIELD_ERRORS[rule.type])
    for field, value in changes.items():
        if field == "days_of_week" and value is not None:
            value = list(value)
        setattr(rule, field, value)
    rule.updated_at = datetime.utcnow()


def find_owned_automation(db: Session, automation_id: str, user_id: str) -> Automation:
    automation = (
        db.query(Automation)
        .filter(Automation.id == automation_id, Automation.user_id == user_id)
        .first()
    )
    if not automation:
        raise AppError(404, "Automation not found")
    return automation


def find_owned_rule(db: Session, rule_id: str, user_id: str) -> tuple[AutomationScheduleRule, Automation]:
    row = (
        db.query(AutomationScheduleRule, Automation)
        .join(Automation, Automation.id == AutomationScheduleRule.automation_id)
        .filter(AutomationScheduleRule.id == rule_id)
        .first()
    )
    # Missing and foreign rules look the same to the caller.
    if not row or row[1].user_id != user_id:
        raise AppError(404, "Schedule rule not found")
    return row[0], row[1]


def list_rules(db: Session, automation_id: str) -> list[AutomationScheduleRule]:
    return (
        db.query(AutomationScheduleRule)
        .filter(AutomationScheduleRule.automation_id == automation_id)
        .order_by(AutomationScheduleRule.priority.asc(), AutomationScheduleRule.created_at.asc())
        .all()
    )


def count_enabled_rules(db: Session, automation_id: str) -> int:
    return (
        db.query(AutomationScheduleRule)
        .filter(
            AutomationScheduleRule.automation_id == automation_id,
            AutomationScheduleRule.enabled.is_(True),
        )
        .count()
    )


def ensure_rule_deletable(db: Session, rule: AutomationScheduleRule, automation: Automation) -> None:
    if not (automation.enabled and rule.enabled):
        return
    # Counted at delete time; two concurrent deletes can still both pass.
    if count_enabled_rules(db, automation.id) <= 1:
        logger.info("Refused to delete last enabled rule %s of automation %s", rule.id, automation.id)
        raise AppError(409, LAST_ENABLED_RULE_ERROR)
