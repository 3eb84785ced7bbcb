import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from artqueue.api.deps import get_current_user
from artqueue.db import get_db
from artqueue.errors import AppError
from artqueue.models.automation import Automation, AutomationExecutionLog, AutomationScheduleRule
from artqueue.models.deviation import Deviation
from artqueue.models.user import User
from artqueue.schemas.automation import AutomationCreateIn, AutomationReorderIn, AutomationUpdateIn
from artqueue.services.automations import ensure_preset_owned, serialize_automation, set_enabled
from artqueue.services.schedule_rules import find_owned_automation, list_rules, serialize_rule

router = APIRouter(prefix="/automations", tags=["automations"])
logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = {
    "name",
    "color",
    "draft_selection_method",
    "jitter_min_seconds",
    "jitter_max_seconds",
    "sort_order",
    "auto_add_to_sale_queue",
}


@router.get("")
def list_automations(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    automations = (
        db.query(Automation)
        .filter(Automation.user_id == user.id)
        .order_by(Automation.sort_order.asc(), Automation.created_at.asc())
        .all()
    )
    return {"automations": [serialize_automation(item) for item in automations]}


def _serialize_log(log: AutomationExecutionLog) -> dict:
    return {
        "id": log.id,
        "automationId": log.automation_id,
        "executedAt": log.executed_at.isoformat() if log.executed_at else None,
        "scheduledCount": log.scheduled_count,
        "errorMessage": log.error_message,
        "triggeredByRuleType": log.triggered_by_rule_type,
    }


# Declared before the "/{automation_id}" routes so "reorder" is not read as an id.
@router.patch("/reorder")
def reorder_automations(
    payload: AutomationReorderIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ordered_ids = list(dict.fromkeys(payload.automation_ids))
    owned = {
        automation.id: automation
        for automation in db.query(Automation)
        .filter(Automation.id.in_(ordered_ids), Automation.user_id == user.id)
        .all()
    }
    if len(owned) != len(ordered_ids):
        raise AppError(400, "Some automations not found or not owned by user")

    now = datetime.utcnow()
    for index, automation_id in enumerate(ordered_ids):
        owned[automation_id].sort_order = index
        owned[automation_id].updated_at = now
    db.commit()
    return list_automations(db=db, user=user)


@router.get("/{automation_id}")
def get_automation(automation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    automation = find_owned_automation(db, automation_id, user.id)
    payload = serialize_automation(automation)
    payload["scheduleRules"] = [serialize_rule(rule) for rule in list_rules(db, automation.id)]
    return {"automation": payload}


@router.post("", status_code=201)
def create_automation(
    payload: AutomationCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.sale_queue_preset_id:
        ensure_preset_owned(db, payload.sale_queue_preset_id, user.id)

    sort_order = payload.sort_order
    if sort_order is None:
        max_order = db.query(func.max(Automation.sort_order)).filter(Automation.user_id == user.id).scalar()
        sort_order = (max_order + 1) if max_order is not None else 0

    automation = Automation(
        user_id=user.id,
        name=payload.name.strip(),
        description=(payload.description or "").strip() or None,
        color=payload.color or "#6366f1",
        enabled=False,
        draft_selection_method=payload.draft_selection_method,
        jitter_min_seconds=payload.jitter_min_seconds,
        jitter_max_seconds=payload.jitter_max_seconds,
        sort_order=sort_order,
        auto_add_to_sale_queue=payload.auto_add_to_sale_queue,
        sale_queue_preset_id=payload.sale_queue_preset_id,
    )
    db.add(automation)
    db.commit()
    db.refresh(automation)
    return {"automation": serialize_automation(automation)}


@router.patch("/{automation_id}")
def update_automation(
    automation_id: str,
    payload: AutomationUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    automation = find_owned_automation(db, automation_id, user.id)
    changes = payload.model_dump(exclude_unset=True)

    jitter_min = changes.get("jitter_min_seconds", automation.jitter_min_seconds)
    jitter_max = changes.get("jitter_max_seconds", automation.jitter_max_seconds)
    if jitter_min is not None and jitter_max is not None and jitter_min > jitter_max:
        raise AppError(400, "jitterMinSeconds must not exceed jitterMaxSeconds")

    preset_id = changes.get("sale_queue_preset_id", automation.sale_queue_preset_id)
    auto_add = changes.get("auto_add_to_sale_queue", automation.auto_add_to_sale_queue)
    if auto_add and not preset_id:
        raise AppError(400, "Must select price preset when sale queue is enabled")
    if changes.get("sale_queue_preset_id"):
        ensure_preset_owned(db, changes["sale_queue_preset_id"], user.id)

    enabled = changes.pop("enabled", None)
    for field, value in changes.items():
        if field in NON_NULLABLE_FIELDS and value is None:
            raise AppError(400, f"{field} cannot be null")
        setattr(automation, field, value)
    if enabled is not None:
        set_enabled(db, automation, enabled)
    automation.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(automation)
    return {"automation": serialize_automation(automation)}


@router.post("/{automation_id}/toggle")
def toggle_automation(automation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    automation = find_owned_automation(db, automation_id, user.id)
    set_enabled(db, automation, not automation.enabled)
    db.commit()
    db.refresh(automation)
    logger.info("Automation %s %s", automation.id, "enabled" if automation.enabled else "disabled")
    return {"automation": serialize_automation(automation)}


@router.get("/{automation_id}/logs")
def list_automation_logs(
    automation_id: str,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    automation = find_owned_automation(db, automation_id, user.id)
    page = max(1, page)
    limit = max(1, min(limit, 100))

    query = db.query(AutomationExecutionLog).filter(AutomationExecutionLog.automation_id == automation.id)
    total = query.count()
    logs = (
        query.order_by(AutomationExecutionLog.executed_at.desc(), AutomationExecutionLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "logs": [_serialize_log(log) for log in logs],
        "pagination": {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit)},
    }


@router.delete("/{automation_id}", status_code=204)
def delete_automation(automation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    automation = find_owned_automation(db, automation_id, user.id)
    db.query(AutomationScheduleRule).filter(AutomationScheduleRule.automation_id == automation.id).delete(
        synchronize_session=False
    )
    db.query(AutomationExecutionLog).filter(AutomationExecutionLog.automation_id == automation.id).delete(
        synchronize_session=False
    )
    db.query(Deviation).filter(Deviation.automation_id == automation.id).update(
        {Deviation.automation_id: None}, synchronize_session=False
    )
    db.delete(automation)
    db.commit()
    return Response(status_code=204)
