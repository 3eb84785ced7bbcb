from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session

from artqueue.api.deps import get_current_user
from artqueue.db import get_db
from artqueue.models.automation import AutomationScheduleRule
from artqueue.models.user import User
from artqueue.schemas.schedule_rule import RuleCreateIn, RuleUpdateIn
from artqueue.services.schedule_rules import (
    apply_rule_update,
    ensure_rule_deletable,
    find_owned_automation,
    find_owned_rule,
    list_rules,
    rule_attributes,
    serialize_rule,
)

router = APIRouter(prefix="/automation-schedule-rules", tags=["automation-schedule-rules"])


@router.get("")
def list_schedule_rules(
    automation_id: str = Query(..., alias="automationId"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    automation = find_owned_automation(db, automation_id, user.id)
    return {"rules": [serialize_rule(rule) for rule in list_rules(db, automation.id)]}


@router.post("", status_code=201)
def create_schedule_rule(
    payload: RuleCreateIn = Body(..., discriminator="type"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    find_owned_automation(db, payload.automation_id, user.id)
    rule = AutomationScheduleRule(**rule_attributes(payload))
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return {"rule": serialize_rule(rule)}


@router.patch("/{rule_id}")
def update_schedule_rule(
    rule_id: str,
    payload: RuleUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rule, _automation = find_owned_rule(db, rule_id, user.id)
    apply_rule_update(rule, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(rule)
    return {"rule": serialize_rule(rule)}


@router.delete("/{rule_id}", status_code=204)
def delete_schedule_rule(
    rule_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rule, automation = find_owned_rule(db, rule_id, user.id)
    ensure_rule_deletable(db, rule, automation)
    db.delete(rule)
    db.commit()
    return Response(status_code=204)
