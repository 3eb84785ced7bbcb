from datetime import datetime

from sqlalchemy.orm import Session

from artqueue.errors import AppError
from artqueue.models.automation import Automation
from artqueue.models.price_preset import PricePreset
from artqueue.services.schedule_rules import count_enabled_rules

ENABLE_WITHOUT_RULES_ERROR = "Cannot enable automation without at least one active schedule rule"


def serialize_automation(automation: Automation) -> dict:
    return {
        "id": automation.id,
        "name": automation.name,
        "description": automation.description,
        "color": automation.color,
        "enabled": bool(automation.enabled),
        "draftSelectionMethod": automation.draft_selection_method,
        "jitterMinSeconds": automation.jitter_min_seconds,
        "jitterMaxSeconds": automation.jitter_max_seconds,
        "sortOrder": automation.sort_order,
        "autoAddToSaleQueue": bool(automation.auto_add_to_sale_queue),
        "saleQueuePresetId": automation.sale_queue_preset_id,
        "createdAt": automation.created_at.isoformat() if automation.created_at else None,
        "updatedAt": automation.updated_at.isoformat() if automation.updated_at else None,
    }


def ensure_preset_owned(db: Session, preset_id: str, user_id: str) -> PricePreset:
    preset = (
        db.query(PricePreset)
        .filter(PricePreset.id == preset_id, PricePreset.user_id == user_id)
        .first()
    )
    if not preset:
        raise AppError(404, "Price preset not found")
    return preset


def set_enabled(db: Session, automation: Automation, enabled: bool) -> None:
    if enabled and not automation.enabled and count_enabled_rules(db, automation.id) == 0:
        raise AppError(400, ENABLE_WITHOUT_RULES_ERROR)
    automation.enabled = enabled
    automation.updated_at = datetime.utcnow()
