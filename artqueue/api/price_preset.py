from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from artqueue.api.deps import get_current_user
from artqueue.db import get_db
from artqueue.errors import AppError
from artqueue.models.automation import Automation
from artqueue.models.price_preset import PricePreset
from artqueue.models.sale_queue import ACTIVE_STATUSES, SaleQueueItem
from artqueue.models.user import User
from artqueue.schemas.price_preset import PricePresetCreateIn, PricePresetUpdateIn
from artqueue.services.automations import ensure_preset_owned
from artqueue.services.pricing import (
    apply_preset_update,
    normalize_currency,
    normalize_description,
    normalize_name,
    serialize_preset,
)

router = APIRouter(prefix="/price-presets", tags=["price-presets"])


def _clear_other_defaults(db: Session, user_id: str, keep_id: str | None = None) -> None:
    query = db.query(PricePreset).filter(PricePreset.user_id == user_id, PricePreset.is_default.is_(True))
    if keep_id is not None:
        query = query.filter(PricePreset.id != keep_id)
    query.update({PricePreset.is_default: False}, synchronize_session=False)


@router.get("")
def list_price_presets(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    presets = (
        db.query(PricePreset)
        .filter(PricePreset.user_id == user.id)
        .order_by(PricePreset.sort_order.asc(), PricePreset.created_at.desc())
        .all()
    )
    return {"presets": [serialize_preset(preset) for preset in presets]}


@router.get("/{preset_id}")
def get_price_preset(preset_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"preset": serialize_preset(ensure_preset_owned(db, preset_id, user.id))}


@router.post("", status_code=201)
def create_price_preset(
    payload: PricePresetCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.is_default:
        _clear_other_defaults(db, user.id)
    preset = PricePreset(
        user_id=user.id,
        name=normalize_name(payload.name),
        pricing_mode=payload.pricing_mode,
        price=payload.price,
        min_price=payload.min_price,
        max_price=payload.max_price,
        currency=normalize_currency(payload.currency),
        description=normalize_description(payload.description),
        is_default=payload.is_default,
        sort_order=payload.sort_order,
    )
    db.add(preset)
    db.commit()
    db.refresh(preset)
    return {"preset": serialize_preset(preset)}


@router.patch("/{preset_id}")
def update_price_preset(
    preset_id: str,
    payload: PricePresetUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    preset = ensure_preset_owned(db, preset_id, user.id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("is_default"):
        _clear_other_defaults(db, user.id, keep_id=preset.id)
    apply_preset_update(preset, changes)
    db.commit()
    db.refresh(preset)
    return {"preset": serialize_preset(preset)}


@router.delete("/{preset_id}", status_code=204)
def delete_price_preset(preset_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    preset = ensure_preset_owned(db, preset_id, user.id)

    queue_count = (
        db.query(SaleQueueItem)
        .filter(SaleQueueItem.price_preset_id == preset.id, SaleQueueItem.status.in_(ACTIVE_STATUSES))
        .count()
    )
    if queue_count > 0:
        raise AppError(409, f"Cannot delete preset with {queue_count} pending/processing sale(s)")

    automation_count = (
        db.query(Automation)
        .filter(Automation.sale_queue_preset_id == preset.id, Automation.auto_add_to_sale_queue.is_(True))
        .count()
    )
    if automation_count > 0:
        raise AppError(
            409,
            f"Cannot delete preset - used by {automation_count} automation(s) with sale queue enabled",
        )

    # Terminal queue rows keep their history without the preset.
    db.query(SaleQueueItem).filter(SaleQueueItem.price_preset_id == preset.id).update(
        {SaleQueueItem.price_preset_id: None}, synchronize_session=False
    )
    db.query(Automation).filter(Automation.sale_queue_preset_id == preset.id).update(
        {Automation.sale_queue_preset_id: None}, synchronize_session=False
    )
    db.delete(preset)
    db.commit()
    return Response(status_code=204)
