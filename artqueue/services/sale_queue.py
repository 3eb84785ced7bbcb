"""
Exclusive-sale queue.

Status moves strictly forward:

    pending -> processing -> completed
    processing -> pending      (failed attempt, attempts < MAX_ATTEMPTS)
    processing -> failed       (failed attempt, attempts == MAX_ATTEMPTS)
    pending -> skipped         (user bypass)

`completed`, `failed` and `skipped` are terminal. A worker claims an item
(`claim_next`), which counts as an attempt and fixes the sale price, then
reports back with `mark_completed` or `mark_failed`.
"""

import logging
import os
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from artqueue.errors import AppError
from artqueue.models.deviation import Deviation
from artqueue.models.price_preset import PricePreset
from artqueue.models.sale_queue import (
    ACTIVE_STATUSES,
    COMPLETED,
    FAILED,
    MAX_ATTEMPTS,
    PENDING,
    PROCESSING,
    SALE_QUEUE_STATUSES,
    SKIPPED,
    SaleQueueItem,
)
from artqueue.services.pricing import display_price, resolve_price

logger = logging.getLogger(__name__)

STALE_LOCK_SEC = int(os.getenv("ARTQUEUE_SALE_LOCK_STALE_SEC", "600"))
MAX_BATCH = 50
MAX_PAGE_SIZE = 100
CLAIM_BATCH = 5


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_item(
    item: SaleQueueItem,
    deviation: Deviation | None = None,
    preset: PricePreset | None = None,
) -> dict:
    payload = {
        "id": item.id,
        "deviationId": item.deviation_id,
        "pricePresetId": item.price_preset_id,
        "price": item.price,
        "status": item.status,
        "attempts": item.attempts,
        "maxAttempts": MAX_ATTEMPTS,
        "lastAttemptAt": _iso(item.last_attempt_at),
        "processingBy": item.processing_by,
        "completedAt": _iso(item.completed_at),
        "errorMessage": item.error_message,
        "createdAt": _iso(item.created_at),
        "updatedAt": _iso(item.updated_at),
    }
    if deviation is not None:
        payload["deviation"] = {
            "id": deviation.id,
            "title": deviation.title,
            "url": deviation.deviation_url,
            "thumbnailUrl": deviation.thumbnail_url,
            "publishedAt": _iso(deviation.published_at),
        }
    if preset is not None:
        payload["pricePreset"] = {
            "id": preset.id,
            "name": preset.name,
            "pricingMode": preset.pricing_mode,
            "currency": preset.currency,
            "displayPrice": display_price(preset),
        }
    return payload


def _find_owned_item(db: Session, item_id: str, user_id: str) -> SaleQueueItem:
    item = (
        db.query(SaleQueueItem)
        .filter(SaleQueueItem.id == item_id, SaleQueueItem.user_id == user_id)
        .first()
    )
    if not item:
        raise AppError(404, "Queue item not found")
    return item


def add_to_queue(db: Session, user_id: str, deviation_ids: list[str], preset_id: str) -> dict:
    ordered_ids = list(dict.fromkeys(deviation_ids))
    if not ordered_ids:
        raise AppError(400, "deviationIds must not be empty")
    if len(ordered_ids) > MAX_BATCH:
        raise AppError(400, f"At most {MAX_BATCH} deviations can be queued at once")

    preset = (
        db.query(PricePreset)
        .filter(PricePreset.id == preset_id, PricePreset.user_id == user_id)
        .first()
    )
    if not preset:
        raise AppError(404, "Price preset not found")

    valid_ids = {
        deviation_id
        for (deviation_id,) in db.query(Deviation.id)
        .filter(
            Deviation.id.in_(ordered_ids),
            Deviation.user_id == user_id,
            Deviation.status == "published",
            Deviation.deviation_url.isnot(None),
        )
        .all()
    }
    invalid = [deviation_id for deviation_id in ordered_ids if deviation_id not in valid_ids]
    if not valid_ids:
        raise AppError(400, "No valid published deviations found")
    if invalid:
        logger.warning("Deviations not found or not published: %s", ", ".join(invalid))

    already_queued = {
        deviation_id
        for (deviation_id,) in db.query(SaleQueueItem.deviation_id)
        .filter(
            SaleQueueItem.deviation_id.in_(list(valid_ids)),
            SaleQueueItem.status.in_(ACTIVE_STATUSES),
        )
        .all()
    }

    created = 0
    for deviation_id in ordered_ids:
        if deviation_id not in valid_ids or deviation_id in already_queued:
            continue
        db.add(
            SaleQueueItem(
                user_id=user_id,
                deviation_id=deviation_id,
                price_preset_id=preset.id,
                status=PENDING,
                attempts=0,
            )
        )
        created += 1
    db.commit()

    skipped = len(already_queued)
    if created:
        message = f"Added {created} deviation(s) to sale queue"
    else:
        message = "All deviations already in queue"
    logger.info("Sale queue add for user %s: created=%d skipped=%d invalid=%d", user_id, created, skipped, len(invalid))
    return {"created": created, "skipped": skipped, "invalid": invalid, "message": message}


def list_queue(db: Session, user_id: str, status: str | None, page: int, limit: int) -> dict:
    status = (status or "").strip().lower() or "all"
    if status != "all" and status not in SALE_QUEUE_STATUSES:
        raise AppError(400, f"Invalid status filter: {status}")
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    filters = [SaleQueueItem.user_id == user_id]
    if status != "all":
        filters.append(SaleQueueItem.status == status)
    total = db.query(SaleQueueItem).filter(*filters).count()

    rows = (
        db.query(SaleQueueItem, Deviation, PricePreset)
        .outerjoin(Deviation, Deviation.id == SaleQueueItem.deviation_id)
        .outerjoin(PricePreset, PricePreset.id == SaleQueueItem.price_preset_id)
        .filter(*filters)
        .order_by(SaleQueueItem.created_at.asc(), SaleQueueItem.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [serialize_item(item, deviation, preset) for item, deviation, preset in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


def remove_from_queue(db: Session, user_id: str, item_id: str) -> None:
    item = _find_owned_item(db, item_id, user_id)
    if item.status == PROCESSING:
        raise AppError(409, "Cannot delete item currently being processed")
    db.delete(item)
    db.commit()


def skip_item(db: Session, user_id: str, item_id: str) -> SaleQueueItem:
    item = _find_owned_item(db, item_id, user_id)
    if item.status != PENDING:
        raise AppError(409, f"Only pending items can be skipped (status is {item.status})")
    item.status = SKIPPED
    item.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(item)
    return item


def claim_next(db: Session, user_id: str, client_id: str, now: datetime | None = None) -> SaleQueueItem | None:
    """Lock the oldest pending item for `client_id` and fix its price; None when the queue is empty."""
    now = now or datetime.utcnow()
    while True:
        # Every candidate in a batch leaves `pending` (claimed here, claimed by
        # another worker, or failed), so the next batch always makes progress.
        candidates = (
            db.query(SaleQueueItem)
            .filter(
                SaleQueueItem.user_id == user_id,
                SaleQueueItem.status == PENDING,
                SaleQueueItem.attempts < MAX_ATTEMPTS,
            )
            .order_by(SaleQueueItem.created_at.asc(), SaleQueueItem.id.asc())
            .limit(CLAIM_BATCH)
            .all()
        )
        if not candidates:
            return None
        for candidate in candidates:
            item = _try_claim(db, candidate, client_id, now)
            if item is not None:
                return item


def _try_claim(db: Session, candidate: SaleQueueItem, client_id: str, now: datetime) -> SaleQueueItem | None:
    preset = db.get(PricePreset, candidate.price_preset_id) if candidate.price_preset_id else None
    try:
        if preset is None:
            raise AppError(400, "Price preset no longer exists")
        price = resolve_price(preset)
    except AppError as exc:
        _record_failure(candidate, exc.message, now, retry=False)
        db.commit()
        logger.warning("Sale queue item %s cannot be priced: %s", candidate.id, exc.message)
        return None

    # Conditional update so two workers can't claim the same row.
    claimed = (
        db.query(SaleQueueItem)
        .filter(SaleQueueItem.id == candidate.id, SaleQueueItem.status == PENDING)
        .update(
            {
                SaleQueueItem.status: PROCESSING,
                SaleQueueItem.processing_by: client_id,
                SaleQueueItem.locked_at: now,
                SaleQueueItem.last_attempt_at: now,
                SaleQueueItem.attempts: SaleQueueItem.attempts + 1,
                SaleQueueItem.price: price,
                SaleQueueItem.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if not claimed:
        return None
    db.refresh(candidate)
    logger.info(
        "Sale queue item %s claimed by %s (attempt %d, price %s)",
        candidate.id,
        client_id,
        candidate.attempts,
        candidate.price,
    )
    return candidate


def mark_completed(db: Session, user_id: str, item_id: str) -> SaleQueueItem:
    item = _find_owned_item(db, item_id, user_id)
    if item.status != PROCESSING:
        raise AppError(409, f"Cannot complete item with status {item.status}")
    now = datetime.utcnow()
    item.status = COMPLETED
    item.completed_at = now
    item.processing_by = None
    item.locked_at = None
    item.error_message = None
    item.updated_at = now
    db.commit()
    db.refresh(item)
    logger.info("Sale queue item %s completed", item.id)
    return item


def _record_failure(item: SaleQueueItem, error_message: str, now: datetime, retry: bool = True) -> bool:
    will_retry = retry and item.attempts < MAX_ATTEMPTS
    item.status = PENDING if will_retry else FAILED
    item.error_message = error_message
    item.processing_by = None
    item.locked_at = None
    if not will_retry:
        item.completed_at = now
    item.updated_at = now
    return will_retry


def mark_failed(db: Session, user_id: str, item_id: str, error_message: str) -> tuple[SaleQueueItem, bool]:
    item = _find_owned_item(db, item_id, user_id)
    if item.status != PROCESSING:
        raise AppError(409, f"Cannot fail item with status {item.status}")
    will_retry = _record_failure(item, error_message, datetime.utcnow())
    db.commit()
    db.refresh(item)
    if will_retry:
        logger.info("Sale queue item %s failed attempt %d, will retry: %s", item.id, item.attempts, error_message)
    else:
        logger.warning("Sale queue item %s failed permanently after %d attempts: %s", item.id, item.attempts, error_message)
    return item, will_retry


def release_processing(
    db: Session,
    user_id: str | None = None,
    older_than_sec: int | None = None,
    reason: str = "Processing lock released",
) -> int:
    """Release processing locks through the same retry rule as a failed attempt."""
    now = datetime.utcnow()
    query = db.query(SaleQueueItem).filter(SaleQueueItem.status == PROCESSING)
    if user_id is not None:
        query = query.filter(SaleQueueItem.user_id == user_id)
    if older_than_sec is not None:
        cutoff = now - timedelta(seconds=older_than_sec)
        query = query.filter(SaleQueueItem.locked_at.isnot(None), SaleQueueItem.locked_at < cutoff)
    items = query.all()
    for item in items:
        _record_failure(item, reason, now)
    if items:
        db.commit()
        logger.info("Released %d processing sale queue item(s): %s", len(items), reason)
    return len(items)
