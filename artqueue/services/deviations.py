"""
Deviation lifecycle as seen from the API.

    draft | failed -> scheduled      (schedule)
    scheduled -> scheduled           (reschedule, new time and jitter)
    scheduled -> draft               (cancel)
    draft | scheduled | failed -> publishing   (publish now)

Everything past `publishing` belongs to the external publisher.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import Session

from artqueue.errors import AppError
from artqueue.models.deviation import Deviation, DeviationFile
from artqueue.models.sale_queue import PROCESSING, SaleQueueItem
from artqueue.services.schedule_rules import find_owned_automation

logger = logging.getLogger(__name__)

MIN_LEAD = timedelta(hours=1)
MAX_LEAD = timedelta(days=365)
MAX_JITTER_SEC = 300
SCHEDULABLE_STATUSES = ("draft", "failed")
PUBLISHABLE_STATUSES = ("draft", "scheduled", "failed")


def find_owned_deviation(db: Session, deviation_id: str, user_id: str) -> Deviation:
    deviation = (
        db.query(Deviation)
        .filter(Deviation.id == deviation_id, Deviation.user_id == user_id)
        .first()
    )
    if not deviation:
        raise AppError(404, "Deviation not found")
    return deviation


def list_files(db: Session, deviation_id: str) -> list[DeviationFile]:
    return (
        db.query(DeviationFile)
        .filter(DeviationFile.deviation_id == deviation_id)
        .order_by(DeviationFile.sort_order.asc(), DeviationFile.created_at.asc(), DeviationFile.id.asc())
        .all()
    )


def _require_files(db: Session, deviation: Deviation) -> None:
    if db.query(DeviationFile).filter(DeviationFile.deviation_id == deviation.id).count() == 0:
        raise AppError(400, "Deviation must have at least one file")


def check_schedule_time(scheduled_at: datetime, now: datetime | None = None) -> datetime:
    """Naive UTC publish time between one hour and one year from now."""
    now = now or datetime.utcnow()
    if scheduled_at.tzinfo is not None:
        scheduled_at = scheduled_at.astimezone(timezone.utc).replace(tzinfo=None)
    if scheduled_at < now + MIN_LEAD:
        raise AppError(400, "Scheduled time must be at least 1 hour in the future")
    if scheduled_at > now + MAX_LEAD:
        raise AppError(400, "Cannot schedule more than 365 days in the future")
    return scheduled_at


def _set_schedule(deviation: Deviation, scheduled_at: datetime, rng: random.Random | None) -> None:
    jitter = (rng or random).randint(0, MAX_JITTER_SEC)
    deviation.scheduled_at = scheduled_at
    deviation.jitter_seconds = jitter
    deviation.actual_publish_at = scheduled_at + timedelta(seconds=jitter)
    deviation.updated_at = datetime.utcnow()


def update_deviation(db: Session, deviation: Deviation, changes: dict) -> None:
    if deviation.status == "published":
        raise AppError(409, "Cannot edit published deviation")
    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            raise AppError(400, "title cannot be blank")
        deviation.title = title
    if "description" in changes:
        deviation.description = (changes["description"] or "").strip() or None
    if "automation_id" in changes:
        if changes["automation_id"]:
            find_owned_automation(db, changes["automation_id"], deviation.user_id)
        deviation.automation_id = changes["automation_id"]
    deviation.updated_at = datetime.utcnow()


def schedule(db: Session, deviation: Deviation, scheduled_at: datetime, rng: random.Random | None = None) -> None:
    """`scheduled_at` must already have passed `check_schedule_time`."""
    if deviation.status not in SCHEDULABLE_STATUSES:
        raise AppError(409, "Only drafts and failed deviations can be scheduled")
    _require_files(db, deviation)
    deviation.status = "scheduled"
    deviation.error_message = None
    _set_schedule(deviation, scheduled_at, rng)
    logger.info("Deviation %s scheduled for %s", deviation.id, deviation.actual_publish_at.isoformat())


def reschedule(deviation: Deviation, scheduled_at: datetime, rng: random.Random | None = None) -> None:
    if deviation.status != "scheduled":
        raise AppError(409, "Only scheduled deviations can be rescheduled")
    _set_schedule(deviation, scheduled_at, rng)
    logger.info("Deviation %s rescheduled for %s", deviation.id, deviation.actual_publish_at.isoformat())


def cancel(deviation: Deviation) -> None:
    if deviation.status != "scheduled":
        raise AppError(409, "Only scheduled deviations can be canceled")
    deviation.status = "draft"
    deviation.scheduled_at = None
    deviation.jitter_seconds = 0
    deviation.actual_publish_at = None
    deviation.updated_at = datetime.utcnow()
    logger.info("Deviation %s schedule canceled", deviation.id)


def publish_now(db: Session, deviation: Deviation) -> None:
    if deviation.status not in PUBLISHABLE_STATUSES:
        raise AppError(409, f"Deviation cannot be published (status is {deviation.status})")
    _require_files(db, deviation)
    deviation.status = "publishing"
    deviation.error_message = None
    deviation.updated_at = datetime.utcnow()
    logger.info("Deviation %s handed to the publisher", deviation.id)


def reorder_files(db: Session, deviation: Deviation, file_ids: list[str]) -> list[DeviationFile]:
    """Listed files take positions 0..n-1; unlisted ones follow in their previous order."""
    files = list_files(db, deviation.id)
    by_id = {item.id: item for item in files}
    ordered_ids = list(dict.fromkeys(file_ids))
    unknown = [file_id for file_id in ordered_ids if file_id not in by_id]
    if unknown:
        raise AppError(400, f"Files not found on this deviation: {', '.join(unknown)}")
    listed = set(ordered_ids)
    ordered = [by_id[file_id] for file_id in ordered_ids] + [item for item in files if item.id not in listed]
    for index, item in enumerate(ordered):
        item.sort_order = index
    return ordered


def delete_deviation_rows(db: Session, deviation: Deviation) -> list[str]:
    """Delete the deviation with its files and queue rows; returns storage keys to clean up."""
    in_flight = (
        db.query(SaleQueueItem)
        .filter(SaleQueueItem.deviation_id == deviation.id, SaleQueueItem.status == PROCESSING)
        .count()
    )
    if in_flight:
        raise AppError(409, "Cannot delete deviation while its sale is being processed")
    files = db.query(DeviationFile).filter(DeviationFile.deviation_id == deviation.id).all()
    storage_keys = [item.storage_key for item in files]
    for item in files:
        db.delete(item)
    db.query(SaleQueueItem).filter(SaleQueueItem.deviation_id == deviation.id).delete(synchronize_session=False)
    db.delete(deviation)
    return storage_keys


def run_batch(
    db: Session,
    user_id: str,
    deviation_ids: list[str],
    action: Callable[[Deviation], None],
) -> list[dict]:
    """Apply `action` to each owned deviation in its own transaction; one result per distinct id."""
    results = []
    for deviation_id in dict.fromkeys(deviation_ids):
        deviation = db.get(Deviation, deviation_id)
        if not deviation:
            results.append({"id": deviation_id, "ok": False, "status": 404, "error": "Deviation not found"})
            continue
        if deviation.user_id != user_id:
            results.append({"id": deviation_id, "ok": False, "status": 403, "error": "forbidden"})
            continue
        try:
            action(deviation)
            db.commit()
        except AppError as exc:
            db.rollback()
            results.append({"id": deviation_id, "ok": False, "status": exc.status_code, "error": exc.message})
            continue
        results.append({"id": deviation_id, "ok": True})
    return results
