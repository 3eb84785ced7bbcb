import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Response, UploadFile
from sqlalchemy.orm import Session

from artqueue.api.deps import get_current_user
from artqueue.db import get_db
from artqueue.errors import AppError
from artqueue.models.deviation import DEVIATION_STATUSES, Deviation, DeviationFile
from artqueue.models.user import User
from artqueue.schemas.deviation import (
    DeviationBatchIn,
    DeviationBatchScheduleIn,
    DeviationCreateIn,
    DeviationScheduleIn,
    DeviationUpdateIn,
    FileReorderIn,
)
from artqueue.services import deviations as lifecycle
from artqueue.services.schedule_rules import find_owned_automation
from artqueue.services.storage import delete_objects_best_effort, public_url, save_file

router = APIRouter(prefix="/deviations", tags=["deviations"])
logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_file(item: DeviationFile) -> dict:
    return {
        "id": item.id,
        "originalFilename": item.original_filename,
        "mimeType": item.mime_type,
        "size": item.size,
        "checksum": item.checksum,
        "sortOrder": item.sort_order,
        "url": public_url(item.storage_key),
    }


def _serialize_deviation(deviation: Deviation, files: list[DeviationFile] | None = None) -> dict:
    payload = {
        "id": deviation.id,
        "title": deviation.title,
        "description": deviation.description,
        "status": deviation.status,
        "automationId": deviation.automation_id,
        "scheduledAt": _iso(deviation.scheduled_at),
        "jitterSeconds": deviation.jitter_seconds or 0,
        "actualPublishAt": _iso(deviation.actual_publish_at),
        "errorMessage": deviation.error_message,
        "deviationUrl": deviation.deviation_url,
        "thumbnailUrl": deviation.thumbnail_url,
        "publishedAt": _iso(deviation.published_at),
        "createdAt": _iso(deviation.created_at),
        "updatedAt": _iso(deviation.updated_at),
    }
    if files is not None:
        payload["files"] = [_serialize_file(item) for item in files]
    return payload


def _detail(db: Session, deviation: Deviation) -> dict:
    db.commit()
    db.refresh(deviation)
    return {"deviation": _serialize_deviation(deviation, files=lifecycle.list_files(db, deviation.id))}


def _batch_response(results: list[dict], done_key: str) -> dict:
    done = sum(1 for result in results if result["ok"])
    return {"results": results, done_key: done, "failed": len(results) - done}


@router.get("")
def list_deviations(
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    safe_offset = max(0, offset)
    safe_limit = max(1, min(limit, 100))

    query = db.query(Deviation).filter(Deviation.user_id == user.id)
    if status:
        normalized_status = status.strip().lower()
        if normalized_status not in DEVIATION_STATUSES:
            raise AppError(400, f"Invalid status filter: {status}")
        query = query.filter(Deviation.status == normalized_status)

    total = query.count()
    items = (
        query.order_by(Deviation.created_at.desc(), Deviation.id.desc())
        .offset(safe_offset)
        .limit(safe_limit)
        .all()
    )
    return {
        "deviations": [_serialize_deviation(item) for item in items],
        "total": total,
        "offset": safe_offset,
        "limit": safe_limit,
    }


@router.post("", status_code=201)
def create_deviation(
    payload: DeviationCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.automation_id:
        find_owned_automation(db, payload.automation_id, user.id)
    deviation = Deviation(
        user_id=user.id,
        title=payload.title.strip(),
        description=(payload.description or "").strip() or None,
        automation_id=payload.automation_id,
        status="draft",
    )
    db.add(deviation)
    db.commit()
    db.refresh(deviation)
    return {"deviation": _serialize_deviation(deviation, files=[])}


@router.post("/batch-delete")
def batch_delete_deviations(
    payload: DeviationBatchIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    storage_keys: list[str] = []

    def _delete(deviation: Deviation) -> None:
        storage_keys.extend(lifecycle.delete_deviation_rows(db, deviation))

    results = lifecycle.run_batch(db, user.id, payload.deviation_ids, _delete)
    delete_objects_best_effort(storage_keys)
    body = _batch_response(results, "deleted")
    logger.info("Batch delete for user %s: %d of %d deleted", user.id, body["deleted"], len(results))
    return body


@router.post("/batch-schedule")
def batch_schedule_deviations(
    payload: DeviationBatchScheduleIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scheduled_at = lifecycle.check_schedule_time(payload.scheduled_at)
    results = lifecycle.run_batch(
        db, user.id, payload.deviation_ids, lambda deviation: lifecycle.schedule(db, deviation, scheduled_at)
    )
    body = _batch_response(results, "updated")
    logger.info("Batch schedule for user %s: %d of %d scheduled", user.id, body["updated"], len(results))
    return body


@router.post("/batch-reschedule")
def batch_reschedule_deviations(
    payload: DeviationBatchScheduleIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scheduled_at = lifecycle.check_schedule_time(payload.scheduled_at)
    results = lifecycle.run_batch(
        db, user.id, payload.deviation_ids, lambda deviation: lifecycle.reschedule(deviation, scheduled_at)
    )
    body = _batch_response(results, "updated")
    logger.info("Batch reschedule for user %s: %d of %d rescheduled", user.id, body["updated"], len(results))
    return body


@router.post("/batch-cancel")
def batch_cancel_deviations(
    payload: DeviationBatchIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    results = lifecycle.run_batch(db, user.id, payload.deviation_ids, lifecycle.cancel)
    body = _batch_response(results, "updated")
    logger.info("Batch cancel for user %s: %d of %d canceled", user.id, body["updated"], len(results))
    return body


@router.get("/{deviation_id}")
def get_deviation(deviation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    return {"deviation": _serialize_deviation(deviation, files=lifecycle.list_files(db, deviation.id))}


@router.patch("/{deviation_id}")
def update_deviation(
    deviation_id: str,
    payload: DeviationUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    lifecycle.update_deviation(db, deviation, payload.model_dump(exclude_unset=True))
    return _detail(db, deviation)


@router.post("/{deviation_id}/schedule")
def schedule_deviation(
    deviation_id: str,
    payload: DeviationScheduleIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    lifecycle.schedule(db, deviation, lifecycle.check_schedule_time(payload.scheduled_at))
    return _detail(db, deviation)


@router.post("/{deviation_id}/publish-now")
def publish_deviation_now(deviation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    lifecycle.publish_now(db, deviation)
    return _detail(db, deviation)


@router.post("/{deviation_id}/cancel")
def cancel_deviation(deviation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    lifecycle.cancel(deviation)
    return _detail(db, deviation)


@router.post("/{deviation_id}/files", status_code=201)
def upload_deviation_file(
    deviation_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    try:
        storage_key, size, checksum, mime_type = save_file(file, user.id, deviation.id)
    except ValueError as exc:
        raise AppError(400, str(exc)) from exc

    item = DeviationFile(
        deviation_id=deviation.id,
        storage_key=storage_key,
        original_filename=(file.filename or "").strip() or "upload",
        mime_type=mime_type,
        size=size,
        checksum=checksum,
        sort_order=db.query(DeviationFile).filter(DeviationFile.deviation_id == deviation.id).count(),
    )
    db.add(item)
    if not deviation.thumbnail_url:
        deviation.thumbnail_url = public_url(storage_key)
    db.commit()
    db.refresh(item)
    return {"file": _serialize_file(item)}


@router.patch("/{deviation_id}/files/reorder")
def reorder_deviation_files(
    deviation_id: str,
    payload: FileReorderIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    files = lifecycle.reorder_files(db, deviation, payload.file_ids)
    db.commit()
    return {"files": [_serialize_file(item) for item in files]}


@router.delete("/{deviation_id}", status_code=204)
def delete_deviation(deviation_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    deviation = lifecycle.find_owned_deviation(db, deviation_id, user.id)
    storage_keys = lifecycle.delete_deviation_rows(db, deviation)
    db.commit()
    # The database row is the source of truth; stored files are cleaned up best-effort.
    delete_objects_best_effort(storage_keys)
    return Response(status_code=204)
