from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from artqueue.api.deps import get_current_user
from artqueue.db import get_db
from artqueue.models.price_preset import PricePreset
from artqueue.models.user import User
from artqueue.schemas.sale_queue import SaleQueueAddIn, SaleQueueFailIn
from artqueue.services import sale_queue
from artqueue.services.sale_queue import serialize_item

router = APIRouter(prefix="/sale-queue", tags=["sale-queue"])


@router.get("")
def list_sale_queue(
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return sale_queue.list_queue(db, user.id, status, page, limit)


@router.post("")
def add_to_sale_queue(
    payload: SaleQueueAddIn,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = sale_queue.add_to_queue(db, user.id, payload.deviation_ids, payload.price_preset_id)
    response.status_code = 201 if result["created"] else 200
    return result


@router.delete("/{item_id}", status_code=204)
def remove_from_sale_queue(item_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sale_queue.remove_from_queue(db, user.id, item_id)
    return Response(status_code=204)


@router.post("/{item_id}/skip")
def skip_sale_queue_item(item_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"item": serialize_item(sale_queue.skip_item(db, user.id, item_id))}


# Worker-facing endpoints: the automation client polls /next and reports back.


@router.get("/next")
def claim_next_sale(
    client_id: str = Query(..., alias="clientId", min_length=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = sale_queue.claim_next(db, user.id, client_id)
    if item is None:
        return {"item": None, "message": "Queue empty"}
    preset = db.get(PricePreset, item.price_preset_id) if item.price_preset_id else None
    return {"item": serialize_item(item, preset=preset)}


@router.post("/{item_id}/complete")
def complete_sale(item_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"item": serialize_item(sale_queue.mark_completed(db, user.id, item_id))}


@router.post("/{item_id}/fail")
def fail_sale(
    item_id: str,
    payload: SaleQueueFailIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item, will_retry = sale_queue.mark_failed(db, user.id, item_id, payload.error_message)
    return {"item": serialize_item(item), "willRetry": will_retry}


@router.post("/cleanup")
def cleanup_sale_queue(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    released = sale_queue.release_processing(db, user_id=user.id, reason="Released by manual cleanup")
    return {"cleaned": released, "message": f"Unlocked {released} stuck job(s)"}
