from fastapi import Depends, Request
from sqlalchemy.orm import Session

from artqueue.db import get_db
from artqueue.errors import AppError
from artqueue.models.user import User


def _token_from_request(request: Request) -> str:
    auth = (request.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return (request.headers.get("X-User-Token") or "").strip()


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _token_from_request(request)
    if not token:
        raise AppError(401, "Authentication required")
    user = db.query(User).filter(User.api_token == token).first()
    if not user:
        raise AppError(401, "Invalid credentials")
    return user
