import os
import asyncio
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from artqueue.db import Base, engine, ensure_sqlite_schema
from artqueue.db import SessionLocal
from artqueue.api import automation, deviation, price_preset, sale_queue, schedule_rule
from artqueue.errors import AppError, app_error_handler, validation_error_handler
from artqueue.services import sale_queue as sale_queue_service
from artqueue.services.storage import STORAGE_DIR, ensure_storage

Base.metadata.create_all(bind=engine)
ensure_sqlite_schema()
ensure_storage()

API_KEY = os.getenv("ARTQUEUE_API_KEY", "").strip()
SALE_SWEEP_SEC = int(os.getenv("ARTQUEUE_SALE_SWEEP_SEC", "60"))
LOG_LEVEL = os.getenv("ARTQUEUE_LOG_LEVEL", "INFO").strip().upper()
QUIET_ACCESS_LOG = os.getenv("ARTQUEUE_QUIET_ACCESS_LOG", "1").strip().lower() in {"1", "true", "yes", "on"}
CORS_ORIGINS = [origin.strip() for origin in os.getenv("ARTQUEUE_CORS_ORIGINS", "*").split(",") if origin.strip()]
_sale_sweep_task: asyncio.Task | None = None

logger = logging.getLogger("artqueue")
logger.setLevel(LOG_LEVEL)

if QUIET_ACCESS_LOG:
    # Keep warning/error lines, suppress normal access noise (200/201 etc).
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _release_stale_sales() -> int:
    db = SessionLocal()
    try:
        return sale_queue_service.release_processing(
            db,
            older_than_sec=sale_queue_service.STALE_LOCK_SEC,
            reason="Processing lock expired",
        )
    except Exception:
        db.rollback()
        logger.exception("Stale sale lock sweep failed")
        return 0
    finally:
        db.close()


async def _sale_lock_sweeper() -> None:
    while True:
        await asyncio.sleep(SALE_SWEEP_SEC)
        await asyncio.to_thread(_release_stale_sales)


app = FastAPI(title="artqueue")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)


@app.get("/")
def root():
    return {
        "ok": True,
        "service": "artqueue-api",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "docs": "/docs",
    }


@app.get("/healthz")
def healthz():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as exc:
        logger.error("Database health check failed: %s", exc)
        database = "error"
    finally:
        db.close()
    return {"ok": database == "ok", "database": database}


@app.on_event("startup")
async def startup_events() -> None:
    global _sale_sweep_task
    if SALE_SWEEP_SEC <= 0:
        return
    if _sale_sweep_task is None or _sale_sweep_task.done():
        _sale_sweep_task = asyncio.create_task(_sale_lock_sweeper())


@app.on_event("shutdown")
async def shutdown_events() -> None:
    global _sale_sweep_task
    if _sale_sweep_task is not None:
        _sale_sweep_task.cancel()
        try:
            await _sale_sweep_task
        except asyncio.CancelledError:
            pass
        _sale_sweep_task = None


@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    if not API_KEY:
        return await call_next(request)
    path = request.url.path
    if path.startswith("/docs") or path.startswith("/openapi.json") or path.startswith("/redoc") or path.startswith("/storage"):
        return await call_next(request)
    if request.headers.get("X-API-Key") != API_KEY:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    return await call_next(request)


app.include_router(automation.router)
app.include_router(schedule_rule.router)
app.include_router(deviation.router)
app.include_router(price_preset.router)
app.include_router(sale_queue.router)

app.mount("/storage", StaticFiles(directory=STORAGE_DIR), name="storage")
