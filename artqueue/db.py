import logging
import os

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("ARTQUEUE_DATABASE_URL", "sqlite:///./artqueue.db").strip()


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # One shared connection, otherwise every session sees a fresh empty database.
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_sqlite_schema():
    """
    Lightweight runtime schema patching for SQLite.

    `Base.metadata.create_all()` won't add new columns to existing tables.
    This keeps local/dev databases created by older builds working without
    a migration tool.
    """
    if not DATABASE_URL.startswith("sqlite"):
        return

    with engine.begin() as conn:
        preset_cols = conn.execute(text("PRAGMA table_info(price_preset)")).fetchall()
        preset_col_names = {row[1] for row in preset_cols}  # (cid, name, type, notnull, dflt_value, pk)
        if preset_cols and "pricing_mode" not in preset_col_names:
            conn.execute(text("ALTER TABLE price_preset ADD COLUMN pricing_mode VARCHAR(16) DEFAULT 'fixed'"))
            logger.info("Added price_preset.pricing_mode column")
        if preset_cols:
            # Rows written before the explicit discriminant existed: both bounds set means range.
            conn.execute(
                text(
                    "UPDATE price_preset SET pricing_mode='range' "
                    "WHERE min_price IS NOT NULL AND max_price IS NOT NULL "
                    "AND (pricing_mode IS NULL OR pricing_mode='')"
                )
            )
            conn.execute(
                text(
                    "UPDATE price_preset SET pricing_mode='fixed' "
                    "WHERE pricing_mode IS NULL OR pricing_mode=''"
                )
            )

        queue_cols = conn.execute(text("PRAGMA table_info(sale_queue_item)")).fetchall()
        queue_col_names = {row[1] for row in queue_cols}
        if queue_cols:
            if "processing_by" not in queue_col_names:
                conn.execute(text("ALTER TABLE sale_queue_item ADD COLUMN processing_by VARCHAR"))
            if "locked_at" not in queue_col_names:
                conn.execute(text("ALTER TABLE sale_queue_item ADD COLUMN locked_at DATETIME"))
            conn.execute(
                text(
                    "UPDATE sale_queue_item SET attempts=0 "
                    "WHERE attempts IS NULL OR attempts < 0"
                )
            )

        deviation_cols = conn.execute(text("PRAGMA table_info(deviation)")).fetchall()
        deviation_col_names = {row[1] for row in deviation_cols}
        if deviation_cols:
            for name, ddl in (
                ("thumbnail_url", "VARCHAR"),
                ("scheduled_at", "DATETIME"),
                ("jitter_seconds", "INTEGER DEFAULT 0"),
                ("actual_publish_at", "DATETIME"),
                ("error_message", "TEXT"),
            ):
                if name not in deviation_col_names:
                    conn.execute(text(f"ALTER TABLE deviation ADD COLUMN {name} {ddl}"))
                    logger.info("Added deviation.%s column", name)

        file_cols = conn.execute(text("PRAGMA table_info(deviation_file)")).fetchall()
        if file_cols and "sort_order" not in {row[1] for row in file_cols}:
            conn.execute(text("ALTER TABLE deviation_file ADD COLUMN sort_order INTEGER DEFAULT 0"))
            logger.info("Added deviation_file.sort_order column")
