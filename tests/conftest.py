"""Pytest configuration and fixtures."""

import os
import secrets
import tempfile
from datetime import datetime

# Configure before anything imports artqueue: in-memory DB, throwaway storage, no sweeper.
os.environ["ARTQUEUE_DATABASE_URL"] = "sqlite://"
os.environ["ARTQUEUE_STORAGE_DIR"] = tempfile.mkdtemp(prefix="artqueue-test-storage-")
os.environ["ARTQUEUE_SALE_SWEEP_SEC"] = "0"
os.environ.pop("ARTQUEUE_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from artqueue.db import Base, SessionLocal, engine
from artqueue.main import app
from artqueue.models.automation import Automation, AutomationScheduleRule
from artqueue.models.deviation import Deviation
from artqueue.models.price_preset import PricePreset
from artqueue.models.sale_queue import SaleQueueItem
from artqueue.models.user import User


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh schema per test; the app and the test share the same in-memory database."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> TestClient:
    return TestClient(app)


@pytest.fixture
def make_user(db_session: Session):
    def _make(username: str = "artist") -> User:
        user = User(username=username, api_token=secrets.token_hex(16))
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user("artist")


@pytest.fixture
def other_user(make_user) -> User:
    return make_user("someone-else")


def _auth(owner: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {owner.api_token}"}


@pytest.fixture
def headers_for():
    return _auth


@pytest.fixture
def headers(user: User) -> dict[str, str]:
    return _auth(user)


@pytest.fixture
def make_automation(db_session: Session):
    def _make(owner: User, enabled: bool = False, **fields) -> Automation:
        automation = Automation(user_id=owner.id, name=fields.pop("name", "Daily posts"), enabled=enabled, **fields)
        db_session.add(automation)
        db_session.commit()
        db_session.refresh(automation)
        return automation

    return _make


@pytest.fixture
def make_rule(db_session: Session):
    def _make(automation: Automation, **fields) -> AutomationScheduleRule:
        fields.setdefault("type", "fixed_time")
        if fields["type"] == "fixed_time":
            fields.setdefault("time_of_day", "09:00")
        rule = AutomationScheduleRule(automation_id=automation.id, **fields)
        db_session.add(rule)
        db_session.commit()
        db_session.refresh(rule)
        return rule

    return _make


@pytest.fixture
def make_deviation(db_session: Session):
    def _make(owner: User, status: str = "published", **fields) -> Deviation:
        if status == "published":
            fields.setdefault("deviation_url", f"https://www.deviantart.com/{owner.username}/art/{secrets.token_hex(4)}")
            fields.setdefault("published_at", datetime.utcnow())
        deviation = Deviation(user_id=owner.id, title=fields.pop("title", "Artwork"), status=status, **fields)
        db_session.add(deviation)
        db_session.commit()
        db_session.refresh(deviation)
        return deviation

    return _make


@pytest.fixture
def make_preset(db_session: Session):
    def _make(owner: User, price: int | None = 500, min_price: int | None = None, max_price: int | None = None, **fields) -> PricePreset:
        mode = "range" if min_price is not None and max_price is not None else "fixed"
        preset = PricePreset(
            user_id=owner.id,
            name=fields.pop("name", "Standard"),
            pricing_mode=mode,
            price=price if mode == "fixed" else None,
            min_price=min_price,
            max_price=max_price,
            **fields,
        )
        db_session.add(preset)
        db_session.commit()
        db_session.refresh(preset)
        return preset

    return _make


@pytest.fixture
def make_queue_item(db_session: Session):
    def _make(owner: User, deviation: Deviation, preset: PricePreset, status: str = "pending", **fields) -> SaleQueueItem:
        item = SaleQueueItem(
            user_id=owner.id,
            deviation_id=deviation.id,
            price_preset_id=preset.id,
            status=status,
            **fields,
        )
        db_session.add(item)
        db_session.commit()
        db_session.refresh(item)
        return item

    return _make


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: pure service-level tests (no HTTP)")
