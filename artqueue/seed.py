import os
import secrets
from datetime import datetime
from sqlalchemy.orm import Session
from artqueue.db import SessionLocal, Base, engine
from artqueue.models.user import User
from artqueue.models.automation import Automation, AutomationScheduleRule
from artqueue.models.deviation import Deviation
from artqueue.models.price_preset import PricePreset


def seed() -> str:
    """Create a demo user with one automation, two presets and a published deviation; returns the API token."""
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()
    try:
        token = os.getenv("ARTQUEUE_SEED_TOKEN", "").strip() or secrets.token_hex(24)
        user = User(username="demo", api_token=token)
        db.add(user)
        db.commit()
        db.refresh(user)

        fixed = PricePreset(user_id=user.id, name="Standard", pricing_mode="fixed", price=500, is_default=True)
        ranged = PricePreset(
            user_id=user.id,
            name="Random 5-15",
            pricing_mode="range",
            min_price=500,
            max_price=1500,
            sort_order=1,
        )
        db.add(fixed)
        db.add(ranged)
        db.commit()

        automation = Automation(user_id=user.id, name="Morning posts", enabled=False)
        db.add(automation)
        db.commit()
        db.refresh(automation)

        db.add(
            AutomationScheduleRule(
                automation_id=automation.id,
                type="fixed_time",
                time_of_day="09:00",
                days_of_week=["monday", "wednesday", "friday"],
            )
        )
        db.add(
            AutomationScheduleRule(
                automation_id=automation.id,
                type="daily_quota",
                daily_quota=3,
                priority=1,
            )
        )
        automation.enabled = True
        db.commit()

        db.add(
            Deviation(
                user_id=user.id,
                title="Sample artwork",
                status="published",
                deviation_url="https://www.deviantart.com/demo/art/sample-artwork-1",
                published_at=datetime.utcnow(),
            )
        )
        db.commit()
        return token
    finally:
        db.close()


if __name__ == "__main__":
    print(f"Seeded demo user, API token: {seed()}")
