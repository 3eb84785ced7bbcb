from datetime import datetime

from pydantic import Field

from artqueue.schemas.base import CamelModel


class DeviationCreateIn(CamelModel):
    title: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    automation_id: str | None = None


class DeviationUpdateIn(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = None
    automation_id: str | None = None


class DeviationBatchIn(CamelModel):
    deviation_ids: list[str] = Field(..., min_length=1, max_length=50)


class DeviationScheduleIn(CamelModel):
    scheduled_at: datetime


class DeviationBatchScheduleIn(DeviationBatchIn):
    scheduled_at: datetime


class FileReorderIn(CamelModel):
    file_ids: list[str] = Field(..., min_length=1)
