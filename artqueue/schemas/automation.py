from typing import Literal

from pydantic import Field, model_validator

from artqueue.schemas.base import CamelModel

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class AutomationCreateIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    draft_selection_method: Literal["random", "fifo", "lifo"] = "fifo"
    jitter_min_seconds: int = Field(default=0, ge=0, le=3600)
    jitter_max_seconds: int = Field(default=300, ge=0, le=3600)
    sort_order: int | None = None
    auto_add_to_sale_queue: bool = False
    sale_queue_preset_id: str | None = None

    @model_validator(mode="after")
    def check_consistency(self) -> "AutomationCreateIn":
        if self.jitter_min_seconds > self.jitter_max_seconds:
            raise ValueError("jitterMinSeconds must not exceed jitterMaxSeconds")
        if self.auto_add_to_sale_queue and not self.sale_queue_preset_id:
            raise ValueError("Must select price preset when sale queue is enabled")
        return self


class AutomationUpdateIn(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    enabled: bool | None = None
    draft_selection_method: Literal["random", "fifo", "lifo"] | None = None
    jitter_min_seconds: int | None = Field(default=None, ge=0, le=3600)
    jitter_max_seconds: int | None = Field(default=None, ge=0, le=3600)
    sort_order: int | None = None
    auto_add_to_sale_queue: bool | None = None
    sale_queue_preset_id: str | None = None


class AutomationReorderIn(CamelModel):
    automation_ids: list[str] = Field(..., min_length=1)
