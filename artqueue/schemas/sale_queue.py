from pydantic import Field

from artqueue.schemas.base import CamelModel


class SaleQueueAddIn(CamelModel):
    deviation_ids: list[str] = Field(..., min_length=1, max_length=50)
    price_preset_id: str = Field(..., min_length=1)


class SaleQueueFailIn(CamelModel):
    error_message: str = Field(..., min_length=1)
