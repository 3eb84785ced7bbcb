from pydantic import Field, model_validator

from artqueue.schemas.base import CamelModel

MIN_PRICE = 100  # $1.00 in cents
MAX_PRICE = 1_000_000  # $10,000.00 in cents

MODE_ERROR = "Must specify either fixed price or price range (minPrice and maxPrice), not both"
RANGE_ORDER_ERROR = "minPrice must be less than maxPrice"


class PricePresetCreateIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    price: int | None = Field(default=None, ge=MIN_PRICE, le=MAX_PRICE, strict=True)
    min_price: int | None = Field(default=None, ge=MIN_PRICE, le=MAX_PRICE, strict=True)
    max_price: int | None = Field(default=None, ge=MIN_PRICE, le=MAX_PRICE, strict=True)
    currency: str = Field(default="USD", min_length=3, max_length=8)
    description: str | None = None
    is_default: bool = False
    sort_order: int = 0

    @model_validator(mode="after")
    def check_pricing_mode(self) -> "PricePresetCreateIn":
        has_fixed = self.price is not None
        has_range = self.min_price is not None and self.max_price is not None
        has_partial_range = (self.min_price is None) != (self.max_price is None)
        if has_fixed == has_range or has_partial_range:
            raise ValueError(MODE_ERROR)
        if has_range and self.min_price >= self.max_price:
            raise ValueError(RANGE_ORDER_ERROR)
        return self

    @property
    def pricing_mode(self) -> str:
        return "fixed" if self.price is not None else "range"


class PricePresetUpdateIn(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    price: int | None = Field(default=None, ge=MIN_PRICE, le=MAX_PRICE, strict=True)
    min_price: int | None = Field(default=None, ge=MIN_PRICE, le=MAX_PRICE, strict=True)
    max_price: int | None = Field(default=None, ge=MIN_PRICE, le=MAX_PRICE, strict=True)
    currency: str | None = Field(default=None, min_length=3, max_length=8)
    description: str | None = None
    is_default: bool | None = None
    sort_order: int | None = None
