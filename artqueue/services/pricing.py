import random
from datetime import datetime

from artqueue.errors import AppError
from artqueue.models.price_preset import PricePreset
from artqueue.schemas.price_preset import MODE_ERROR, RANGE_ORDER_ERROR

FIXED = "fixed"
RANGE = "range"


def resolve_price(preset: PricePreset, rng: random.Random | None = None) -> int:
    """Sale price in minor units. Range presets draw a uniform integer in [min, max] on every call."""
    if preset.pricing_mode == RANGE:
        if preset.min_price is None or preset.max_price is None or preset.min_price > preset.max_price:
            raise AppError(400, f"Price preset {preset.id} has an invalid range")
        return (rng or random).randint(preset.min_price, preset.max_price)
    if preset.price is None:
        raise AppError(400, f"Price preset {preset.id} has no fixed price")
    return preset.price


def normalize_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise AppError(400, "name must not be blank")
    return name


def normalize_currency(value: str) -> str:
    return value.strip().upper()


def normalize_description(value: str | None) -> str | None:
    return (value or "").strip() or None


def display_price(preset: PricePreset) -> str:
    if preset.pricing_mode == RANGE:
        return f"{preset.min_price}-{preset.max_price}"
    return str(preset.price)


def apply_preset_update(preset: PricePreset, changes: dict) -> None:
    """Partial update; touching price switches to fixed, touching a bound switches to range."""
    sets_fixed = changes.get("price") is not None
    sets_range = changes.get("min_price") is not None or changes.get("max_price") is not None
    if sets_fixed and sets_range:
        raise AppError(400, MODE_ERROR)

    if sets_fixed:
        preset.pricing_mode = FIXED
        preset.price = changes["price"]
        preset.min_price = None
        preset.max_price = None
    elif sets_range:
        min_price = changes.get("min_price") or preset.min_price
        max_price = changes.get("max_price") or preset.max_price
        if min_price is None or max_price is None:
            raise AppError(400, MODE_ERROR)
        if min_price >= max_price:
            raise AppError(400, RANGE_ORDER_ERROR)
        preset.pricing_mode = RANGE
        preset.price = None
        preset.min_price = min_price
        preset.max_price = max_price

    for field in ("name", "currency", "sort_order"):
        if field in changes and changes[field] is None:
            raise AppError(400, f"{field} cannot be null")
    if "name" in changes:
        preset.name = normalize_name(changes["name"])
    if "currency" in changes:
        preset.currency = normalize_currency(changes["currency"])
    if "description" in changes:
        preset.description = normalize_description(changes["description"])
    if "sort_order" in changes:
        preset.sort_order = changes["sort_order"]
    if changes.get("is_default") is not None:
        preset.is_default = changes["is_default"]
    preset.updated_at = datetime.utcnow()


def serialize_preset(preset: PricePreset) -> dict:
    return {
        "id": preset.id,
        "name": preset.name,
        "pricingMode": preset.pricing_mode,
        "price": preset.price,
        "minPrice": preset.min_price,
        "maxPrice": preset.max_price,
        "displayPrice": display_price(preset),
        "currency": preset.currency,
        "description": preset.description,
        "isDefault": bool(preset.is_default),
        "sortOrder": preset.sort_order,
        "createdAt": preset.created_at.isoformat() if preset.created_at else None,
        "updatedAt": preset.updated_at.isoformat() if preset.updated_at else None,
    }
