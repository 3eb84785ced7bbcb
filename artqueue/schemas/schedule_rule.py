import re
from typing import Any, Iterable, Literal, Union

from pydantic import Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from artqueue.schemas.base import CamelModel

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Fields owned by each rule type. Anything in TYPE_SPECIFIC_FIELDS outside a
# rule's own tuple is foreign to it.
RULE_TYPE_FIELDS: dict[str, tuple[str, ...]] = {
    "fixed_time": ("time_of_day",),
    "fixed_interval": ("interval_minutes", "deviations_per_interval"),
    "daily_quota": ("daily_quota",),
}
TYPE_SPECIFIC_FIELDS = frozenset(field for fields in RULE_TYPE_FIELDS.values() for field in fields)
FOREIGN_FIELD_ERRORS = {
    "fixed_time": "Cannot set interval or quota fields on fixed_time rule",
    "fixed_interval": "Cannot set timeOfDay or quota fields on fixed_interval rule",
    "daily_quota": "Cannot set time or interval fields on daily_quota rule",
}
_FIELD_BY_ALIAS = {to_camel(field): field for field in TYPE_SPECIFIC_FIELDS}


def foreign_rule_fields(rule_type: str, fields: Iterable[str]) -> list[str]:
    """Type-specific field names (snake or camel case) that don't belong to `rule_type`."""
    allowed = RULE_TYPE_FIELDS[rule_type]
    foreign = []
    for name in fields:
        field = _FIELD_BY_ALIAS.get(name, name)
        if field in TYPE_SPECIFIC_FIELDS and field not in allowed:
            foreign.append(field)
    return sorted(foreign)


def _check_time_of_day(value: str | None) -> str | None:
    if value is None:
        return value
    if not TIME_OF_DAY_RE.fullmatch(value):
        raise ValueError("Invalid time format. Use HH:MM")
    return value


def _normalize_days(value: list[str] | None) -> list[str] | None:
    # A set of weekdays, kept in calendar order.
    if value is None:
        return value
    return [day for day in WEEKDAYS if day in value]


class _RuleCreateBase(CamelModel):
    automation_id: str = Field(..., min_length=1)
    days_of_week: list[Weekday] | None = None
    priority: int = Field(default=0, strict=True)
    enabled: bool = Field(default=True, strict=True)

    normalize_days = field_validator("days_of_week")(_normalize_days)

    @model_validator(mode="before")
    @classmethod
    def reject_foreign_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            rule_type = data.get("type")
            if rule_type in RULE_TYPE_FIELDS and foreign_rule_fields(rule_type, data.keys()):
                raise ValueError(FOREIGN_FIELD_ERRORS[rule_type])
        return data


class FixedTimeRule(_RuleCreateBase):
    type: Literal["fixed_time"]
    time_of_day: str

    check_time_of_day = field_validator("time_of_day")(_check_time_of_day)


class FixedIntervalRule(_RuleCreateBase):
    type: Literal["fixed_interval"]
    interval_minutes: int = Field(..., ge=5, le=10080, strict=True)  # 5 min to 7 days
    deviations_per_interval: int = Field(..., ge=1, le=100, strict=True)


class DailyQuotaRule(_RuleCreateBase):
    type: Literal["daily_quota"]
    daily_quota: int = Field(..., ge=1, le=100, strict=True)


# Tagged on `type`; routes declare it with Body(discriminator="type").
RuleCreateIn = Union[FixedTimeRule, FixedIntervalRule, DailyQuotaRule]


class RuleUpdateIn(CamelModel):
    time_of_day: str | None = None
    interval_minutes: int | None = Field(default=None, ge=5, le=10080, strict=True)
    deviations_per_interval: int | None = Field(default=None, ge=1, le=100, strict=True)
    daily_quota: int | None = Field(default=None, ge=1, le=100, strict=True)
    days_of_week: list[Weekday] | None = None
    priority: int | None = Field(default=None, strict=True)
    enabled: bool | None = Field(default=None, strict=True)

    check_time_of_day = field_validator("time_of_day")(_check_time_of_day)
    normalize_days = field_validator("days_of_week")(_normalize_days)

    @model_validator(mode="after")
    def reject_explicit_nulls(self) -> "RuleUpdateIn":
        # Only daysOfWeek may be cleared.
        for name in self.model_fields_set:
            if name != "days_of_week" and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self
