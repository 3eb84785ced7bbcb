from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies: camelCase on the wire, snake_case in Python, unknown keys rejected."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "forbid"
