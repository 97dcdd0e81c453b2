"""Shared base for records exchanged with the planner frontend."""

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes field names as camelCase, accepts either spelling on input."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
