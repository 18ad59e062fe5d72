"""
Shared API schemas.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class DataEnvelope(BaseModel, Generic[T]):
    """Collection responses: ``{"data": [...]}``."""

    data: list[T]


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python. Accepts either on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
