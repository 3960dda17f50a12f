"""Shared schema types."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, PlainSerializer


def _plain(value: Decimal) -> str:
    return format(value, "f")


DecimalStr = Annotated[Decimal, PlainSerializer(_plain, return_type=str, when_used="json")]


class ORMSchema(BaseModel):
    """Response schema read from model or dataclass attributes."""

    class Config:
        from_attributes = True


__all__ = ["DecimalStr", "ORMSchema"]
