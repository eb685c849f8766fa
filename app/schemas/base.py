"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
RULE: Every money field is typed `Money` so JSON carries a fixed two-decimal string.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, PlainSerializer


def format_money(value: Decimal) -> str:
    """Render an amount as a fixed-point string with 2 decimals, e.g. '800.00'."""
    return str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


Money = Annotated[Decimal, PlainSerializer(format_money, return_type=str, when_used="json")]
OptionalMoney = Optional[Money]


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class ProductResponse(BaseResponseSchema):
            id: int
            name: str
            price: Money
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    No from_attributes needed since these don't read from ORM.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.
    """
    model_config = ConfigDict(
        extra='ignore',
    )
