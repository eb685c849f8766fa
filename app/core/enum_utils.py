"""
Enum Utilities for VARCHAR-based Status Fields

CONVENTION:
━━━━━━━━━━━
• Database: VARCHAR - NOT a native ENUM type
• SQLAlchemy: String(n) with Mapped[str]
• Services: Python str Enum for validation
• All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request / service call):
    str or Enum → to_enum() → .value → Database
    Example: "paid" → OrderStatus.PAID → "PAID"

OUTPUT (API Response):
    Database → String → Return directly
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type


T = TypeVar('T', bound=Enum)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string (any case) or enum instance to a member of enum_class.

    Returns None when the value is not a member, so callers can raise
    their own domain error.

    Examples:
        >>> to_enum("shipped", OrderStatus)
        OrderStatus.SHIPPED
        >>> to_enum("TELEPORTED", OrderStatus)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    if isinstance(value, str):
        value = value.strip().upper()
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """
    Get all values from an enum class.

    Examples:
        >>> enum_values(LoanStatus)
        ['PENDING', 'APPROVED', 'REJECTED', 'PAID']
    """
    return [e.value for e in enum_class]
