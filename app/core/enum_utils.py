"""
Enum Utilities for VARCHAR-based Status Fields

• Database: VARCHAR(50) - NOT a native ENUM type
• SQLAlchemy: String(50) columns holding the enum value
• Pydantic: Python Enum for API validation
• Case: All enum values stored in UPPERCASE
"""

from enum import Enum
from typing import Any, Optional, Type, TypeVar


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(MovementType.WASTE)
        'WASTE'
        >>> get_enum_value("WASTE")
        'WASTE'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """Convert a database string back to an enum instance, or None if unknown."""
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for VARCHAR column.

    Examples:
        >>> enum_comment(StockCountStatus)
        'DRAFT, SUBMITTED, APPROVED, CANCELLED'
    """
    return ", ".join(enum_values(enum_class))
