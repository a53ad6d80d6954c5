"""
Enum Utilities for VARCHAR-based Status Fields

Statuses are stored as VARCHAR(30) columns holding the lowercase value of a
Python ``str`` Enum. Services compare against ``.value`` and accept either an
enum member or a raw string from API input.

USAGE PATTERNS:
    1. In SQLAlchemy Models:
       status: Mapped[str] = mapped_column(String(30), default="planned")

    2. Parsing API input:
       target = to_enum(status, LoadStatus)  # None when not a member

    3. In guards:
       if status_in(run.status, LoadStatus.PLANNED, LoadStatus.LOADING): ...
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type


T = TypeVar('T', bound=Enum)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, or None if it is not a member.

    Examples:
        >>> to_enum("in_transit", LoadStatus)
        <LoadStatus.IN_TRANSIT: 'in_transit'>
        >>> to_enum("parked", LoadStatus) is None
        True
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def status_in(db_value: str, *enum_members: Enum) -> bool:
    """Check if database value matches any of the given enums."""
    if db_value is None:
        return False
    return db_value in {e.value for e in enum_members}
