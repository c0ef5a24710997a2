from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Type, TypeVar

from ..core.exceptions import DomainError, InvalidArgumentError, InvalidTypeError

E = TypeVar("E", bound=Enum)


def require_non_empty(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise InvalidArgumentError(f"{field_name} is required")
    return value.strip()


def require_positive_int(value, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{field_name} must be an integer")
    if number <= 0:
        raise InvalidArgumentError(f"{field_name} must be positive")
    return number


def require_amount(value, field_name: str = "price") -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidArgumentError(f"{field_name} must be a number")
    if amount < 0:
        raise InvalidArgumentError(f"{field_name} cannot be negative")
    return amount


def require_enum(enum_cls: Type[E], value, field_name: str, *, error: Type[DomainError] = InvalidTypeError) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise error(f"Invalid {field_name}: {value!r} (expected one of: {allowed})")
