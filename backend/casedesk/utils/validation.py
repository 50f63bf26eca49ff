from __future__ import annotations
"""Reusable validation helpers for incoming payloads.

Raise ``ValidationError`` so every surface reports bad input with the same
400 semantics.
"""
from typing import Any, Dict, Iterable, Type, TypeVar

from casedesk.errors import ValidationError

E = TypeVar('E')


def validate_choice(value: Any, enum_cls: Type[E], field_name: str) -> E:
    """Coerce value into a member of enum_cls or raise ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(f"{field_name} invalid (expected one of: {allowed})")


def require_fields(data: Dict[str, Any], names: Iterable[str]):
    missing = [n for n in names if data.get(n) in (None, '')]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")


def parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be int")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be int")

__all__ = ['validate_choice', 'require_fields', 'parse_int']
