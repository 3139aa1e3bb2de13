"""
Small payload coercion helpers shared by the handlers.
"""
from typing import Any, Dict, Iterable, Optional

from database import GRADES
from .exceptions import InvalidInput


def clean_text(value: Any) -> Optional[str]:
    """Trim a string; anything that is not a string becomes None."""
    if not isinstance(value, str):
        return None
    return value.strip()


def require_text(value: Any, field: str, label: Optional[str] = None) -> str:
    """Trimmed, non-empty string or InvalidInput on ``field``."""
    cleaned = clean_text(value)
    if not cleaned:
        raise InvalidInput(f"{label or field} is required", [field])
    return cleaned


def optional_text(value: Any) -> Optional[str]:
    """Trimmed string, with blank strings collapsed to None."""
    cleaned = clean_text(value)
    return cleaned or None


def check_grade(value: Any, field: str = "grade_id") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value not in GRADES:
        raise InvalidInput(f"{field} must be one of {', '.join(str(g) for g in GRADES)}", [field])
    return value


def check_fields(changes: Dict[str, Any], allowed: Iterable[str]) -> None:
    """Reject keys a partial update does not know about."""
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise InvalidInput(f"Unknown fields: {', '.join(unknown)}", unknown)
