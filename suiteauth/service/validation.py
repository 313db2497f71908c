from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable, List, Mapping, Optional

from suiteauth.storage.models import Role

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAX_EMAIL_LENGTH = 254
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    return len(candidate) <= _MAX_EMAIL_LENGTH and bool(_EMAIL_PATTERN.match(candidate))


def password_problems(value: Any) -> List[str]:
    """Return human-readable reasons ``value`` is too weak; empty when acceptable."""
    if not isinstance(value, str):
        return ["password must be a string"]
    problems = []
    if len(value) < MIN_PASSWORD_LENGTH:
        problems.append(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value) > MAX_PASSWORD_LENGTH:
        problems.append(f"password must be at most {MAX_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in value):
        problems.append("password must contain an uppercase letter")
    if not any(c.islower() for c in value):
        problems.append("password must contain a lowercase letter")
    if not any(c.isdigit() for c in value):
        problems.append("password must contain a digit")
    return problems


def sanitize_string(value: Optional[str], *, max_length: int = 255) -> str:
    """Trim, NFKC-normalize, drop control characters and angle brackets."""
    if not value:
        return ""
    normalized = unicodedata.normalize("NFKC", str(value))
    cleaned = "".join(
        ch for ch in normalized if ch not in "<>" and unicodedata.category(ch) != "Cc"
    )
    return cleaned.strip()[:max_length]


def validate_required(data: Mapping[str, Any], fields: Iterable[str]) -> List[str]:
    """Names of ``fields`` absent from ``data`` or blank."""
    missing = []
    for name in fields:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def is_valid_role(value: Any) -> bool:
    try:
        Role.parse(value)
    except ValueError:
        return False
    return True
