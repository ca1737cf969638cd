from __future__ import annotations

import re
from typing import List, Optional

from .errors import Validation

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.]+$")


def normalize_email(s: str) -> str:
    s = (s or "").strip().lower()
    if "@" not in s or len(s) > 254:
        raise Validation("Invalid email")
    return s


def normalize_username(s: str) -> str:
    s = (s or "").strip()
    if not 3 <= len(s) <= 30:
        raise Validation("Username must be between 3 and 30 characters")
    if not _USERNAME_RE.match(s):
        raise Validation("Username may only contain letters, digits, '.' and '_'")
    return s


def normalize_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    out: List[str] = []
    for part in raw.split(","):
        tag = part.strip().lstrip("#").lower()
        if tag and tag not in out:
            out.append(tag)
    return out


def optional_text(s: Optional[str], *, limit: int, field: str) -> str:
    s = (s or "").strip()
    if len(s) > limit:
        raise Validation(f"{field} cannot exceed {limit} characters")
    return s


def required_text(s: Optional[str], *, limit: int, field: str) -> str:
    s = optional_text(s, limit=limit, field=field)
    if not s:
        raise Validation(f"{field} is required")
    return s
