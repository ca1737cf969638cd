from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from .errors import Validation

MAX_LIMIT = 100


@dataclass(frozen=True)
class Page:
    items: List[Any]
    current_page: int
    total_pages: int
    total: int

    def meta(self, total_key: str = "total") -> Dict[str, int]:
        return {
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            total_key: self.total,
        }


def paginate(items: Sequence[Any], page: int, limit: int) -> Page:
    if page < 1 or limit < 1:
        raise Validation("page and limit must be positive")
    limit = min(limit, MAX_LIMIT)
    total = len(items)
    start = (page - 1) * limit
    return Page(
        items=list(items[start:start + limit]),
        current_page=page,
        total_pages=math.ceil(total / limit) if total else 0,
        total=total,
    )
