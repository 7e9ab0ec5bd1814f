"""Offset pagination shared by every list endpoint.

Callers pass the raw ``page``/``limit`` query strings. Anything that does not
parse to a positive integer silently falls back to the defaults; no error is
raised for malformed pagination input.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from app.core.settings import S

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

DEFAULT_PAGE = 1


def parse_positive_int(value: Optional[Union[str, int]], default: int) -> int:
    """Lenient integer parse: takes a leading integer ("5abc" -> 5), else default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        n = value
    else:
        m = _LEADING_INT.match(str(value))
        if not m:
            return default
        n = int(m.group(1))
    return n if n >= 1 else default


@dataclass(frozen=True)
class PageRequest:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def page_request(
    page: Optional[Union[str, int]],
    limit: Optional[Union[str, int]],
    *,
    default_limit: int,
) -> PageRequest:
    p = parse_positive_int(page, DEFAULT_PAGE)
    n = parse_positive_int(limit, default_limit)
    return PageRequest(page=p, limit=min(n, S.max_page_limit))


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def has_more(page: int, limit: int, total: int) -> bool:
    return page * limit < total


def page_meta(req: PageRequest, total: int) -> Dict[str, Any]:
    return {
        "page": req.page,
        "total_pages": total_pages(total, req.limit),
        "has_more": has_more(req.page, req.limit, total),
        "total": total,
    }
