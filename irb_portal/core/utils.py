import math
import re
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Query

from irb_portal.config import settings

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_FILENAME_RE = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Strip HTML tags and control characters, trim whitespace."""
    if value is None:
        return None
    value = _TAG_RE.sub("", value)
    value = _CONTROL_RE.sub("", value)
    return value.strip()


def sanitize_filename(name: str) -> str:
    """Replace anything outside [a-zA-Z0-9.-] with underscores."""
    cleaned = _FILENAME_RE.sub("_", name or "")
    return cleaned.lstrip(".") or "file"


@dataclass
class Pagination:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> Dict[str, int]:
        return {
            "total": total,
            "page": self.page,
            "page_size": self.limit,
            "total_pages": math.ceil(total / self.limit) if total else 0,
        }


def get_pagination(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.PAGE_SIZE_DEFAULT, ge=1),
) -> Pagination:
    """Query-string pagination; oversized limits are clamped rather than rejected."""
    return Pagination(page=page, limit=min(limit, settings.PAGE_SIZE_MAX))
