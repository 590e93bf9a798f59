"""
Client-side search, status filtering and pagination for dashboard tables
"""
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

T = TypeVar("T")


def normalize(value: Any) -> str:
    """Lowercased string form of a value; None becomes an empty string."""
    if value is None:
        return ""
    return str(value).lower()


def build_search_text(values: Iterable[Any]) -> str:
    return " ".join(normalize(v) for v in values)


def filter_by_search(items: List[T], term: Optional[str], text_of: Callable[[T], str]) -> List[T]:
    """Keep items whose search text contains the term.

    The term is trimmed and lowercased; an empty term keeps everything.
    Order of the input is preserved and the input list is never mutated.
    """
    needle = (term or "").strip().lower()
    if not needle:
        return list(items)
    return [item for item in items if needle in text_of(item)]


def filter_by_status(items: List[T], status: Optional[str], status_of: Callable[[T], Any]) -> List[T]:
    wanted = normalize(status).strip()
    if not wanted or wanted == "all":
        return list(items)
    return [item for item in items if normalize(status_of(item)) == wanted]


@dataclass
class Page:
    """One fixed-size slice of a filtered table"""
    items: List[Any] = field(default_factory=list)
    page: int = 1
    page_size: int = 20
    total: int = 0
    total_pages: int = 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


def paginate(items: List[Any], page: int = 1, page_size: int = 20) -> Page:
    """Slice items into 1-based pages. Pages past the end are empty."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")

    total = len(items)
    start = (page - 1) * page_size
    return Page(
        items=items[start:start + page_size],
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size),
    )
