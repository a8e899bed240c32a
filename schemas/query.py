"""
Query options accepted by repository and manager list reads.

``filters`` are declarative field equality checks and take part in the cache
key. ``predicate`` is an arbitrary callable; it cannot be keyed reliably, so
queries carrying one are never served from (or written to) a manager cache.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, TypeVar

T = TypeVar("T")

SortOrder = Literal["asc", "desc"]


@dataclass(frozen=True)
class RecordQuery:
    filters: Dict[str, Any] = field(default_factory=dict)
    predicate: Optional[Callable[[Any], bool]] = None
    sort_by: Optional[str] = None
    order: SortOrder = "asc"

    def __post_init__(self):
        if self.order not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort order: {self.order!r}")

    @property
    def cacheable(self) -> bool:
        return self.predicate is None

    def cache_key(self, prefix: str) -> Optional[str]:
        if not self.cacheable:
            return None
        options = {"filters": self.filters, "sort_by": self.sort_by, "order": self.order}
        return f"{prefix}:{json.dumps(options, sort_keys=True, default=str)}"

    def matches(self, item: Any) -> bool:
        for name, expected in self.filters.items():
            if getattr(item, name, None) != expected:
                return False
        if self.predicate is not None and not self.predicate(item):
            return False
        return True

    def apply(self, items: List[T], sort_key: Callable[[Optional[str]], Optional[Callable[[T], Any]]]) -> List[T]:
        """Filter then sort; unknown sort fields leave the original order untouched."""
        result = [item for item in items if self.matches(item)]
        key = sort_key(self.sort_by) if self.sort_by else None
        if key is not None:
            result.sort(key=key, reverse=self.order == "desc")
        return result
