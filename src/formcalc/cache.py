"""Short-lived memo of expression results.

An entry is keyed by the field, its expression text and a snapshot of the
values it depends on, and is only served while younger than the staleness
window. Value changes therefore never need explicit invalidation.
"""

import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .evaluator import ExpressionResult

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


@dataclass
class CacheEntry:
    result: ExpressionResult
    timestamp: float


def snapshot(values: Mapping[str, Any], ids: Iterable[str]) -> str:
    """Serialize the values of ids (missing ones as null) into a stable key."""
    relevant = {i: values.get(i) for i in ids}
    return json.dumps(relevant, sort_keys=True, default=str)


class EvaluationCache:
    def __init__(self, staleness_window: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.staleness_window = staleness_window
        self.clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, field_id: str, expression: str, snap: str) -> ExpressionResult | None:
        entry = self._entries.get((field_id, expression, snap))
        if entry is None:
            return None
        if self.clock() - entry.timestamp >= self.staleness_window:
            del self._entries[(field_id, expression, snap)]
            return None
        logger.debug("Cache hit for %s", field_id)
        return entry.result

    def set(self, field_id: str, expression: str, snap: str, result: ExpressionResult) -> None:
        # at most one entry per field
        self.discard(field_id)
        self._entries[(field_id, expression, snap)] = CacheEntry(result=result, timestamp=self.clock())

    def discard(self, field_id: str) -> int:
        """Drop every entry belonging to field_id; returns how many went."""
        stale = [key for key in self._entries if key[0] == field_id]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
