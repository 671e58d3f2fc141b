from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
import math


@dataclass
class SlidingWindowLimiter:
    """Allows ``limit`` hits per key inside any ``window_seconds`` span."""

    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _prune(self, key: str, now_seconds: float) -> deque[float]:
        hits = self._hits[key]
        cutoff = now_seconds - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def allow(self, key: str, now_seconds: float) -> bool:
        hits = self._prune(key, now_seconds)
        if len(hits) >= self.limit:
            return False
        hits.append(now_seconds)
        return True

    def retry_after_seconds(self, key: str, now_seconds: float) -> int:
        hits = self._prune(key, now_seconds)
        if len(hits) < self.limit:
            return 0
        return max(math.ceil(hits[0] + self.window_seconds - now_seconds), 1)
