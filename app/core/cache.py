import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from app.core.logger import logger

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry:
    summary_text: str
    created_at: float


def make_cache_key(transcript: str, instruction: str) -> CacheKey:
    """Key for an already-sanitized (transcript, instruction) pair."""
    return (transcript, instruction or "")


class SummaryCache:
    """
    Time-boxed memoization of generated summaries.

    Entries older than ``ttl_seconds`` read as absent. Once the map grows past
    ``sweep_threshold`` every expired entry is dropped after a store; live
    entries are never evicted, so the size is not strictly bounded.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        sweep_threshold: int = 100,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self.ttl_seconds:
            return None
        return entry.summary_text

    def set(self, key: CacheKey, summary_text: str) -> None:
        self._entries[key] = CacheEntry(summary_text=summary_text, created_at=self._clock())
        if len(self._entries) > self.sweep_threshold:
            self._sweep()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.created_at >= self.ttl_seconds
        ]
        for key in expired:
            del self._entries[key]
        logger.debug(
            f"Summary cache sweep removed {len(expired)} entries",
            extra={"remaining_entries": len(self._entries)}
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
