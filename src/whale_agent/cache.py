"""
Per-process TTL cache for context lookups.

Keys look like ``"price:BTC"`` or ``"label:<address>"``.  When the cache is
full the entry written longest ago is dropped first.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class TTLCache:
    def __init__(
        self,
        default_ttl: float = 60,
        max_entries: int = 1_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for *key*, or ``None``."""
        hit = self._entries.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._clock() + ttl, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            dropped, _ = self._entries.popitem(last=False)
            logger.debug("Cache full, dropped %s", dropped)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        now = self._clock()
        for key in [k for k, (exp, _) in self._entries.items() if now >= exp]:
            del self._entries[key]
        return len(self._entries)
