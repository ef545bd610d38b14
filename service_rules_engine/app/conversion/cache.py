"""
In-memory cache for resolved header templates.

Entries are keyed by content (rule id, target, header name and original
value) plus a fingerprint of the variable context, so a cache shared
across passes never serves a value resolved against other variables.
Dropping the cache at any time only costs recomputation.
"""

import time
from collections import OrderedDict
from typing import Dict, Any, Optional, Tuple

from shared.logging import get_logger


class ResolutionCache:
    """Bounded TTL cache of resolved template values."""

    def __init__(self, ttl_seconds: float = 60, max_entries: int = 1024):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.logger = get_logger("rules_engine.resolution_cache")
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(rule_id: str, target: str, header_name: str, value: str, context_hash: str = "") -> str:
        key = f"{rule_id}_{target}_{header_name}_{value}"
        return f"{key}:ctx:{context_hash}" if context_hash else key

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        value, stored_at = entry
        if self.ttl_seconds and time.monotonic() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: str):
        self._entries[key] = (value, time.monotonic())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("Resolution cache entry evicted", key=evicted)

    def clear(self):
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
        }
