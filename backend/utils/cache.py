import time
from typing import Any, Dict, Optional, Tuple

MAX_ENTRIES = 512


class TTLCache:
    """Process-local cache with per-entry expiry and a bounded size"""

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self.max_entries = max_entries
        self._store: Dict[str, Tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at < time.monotonic():
            self._store.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        now = time.monotonic()
        self._purge_expired(now)
        self._store.pop(key, None)
        # dicts keep insertion order, so the first key is the oldest write
        while len(self._store) >= self.max_entries:
            self._store.pop(next(iter(self._store)))
        self._store[key] = (now + ttl_seconds, value)

    def _purge_expired(self, now: float) -> None:
        for key in [k for k, (expires_at, _) in self._store.items() if expires_at < now]:
            self._store.pop(key, None)

    def invalidate(self, prefix: str = "") -> None:
        if not prefix:
            self._store.clear()
            return
        for key in [k for k in self._store if k.startswith(prefix)]:
            self._store.pop(key, None)


response_cache = TTLCache()
