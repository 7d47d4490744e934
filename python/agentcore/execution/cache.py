"""
Execution cache with TTL expiry and single-flight computation.

Keys are fingerprints of (agent, model, messages, sampling options). At most
one computation runs per fingerprint: concurrent callers join the in-flight
future and observe the same value or the same error.
"""

import asyncio
import fnmatch
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

from agentcore.exceptions import CacheMiss

logger = logging.getLogger(__name__)

KEY_PREFIX = "exec:"


def generate_cache_key(
    agent_id: str,
    model: str,
    messages: Iterable[Mapping[str, Any]],
    options: Optional[Mapping[str, Any]] = None,
) -> str:
    """Stable fingerprint of an execution request."""
    payload = {
        "agent_id": agent_id,
        "model": model,
        "messages": [{"role": m["role"], "content": m["content"].strip()} for m in messages],
        "options": dict(options or {}),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class _Entry:
    value: Any
    expires_at: float


class ExecutionCache:
    """In-process TTL cache. ``default_ttl`` comes from configuration."""

    def __init__(self, default_ttl: int = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}
        self.hits = 0
        self.misses = 0
        self.joined = 0

    # ── Plain key/value operations ───────────────────────────────────

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            raise CacheMiss(f"No cache entry for {key}")
        if entry.expires_at <= self._clock():
            del self._entries[key]
            raise CacheMiss(f"Cache entry expired for {key}")
        return entry.value

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self._lookup(key)
        except CacheMiss:
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        logger.debug("Cached %s (ttl=%ss)", key[:16], ttl)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern; returns the number removed."""
        doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.info("Deleted %d cache entries matching %s", len(doomed), pattern)
        return len(doomed)

    def exists(self, key: str) -> bool:
        try:
            self._lookup(key)
        except CacheMiss:
            return False
        return True

    def get_ttl(self, key: str) -> Optional[int]:
        """Seconds left before *key* expires, or None when absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry.expires_at - self._clock()
        if remaining <= 0:
            del self._entries[key]
            return None
        return int(remaining)

    def clear(self) -> None:
        self._entries.clear()

    # ── Single-flight ────────────────────────────────────────────────

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        bypass: bool = False,
        store: Optional[Callable[[Any], bool]] = None,
    ) -> Tuple[Any, bool]:
        """Return ``(value, from_cache)``.

        ``from_cache`` is True for stored hits and for callers that joined
        another caller's in-flight computation. ``bypass`` skips the stored
        lookup but still writes the fresh value. ``store`` can veto caching
        a computed value.
        """
        while True:
            if not bypass:
                try:
                    value = self._lookup(key)
                except CacheMiss:
                    pass
                else:
                    self.hits += 1
                    return value, True

            pending = self._inflight.get(key)
            if pending is not None:
                self.joined += 1
                try:
                    return await asyncio.shield(pending), True
                except asyncio.CancelledError:
                    if pending.cancelled():
                        # leader was cancelled; take over the computation
                        continue
                    raise

            self.misses += 1
            future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
            self._inflight[key] = future
            try:
                value = await factory()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                future.set_exception(e)
                # mark retrieved so an unjoined failure is not reported as unhandled
                future.exception()
                raise
            else:
                if store is None or store(value):
                    self.set(key, value, ttl)
                future.set_result(value)
                return value, False
            finally:
                if self._inflight.get(key) is future:
                    del self._inflight[key]

    def inflight(self, key: str) -> bool:
        return key in self._inflight

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self.hits,
            "misses": self.misses,
            "joined": self.joined,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }
