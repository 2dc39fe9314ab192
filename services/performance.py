"""
Historical performance aggregator.

Computes a shipping party's rolling delivery statistics from its most recent
delivered shipments. Results feed an advisory prediction, so they are served
from a TTL cache and may be a few minutes stale.
"""
import json
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import numpy as np
import redis

from core.schemas import HistoricalPerformance, Shipment
from services.persistence import ShipmentRepository

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 50


class PerformanceCache(Protocol):
    def get(self, party_id: str) -> Optional[HistoricalPerformance]: ...

    def set(self, performance: HistoricalPerformance) -> None: ...

    def invalidate(self, party_id: str) -> None: ...


class InMemoryPerformanceCache:
    """Process-local TTL cache"""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, HistoricalPerformance]] = {}
        self._lock = threading.Lock()

    def get(self, party_id: str) -> Optional[HistoricalPerformance]:
        with self._lock:
            entry = self._entries.get(party_id)
            if entry is None:
                return None
            expires_at, performance = entry
            if self._clock() >= expires_at:
                del self._entries[party_id]
                return None
            return performance

    def set(self, performance: HistoricalPerformance) -> None:
        with self._lock:
            self._entries[performance.party_id] = (self._clock() + self.ttl_seconds, performance)

    def invalidate(self, party_id: str) -> None:
        with self._lock:
            self._entries.pop(party_id, None)


class RedisPerformanceCache:
    """Redis-backed cache shared between workers"""

    def __init__(self, redis_client: "redis.Redis", ttl_seconds: int, prefix: str = "performance"):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int) -> "RedisPerformanceCache":
        return cls(redis.from_url(url), ttl_seconds)

    def _key(self, party_id: str) -> str:
        return f"{self.prefix}:{party_id}"

    def get(self, party_id: str) -> Optional[HistoricalPerformance]:
        try:
            cached_data = self.redis_client.get(self._key(party_id))
            if cached_data:
                return HistoricalPerformance.model_validate(json.loads(cached_data))
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Error retrieving cached performance for {party_id}: {e}")
        return None

    def set(self, performance: HistoricalPerformance) -> None:
        try:
            self.redis_client.setex(
                self._key(performance.party_id),
                max(1, int(self.ttl_seconds)),
                json.dumps(performance.model_dump(mode="json")),
            )
        except redis.RedisError as e:
            logger.warning(f"Error caching performance for {performance.party_id}: {e}")

    def invalidate(self, party_id: str) -> None:
        try:
            self.redis_client.delete(self._key(party_id))
        except redis.RedisError as e:
            logger.warning(f"Error invalidating cached performance for {party_id}: {e}")


def summarize(party_id: str, history: List[Shipment]) -> HistoricalPerformance:
    """Statistics over delivered shipments; zero-valued when there are none"""
    history = [s for s in history if s.actual_arrival is not None]
    if not history:
        return HistoricalPerformance(party_id=party_id)

    overrun = np.array([
        (s.actual_arrival - s.expected_arrival).total_seconds() / 3600 for s in history
    ])

    return HistoricalPerformance(
        party_id=party_id,
        average_overrun_hours=float(np.mean(np.maximum(overrun, 0.0))),
        success_rate=float(np.mean(overrun <= 0)),
        sample_size=len(history),
    )


class HistoricalPerformanceAggregator:
    """Rolling delivery statistics per origin party"""

    def __init__(
        self,
        repository: ShipmentRepository,
        window: int = DEFAULT_WINDOW,
        cache: Optional[PerformanceCache] = None,
    ):
        self.repository = repository
        self.window = window
        self.cache = cache

    def performance_of(self, party_id: str) -> HistoricalPerformance:
        if self.cache is not None:
            cached = self.cache.get(party_id)
            if cached is not None:
                return cached

        history = self.repository.query_delivered(party_id, self.window)
        performance = summarize(party_id, history)
        logger.debug(
            f"Performance of {party_id}: {performance.sample_size} samples, "
            f"{performance.success_rate:.0%} on time, "
            f"{performance.average_overrun_hours:.1f}h average overrun"
        )

        if self.cache is not None:
            self.cache.set(performance)
        return performance

    def invalidate(self, party_id: str) -> None:
        """Drop a cached result, e.g. after one of the party's shipments is delivered"""
        if self.cache is not None:
            self.cache.invalidate(party_id)
