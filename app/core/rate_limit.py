from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass
class Bucket:
    tokens: float
    last_ts: float


class InMemoryRateLimiter:
    """
    Token bucket:
      capacity tokens; refill rate tokens/sec.

    Keyed by (client_ip, route_key). Per process only.
    """
    def __init__(self, capacity: int, refill_per_sec: float):
        self.capacity = float(capacity)
        self.refill_per_sec = float(refill_per_sec)
        self._buckets: Dict[Tuple[str, str], Bucket] = {}
        self._lock = threading.Lock()

    @classmethod
    def per_minute(cls, capacity: int, per_minute: int) -> "InMemoryRateLimiter":
        return cls(capacity=capacity, refill_per_sec=per_minute / 60.0)

    def allow(self, client_key: str, route_key: str, cost: float = 1.0) -> bool:
        now = time.monotonic()
        k = (client_key, route_key)
        with self._lock:
            b = self._buckets.get(k)
            if b is None:
                b = Bucket(tokens=self.capacity, last_ts=now)
                self._buckets[k] = b

            # refill
            elapsed = max(0.0, now - b.last_ts)
            b.tokens = min(self.capacity, b.tokens + elapsed * self.refill_per_sec)
            b.last_ts = now

            if b.tokens >= cost:
                b.tokens -= cost
                return True
            return False

    def retry_after_seconds(self) -> int:
        if self.refill_per_sec <= 0:
            return 60
        return max(1, int(round(1.0 / self.refill_per_sec)))
