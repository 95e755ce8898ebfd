"""
Circuit breakers for outbound collaborators (notification relay), using pybreaker.
State lives in Redis so every worker process sees the same breaker.
"""
import logging
from datetime import datetime

import pybreaker
import redis

from orderdesk.core.config import settings
from orderdesk.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Redis-backed breaker state shared between workers."""

    def __init__(self, name: str, client: redis.Redis | None = None) -> None:
        super().__init__(name)
        self._name = name
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self._state_key = f"orderdesk:cb:{name}:state"
        self._counter_key = f"orderdesk:cb:{name}:counter"
        self._opened_key = f"orderdesk:cb:{name}:opened_at"
        self._success_key = f"orderdesk:cb:{name}:success"

    @property
    def state(self) -> str:
        return self.client.get(self._state_key) or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._state_key, value, ex=settings.cb_open_seconds * 2)
        circuit_breaker_state.labels(name=self._name).set(1 if value == pybreaker.STATE_OPEN else 0)

    @property
    def counter(self) -> int:
        count = self.client.get(self._counter_key)
        return int(count) if count else 0

    @counter.setter
    def counter(self, value: int) -> None:
        self.client.set(self._counter_key, str(value), ex=settings.cb_open_seconds)

    def increment_counter(self) -> None:
        self.client.incr(self._counter_key)
        self.client.expire(self._counter_key, settings.cb_open_seconds)

    def reset_counter(self) -> None:
        self.client.delete(self._counter_key)

    @property
    def success_counter(self) -> int:
        count = self.client.get(self._success_key)
        return int(count) if count else 0

    def increment_success_counter(self) -> None:
        self.client.incr(self._success_key)
        self.client.expire(self._success_key, settings.cb_open_seconds)

    def reset_success_counter(self) -> None:
        self.client.delete(self._success_key)

    @property
    def opened_at(self) -> datetime | None:
        raw = self.client.get(self._opened_key)
        return datetime.fromisoformat(raw) if raw else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self.client.set(self._opened_key, value.isoformat(), ex=settings.cb_open_seconds * 2)


class BreakerLogListener(pybreaker.CircuitBreakerListener):
    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": getattr(new_state, "name", str(new_state)),
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={"breaker_name": self.name, "error": type(exc).__name__},
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str, shared: bool = True) -> pybreaker.CircuitBreaker:
    """Get or create a breaker. shared=False keeps state in process memory."""
    if name not in _breakers:
        storage = RedisCircuitBreakerStorage(name) if shared else pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            state_storage=storage,
            listeners=[BreakerLogListener(name)],
            name=name,
        )
    return _breakers[name]
