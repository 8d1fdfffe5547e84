"""Resilience patterns: circuit breakers, timeouts, retries and cache fallback.

All guards here are synchronous: the analysis pipeline makes blocking calls and
is driven by repeated external invocations, possibly from different processes.
Circuit state therefore lives in a store (the database in production) rather
than in the breaker object.
"""

import random
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Callable, Any, Dict, List, Protocol, Tuple, Type

from shop_agent.core.exceptions import (
    CircuitOpenError, OperationTimeoutError, PersistenceError, TransportError, ValidationError
)
from shop_agent.core.logging_config import get_logger
from shop_agent.models import CircuitBreakerRecord

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, rejecting requests
    HALF_OPEN = "half_open"  # One trial call allowed


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds
    # Failures of these types say nothing about the dependency's health
    excluded_exceptions: Tuple[Type[BaseException], ...] = (ValidationError,)


@dataclass
class RetryConfig:
    """Configuration for retry mechanisms."""
    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 30.0     # seconds
    exponential_base: float = 2.0
    jitter: bool = False
    retry_on: tuple = (TransportError,)


class CircuitStateStore(Protocol):
    def get(self, operation: str) -> Optional[CircuitBreakerRecord]: ...

    def save(self, record: CircuitBreakerRecord) -> CircuitBreakerRecord: ...

    def list(self) -> List[CircuitBreakerRecord]: ...

    def delete(self, operation: str) -> bool: ...


class InMemoryCircuitStore:
    """Process-local store, for tests and single-process tools."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    def get(self, operation: str) -> Optional[CircuitBreakerRecord]:
        data = self._records.get(operation)
        return CircuitBreakerRecord(**data) if data else None

    def save(self, record: CircuitBreakerRecord) -> CircuitBreakerRecord:
        self._records[record.operation] = record.model_dump()
        return record

    def list(self) -> List[CircuitBreakerRecord]:
        return [CircuitBreakerRecord(**data) for data in self._records.values()]

    def delete(self, operation: str) -> bool:
        return self._records.pop(operation, None) is not None


class CircuitBreaker:
    """
    Per-operation circuit breaker.

    After ``failure_threshold`` consecutive failures the circuit opens and calls
    fail fast with ``CircuitOpenError`` without running the operation. Once
    ``recovery_timeout`` has elapsed a single trial call is let through
    (half-open): success closes the circuit and zeroes the failure count,
    failure reopens it and restarts the recovery timer.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        store: Optional[CircuitStateStore] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.store = store or InMemoryCircuitStore()
        self.clock = clock

    def _load(self) -> CircuitBreakerRecord:
        return self.store.get(self.name) or CircuitBreakerRecord(operation=self.name)

    def _retry_after(self, record: CircuitBreakerRecord) -> int:
        if record.next_retry_at is None:
            return 0
        return max(0, int((record.next_retry_at - self.clock()).total_seconds()) + 1)

    def before_call(self) -> CircuitBreakerRecord:
        """Admit or reject a call; raises ``CircuitOpenError`` when rejected."""
        record = self._load()
        now = self.clock()

        if record.state == CircuitState.CLOSED.value:
            return record

        # OPEN, or HALF_OPEN with a trial still in flight (the trial holds a lease until next_retry_at)
        if record.next_retry_at is not None and now < record.next_retry_at:
            logger.debug("Circuit open, failing fast", circuit=self.name, state=record.state)
            raise CircuitOpenError(self.name, retry_after=self._retry_after(record))

        record.state = CircuitState.HALF_OPEN.value
        record.next_retry_at = now + timedelta(seconds=self.config.recovery_timeout)
        self.store.save(record)
        logger.info(f"Circuit breaker '{self.name}' half-opened", circuit=self.name)
        return record

    def record_success(self) -> None:
        record = self._load()
        if record.state != CircuitState.CLOSED.value:
            logger.info(f"Circuit breaker '{self.name}' closed", circuit=self.name)
        elif record.failure_count == 0:
            return
        record.state = CircuitState.CLOSED.value
        record.failure_count = 0
        record.opened_at = None
        record.next_retry_at = None
        self.store.save(record)

    def record_failure(self, error: BaseException) -> None:
        record = self._load()
        now = self.clock()
        record.failure_count += 1
        record.last_failure_at = now
        record.last_error = f"{type(error).__name__}: {error}"[:500]

        if record.state == CircuitState.HALF_OPEN.value or record.failure_count >= self.config.failure_threshold:
            if record.state != CircuitState.OPEN.value:
                logger.warning(
                    f"Circuit breaker '{self.name}' opened",
                    circuit=self.name,
                    failure_count=record.failure_count,
                    error=record.last_error,
                )
            record.state = CircuitState.OPEN.value
            record.opened_at = now
            record.next_retry_at = now + timedelta(seconds=self.config.recovery_timeout)

        self.store.save(record)

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        self.before_call()
        try:
            result = func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except Exception as e:
            self._record_outcome(self.record_failure, e)
            raise
        self._record_outcome(self.record_success)
        return result

    def _record_outcome(self, update: Callable, *args) -> None:
        """A state store that cannot be written never replaces the outcome of the call itself."""
        try:
            update(*args)
        except PersistenceError as e:
            logger.warning("Circuit state not saved", circuit=self.name, error=e.message)

    def get_state(self) -> Dict[str, Any]:
        record = self._load()
        return {
            "name": self.name,
            "state": record.state,
            "failure_count": record.failure_count,
            "opened_at": record.opened_at.isoformat() if record.opened_at else None,
            "next_retry_at": record.next_retry_at.isoformat() if record.next_retry_at else None,
            "last_error": record.last_error,
        }


def run_with_timeout(func: Callable, timeout: Optional[float], operation: str, *args, **kwargs) -> Any:
    """
    Run ``func`` and raise ``OperationTimeoutError`` if it has not returned
    within ``timeout`` seconds, whatever the underlying transport does.

    The worker thread cannot be killed; a timed-out call keeps running in the
    background and its result is discarded.
    """
    if not timeout or timeout <= 0:
        return func(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"guard-{operation}")
    try:
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning("Operation timed out", operation=operation, timeout_seconds=timeout)
            raise OperationTimeoutError(operation, timeout)
    finally:
        executor.shutdown(wait=False)


class RetryStrategy:
    """Exponential backoff for retryable failures."""

    def __init__(self, config: RetryConfig, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.sleep = sleep

    def get_delay(self, attempt: int) -> float:
        if attempt <= 0:
            return 0
        delay = self.config.initial_delay * (self.config.exponential_base ** (attempt - 1))
        delay = min(delay, self.config.max_delay)
        if self.config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay

    def should_retry(self, attempt: int, exception: Exception) -> bool:
        if attempt >= self.config.max_attempts:
            return False
        if isinstance(exception, CircuitOpenError):
            return False
        return isinstance(exception, self.config.retry_on)

    def call(self, func: Callable, *args, operation: str = "operation", **kwargs) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(attempt, e):
                    raise
                delay = self.get_delay(attempt)
                logger.warning(
                    f"Operation '{operation}' failed, retrying in {delay:.2f}s",
                    attempt=attempt,
                    max_attempts=self.config.max_attempts,
                    error=str(e),
                )
                self.sleep(delay)


@dataclass
class FallbackResult:
    """Value returned by a guarded read, with where it came from."""
    data: Any
    source: str = "primary"
    error: Optional[Dict[str, Any]] = None

    @property
    def is_fallback(self) -> bool:
        return self.source != "primary"


class FallbackCache(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...


_MISSING = object()


@dataclass
class ResilienceManager:
    """Registry of circuit breakers sharing one state store and one set of defaults."""
    store: CircuitStateStore = field(default_factory=InMemoryCircuitStore)
    breaker_config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    default_timeout: Optional[float] = None
    clock: Callable[[], datetime] = datetime.utcnow
    circuit_breakers: Dict[str, CircuitBreaker] = field(default_factory=dict)

    def get_circuit_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        if name not in self.circuit_breakers:
            self.circuit_breakers[name] = CircuitBreaker(
                name, config or self.breaker_config, store=self.store, clock=self.clock
            )
        return self.circuit_breakers[name]

    def guard(self, name: str, func: Callable, *args, timeout: Optional[float] = None, **kwargs) -> Any:
        """Run ``func`` behind the ``name`` circuit with timeout enforcement."""
        breaker = self.get_circuit_breaker(name)
        budget = timeout if timeout is not None else self.default_timeout
        return breaker.call(run_with_timeout, func, budget, name, *args, **kwargs)

    def read_with_fallback(
        self,
        name: str,
        func: Callable,
        cache: FallbackCache,
        cache_key: str,
        timeout: Optional[float] = None,
    ) -> FallbackResult:
        """
        Guarded read. Successful results are remembered under ``cache_key``;
        when the primary path fails or the circuit is open, the last remembered
        value is returned (even if stale) with ``source`` marking the fallback.
        Only for reads: mutating operations must never be served from cache.
        """
        fallback_key = f"{cache_key}_fallback"
        try:
            data = self.guard(name, func, timeout=timeout)
        except Exception as e:
            cached = cache.get(fallback_key, _MISSING)
            if cached is _MISSING:
                raise
            code = getattr(e, "error_code", "PRIMARY_FAILED")
            source = "circuit_breaker_fallback" if isinstance(e, CircuitOpenError) else "cache_fallback"
            logger.warning("Serving cached fallback", operation=name, error_code=code)
            return FallbackResult(data=cached, source=source, error={"code": code, "message": str(e)})

        cache.set(fallback_key, data)
        return FallbackResult(data=data)

    def get_all_circuit_breakers(self) -> Dict[str, Dict[str, Any]]:
        names = {r.operation for r in self.store.list()} | set(self.circuit_breakers)
        return {name: self.get_circuit_breaker(name).get_state() for name in sorted(names)}

    def reset(self, name: str) -> bool:
        return self.store.delete(name)
