"""Per-source search outcomes and circuit breaking for catalog backends.

A source whose searches keep failing or timing out is skipped for a cooling-off
window that doubles every time the circuit re-opens. A search cancelled by its
caller (a client leaving a stream) says nothing about the source, so it leaves
the record untouched.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from vodhub.core.config import settings
from vodhub.utils.redaction import redact_secrets

logger = logging.getLogger("vodhub.catalog")


class CircuitOpenError(Exception):
    """Raised when a source is cooling off and is not queried."""

    def __init__(self, source: str, remaining: float) -> None:
        super().__init__(f"{source} circuit open for {remaining:.2f}s")
        self.source = source
        self.remaining = remaining


class SearchOutcome(str, enum.Enum):
    OK = "ok"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


@dataclass
class SourceCircuit:
    threshold: int
    base_backoff_seconds: float
    max_backoff_seconds: float
    failure_streak: int = 0
    open_until: float = 0.0
    opened_count: int = 0
    backoff_seconds: float = field(init=False)

    def __post_init__(self) -> None:
        self.backoff_seconds = self.base_backoff_seconds

    def remaining(self, now: float) -> float:
        return max(0.0, self.open_until - now)

    def close(self) -> None:
        self.failure_streak = 0
        self.open_until = 0.0
        self.backoff_seconds = self.base_backoff_seconds

    def trip(self, now: float) -> bool:
        """Count one bad search; return True when it opens the circuit."""
        self.failure_streak += 1
        if self.failure_streak < self.threshold:
            return False
        self.open_until = now + self.backoff_seconds
        self.failure_streak = 0
        self.opened_count += 1
        self.backoff_seconds = min(self.backoff_seconds * 2, self.max_backoff_seconds)
        return True


@dataclass
class SourceRecord:
    circuit: SourceCircuit
    outcomes: Counter = field(default_factory=Counter)
    last_latency_ms: float | None = None
    last_error: str | None = None

    @property
    def failures(self) -> int:
        return self.outcomes[SearchOutcome.FAILED] + self.outcomes[SearchOutcome.TIMED_OUT]


class SourceMonitor:
    """Record search outcomes per source and gate calls on its circuit."""

    def __init__(
        self,
        *,
        circuit_threshold: int = 3,
        base_backoff_seconds: float = 15.0,
        max_backoff_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.circuit_threshold = circuit_threshold
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._clock = clock
        self._records: dict[str, SourceRecord] = {}

    def _record(self, source: str) -> SourceRecord:
        record = self._records.get(source)
        if record is None:
            record = SourceRecord(
                SourceCircuit(
                    threshold=self.circuit_threshold,
                    base_backoff_seconds=self.base_backoff_seconds,
                    max_backoff_seconds=self.max_backoff_seconds,
                )
            )
            self._records[source] = record
        return record

    def allow_call(self, source: str) -> bool:
        return self._record(source).circuit.remaining(self._clock()) == 0

    async def track(
        self,
        source: str,
        call: Callable[[], Awaitable[Any]],
        *,
        timeout_seconds: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Run one search against ``source`` under its circuit and deadline.

        Raises CircuitOpenError without calling when the source is cooling off.
        A deadline surfaces as ``asyncio.TimeoutError``; other errors propagate
        unchanged after being recorded.
        """
        context = context or {}
        record = self._record(source)
        remaining = record.circuit.remaining(self._clock())
        if remaining > 0:
            record.outcomes[SearchOutcome.SKIPPED] += 1
            self._emit(logging.WARNING, "source_circuit_open", source, context, remaining_cooldown=round(remaining, 2))
            raise CircuitOpenError(source, remaining)

        start = self._clock()
        try:
            if timeout_seconds is None:
                result = await call()
            else:
                result = await asyncio.wait_for(call(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            message = f"timed out after {timeout_seconds:g}s" if timeout_seconds else "timed out"
            self._fail(record, source, SearchOutcome.TIMED_OUT, message, start, context)
            raise
        except Exception as exc:
            message = redact_secrets(str(exc) or exc.__class__.__name__)
            self._fail(record, source, SearchOutcome.FAILED, message, start, context)
            raise

        latency_ms = (self._clock() - start) * 1000
        record.outcomes[SearchOutcome.OK] += 1
        record.last_latency_ms = latency_ms
        record.last_error = None
        record.circuit.close()
        self._emit(logging.INFO, "source_success", source, context, latency_ms=round(latency_ms, 2))
        return result

    def _fail(
        self,
        record: SourceRecord,
        source: str,
        outcome: SearchOutcome,
        error: str,
        start: float,
        context: dict[str, Any],
    ) -> None:
        now = self._clock()
        latency_ms = (now - start) * 1000
        record.outcomes[outcome] += 1
        record.last_latency_ms = latency_ms
        record.last_error = error
        opened = record.circuit.trip(now)
        self._emit(
            logging.WARNING,
            "source_failure",
            source,
            context,
            outcome=outcome.value,
            error=error,
            latency_ms=round(latency_ms, 2),
            circuit_opened=opened,
        )

    def _emit(self, level: int, event: str, source: str, context: dict[str, Any], **fields: Any) -> None:
        payload = {"event": event, "source": source, **fields, "context": context}
        logger.log(level, json.dumps(payload, ensure_ascii=False))

    def snapshot(self) -> dict[str, Any]:
        """Per-source outcome counts and circuit state, keyed by source id."""
        now = self._clock()
        return {
            source: {
                "circuit": {
                    "open": record.circuit.remaining(now) > 0,
                    "remaining_cooldown": round(record.circuit.remaining(now), 2),
                    "failure_streak": record.circuit.failure_streak,
                    "opened_count": record.circuit.opened_count,
                },
                "searches": {outcome.value: record.outcomes[outcome] for outcome in SearchOutcome},
                "failures": record.failures,
                "last_latency_ms": record.last_latency_ms,
                "last_error": record.last_error,
            }
            for source, record in self._records.items()
        }


source_monitor = SourceMonitor(
    circuit_threshold=settings.source_circuit_threshold,
    base_backoff_seconds=settings.source_circuit_backoff_seconds,
    max_backoff_seconds=settings.source_circuit_max_backoff_seconds,
)
