"""
Shared plumbing for the messaging transport.

Every outbound message passes a throughput throttle, a breaker that stops
hammering an API that keeps failing, and a tenacity retry for errors the
provider marks as transient. Inbound webhook payloads are filtered for
redeliveries (WhatsApp resends until the webhook answers 200) and their
text is cleaned before the flow engine sees it.
"""
from __future__ import annotations

import abc
import asyncio
import time
import unicodedata
from collections import Counter, OrderedDict
from typing import Any, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from models.schemas import InboundEvent, OutboundMessage

logger = structlog.get_logger()

# Cloud API rejects text bodies above this length
MAX_BODY_LENGTH = 4096


class TransportError(Exception):
    """A message could not be handed to the provider."""

    def __init__(self, message: str, transport: str = "", retryable: bool = False,
                 status_code: Optional[int] = None):
        self.transport = transport
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class ThrottledError(TransportError):
    def __init__(self, transport: str = ""):
        super().__init__(f"{transport} send throttled", transport)


class BreakerOpenError(TransportError):
    def __init__(self, transport: str = ""):
        super().__init__(f"{transport} sends suspended after repeated failures", transport)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, TransportError) and error.retryable


# ──────────────────────────────────────────────────────────────
#  Outbound guards
# ──────────────────────────────────────────────────────────────

class SendThrottle:
    """Token bucket matching the provider's messages-per-second tier."""

    def __init__(self, rate: float, burst: int):
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._stamp = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self):
        now = time.monotonic()
        self._tokens = min(self.burst, self._tokens + (now - self._stamp) * self.rate)
        self._stamp = now

    async def take(self, timeout: float) -> bool:
        """Wait for a token. False when none would be available within `timeout`."""
        async with self._lock:
            self._refill()
            if self._tokens < 1.0:
                delay = (1.0 - self._tokens) / self.rate
                if delay > timeout:
                    return False
                await asyncio.sleep(delay)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)
            return True


class SendBreaker:
    """
    Opens after `threshold` consecutive transient failures. Once `cooldown`
    seconds have passed one trial send is let through; its outcome closes
    or re-opens the breaker. Client errors (bad number, bad payload) are not
    counted since they say nothing about the provider's health.
    """

    def __init__(self, threshold: int = 5, cooldown: float = 60.0):
        self.threshold = threshold
        self.cooldown = cooldown
        self.failures = 0
        self._opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def allow(self) -> bool:
        if self._opened_at is None:
            return True
        return time.monotonic() - self._opened_at >= self.cooldown

    def failure(self):
        self.failures += 1
        if self.failures >= self.threshold or self._opened_at is not None:
            if self._opened_at is None:
                logger.warning("transport_breaker_opened", failures=self.failures)
            self._opened_at = time.monotonic()

    def success(self):
        if self._opened_at is not None:
            logger.info("transport_breaker_closed")
        self.failures = 0
        self._opened_at = None

    def snapshot(self) -> dict[str, Any]:
        state = "closed"
        if self._opened_at is not None:
            state = "trial" if self.allow() else "open"
        return {"state": state, "consecutive_failures": self.failures}


# ──────────────────────────────────────────────────────────────
#  Inbound hygiene
# ──────────────────────────────────────────────────────────────

class RedeliveryFilter:
    """Remembers provider message ids for `ttl` seconds, oldest first."""

    def __init__(self, ttl: float = 300.0, capacity: int = 10_000):
        self.ttl = ttl
        self.capacity = capacity
        self._seen: OrderedDict[str, float] = OrderedDict()

    def seen(self, message_id: str) -> bool:
        now = time.monotonic()
        while self._seen:
            oldest, stamp = next(iter(self._seen.items()))
            if now - stamp < self.ttl and len(self._seen) < self.capacity:
                break
            del self._seen[oldest]
        if message_id in self._seen:
            return True
        self._seen[message_id] = now
        return False


def clean_body(text: str) -> str:
    """Drop control characters (newlines and tabs survive) and cap the length."""
    if not text:
        return ""
    kept = "".join(c for c in text if c in "\n\t" or unicodedata.category(c) != "Cc")
    return kept[:MAX_BODY_LENGTH].strip()


# ──────────────────────────────────────────────────────────────
#  Transport base
# ──────────────────────────────────────────────────────────────

class MessagingTransport(abc.ABC):
    """
    Subclasses implement `initialize`, `_deliver` (one provider call) and
    `_parse_inbound` (webhook payload to events). `send_message` is what the
    flow engine is wired to.
    """

    name: str = ""
    send_attempts: int = 3
    retry_wait = wait_exponential(multiplier=1, max=10)
    throttle_timeout: float = 10.0

    def __init__(self):
        self._initialized = False
        self._breaker = SendBreaker()
        self._throttle: Optional[SendThrottle] = None
        self._redeliveries = RedeliveryFilter()
        self.stats: Counter[str] = Counter()

    @abc.abstractmethod
    async def initialize(self, config: dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def _deliver(self, to: str, message: OutboundMessage) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    def _parse_inbound(self, raw_payload: dict[str, Any]) -> list[InboundEvent]:
        ...

    async def send_message(self, to: str, message: OutboundMessage) -> dict[str, Any]:
        if self._throttle and not await self._throttle.take(self.throttle_timeout):
            self.stats["throttled"] += 1
            raise ThrottledError(self.name)
        if not self._breaker.allow():
            self.stats["suspended"] += 1
            raise BreakerOpenError(self.name)

        started = time.monotonic()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(max(1, self.send_attempts)),
                wait=self.retry_wait,
                reraise=True,
            ):
                with attempt:
                    result = await self._deliver(to, message)
        except TransportError as e:
            self.stats["failed"] += 1
            if e.retryable:
                self._breaker.failure()
            logger.warning("transport_send_failed", transport=self.name, to=to,
                           status=e.status_code, error=str(e))
            raise

        self._breaker.success()
        self.stats["sent"] += 1
        result["attempts"] = attempt.retry_state.attempt_number
        result["latency_ms"] = round((time.monotonic() - started) * 1000, 1)
        return result

    def handle_inbound(self, raw_payload: dict[str, Any]) -> list[InboundEvent]:
        events = []
        for event in self._parse_inbound(raw_payload):
            if event.event_id and self._redeliveries.seen(event.event_id):
                logger.debug("inbound_redelivery_dropped", event_id=event.event_id)
                continue
            events.append(event.model_copy(update={"body": clean_body(event.body)}))
        return events

    async def health_check(self) -> dict[str, Any]:
        return {
            "transport": self.name,
            "initialized": self._initialized,
            "breaker": self._breaker.snapshot(),
            "sends": dict(self.stats),
        }

    async def shutdown(self) -> None:
        pass
