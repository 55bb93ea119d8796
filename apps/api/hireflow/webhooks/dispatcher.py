"""Signed, retried webhook delivery.

Every webhook maps to one lane, a single worker thread, so attempts for one
webhook never overlap and its failure bookkeeping has one writer. A failed
attempt is rescheduled on the retry scheduler; attempt N+1 is only queued
after attempt N's outcome is recorded. Disabling a webhook between attempts
ends its retry chain. When the store itself fails, the same attempt is re-run
after a backoff delay, so a delivery may reach the endpoint more than once but
is never silently lost.
"""

from __future__ import annotations

import heapq
import itertools
import queue
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import httpx
import structlog
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError

from hireflow.core.config import settings
from hireflow.core.errors import DeliveryFailure
from hireflow.events.types import TEST_EVENT_CODE, DomainEvent
from hireflow.webhooks.repository import DeliveryRecord, SqlWebhookRepository, WebhookTarget
from hireflow.webhooks.signing import build_payload, build_test_payload, signed_body

logger = structlog.get_logger(__name__)

WEBHOOK_DELIVERIES = Counter(
    "hireflow_webhook_deliveries_total",
    "Webhook delivery attempts by outcome",
    ["outcome"],
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 10.0
    multiplier: float = 3.0
    max_delay: float = 600.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.webhook_max_attempts,
            base_delay=settings.webhook_backoff_base_seconds,
            multiplier=settings.webhook_backoff_multiplier,
            max_delay=settings.webhook_backoff_max_seconds,
        )


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    duration_ms: int
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DeliveryAttempt:
    webhook_id: uuid.UUID
    event_id: str
    event_type: str
    body: bytes
    signature: str
    attempt: int = 1
    store_retries: int = 0

    def next(self) -> DeliveryAttempt:
        return replace(self, attempt=self.attempt + 1, store_retries=0)

    def retry_store(self) -> DeliveryAttempt:
        return replace(self, store_retries=self.store_retries + 1)


class RetryScheduler:
    """Runs callbacks after a delay on one thread, without busy waiting."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, Callable[[], None]]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="webhook-retry-scheduler", daemon=True)
        self._thread.start()

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("scheduler is closed")
            heapq.heappush(self._heap, (self._clock() + max(delay, 0.0), next(self._seq), callback))
            self._cond.notify()

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._heap)

    def _run(self) -> None:
        while True:
            with self._cond:
                while True:
                    if self._closed:
                        return
                    if not self._heap:
                        self._cond.wait()
                        continue
                    remaining = self._heap[0][0] - self._clock()
                    if remaining <= 0:
                        _, _, callback = heapq.heappop(self._heap)
                        break
                    self._cond.wait(remaining)
            try:
                callback()
            except Exception:
                logger.exception("retry_callback_failed")

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._heap.clear()
            self._cond.notify_all()
        self._thread.join(timeout=5)


class _Lane:
    def __init__(self, index: int, worker: Callable[[DeliveryAttempt], None]) -> None:
        self._queue: queue.Queue[DeliveryAttempt | None] = queue.Queue()
        self._worker = worker
        self._thread = threading.Thread(target=self._run, name=f"webhook-lane-{index}", daemon=True)
        self._thread.start()

    def submit(self, attempt: DeliveryAttempt) -> None:
        self._queue.put(attempt)

    def _run(self) -> None:
        while True:
            attempt = self._queue.get()
            if attempt is None:
                return
            self._worker(attempt)

    def close(self) -> None:
        self._queue.put(None)
        self._thread.join(timeout=5)


class WebhookDispatcher:
    def __init__(
        self,
        repository: SqlWebhookRepository,
        *,
        client: httpx.Client | None = None,
        policy: RetryPolicy | None = None,
        failure_threshold: int = 5,
        timeout: float = 10.0,
        lanes: int = 4,
        user_agent: str = "Hireflow-Webhook/1.0",
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._repository = repository
        self._client = client or httpx.Client(timeout=timeout)
        self._timeout = timeout
        self.policy = policy or RetryPolicy()
        self.failure_threshold = failure_threshold
        self._user_agent = user_agent

        self._scheduler = RetryScheduler()
        self._lanes = [_Lane(i, self._run_attempt) for i in range(max(lanes, 1))]

        self._outstanding = 0
        self._idle = threading.Condition()

    # -- event intake ---------------------------------------------------

    def handle_event(self, event: DomainEvent) -> None:
        """Event bus handler: start one delivery chain per subscribed webhook."""
        with self._idle:
            self._outstanding += 1
        self._fan_out(event)

    def _fan_out(self, event: DomainEvent, store_retries: int = 0) -> None:
        log = logger.bind(event_id=event.event_id, event_type=event.type_code)
        try:
            targets = self._repository.list_subscribed(event.type_code)
        except SQLAlchemyError:
            if store_retries < self.policy.max_attempts:
                delay = self.policy.delay_for(store_retries + 1)
                try:
                    self._scheduler.schedule(delay, lambda: self._fan_out(event, store_retries + 1))
                except RuntimeError:
                    pass
                else:
                    log.warning("webhook_fanout_store_unavailable", exc_info=True, delay_seconds=delay)
                    return
            WEBHOOK_DELIVERIES.labels(outcome="abandoned").inc()
            log.exception("webhook_fanout_abandoned", store_retries=store_retries)
            self._chain_done()
            return

        try:
            if not targets:
                log.debug("webhook_no_subscribers")
                return
            log.info("webhook_event_fanout", webhooks=len(targets))
            for target in targets:
                self.deliver(target, event)
        finally:
            self._chain_done()

    def deliver(self, target: WebhookTarget, event: DomainEvent) -> None:
        body, signature = signed_body(build_payload(event), target.secret)
        attempt = DeliveryAttempt(
            webhook_id=target.id,
            event_id=event.event_id,
            event_type=event.type_code,
            body=body,
            signature=signature,
        )
        with self._idle:
            self._outstanding += 1
        self._lane_for(target.id).submit(attempt)

    def _lane_for(self, webhook_id: uuid.UUID) -> _Lane:
        return self._lanes[webhook_id.int % len(self._lanes)]

    # -- attempts -------------------------------------------------------

    def _run_attempt(self, attempt: DeliveryAttempt) -> None:
        log = logger.bind(
            webhook_id=str(attempt.webhook_id),
            event_id=attempt.event_id,
            event_type=attempt.event_type,
            attempt=attempt.attempt,
        )
        finished = True
        try:
            target = self._repository.get(attempt.webhook_id)
            if target is None or not target.enabled:
                log.info("webhook_delivery_cancelled", reason="deleted" if target is None else "disabled")
                return

            result = self._post(
                target.url,
                attempt.body,
                self._headers(attempt.event_type, attempt.signature, attempt.event_id),
            )
            record = DeliveryRecord(
                event_id=attempt.event_id,
                event_type=attempt.event_type,
                payload=attempt.body.decode("utf-8"),
                attempt=attempt.attempt,
                duration_ms=result.duration_ms,
                response_status=result.status_code,
                response_body=result.response_body,
                error_message=result.error,
            )

            if result.ok:
                self._repository.record_success(attempt.webhook_id, record)
                WEBHOOK_DELIVERIES.labels(outcome="success").inc()
                log.info("webhook_delivered", status=result.status_code, duration_ms=result.duration_ms)
                return

            updated, just_disabled = self._repository.record_failure(
                attempt.webhook_id, record, self.failure_threshold
            )
            WEBHOOK_DELIVERIES.labels(outcome="failed").inc()
            log.warning("webhook_delivery_failed", status=result.status_code, error=result.error)

            if updated is None:
                return
            if just_disabled:
                log.error("webhook_auto_disabled", failure_count=updated.failure_count)
                return
            if not updated.enabled:
                return
            if attempt.attempt >= self.policy.max_attempts:
                WEBHOOK_DELIVERIES.labels(outcome="exhausted").inc()
                log.error("webhook_delivery_exhausted", max_attempts=self.policy.max_attempts)
                return

            delay = self.policy.delay_for(attempt.attempt)
            retry = attempt.next()
            self._schedule(delay, retry)
            finished = False
            log.info("webhook_retry_scheduled", delay_seconds=delay, next_attempt=retry.attempt)
        except SQLAlchemyError:
            finished = not self._retry_after_store_error(attempt, log)
        except Exception:
            log.exception("webhook_delivery_crashed")
        finally:
            if finished:
                self._chain_done()

    def _schedule(self, delay: float, attempt: DeliveryAttempt) -> None:
        self._scheduler.schedule(delay, lambda: self._lane_for(attempt.webhook_id).submit(attempt))

    def _retry_after_store_error(self, attempt: DeliveryAttempt, log: Any) -> bool:
        """Re-run the same attempt once the store is back. False if the chain ends here."""
        if attempt.store_retries >= self.policy.max_attempts:
            WEBHOOK_DELIVERIES.labels(outcome="abandoned").inc()
            log.exception("webhook_delivery_abandoned", store_retries=attempt.store_retries)
            return False
        retry = attempt.retry_store()
        delay = self.policy.delay_for(retry.store_retries)
        try:
            self._schedule(delay, retry)
        except RuntimeError:
            log.exception("webhook_delivery_abandoned", reason="dispatcher closed")
            return False
        log.warning(
            "webhook_store_unavailable",
            exc_info=True,
            delay_seconds=delay,
            store_retries=retry.store_retries,
        )
        return True

    def _headers(self, event_type: str, signature: str, event_id: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json; charset=utf-8",
            "X-Webhook-Event": event_type,
            "X-Webhook-Signature": signature,
            "X-Webhook-ID": event_id,
            "User-Agent": self._user_agent,
        }

    def _send(self, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
        try:
            response = self._client.post(url, content=body, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise DeliveryFailure(f"timeout after {self._timeout:g}s") from exc
        except httpx.RequestError as exc:
            raise DeliveryFailure(str(exc) or exc.__class__.__name__) from exc

        if not 200 <= response.status_code < 300:
            raise DeliveryFailure(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return response

    def _post(self, url: str, body: bytes, headers: dict[str, str]) -> DeliveryResult:
        started = time.perf_counter()
        try:
            response = self._send(url, body, headers)
        except DeliveryFailure as exc:
            return DeliveryResult(
                ok=False,
                duration_ms=_elapsed_ms(started),
                status_code=exc.status_code,
                response_body=exc.response_body,
                error=exc.reason,
            )
        return DeliveryResult(
            ok=True,
            duration_ms=_elapsed_ms(started),
            status_code=response.status_code,
            response_body=response.text,
        )

    # -- diagnostics ----------------------------------------------------

    def send_test(self, target: WebhookTarget) -> DeliveryResult:
        """One immediate attempt. Leaves failure counters and logs untouched."""
        payload = build_test_payload(str(target.id))
        body, signature = signed_body(payload, target.secret)
        headers = self._headers(TEST_EVENT_CODE, signature, payload["event_id"])
        headers["X-Webhook-Test"] = "true"
        result = self._post(target.url, body, headers)
        logger.info(
            "webhook_test_sent",
            webhook_id=str(target.id),
            ok=result.ok,
            status=result.status_code,
            error=result.error,
        )
        return result

    # -- lifecycle ------------------------------------------------------

    def _chain_done(self) -> None:
        with self._idle:
            self._outstanding -= 1
            self._idle.notify_all()

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until every started delivery chain has finished."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def close(self) -> None:
        self._scheduler.close()
        for lane in self._lanes:
            lane.close()
        self._client.close()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
