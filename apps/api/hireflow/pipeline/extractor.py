from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

import httpx
import structlog

from hireflow.core.config import settings
from hireflow.core.errors import ExtractionFailure, TransientInfraError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ResumeExtractor(ABC):
    @abstractmethod
    def extract(self, data: bytes, *, filename: str | None = None) -> dict[str, Any]:
        """Return structured resume fields or raise ExtractionFailure."""


class HttpResumeExtractor(ResumeExtractor):
    """Calls the AI extraction service, which answers with a JSON object of fields."""

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.Client(timeout=timeout)

    def extract(self, data: bytes, *, filename: str | None = None) -> dict[str, Any]:
        files = {"file": (filename or "resume", data, "application/octet-stream")}
        try:
            response = self._client.post(self._url, files=files, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise ExtractionFailure("extractor timed out") from exc
        except httpx.RequestError as exc:
            raise TransientInfraError(f"extractor unavailable: {exc}") from exc

        if response.status_code >= 500:
            raise TransientInfraError(f"extractor returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ExtractionFailure(f"extractor rejected resume: HTTP {response.status_code}")

        try:
            fields = response.json()
        except ValueError as exc:
            raise ExtractionFailure("extractor returned invalid JSON") from exc
        if not isinstance(fields, dict):
            raise ExtractionFailure("extractor returned a non-object result")
        return fields

    def close(self) -> None:
        self._client.close()


def call_with_timeout(
    executor: Executor,
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any,
) -> T:
    """Run fn on executor and bound the wait.

    A timeout or any unexpected extractor error becomes ExtractionFailure.
    TransientInfraError passes through so the caller can retry.
    """
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as exc:
        future.cancel()
        raise ExtractionFailure(f"extractor timed out after {timeout:g}s") from exc
    except (ExtractionFailure, TransientInfraError):
        raise
    except Exception as exc:
        logger.exception("extractor_crashed")
        raise ExtractionFailure(f"extractor error: {exc}") from exc


def create_extractor() -> ResumeExtractor:
    return HttpResumeExtractor(
        settings.extractor_url,
        api_key=settings.extractor_api_key,
        timeout=settings.extractor_timeout_seconds,
    )
