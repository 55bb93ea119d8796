from __future__ import annotations

import functools
import inspect
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger("audit")

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class OperationDescriptor:
    module: str
    action: str
    description: str = ""


@dataclass(frozen=True)
class AuditRecord:
    module: str
    action: str
    description: str
    status: str
    duration_ms: int
    error: str | None = None
    user_id: str | None = None
    request_id: str | None = None


AuditSink = Callable[[AuditRecord], None]


def log_sink(record: AuditRecord) -> None:
    logger.info("audit_operation", **asdict(record))


_sink: AuditSink = log_sink


def set_audit_sink(sink: AuditSink | None) -> AuditSink:
    """Swap the active sink and return the previous one. ``None`` restores logging."""
    global _sink
    previous = _sink
    _sink = sink or log_sink
    return previous


def _emit(record: AuditRecord) -> None:
    try:
        _sink(record)
    except Exception:
        logger.exception("audit_sink_failed", module=record.module, action=record.action)


def _caller_id(signature: inspect.Signature, args: tuple, kwargs: dict) -> Any:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return None
    return getattr(bound.arguments.get("user"), "id", None)


def audited(descriptor: OperationDescriptor) -> Callable[[F], F]:
    """Record one audit entry per call of the wrapped operation.

    The caller is taken from a ``user`` argument when the operation has one,
    otherwise from structlog context variables, as is the request id.
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            status = "success"
            error: str | None = None
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                status = "error"
                error = str(exc) or exc.__class__.__name__
                raise
            finally:
                context = structlog.contextvars.get_contextvars()
                user_id = _caller_id(signature, args, kwargs) or context.get("user_id")
                request_id = context.get("request_id")
                _emit(
                    AuditRecord(
                        module=descriptor.module,
                        action=descriptor.action,
                        description=descriptor.description,
                        status=status,
                        duration_ms=int((time.perf_counter() - started) * 1000),
                        error=error,
                        user_id=str(user_id) if user_id is not None else None,
                        request_id=str(request_id) if request_id is not None else None,
                    )
                )

        wrapper.audit_descriptor = descriptor  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
