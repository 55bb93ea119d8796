class ServiceError(Exception):
    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or code
        super().__init__(self.message)


class NotFoundError(ServiceError):
    pass


class PermissionDeniedError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


class ConfigurationError(ValidationError):
    """Rejected webhook configuration (bad URL, unknown event type)."""


class TransientInfraError(ServiceError):
    """Store, queue or network temporarily unavailable; retry with backoff."""

    def __init__(self, message: str, code: str = "TRANSIENT_INFRA_ERROR") -> None:
        super().__init__(code, message)


class TaskStatusUnavailable(TransientInfraError):
    def __init__(self, message: str = "status temporarily unavailable") -> None:
        super().__init__(message, code="TASK_STATUS_UNAVAILABLE")


class ExtractionFailure(Exception):
    """The extractor rejected or failed on the input. Terminal for the task."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class DeliveryFailure(Exception):
    """A webhook endpoint could not be reached or answered with non-2xx."""

    def __init__(
        self, reason: str, status_code: int | None = None, response_body: str | None = None
    ) -> None:
        self.reason = reason
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(reason)
