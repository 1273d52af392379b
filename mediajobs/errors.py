from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class AdapterError(Exception):
    """Failure talking to an external service; subclasses carry the retry class."""

    error_class = "unknown"
    retryable = False

    def __init__(self, message: str, *, code: str = "ADAPTER_ERROR", status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class TransientAdapterError(AdapterError):
    error_class = "transient"
    retryable = True


class PermanentAdapterError(AdapterError):
    error_class = "permanent"
    retryable = False


class ArtifactFetchError(Exception):
    pass


class ActiveJobExists(Exception):
    """A non-terminal job already holds the resource on this lane."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"active job exists for resource: {resource_id}")
        self.resource_id = resource_id


class FinalizeError(Exception):
    """Remote job succeeded but the artifact could not be made durable."""


def not_found(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=404,
    )


def conflict(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="business_rule",
        retryable=False,
        http_status=409,
    )
