"""Error taxonomy for the query cache and its HTTP collaborator.

Query failures never reach the caller of a read: the executor records them
on the entry (``status=error``). Mutation failures propagate once, as
``MutationError`` chained to the original cause.
"""

from typing import Any


class QueryCacheError(Exception):
    """Base exception for query cache errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NetworkError(QueryCacheError):
    """Raised when the transport fails (connection refused, timeout, ...)."""

    def __init__(self, message: str = "Network request failed", url: str | None = None) -> None:
        details = {"url": url} if url else {}
        super().__init__(message=message, error_code="NETWORK_ERROR", details=details)


class HttpStatusError(QueryCacheError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, status_code: int, url: str, reason: str = "") -> None:
        self.status_code = status_code
        self.url = url
        message = f"HTTP {status_code} for {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            error_code="HTTP_STATUS_ERROR",
            details={"status_code": status_code, "url": url},
        )


class DecodeError(QueryCacheError):
    """Raised when a response body is not valid JSON or has the wrong shape."""

    def __init__(self, message: str = "Malformed response body", url: str | None = None) -> None:
        details = {"url": url} if url else {}
        super().__init__(message=message, error_code="DECODE_ERROR", details=details)


class MutationError(QueryCacheError):
    """Raised to the caller of a mutation after its hooks have run."""

    def __init__(self, message: str = "Mutation failed", cause: BaseException | None = None) -> None:
        self.cause = cause
        details = {}
        if cause is not None:
            details["original_error"] = str(cause)
            details["original_error_type"] = type(cause).__name__
        super().__init__(message=message, error_code="MUTATION_ERROR", details=details)
