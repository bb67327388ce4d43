"""Exception taxonomy shared by the client, the config loader and the CLI.

Every error raised by ``SonarClient`` derives from ``SonarClientError`` so
callers can catch the whole family, and each kind carries the context needed
to render a useful message (endpoint, HTTP status, server message).
"""

from typing import Any


class SonarClientError(Exception):
    """Base exception for all client errors."""


class NetworkError(SonarClientError):
    """Raised when no HTTP status was obtained (refused, DNS, reset)."""

    def __init__(self, message: str, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint


class SonarTimeoutError(SonarClientError):
    """Raised when a deadline is exceeded.

    Covers both the per-request timeout and the overall budget of
    ``SonarClient.wait_for_task``. For the latter, ``last_status`` holds the
    last task status observed before giving up.
    """

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        timeout: float | None = None,
        last_status: Any = None,
    ) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.timeout = timeout
        self.last_status = last_status


class ApiError(SonarClientError):
    """Raised on any non-2xx response."""

    def __init__(self, status: int, message: str, endpoint: str | None = None) -> None:
        super().__init__(f"HTTP {status} from {endpoint}: {message}")
        self.status = status
        self.message = message
        self.endpoint = endpoint


class AuthenticationError(ApiError):
    """Raised on HTTP 401/403 — invalid, expired or under-privileged token."""


class NotFoundError(ApiError):
    """Raised on HTTP 404 — project, component or task not found."""


class DeserializeError(SonarClientError):
    """Raised when a 2xx body is not JSON or not of the expected shape."""

    def __init__(self, message: str, endpoint: str | None = None) -> None:
        super().__init__(f"Unexpected response from {endpoint}: {message}" if endpoint else message)
        self.endpoint = endpoint
        self.detail = message


class ConfigError(SonarClientError):
    """Raised when the configuration is missing or invalid."""


class ProjectNotFoundError(ConfigError):
    """Raised when a project alias is not found in the config."""


class AnalysisError(SonarClientError):
    """Raised when a background analysis task ends FAILED or CANCELED."""

    def __init__(self, message: str, task: Any = None) -> None:
        super().__init__(message)
        self.task = task
