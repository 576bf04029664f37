"""Error taxonomy for the chat proxy.

Every error is scoped to a single request; none of them is fatal to the process.
"""

from typing import Optional


class ProxyError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code: int = 500
    error_type: str = "api_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_response_body(self) -> dict:
        return {"error": self.message}


class ConfigurationError(ProxyError):
    """Missing upstream credential or empty fallback chain."""

    status_code = 500
    error_type = "configuration_error"

    def __init__(self, message: str = "Server configuration error"):
        super().__init__(message)


class InvalidRequestError(ProxyError):
    """Malformed request body."""

    status_code = 400
    error_type = "invalid_request_error"


class DuplicateRequestError(ProxyError):
    """Same (caller, prompt) submitted again inside the dedup window."""

    status_code = 429
    error_type = "duplicate_request_error"

    def __init__(
        self,
        message: str = (
            "Duplicate request detected. "
            "Please wait before sending the same message again."
        ),
    ):
        super().__init__(message)


class UpstreamError(ProxyError):
    """A single failed upstream attempt.

    Recovered locally by the fallback chain; never sent to the client as-is.
    """

    status_code = 502
    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        model: str,
        upstream_status: Optional[int] = None,
        body_text: str = "",
        stream_error: bool = False,
    ):
        super().__init__(message)
        self.model = model
        self.upstream_status = upstream_status
        self.body_text = body_text
        self.stream_error = stream_error


class ClientDisconnectedError(ProxyError):
    """Caller went away while the request was still waiting upstream."""

    status_code = 499
    error_type = "client_disconnected"

    def __init__(self, message: str = "Client disconnected"):
        super().__init__(message)
