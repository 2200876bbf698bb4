"""Error taxonomy for the resilience layer and its transport collaborator.

Resilience errors are raised by the admission controller and the backoff
executor. Network errors describe failures of the wrapped operation and are
what the default retry classifier inspects.
"""

from typing import Optional


class ResilienceError(Exception):
    """Base class for errors raised by the resilience layer itself."""


class AdmissionTimeout(ResilienceError):
    """Raised when the projected wait for tokens exceeds the configured budget."""

    def __init__(self, cost: float, wait_needed: float, wait_timeout: float):
        self.cost = cost
        self.wait_needed = wait_needed
        self.wait_timeout = wait_timeout
        super().__init__(
            f"Rate limit timeout exceeded: cost={cost}, "
            f"wait_needed={wait_needed:.3f}s, budget={wait_timeout:.3f}s"
        )


class OperationCancelled(ResilienceError):
    """Raised when a pending suspension is aborted through a cancel event."""


# --- Transport collaborator errors ---

class NetworkError(Exception):
    """Base class for failures reported by the network transport."""


class InvalidURLError(NetworkError):
    def __init__(self, url: str = ""):
        self.url = url
        super().__init__(f"Invalid URL provided: {url}" if url else "Invalid URL provided")


class NoDataError(NetworkError):
    def __init__(self):
        super().__init__("No data received from the server")


class DecodingError(NetworkError):
    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Failed to decode the response: {detail}" if detail else "Failed to decode the response")


class UnauthorizedError(NetworkError):
    def __init__(self):
        super().__init__("Unauthorized request. Please check your API key")


class ServerError(NetworkError):
    """A 4xx/5xx response that is not an authentication failure."""

    def __init__(self, message: str = "Unknown server error", status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(f"Server error: {message}")


class TransportError(NetworkError):
    """A failure below HTTP: the request never produced a response."""

    TIMED_OUT = "timed_out"
    CANNOT_CONNECT = "cannot_connect"
    CONNECTION_LOST = "connection_lost"
    NOT_CONNECTED = "not_connected"
    DNS_FAILURE = "dns_failure"
    REQUEST_BODY_EXHAUSTED = "request_body_exhausted"
    OTHER = "other"

    TRANSIENT_REASONS = frozenset({
        TIMED_OUT,
        CANNOT_CONNECT,
        CONNECTION_LOST,
        NOT_CONNECTED,
        DNS_FAILURE,
        REQUEST_BODY_EXHAUSTED,
    })

    def __init__(self, reason: str = OTHER, cause: Optional[BaseException] = None):
        self.reason = reason
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Network error ({reason}){detail}")

    @property
    def is_transient(self) -> bool:
        return self.reason in self.TRANSIENT_REASONS
