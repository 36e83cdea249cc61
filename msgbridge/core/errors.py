"""Project error hierarchy."""


class MsgBridgeError(Exception):
    """Base error."""


class UpstreamError(MsgBridgeError):
    """Raised when the backend cannot produce a usable response."""


class UpstreamUnavailableError(UpstreamError):
    """Raised on transport failure (connect, TLS, timeout, reset)."""


class UpstreamHTTPError(UpstreamError):
    """Raised when the backend answers a stream request with status >= 400."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"upstream_http_error:{status_code}:{detail}")
        self.status_code = status_code
        self.detail = detail
