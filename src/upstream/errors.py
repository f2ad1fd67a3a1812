"""Errors raised by outbound calls to the upstream API."""


class UpstreamError(Exception):
    """Base for every failure of an outbound call."""


class UpstreamHTTPError(UpstreamError):
    """The upstream answered with a non-success status code."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Upstream returned {status_code}: {message}")


class UpstreamTransportError(UpstreamError):
    """Network failure or malformed upstream response. Never rotates."""


class UpstreamTimeoutError(UpstreamTransportError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Request timeout after {timeout}s")


class PoolExhaustedError(UpstreamError):
    """No pooled credential is available. Carries the pool status snapshot."""

    def __init__(self, status: dict):
        self.status = status
        super().__init__(
            f"All API keys exhausted. Status: {status['active']} active, "
            f"{status['cooldown']} in cooldown, {status['dead']} dead "
            f"out of {status['total']} total."
        )
