"""Exceptions raised while configuring the exporter and fetching insights."""

# Statuses that indicate a transient server or rate-limit condition
RETRYABLE_STATUSES = frozenset({408, 425, 429})


class ConfigError(Exception):
    """Raised when application configuration is missing or invalid."""

    pass


class InsightsFetchError(Exception):
    """Base exception class for insights fetch failures."""

    pass


class TransportError(InsightsFetchError):
    """Raised when the insights endpoint cannot be reached."""

    pass


class RemoteError(InsightsFetchError):
    """Raised when the insights endpoint answers with a non-success status."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Insights API returned HTTP {status}: {body[:200]}")

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES or self.status >= 500


class DecodeError(InsightsFetchError):
    """Raised when a response body does not match the expected shape."""

    pass
