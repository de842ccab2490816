"""Exception types shared across the core."""


class ConductorError(Exception):
    """Base class for all errors raised by the core."""


class ConfigurationError(ConductorError):
    """Raised when a turn cannot start because no credential is available."""


class UpstreamError(ConductorError):
    """The model provider answered with a non-success status."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Upstream error ({status}): {body}")


class AuthError(ConductorError):
    """Raised when the OAuth flow cannot be started or completed."""


class RefreshFailure(AuthError):
    """Raised when the upstream rejects (or never answers) a token refresh."""


class MalformedEventError(ConductorError):
    """A single streamed line could not be decoded."""


class StoreCorruption(ConductorError):
    """A persisted record exists but cannot be parsed."""
