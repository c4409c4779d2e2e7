"""Error taxonomy shared by the forwarding engine and its adapters."""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""
    pass


class ConfigError(BridgeError):
    """Raised at startup for malformed mappings or missing credentials."""
    pass


class AuthError(BridgeError):
    """Raised when the PDS rejects a token or credentials."""
    pass


class TransientError(BridgeError):
    """Raised for failures worth retrying (network, timeout, 429, 5xx)."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentError(BridgeError):
    """Raised when the PDS rejects a record for good (validation, 4xx)."""
    pass


class ProtocolError(BridgeError):
    """Raised when a gateway event cannot be decoded."""
    pass


class SessionFailedError(BridgeError):
    """Raised when no session can be established. Process-fatal."""
    pass


class GatewayError(BridgeError):
    """Raised when the gateway connection stops and cannot recover."""
    pass
