"""
relaychat - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
the relaychat application. Each error has a unique code for logging and debugging.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all relaychat error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"

    # Protocol Errors (E100-E199)
    E100_PROTOCOL_ERROR = "E100"
    E101_PARSE_FAILED = "E101"
    E102_INVALID_ENVELOPE = "E102"
    E103_UNKNOWN_ENVELOPE_TYPE = "E103"

    # Transport Errors (E200-E299)
    E200_TRANSPORT_ERROR = "E200"
    E201_CONNECTION_FAILED = "E201"
    E202_CONNECTION_CLOSED = "E202"
    E203_SEND_FAILED = "E203"
    E204_NOT_REGISTERED = "E204"

    # Storage Errors (E300-E399)
    E300_STORAGE_ERROR = "E300"
    E303_DECODE_FAILED = "E303"

    # Crypto Errors (E400-E499)
    E400_CRYPTO_ERROR = "E400"
    E401_ENCRYPTION_FAILED = "E401"
    E402_DECRYPTION_FAILED = "E402"
    E403_MALFORMED_CIPHERTEXT = "E403"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E702_CONFIG_SAVE_FAILED = "E702"
    E704_CONFIG_PARSE_ERROR = "E704"


class ProtocolErrorKind(Enum):
    """Wire-level error codes carried in ``error{code}`` replies."""

    PARSE = "parse"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class RelayChatError(Exception):
    """Base exception class for all relaychat errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a relaychat error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ProtocolError(RelayChatError):
    """Exception raised for malformed, invalid or unrecognised envelopes.

    Always answered by the relay with an ``error`` envelope; the connection
    stays usable.
    """

    _CODES = {
        ProtocolErrorKind.PARSE: ErrorCode.E101_PARSE_FAILED,
        ProtocolErrorKind.INVALID: ErrorCode.E102_INVALID_ENVELOPE,
        ProtocolErrorKind.UNKNOWN: ErrorCode.E103_UNKNOWN_ENVELOPE_TYPE,
    }

    def __init__(
        self,
        kind: ProtocolErrorKind,
        message: str = "Protocol error",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        super().__init__(self._CODES[kind], message, details)

    def to_envelope(self) -> Dict[str, str]:
        """Build the ``error`` envelope sent back to the peer."""
        return {"type": "error", "code": self.kind.value, "msg": self.message}


class TransportError(RelayChatError):
    """Exception raised when the relay connection is unavailable.

    Never retried automatically; reconnection is caller-initiated.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_TRANSPORT_ERROR,
        message: str = "Transport operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class StorageError(RelayChatError):
    """Exception raised for local file read, write or decode failures.

    Readers convert it to "no data"; it never reaches the UI as a crash.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_STORAGE_ERROR,
        message: str = "Storage operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class CryptoError(StorageError):
    """Exception raised when encrypting or decrypting stored data fails."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E400_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(RelayChatError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
