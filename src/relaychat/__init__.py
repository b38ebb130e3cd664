"""
relaychat - Phone-addressed messaging through a thin relay

Two peers identified by phone number exchange text, image and audio
messages through a WebSocket relay that forwards live or parks messages
until the recipient registers. Each client keeps its own encrypted
conversation history.

License: MIT
"""

__version__ = "1.0.0"
__license__ = "MIT"

# Import core modules for easy access
from .config import Config, LocalProfile
from .constants import APP_NAME, VERSION
from .errors import (
    ConfigError,
    CryptoError,
    ErrorCode,
    ProtocolError,
    ProtocolErrorKind,
    RelayChatError,
    StorageError,
    TransportError,
)
from .identity import conversation_id, normalize_phone

__all__ = [
    "APP_NAME",
    "VERSION",
    "Config",
    "ConfigError",
    "CryptoError",
    "ErrorCode",
    "LocalProfile",
    "ProtocolError",
    "ProtocolErrorKind",
    "RelayChatError",
    "StorageError",
    "TransportError",
    "conversation_id",
    "normalize_phone",
    "__license__",
    "__version__",
]
