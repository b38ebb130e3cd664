"""
relaychat - Global Constants and Configuration Values

This module defines all constants used throughout the relaychat application.
All magic numbers and configuration defaults are centralized here.
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "relaychat"

# Network Constants
DEFAULT_RELAY_PORT = 9090
DEFAULT_HOST = "0.0.0.0"
DEFAULT_SERVER_URL = "ws://10.0.0.1:9090"

# Connection Timeouts (seconds)
CONNECTION_TIMEOUT = 10
CLOSE_TIMEOUT = 5

# Frame Limits
# None disables the websockets frame ceiling; media travels inline as base64.
MAX_FRAME_SIZE = None

# Message Identifiers
RELAY_MESSAGE_ID_PREFIX = "msg_"
LOCAL_MESSAGE_ID_PREFIX = "local_"
CONVERSATION_ID_PREFIX = "p2p_"
DEFAULT_SYNC_SINCE = "1970-01-01"

# Storage Encryption
# Static passphrase reduced to an AES-256 key with SHA-256. Known weakness:
# the key is embedded in every client build.
DEFAULT_STORAGE_PASSPHRASE = "bitcoin"
STORAGE_IV_SIZE = 16  # AES block size
STORAGE_SEPARATOR = ":"

# File Paths
DEFAULT_DATA_DIR = "~/.relaychat"
CONVERSATIONS_DIR = "conversations"
CONVERSATION_FILE_SUFFIX = ".dat"
CONTACTS_FILENAME = "contacts.json"
PROFILE_FILENAME = "profile.json"
CONFIG_FILENAME = "config.toml"
MEDIA_DIR = "media"
MEDIA_IMAGE_DIR = "img"
MEDIA_AUDIO_DIR = "audio"
DEFAULT_IMAGE_EXTENSION = "jpg"
DEFAULT_AUDIO_EXTENSION = "m4a"
LOGS_DIR = "logs"
LOG_FILENAME = "relaychat.log"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5
