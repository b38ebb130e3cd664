"""
relaychat - Media attachments.

Attachments travel inline: the sender base64-encodes the bytes into the
``content`` field of a ``message`` envelope (no chunking, no size ceiling).
The receiver decodes them into a freshly named file under ``media/img`` or
``media/audio`` and keeps only the relative path as the message content.

Media writes are best-effort: a failed write is logged and the path is still
returned, so the message is stored even when its file is missing.
"""

import base64
import binascii
import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Union

import aiofiles

from .constants import (
    DEFAULT_AUDIO_EXTENSION,
    DEFAULT_IMAGE_EXTENSION,
    MEDIA_AUDIO_DIR,
    MEDIA_DIR,
    MEDIA_IMAGE_DIR,
)
from .protocol import ContentType

logger = logging.getLogger(__name__)


class MediaStorage:
    """Stores attachment bytes as files below ``<root>/media``."""

    _LAYOUT = {
        ContentType.IMAGE: (MEDIA_IMAGE_DIR, "img", DEFAULT_IMAGE_EXTENSION),
        ContentType.AUDIO: (MEDIA_AUDIO_DIR, "audio", DEFAULT_AUDIO_EXTENSION),
    }

    def __init__(self, root_dir: Union[str, Path]):
        self.root_dir = Path(root_dir)
        for subdir, _, _ in self._LAYOUT.values():
            try:
                (self.root_dir / MEDIA_DIR / subdir).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Cannot create media directory {subdir}: {e}")

    def new_relative_path(self, content_type: ContentType, extension: Optional[str] = None) -> str:
        """Pick a fresh relative file path for an attachment of ``content_type``."""
        if content_type not in self._LAYOUT:
            raise ValueError(f"Not a media content type: {content_type}")
        subdir, prefix, default_ext = self._LAYOUT[content_type]
        ext = (extension or default_ext).lstrip(".")
        return f"{MEDIA_DIR}/{subdir}/{prefix}_{uuid.uuid4().hex[:8]}.{ext}"

    def save(
        self, data: bytes, content_type: ContentType, extension: Optional[str] = None
    ) -> str:
        """Write attachment bytes and return their relative path."""
        relative_path = self.new_relative_path(content_type, extension)
        try:
            with open(self.resolve_path(relative_path), "wb") as f:
                f.write(data)
            logger.debug(f"Saved {len(data)} bytes to {relative_path}")
        except OSError as e:
            logger.warning(f"Failed to write media file {relative_path}: {e}")
        return relative_path

    async def save_async(
        self, data: bytes, content_type: ContentType, extension: Optional[str] = None
    ) -> str:
        """Write attachment bytes asynchronously and return their relative path."""
        relative_path = self.new_relative_path(content_type, extension)
        try:
            async with aiofiles.open(self.resolve_path(relative_path), "wb") as f:
                await f.write(data)
            logger.debug(f"Saved {len(data)} bytes to {relative_path}")
        except OSError as e:
            logger.warning(f"Failed to write media file {relative_path}: {e}")
        return relative_path

    def resolve_path(self, relative_path: str) -> Path:
        """Turn a stored relative path into an absolute one."""
        return self.root_dir.joinpath(*relative_path.split("/"))

    def exists(self, relative_path: str) -> bool:
        return self.resolve_path(relative_path).is_file()

    def delete_media_file(self, relative_path: str) -> bool:
        """Remove a media file. Returns True if a file was deleted."""
        try:
            os.remove(self.resolve_path(relative_path))
            logger.debug(f"Deleted media file {relative_path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete media file {relative_path}: {e}")
            return False


class MediaPayloadCodec:
    """Moves attachment bytes between envelopes, files and message content."""

    def __init__(self, storage: MediaStorage):
        self.storage = storage

    @staticmethod
    def encode_payload(data: bytes) -> str:
        """Base64 text for the ``content`` field of an outgoing envelope."""
        return base64.b64encode(data).decode("ascii")

    @staticmethod
    def decode_payload(content: str) -> Optional[bytes]:
        """Base64-decode envelope content, or None if it is not valid base64."""
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError):
            return None

    def store_inbound(self, content: str, content_type: ContentType) -> Optional[str]:
        """
        Turn inbound envelope content into the value stored as Message.content.

        Returns:
            The relative file path for media, the content itself for text,
            or None if a media payload is not valid base64
        """
        if not content_type.is_media:
            return content

        data = self.decode_payload(content)
        if data is None:
            logger.warning(f"Dropping {content_type.value} payload: invalid base64")
            return None
        return self.storage.save(data, content_type)

    async def store_inbound_async(self, content: str, content_type: ContentType) -> Optional[str]:
        """Async variant of store_inbound() writing through aiofiles."""
        if not content_type.is_media:
            return content

        data = self.decode_payload(content)
        if data is None:
            logger.warning(f"Dropping {content_type.value} payload: invalid base64")
            return None
        return await self.storage.save_async(data, content_type)
