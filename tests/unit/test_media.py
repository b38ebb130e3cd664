"""
Unit tests for relaychat.media module.
"""

import pytest

from relaychat.media import MediaPayloadCodec, MediaStorage
from relaychat.protocol import ContentType

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(64))


@pytest.fixture
def codec(temp_dir):
    return MediaPayloadCodec(MediaStorage(temp_dir))


def test_layout_created(temp_dir):
    MediaStorage(temp_dir)
    assert (temp_dir / "media" / "img").is_dir()
    assert (temp_dir / "media" / "audio").is_dir()


def test_inbound_image_written_to_file(codec):
    """Decoded bytes land in media/img and the path becomes the content."""
    content = codec.encode_payload(PNG_BYTES)

    path = codec.store_inbound(content, ContentType.IMAGE)

    assert path.startswith("media/img/img_")
    assert path.endswith(".jpg")
    assert codec.storage.resolve_path(path).read_bytes() == PNG_BYTES


def test_inbound_audio_written_to_file(codec):
    path = codec.store_inbound(codec.encode_payload(b"audio-bytes"), ContentType.AUDIO)

    assert path.startswith("media/audio/audio_")
    assert path.endswith(".m4a")
    assert codec.storage.exists(path)


def test_inbound_text_verbatim(codec):
    assert codec.store_inbound("not base64 at all!", ContentType.TEXT) == "not base64 at all!"


def test_invalid_base64_dropped(codec, temp_dir):
    assert codec.store_inbound("%%% not base64 %%%", ContentType.IMAGE) is None
    assert list((temp_dir / "media" / "img").iterdir()) == []


def test_fresh_names(codec):
    content = codec.encode_payload(b"x")
    first = codec.store_inbound(content, ContentType.IMAGE)
    second = codec.store_inbound(content, ContentType.IMAGE)
    assert first != second


def test_write_failure_still_returns_path(temp_dir):
    """Media writes are best-effort."""
    storage = MediaStorage(temp_dir)
    (temp_dir / "media" / "img").rmdir()
    (temp_dir / "media" / "img").write_text("not a directory")

    path = storage.save(b"data", ContentType.IMAGE)

    assert path.startswith("media/img/")
    assert not storage.exists(path)


def test_custom_extension(temp_dir):
    storage = MediaStorage(temp_dir)
    assert storage.new_relative_path(ContentType.IMAGE, ".png").endswith(".png")


def test_text_has_no_media_path(temp_dir):
    with pytest.raises(ValueError):
        MediaStorage(temp_dir).new_relative_path(ContentType.TEXT)


def test_delete_media_file(temp_dir):
    storage = MediaStorage(temp_dir)
    path = storage.save(b"data", ContentType.AUDIO)

    assert storage.delete_media_file(path) is True
    assert storage.delete_media_file(path) is False


@pytest.mark.asyncio
async def test_store_inbound_async(codec):
    path = await codec.store_inbound_async(codec.encode_payload(PNG_BYTES), ContentType.IMAGE)
    assert codec.storage.resolve_path(path).read_bytes() == PNG_BYTES
