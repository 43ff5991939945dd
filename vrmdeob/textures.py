"""vrmdeob.textures

Texture payload normalization.

Embedded images arrive as KTX2 containers, Basis Universal files (some of
them mislabelled PNG/JPEG), or PNG-labelled WebP. Everything that needs
decoding ends up as PNG.

Block-compressed decoding itself is delegated to a ``Transcoder``.
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Protocol

from PIL import Image, UnidentifiedImageError

from .debug import DebugDump
from .errors import TranscodeError
from .model import Document, Texture

log = logging.getLogger(__name__)

MIME_PNG = "image/png"
MIME_JPEG = "image/jpeg"
MIME_KTX2 = "image/ktx2"
MIME_BASIS = "image/basis"

MAGIC_PNG = 0x89504E47
MAGIC_JPEG = (0xFFD8FFDB, 0xFFD8FFE0, 0xFFD8FFEE, 0xFFD8FFE1)
MAGIC_RIFF = 0x52494646


@dataclass
class RawImage:
    width: int
    height: int
    rgba: bytes


class Transcoder(Protocol):
    def decode_ktx2(self, data: bytes) -> RawImage:
        """First mip level of a KTX2 container as RGBA8."""
        ...

    def transcode_basis(self, data: bytes) -> RawImage:
        """Image 0, level 0 of a .basis file as RGBA8."""
        ...


class MissingTranscoder:
    """Default when no transcoder is configured: block-compressed input is fatal."""

    def decode_ktx2(self, data: bytes) -> RawImage:
        raise TranscodeError("No texture transcoder configured for image/ktx2 (see --transcoder)")

    def transcode_basis(self, data: bytes) -> RawImage:
        raise TranscodeError("No texture transcoder configured for image/basis (see --transcoder)")


def magic_of(data: bytes) -> Optional[int]:
    if len(data) < 4:
        return None
    return struct.unpack(">I", data[:4])[0]


def encode_png(raw: RawImage) -> bytes:
    try:
        img = Image.frombytes("RGBA", (raw.width, raw.height), bytes(raw.rgba))
    except ValueError as exc:
        raise TranscodeError(f"Decoded pixels do not match {raw.width}x{raw.height} RGBA: {exc}") from exc
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def reencode_png(data: bytes) -> bytes:
    try:
        with Image.open(io.BytesIO(data)) as img:
            buf = io.BytesIO()
            img.save(buf, format="PNG", compress_level=9)
    except (UnidentifiedImageError, OSError) as exc:
        raise TranscodeError(f"Cannot re-encode image: {exc}") from exc
    return buf.getvalue()


def _transcode(fn, data: bytes, label: str) -> RawImage:
    try:
        return fn(data)
    except TranscodeError:
        raise
    except Exception as exc:
        raise TranscodeError(f"Failed to transcode {label} image: {exc}") from exc


def normalize_texture(texture: Texture, transcoder: Transcoder, debug: Optional[DebugDump] = None) -> bool:
    """Rewrite ``texture`` in place. Returns True when bytes or MIME type changed."""
    image = texture.image
    if not image:
        return False
    mime = texture.mime_type
    name = texture.name

    if mime == MIME_KTX2:
        png = encode_png(_transcode(transcoder.decode_ktx2, image, "KTX2"))
        texture.image, texture.mime_type = png, MIME_PNG
        if debug:
            debug.dump_texture(name, "ktx2", png)
        return True

    if mime == MIME_BASIS:
        magic = magic_of(image)
        if magic == MAGIC_PNG:
            log.info("Fixing mime type for PNG %s", name)
            texture.mime_type = MIME_PNG
            if debug:
                debug.dump_texture(name, "png", image)
            return True
        if magic in MAGIC_JPEG:
            log.info("Fixing mime type for JPEG %s", name)
            texture.mime_type = MIME_JPEG
            if debug:
                debug.dump_texture(name, "jpeg", image, "jpg")
            return True
        png = encode_png(_transcode(transcoder.transcode_basis, image, "Basis"))
        texture.image, texture.mime_type = png, MIME_PNG
        if debug:
            debug.dump_texture(name, "basis", png)
        return True

    if mime == MIME_PNG and magic_of(image) == MAGIC_RIFF:
        log.info("Converting WEBP to PNG: %s", name)
        png = reencode_png(image)
        texture.image = png
        if debug:
            debug.dump_texture(name, "webp", png)
        return True

    return False


def normalize_textures(document: Document, transcoder: Transcoder, debug: Optional[DebugDump] = None) -> int:
    log.info("Decoding textures...")
    changed = 0
    for texture in document.textures:
        if normalize_texture(texture, transcoder, debug):
            changed += 1
    return changed
