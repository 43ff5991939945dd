"""vrmdeob.envelope

Encrypted file envelope:

  bytes[0:16)  IV
  bytes[16:48) raw AES-256 key
  bytes[48:]   AES-CBC ciphertext (PKCS#7 padded)

The plaintext starts with a little-endian uint32 giving the decompressed size,
followed by a zstd frame.
"""

from __future__ import annotations

import logging
import struct

import zstandard
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import EnvelopeError

log = logging.getLogger(__name__)

IV_SIZE = 16
KEY_SIZE = 32
HEADER_SIZE = IV_SIZE + KEY_SIZE


def _decrypt(iv: bytes, key: bytes, body: bytes) -> bytes:
    if len(body) == 0 or len(body) % 16:
        raise EnvelopeError(f"Ciphertext length {len(body)} is not a multiple of the block size")
    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise EnvelopeError(f"Decryption failed: {exc}") from exc


def _decompress(payload: bytes, size: int) -> bytes:
    try:
        out = zstandard.ZstdDecompressor().decompress(payload, max_output_size=size)
    except zstandard.ZstdError as exc:
        raise EnvelopeError(f"Decompression failed: {exc}") from exc
    if len(out) != size:
        raise EnvelopeError(f"Decompressed size mismatch: header says {size}, got {len(out)}")
    return out


def decrypt_and_decode(data: bytes) -> bytes:
    """Strip the envelope and return the raw document bytes."""
    log.info("Decrypting and decoding model file...")
    if len(data) <= HEADER_SIZE:
        raise EnvelopeError(f"File too short for envelope header ({len(data)} bytes)")

    iv = bytes(data[0:IV_SIZE])
    key = bytes(data[IV_SIZE:HEADER_SIZE])
    plain = _decrypt(iv, key, bytes(data[HEADER_SIZE:]))

    if len(plain) < 4:
        raise EnvelopeError("Decrypted body is missing the size prefix")
    (size,) = struct.unpack_from("<I", plain, 0)
    log.debug("declared decompressed size: %d", size)
    return _decompress(plain[4:], size)
