"""Builders for test fixtures: GLB documents and encrypted envelopes."""

from __future__ import annotations

import json
import os
import struct

import zstandard
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

FMT = {5120: "b", 5121: "B", 5122: "h", 5123: "H", 5125: "I", 5126: "f"}
COMPS = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4}


class GlbBuilder:
    def __init__(self):
        self.json = {"asset": {"version": "2.0"}}
        self.bin = bytearray()

    def view(self, blob: bytes) -> int:
        self.bin.extend(b"\x00" * ((-len(self.bin)) % 4))
        views = self.json.setdefault("bufferViews", [])
        views.append({"buffer": 0, "byteOffset": len(self.bin), "byteLength": len(blob)})
        self.bin.extend(blob)
        return len(views) - 1

    def accessor(self, values, type="VEC3", component_type=5126) -> int:
        blob = struct.pack(f"<{len(values)}{FMT[component_type]}", *values)
        accessors = self.json.setdefault("accessors", [])
        accessors.append({
            "bufferView": self.view(blob),
            "componentType": component_type,
            "count": len(values) // COMPS[type],
            "type": type,
        })
        return len(accessors) - 1

    def image(self, data: bytes, mime: str, name=None) -> int:
        images = self.json.setdefault("images", [])
        img = {"bufferView": self.view(data), "mimeType": mime}
        if name:
            img["name"] = name
        images.append(img)
        return len(images) - 1

    def texture(self, source=None, sampler=None, **extra) -> int:
        textures = self.json.setdefault("textures", [])
        tex = dict(extra)
        if source is not None:
            tex["source"] = source
        if sampler is not None:
            tex["sampler"] = sampler
        textures.append(tex)
        return len(textures) - 1

    def mesh(self, *primitives) -> int:
        meshes = self.json.setdefault("meshes", [])
        meshes.append({"primitives": list(primitives)})
        return len(meshes) - 1

    def use(self, *names) -> None:
        used = self.json.setdefault("extensionsUsed", [])
        used.extend(n for n in names if n not in used)

    def build(self) -> bytes:
        if self.bin:
            self.json["buffers"] = [{"byteLength": len(self.bin)}]
        js = json.dumps(self.json).encode("utf-8")
        js += b" " * ((-len(js)) % 4)
        bn = bytes(self.bin) + b"\x00" * ((-len(self.bin)) % 4)
        total = 12 + 8 + len(js) + (8 + len(bn) if bn else 0)
        out = b"glTF" + struct.pack("<II", 2, total) + struct.pack("<II", len(js), 0x4E4F534A) + js
        if bn:
            out += struct.pack("<II", len(bn), 0x004E4942) + bn
        return out


def glb_json(data: bytes) -> dict:
    (length,) = struct.unpack_from("<I", data, 12)
    return json.loads(data[20 : 20 + length].decode("utf-8"))


def make_envelope(payload: bytes, declared_size=None, key=None, iv=None) -> bytes:
    key = key or os.urandom(32)
    iv = iv or os.urandom(16)
    size = len(payload) if declared_size is None else declared_size
    plain = struct.pack("<I", size) + zstandard.ZstdCompressor().compress(payload)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plain) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return iv + key + encryptor.update(padded) + encryptor.finalize()
