"""vrmdeob.reader

GLB reader.

- Split the container into its JSON and BIN chunks.
- Instantiate every registered vendor-block variant named in ``extensionsUsed``.
- Run all ``preread`` hooks on the raw JSON, build the document model, then run
  all ``read`` hooks.

Every variant shares one ``TexturePool`` for the lifetime of the document.
"""

from __future__ import annotations

import base64
import json
import logging
import struct
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from .errors import GlbReadError
from .extensions import EXTENSION_REGISTRY, TexturePool
from .model import (
    COMPONENT_FORMAT,
    COMPONENT_SIZE,
    MATERIAL_TEXTURE_SLOTS,
    OWNED_MATERIAL_EXTENSIONS,
    OWNED_TEXTURE_INFO_EXTENSIONS,
    TYPE_COMPONENTS,
    Accessor,
    Document,
    Material,
    Mesh,
    Primitive,
    Texture,
    TextureInfo,
)

log = logging.getLogger(__name__)

GLB_MAGIC = b"glTF"
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942

# resource tables rebuilt by the writer
MODEL_KEYS = ("accessors", "bufferViews", "buffers", "images", "textures", "samplers", "materials", "meshes")


@dataclass
class _Bin:
    data: bytes
    ofs: int = 0

    def tell(self) -> int:
        return self.ofs

    def read(self, n: int) -> bytes:
        b = self.data[self.ofs : self.ofs + n]
        if len(b) != n:
            raise GlbReadError(f"Unexpected EOF at {self.ofs}, need {n}")
        self.ofs += n
        return b

    def u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]


@dataclass
class ReadContext:
    """Passed to ``preread``/``read`` hooks. ``json`` is the raw glTF JSON."""

    json: dict
    document: Document


def parse_glb(data: bytes) -> Tuple[dict, bytes]:
    b = _Bin(bytes(data))
    if b.read(4) != GLB_MAGIC:
        raise GlbReadError("Not a GLB file (missing 'glTF' magic)")
    version = b.u32()
    if version != 2:
        raise GlbReadError(f"Unsupported GLB version {version}")
    length = b.u32()
    if length > len(b.data):
        raise GlbReadError(f"GLB header length {length} exceeds file size {len(b.data)}")

    json_doc: Optional[dict] = None
    bin_chunk = b""
    while b.tell() + 8 <= length:
        chunk_len = b.u32()
        chunk_type = b.u32()
        body = b.read(chunk_len)
        if chunk_type == CHUNK_JSON:
            try:
                json_doc = json.loads(body.decode("utf-8"))
            except ValueError as exc:
                raise GlbReadError(f"Invalid JSON chunk: {exc}") from exc
        elif chunk_type == CHUNK_BIN and not bin_chunk:
            bin_chunk = body
        else:
            log.debug("skipping chunk 0x%08X (%d bytes)", chunk_type, chunk_len)

    if json_doc is None:
        raise GlbReadError("GLB has no JSON chunk")
    return json_doc, bin_chunk


def _buffer_view_bytes(g: dict, bin_chunk: bytes, view_idx: int) -> Tuple[bytes, int, Optional[int]]:
    views = g.get("bufferViews", [])
    if view_idx >= len(views):
        raise GlbReadError(f"bufferView {view_idx} out of range")
    bv = views[view_idx]
    if bv.get("buffer", 0) != 0:
        raise GlbReadError("Only the embedded GLB buffer is supported")
    start = bv.get("byteOffset", 0)
    end = start + bv["byteLength"]
    if end > len(bin_chunk):
        raise GlbReadError(f"bufferView {view_idx} overruns BIN chunk")
    return bin_chunk, start, bv.get("byteStride")


def _read_accessor(g: dict, bin_chunk: bytes, acc: dict) -> Accessor:
    if "sparse" in acc:
        raise GlbReadError("Sparse accessors are not supported")
    ctype = acc["componentType"]
    comps = TYPE_COMPONENTS[acc["type"]]
    count = acc["count"]
    fmt = COMPONENT_FORMAT[ctype]
    elem_size = comps * COMPONENT_SIZE[ctype]

    if "bufferView" not in acc:
        array = [0.0 if ctype == 5126 else 0] * (count * comps)
    else:
        blob, base, stride = _buffer_view_bytes(g, bin_chunk, acc["bufferView"])
        base += acc.get("byteOffset", 0)
        stride = stride or elem_size
        if count and base + stride * (count - 1) + elem_size > len(blob):
            raise GlbReadError("Accessor overruns its bufferView")
        if stride == elem_size:
            array = list(struct.unpack_from(f"<{count * comps}{fmt}", blob, base))
        else:
            elem_fmt = f"<{comps}{fmt}"
            array = []
            for i in range(count):
                array.extend(struct.unpack_from(elem_fmt, blob, base + i * stride))

    return Accessor(
        type=acc["type"],
        component_type=ctype,
        array=array,
        normalized=bool(acc.get("normalized", False)),
        name=acc.get("name"),
        extras=acc.get("extras"),
    )


def _read_image(g: dict, bin_chunk: bytes, idx: int, img: dict) -> Texture:
    tex = Texture(
        source_id=idx,
        mime_type=img.get("mimeType", ""),
        name=img.get("name"),
        extras=img.get("extras"),
    )
    if "bufferView" in img:
        blob, start, _ = _buffer_view_bytes(g, bin_chunk, img["bufferView"])
        length = g["bufferViews"][img["bufferView"]]["byteLength"]
        tex.image = blob[start : start + length]
    elif img.get("uri", "").startswith("data:"):
        header, _, payload = img["uri"].partition(",")
        tex.image = base64.b64decode(payload)
        if not tex.mime_type:
            tex.mime_type = header[5:].split(";")[0]
    elif "uri" in img:
        tex.uri = img["uri"]
    return tex


def _read_texture_info(g: dict, textures: List[Texture], info: dict) -> Optional[TextureInfo]:
    gl_textures = g.get("textures", [])
    tex_idx = info.get("index")
    if tex_idx is None or tex_idx >= len(gl_textures):
        log.warning("dropping texture reference to missing texture %s", tex_idx)
        return None
    gl_tex = gl_textures[tex_idx]
    source = gl_tex.get("source")
    if source is None or source >= len(textures):
        log.warning("texture %d has no usable image source", tex_idx)
        return None
    sampler = None
    if "sampler" in gl_tex:
        sampler = dict(g.get("samplers", [])[gl_tex["sampler"]])

    extra = {k: v for k, v in info.items() if k not in ("index", "texCoord", "extensions")}
    exts = {k: v for k, v in info.get("extensions", {}).items() if k in OWNED_TEXTURE_INFO_EXTENSIONS}
    if exts:
        extra["extensions"] = exts
    return TextureInfo(texture=textures[source], sampler=sampler, tex_coord=info.get("texCoord", 0), extra=extra)


def _read_material(g: dict, textures: List[Texture], mat_json: dict) -> Material:
    body = json.loads(json.dumps(mat_json))
    mat = Material(json=body)
    for parent, key in MATERIAL_TEXTURE_SLOTS:
        holder = body.get(parent, {}) if parent else body
        info = holder.pop(key, None)
        if info is None:
            continue
        resolved = _read_texture_info(g, textures, info)
        if resolved is not None:
            mat.slots[key] = resolved
    exts = {k: v for k, v in body.pop("extensions", {}).items() if k in OWNED_MATERIAL_EXTENSIONS}
    if exts:
        body["extensions"] = exts
    return mat


def _build_document(g: dict, bin_chunk: bytes, doc: Document) -> None:
    doc.accessors = [_read_accessor(g, bin_chunk, acc) for acc in g.get("accessors", [])]
    doc.textures = [_read_image(g, bin_chunk, i, img) for i, img in enumerate(g.get("images", []))]
    doc.materials = [_read_material(g, doc.textures, m) for m in g.get("materials", [])]

    def acc(i: int) -> Accessor:
        if i >= len(doc.accessors):
            raise GlbReadError(f"accessor {i} out of range")
        return doc.accessors[i]

    for mesh_json in g.get("meshes", []):
        mesh_body = {k: v for k, v in mesh_json.items() if k not in ("primitives", "extensions")}
        mesh = Mesh(json=mesh_body)
        for prim_json in mesh_json.get("primitives", []):
            prim = Primitive(
                attributes={name: acc(i) for name, i in prim_json.get("attributes", {}).items()},
                indices=acc(prim_json["indices"]) if "indices" in prim_json else None,
                material=doc.materials[prim_json["material"]] if "material" in prim_json else None,
                mode=prim_json.get("mode"),
                targets=[{name: acc(i) for name, i in t.items()} for t in prim_json.get("targets", [])],
                json={k: v for k, v in prim_json.items() if k == "extras"},
            )
            mesh.primitives.append(prim)
        doc.meshes.append(mesh)

    doc.json = {k: v for k, v in g.items() if k not in MODEL_KEYS}


def read_glb(data: bytes, registry: Optional[Mapping[str, type]] = None) -> Document:
    """Parse GLB bytes into a Document with its vendor-block variants attached."""
    registry = EXTENSION_REGISTRY if registry is None else registry
    g, bin_chunk = parse_glb(data)

    owned = OWNED_MATERIAL_EXTENSIONS + OWNED_TEXTURE_INFO_EXTENSIONS
    used: List[str] = list(g.get("extensionsUsed", []))
    required = set(g.get("extensionsRequired", []))
    unsupported = sorted(name for name in required if name not in registry and name not in owned)
    if unsupported:
        raise GlbReadError(f"Unsupported required extensions: {', '.join(unsupported)}")
    for name in used:
        if name not in registry and name not in owned:
            log.warning("Extension %s is not supported and will be dropped", name)

    doc = Document()
    pool = TexturePool()
    # registry order decides hook order within a phase
    doc.extensions = [cls(name, doc, pool) for name, cls in registry.items() if name in used]

    ctx = ReadContext(json=g, document=doc)
    for ext in doc.extensions:
        ext.preread(ctx)
    _build_document(g, bin_chunk, doc)
    for ext in doc.extensions:
        ext.read(ctx)
    log.debug(
        "read %d accessors, %d meshes, %d textures, %d materials",
        len(doc.accessors), len(doc.meshes), len(doc.textures), len(doc.materials),
    )
    return doc

