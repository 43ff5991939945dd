"""vrmdeob.writer

GLB writer.

The write pass rebuilds every resource table from the document model:

  1. images (document texture order), samplers, textures, materials
  2. ``prewrite`` hooks of every attached variant
  3. accessors (one bufferView each, never interleaved), meshes, buffer
  4. ``write`` hooks of every attached variant
  5. ``extensionsUsed`` / ``extensionsRequired``

glTF ``textures`` entries are created per distinct (image, sampler) pair in
material visitation order, so entries referenced only from vendor blocks do not
survive step 1 on their own; the preservation variants restore them.
"""

from __future__ import annotations

import copy
import json
import logging
import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from .model import (
    ARRAY_BUFFER,
    COMPONENT_FORMAT,
    ELEMENT_ARRAY_BUFFER,
    MATERIAL_TEXTURE_SLOTS,
    OWNED_MATERIAL_EXTENSIONS,
    OWNED_TEXTURE_INFO_EXTENSIONS,
    Accessor,
    Document,
    Material,
    Texture,
)
from .reader import CHUNK_BIN, CHUNK_JSON, GLB_MAGIC

if TYPE_CHECKING:
    from .debug import DebugDump

log = logging.getLogger(__name__)


class _BufferBuilder:
    def __init__(self) -> None:
        self.data = bytearray()
        self.views: List[dict] = []

    def add(self, blob: bytes, target: Optional[int] = None) -> int:
        pad = (-len(self.data)) % 4
        self.data.extend(b"\x00" * pad)
        view = {"buffer": 0, "byteOffset": len(self.data), "byteLength": len(blob)}
        if target is not None:
            view["target"] = target
        self.data.extend(blob)
        self.views.append(view)
        return len(self.views) - 1


@dataclass
class WriteContext:
    """Passed to ``prewrite``/``write`` hooks. ``json`` is the output JSON."""

    json: dict
    document: Document
    material_index_map: Dict[Material, int] = field(default_factory=dict)
    node_index_map: Dict[int, int] = field(default_factory=dict)
    accessor_index_map: Dict[Accessor, int] = field(default_factory=dict)
    image_index_map: Dict[Texture, int] = field(default_factory=dict)
    buffer: _BufferBuilder = field(default_factory=_BufferBuilder)
    debug: Optional["DebugDump"] = None


def _sampler_key(sampler: dict) -> str:
    return json.dumps(sampler, sort_keys=True)


def _write_images(ctx: WriteContext) -> None:
    images = []
    for i, tex in enumerate(ctx.document.textures):
        img: dict = {}
        if tex.name is not None:
            img["name"] = tex.name
        if tex.image is not None:
            img["mimeType"] = tex.mime_type
            img["bufferView"] = ctx.buffer.add(tex.image)
        elif tex.uri is not None:
            img["uri"] = tex.uri
        if tex.extras is not None:
            img["extras"] = tex.extras
        images.append(img)
        ctx.image_index_map[tex] = i
    if images:
        ctx.json["images"] = images


def _write_materials(ctx: WriteContext) -> None:
    samplers: List[dict] = []
    sampler_idx: Dict[str, int] = {}
    textures: List[dict] = []
    texture_idx: Dict[Tuple[int, Optional[int]], int] = {}

    def texture_index(tex: Texture, sampler: Optional[dict]) -> int:
        s_idx = None
        if sampler is not None:
            key = _sampler_key(sampler)
            if key not in sampler_idx:
                sampler_idx[key] = len(samplers)
                samplers.append(dict(sampler))
            s_idx = sampler_idx[key]
        pair = (ctx.image_index_map[tex], s_idx)
        if pair not in texture_idx:
            entry = {"source": pair[0]}
            if s_idx is not None:
                entry["sampler"] = s_idx
            texture_idx[pair] = len(textures)
            textures.append(entry)
        return texture_idx[pair]

    materials = []
    for i, mat in enumerate(ctx.document.materials):
        body = copy.deepcopy(mat.json)
        for parent, key in MATERIAL_TEXTURE_SLOTS:
            info = mat.slots.get(key)
            if info is None:
                continue
            out = {"index": texture_index(info.texture, info.sampler)}
            if info.tex_coord:
                out["texCoord"] = info.tex_coord
            out.update(copy.deepcopy(info.extra))
            holder = body.setdefault(parent, {}) if parent else body
            holder[key] = out
        materials.append(body)
        ctx.material_index_map[mat] = i

    if samplers:
        ctx.json["samplers"] = samplers
    if textures:
        ctx.json["textures"] = textures
    if materials:
        ctx.json["materials"] = materials


def _accessor_usage(doc: Document) -> Dict[Accessor, int]:
    usage: Dict[Accessor, int] = {}
    for prim in doc.list_primitives():
        for acc in prim.attributes.values():
            usage[acc] = ARRAY_BUFFER
        for target in prim.targets:
            for acc in target.values():
                usage[acc] = ARRAY_BUFFER
        if prim.indices is not None:
            usage[prim.indices] = ELEMENT_ARRAY_BUFFER
    return usage


def _write_accessors(ctx: WriteContext) -> None:
    doc = ctx.document
    usage = _accessor_usage(doc)
    # base and morph-target positions both need bounds
    position_accessors: Set[Accessor] = set()
    for prim in doc.list_primitives():
        for attrs in [prim.attributes, *prim.targets]:
            if "POSITION" in attrs:
                position_accessors.add(attrs["POSITION"])

    accessors = []
    for i, acc in enumerate(doc.accessors):
        fmt = f"<{len(acc.array)}{COMPONENT_FORMAT[acc.component_type]}"
        blob = struct.pack(fmt, *acc.array)
        out = {
            "bufferView": ctx.buffer.add(blob, usage.get(acc)),
            "componentType": acc.component_type,
            "count": acc.count,
            "type": acc.type,
        }
        if acc.normalized:
            out["normalized"] = True
        if acc.name is not None:
            out["name"] = acc.name
        if acc.extras is not None:
            out["extras"] = acc.extras
        if acc in position_accessors and acc.count:
            n = acc.components
            out["min"] = [min(acc.array[c::n]) for c in range(n)]
            out["max"] = [max(acc.array[c::n]) for c in range(n)]
        accessors.append(out)
        ctx.accessor_index_map[acc] = i
    if accessors:
        ctx.json["accessors"] = accessors


def _write_meshes(ctx: WriteContext) -> None:
    idx = ctx.accessor_index_map
    meshes = []
    for mesh in ctx.document.meshes:
        out = copy.deepcopy(mesh.json)
        prims = []
        for prim in mesh.primitives:
            p = {"attributes": {name: idx[acc] for name, acc in prim.attributes.items()}}
            if prim.indices is not None:
                p["indices"] = idx[prim.indices]
            if prim.material is not None:
                p["material"] = ctx.material_index_map[prim.material]
            if prim.mode is not None:
                p["mode"] = prim.mode
            if prim.targets:
                p["targets"] = [{name: idx[acc] for name, acc in t.items()} for t in prim.targets]
            p.update(copy.deepcopy(prim.json))
            prims.append(p)
        out["primitives"] = prims
        meshes.append(out)
    if meshes:
        ctx.json["meshes"] = meshes


def _strip_foreign_extensions(ctx: WriteContext) -> None:
    ctx.json.pop("extensions", None)
    ctx.json.pop("extensionsUsed", None)
    ctx.json.pop("extensionsRequired", None)
    for i, node in enumerate(ctx.json.get("nodes", [])):
        node.pop("extensions", None)
        ctx.node_index_map[i] = i


def _owned_extensions_in_use(g: dict) -> List[str]:
    found = set()
    for mat in g.get("materials", []):
        found.update(k for k in mat.get("extensions", {}) if k in OWNED_MATERIAL_EXTENSIONS)
        infos = [mat.get(k) for k in ("normalTexture", "occlusionTexture", "emissiveTexture")]
        infos += list(mat.get("pbrMetallicRoughness", {}).values())
        for info in infos:
            if isinstance(info, dict):
                found.update(k for k in info.get("extensions", {}) if k in OWNED_TEXTURE_INFO_EXTENSIONS)
    return sorted(found)


def _pack_glb(g: dict, bin_chunk: bytes) -> bytes:
    json_bytes = json.dumps(g, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    json_bytes += b" " * ((-len(json_bytes)) % 4)
    bin_bytes = bin_chunk + b"\x00" * ((-len(bin_chunk)) % 4)

    total = 12 + 8 + len(json_bytes) + (8 + len(bin_bytes) if bin_bytes else 0)
    parts = [
        GLB_MAGIC,
        struct.pack("<II", 2, total),
        struct.pack("<II", len(json_bytes), CHUNK_JSON),
        json_bytes,
    ]
    if bin_bytes:
        parts.append(struct.pack("<II", len(bin_bytes), CHUNK_BIN))
        parts.append(bin_bytes)
    return b"".join(parts)


def write_glb(doc: Document, debug: Optional["DebugDump"] = None) -> bytes:
    g = copy.deepcopy(doc.json)
    ctx = WriteContext(json=g, document=doc, debug=debug)
    _strip_foreign_extensions(ctx)

    _write_images(ctx)
    _write_materials(ctx)
    for ext in doc.extensions:
        ext.prewrite(ctx)

    _write_accessors(ctx)
    _write_meshes(ctx)
    if ctx.buffer.views:
        g["bufferViews"] = ctx.buffer.views
    if ctx.buffer.data:
        g["buffers"] = [{"byteLength": len(ctx.buffer.data)}]

    for ext in doc.extensions:
        ext.write(ctx)

    used = [ext.name for ext in doc.extensions] + _owned_extensions_in_use(g)
    if used:
        g["extensionsUsed"] = used
    required = [name for name in doc.json.get("extensionsRequired", []) if name in used]
    if required:
        g["extensionsRequired"] = required

    log.debug("wrote %d images, %d accessors", len(ctx.image_index_map), len(ctx.accessor_index_map))
    return _pack_glb(g, bytes(ctx.buffer.data))
