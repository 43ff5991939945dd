"""vrmdeob.extensions

Vendor-block preservation.

The document model drops property-level extensions it does not own and
rebuilds the glTF ``textures`` table on write, so texture indices stored in
vendor blocks would go stale. Each variant here captures its block verbatim on
read and reattaches it on write. Texture references are recorded by the image
source id they pointed at, which survives the rebuild, and rewritten against
the new table.

Hook phases (see reader/writer): preread -> read -> prewrite -> write.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from .errors import ProtocolMisuseError

if TYPE_CHECKING:
    from .model import Document, Material
    from .reader import ReadContext
    from .writer import WriteContext

log = logging.getLogger(__name__)

_TEXTURE_KEY = re.compile(r"^.*Texture$")


class TexturePool:
    """Snapshot of the texture and sampler tables as they were read.

    One pool is shared by every variant of a document. ``snapshot`` is a no-op
    while a snapshot is outstanding; ``reconcile`` consumes it.
    """

    def __init__(self) -> None:
        self._textures: Optional[List[dict]] = None
        self._samplers: Optional[List[dict]] = None

    @property
    def outstanding(self) -> bool:
        return self._textures is not None

    def snapshot(self, g: dict) -> None:
        if self._textures is not None:
            return
        self._textures = [
            {k: t[k] for k in ("name", "source", "sampler") if k in t}
            for t in g.get("textures", [])
        ]
        self._samplers = copy.deepcopy(g.get("samplers", []))

    def reconcile(self, g: dict) -> Dict[Any, int]:
        """Merge the snapshot into ``g["textures"]``; return source id -> index."""
        textures = g.get("textures", [])
        source_to_idx = {t.get("source"): i for i, t in enumerate(textures)}
        if self._textures is not None:
            for tex in self._textures:
                idx = source_to_idx.get(tex.get("source"))
                if idx is not None:
                    textures[idx] = dict(tex)
                else:
                    textures.append(dict(tex))
                    source_to_idx[tex.get("source")] = len(textures) - 1
            # snapshot entries carry sampler indices into the original table
            if self._samplers:
                g["samplers"] = self._samplers
            else:
                g.pop("samplers", None)
            self._textures = None
            self._samplers = None
        if textures:
            g["textures"] = textures
        return source_to_idx

    @staticmethod
    def index_for(g: dict, source_to_idx: Dict[Any, int], source: Any) -> int:
        """New index for ``source``; appends a texture entry when none exists."""
        if source not in source_to_idx:
            textures = g.setdefault("textures", [])
            textures.append({"source": source})
            source_to_idx[source] = len(textures) - 1
        return source_to_idx[source]


@dataclass
class TextureRef:
    """``holder[key]`` is a texture index that pointed at image ``source``."""

    holder: dict
    key: str
    source: Any


def _source_of(g: dict, index: Any) -> Any:
    textures = g.get("textures", [])
    if not isinstance(index, int) or not 0 <= index < len(textures):
        return None
    return textures[index].get("source")


def record_ref(refs: List[TextureRef], g: dict, holder: dict, key: str) -> None:
    source = _source_of(g, holder.get(key))
    if source is None:
        log.warning("texture reference %r=%r does not resolve to an image", key, holder.get(key))
        return
    refs.append(TextureRef(holder, key, source))


def remap_refs(refs: List[TextureRef], g: dict, source_to_idx: Dict[Any, int]) -> None:
    for ref in refs:
        ref.holder[ref.key] = TexturePool.index_for(g, source_to_idx, ref.source)
    refs.clear()


class Extension:
    """Common capability interface of every vendor-block variant."""

    def __init__(self, name: str, document: "Document", pool: TexturePool):
        self.name = name
        self.document = document
        self.pool = pool

    def preread(self, ctx: "ReadContext") -> None:
        pass

    def read(self, ctx: "ReadContext") -> None:
        pass

    def prewrite(self, ctx: "WriteContext") -> None:
        pass

    def write(self, ctx: "WriteContext") -> None:
        pass

    def dispose(self) -> None:
        self.document.detach_extension(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class RootBlockExtension(Extension):
    """Root-level ``extensions[name]`` carried through verbatim."""

    data: Optional[dict] = None

    def read(self, ctx: "ReadContext") -> None:
        self.data = ctx.json.get("extensions", {}).get(self.name)

    def write(self, ctx: "WriteContext") -> None:
        if self.data is None:
            return
        ctx.json.setdefault("extensions", {})[self.name] = self.data
        if ctx.debug is not None:
            ctx.debug.dump_json(self.name.lower(), self.data)


class VRM0Extension(RootBlockExtension):
    """VRM 0.x: materialProperties[].textureProperties and meta.texture hold texture indices."""

    def __init__(self, name, document, pool):
        super().__init__(name, document, pool)
        self.refs: List[TextureRef] = []

    def read(self, ctx: "ReadContext") -> None:
        super().read(ctx)
        self.pool.snapshot(ctx.json)
        if self.data is None:
            return
        for mat in self.data.get("materialProperties") or []:
            props = mat.get("textureProperties")
            if not props:
                continue
            for prop in props:
                record_ref(self.refs, ctx.json, props, prop)
        meta = self.data.get("meta")
        if isinstance(meta, dict) and isinstance(meta.get("texture"), int) and meta["texture"] >= 0:
            record_ref(self.refs, ctx.json, meta, "texture")

    def write(self, ctx: "WriteContext") -> None:
        source_to_idx = self.pool.reconcile(ctx.json)
        remap_refs(self.refs, ctx.json, source_to_idx)
        super().write(ctx)


class VRM1Extension(RootBlockExtension):
    """VRMC_vrm: no texture indices of its own, but owns restoring the texture table."""

    def read(self, ctx: "ReadContext") -> None:
        super().read(ctx)
        self.pool.snapshot(ctx.json)

    def write(self, ctx: "WriteContext") -> None:
        super().write(ctx)
        self.pool.reconcile(ctx.json)


class MaterialBlockExtension(Extension):
    """Per-material ``extensions[name]``; ``*Texture`` entries are textureInfo dicts."""

    def __init__(self, name, document, pool):
        super().__init__(name, document, pool)
        self.by_index: Dict[int, dict] = {}
        self.by_material: Dict["Material", dict] = {}
        self.refs: List[TextureRef] = []

    def preread(self, ctx: "ReadContext") -> None:
        self.pool.snapshot(ctx.json)
        for idx, mat in enumerate(ctx.json.get("materials", [])):
            ext = mat.get("extensions", {}).get(self.name)
            if ext is None:
                continue
            for key, value in ext.items():
                if _TEXTURE_KEY.match(key) and isinstance(value, dict):
                    record_ref(self.refs, ctx.json, value, "index")
            self.by_index[idx] = ext

    def read(self, ctx: "ReadContext") -> None:
        materials = ctx.document.materials
        self.by_material = {materials[i]: ext for i, ext in self.by_index.items() if i < len(materials)}

    def prewrite(self, ctx: "WriteContext") -> None:
        source_to_idx = self.pool.reconcile(ctx.json)
        remap_refs(self.refs, ctx.json, source_to_idx)
        materials = ctx.json.get("materials", [])
        for mat, ext in self.by_material.items():
            idx = ctx.material_index_map.get(mat)
            if idx is None:
                continue
            materials[idx].setdefault("extensions", {})[self.name] = ext


class NodeBlockExtension(RootBlockExtension):
    """Per-node ``extensions[name]`` (plus the root block, if any)."""

    def __init__(self, name, document, pool):
        super().__init__(name, document, pool)
        self.by_node: Dict[int, dict] = {}

    def read(self, ctx: "ReadContext") -> None:
        super().read(ctx)
        for idx, node in enumerate(ctx.json.get("nodes", [])):
            ext = node.get("extensions", {}).get(self.name)
            if ext is not None:
                self.by_node[idx] = ext

    def write(self, ctx: "WriteContext") -> None:
        super().write(ctx)
        nodes = ctx.json.get("nodes", [])
        for old_idx, ext in self.by_node.items():
            new_idx = ctx.node_index_map.get(old_idx)
            if new_idx is None:
                continue
            nodes[new_idx].setdefault("extensions", {})[self.name] = ext


class ConsumedExtension(Extension):
    """Read for internal use only; must be disposed before the document is written."""

    def write(self, ctx: "WriteContext") -> None:
        raise ProtocolMisuseError(f"Extension {self.name} must be removed prior to writing.")


class PreviewMeshExtension(ConsumedExtension):
    """Carries the obfuscation parameters ``{timestamp, version}``."""

    data: Optional[dict] = None

    def read(self, ctx: "ReadContext") -> None:
        self.data = ctx.json.get("extensions", {}).get(self.name) or {}

    @property
    def timestamp(self) -> Optional[str]:
        value = (self.data or {}).get("timestamp")
        return None if value is None else str(value)

    @property
    def version(self) -> Optional[str]:
        value = (self.data or {}).get("version")
        return None if value is None else str(value)


class BasisSourceExtension(ConsumedExtension):
    """Points each texture's ``source`` at the image named by its basis extension."""

    def preread(self, ctx: "ReadContext") -> None:
        redirected = 0
        for texture in ctx.json.get("textures", []):
            ext = texture.get("extensions", {}).get(self.name)
            if ext and "source" in ext:
                texture["source"] = ext["source"]
                redirected += 1
        if redirected:
            log.info("Detected %s, redirected %d texture source(s)", self.name, redirected)


ROOT_BLOCK_NAMES = (
    "VRMC_springBone",
    "VRMC_springBone_limit",
    "VRMC_springBone_extended_collider",
    "VRMC_vrm_animation",
)

PREVIEW_MESH = "PIXIV_vroid_hub_preview_mesh"
PIXIV_TEXTURE_BASIS = "PIXIV_texture_basis"
KHR_TEXTURE_BASISU = "KHR_texture_basisu"

# Hook order within a phase follows this order; texture source redirects
# must precede the texture snapshot.
EXTENSION_REGISTRY: Mapping[str, type] = MappingProxyType({
    KHR_TEXTURE_BASISU: BasisSourceExtension,
    PIXIV_TEXTURE_BASIS: BasisSourceExtension,
    PREVIEW_MESH: PreviewMeshExtension,
    "VRM": VRM0Extension,
    "VRMC_vrm": VRM1Extension,
    "VRMC_materials_mtoon": MaterialBlockExtension,
    "VRMC_materials_hdr_emissiveMultiplier": MaterialBlockExtension,
    "VRMC_node_constraint": NodeBlockExtension,
    **{name: RootBlockExtension for name in ROOT_BLOCK_NAMES},
})

CONSUMED_EXTENSIONS = (KHR_TEXTURE_BASISU, PIXIV_TEXTURE_BASIS, PREVIEW_MESH)
