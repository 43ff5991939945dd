"""vrmdeob.model

In-memory document model for a GLB container.

Only the resource tables the pipeline touches are modelled (accessors, meshes,
images/textures, materials). Everything else (nodes, scenes, skins,
animations, ...) rides along in ``Document.json`` untouched. Accessors keep
their original order so raw accessor indices elsewhere in the JSON stay valid.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .extensions import Extension


COMPONENT_FORMAT = {5120: "b", 5121: "B", 5122: "h", 5123: "H", 5125: "I", 5126: "f"}
COMPONENT_SIZE = {5120: 1, 5121: 1, 5122: 2, 5123: 2, 5125: 4, 5126: 4}
TYPE_COMPONENTS = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT2": 4, "MAT3": 9, "MAT4": 16}

FLOAT = 5126
ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

# (path inside the material JSON, slot key)
MATERIAL_TEXTURE_SLOTS = (
    ("pbrMetallicRoughness", "baseColorTexture"),
    ("pbrMetallicRoughness", "metallicRoughnessTexture"),
    (None, "normalTexture"),
    (None, "occlusionTexture"),
    (None, "emissiveTexture"),
)

# Material extensions carried by the model itself (no texture references).
OWNED_MATERIAL_EXTENSIONS = ("KHR_materials_unlit", "KHR_materials_emissive_strength")
# Extensions that may sit inside a textureInfo and are copied verbatim.
OWNED_TEXTURE_INFO_EXTENSIONS = ("KHR_texture_transform",)


@dataclass(eq=False)
class Accessor:
    """Decoded accessor. ``array`` is flat: count * components values."""

    type: str
    component_type: int
    array: List[Any]
    normalized: bool = False
    name: Optional[str] = None
    extras: Optional[dict] = None

    @property
    def components(self) -> int:
        return TYPE_COMPONENTS[self.type]

    @property
    def count(self) -> int:
        return len(self.array) // self.components


@dataclass(eq=False)
class Primitive:
    attributes: Dict[str, Accessor] = field(default_factory=dict)
    indices: Optional[Accessor] = None
    material: Optional["Material"] = None
    mode: Optional[int] = None
    targets: List[Dict[str, Accessor]] = field(default_factory=list)
    json: dict = field(default_factory=dict)


@dataclass(eq=False)
class Mesh:
    primitives: List[Primitive] = field(default_factory=list)
    json: dict = field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.json.get("name")


@dataclass(eq=False)
class Texture:
    """One glTF image. ``source_id`` is its image index at read time."""

    source_id: int
    mime_type: str = ""
    image: Optional[bytes] = None
    name: Optional[str] = None
    uri: Optional[str] = None
    extras: Optional[dict] = None


@dataclass(eq=False)
class TextureInfo:
    texture: Texture
    sampler: Optional[dict] = None
    tex_coord: int = 0
    # scale/strength, extras, owned extensions
    extra: dict = field(default_factory=dict)


@dataclass(eq=False)
class Material:
    json: dict = field(default_factory=dict)
    slots: Dict[str, TextureInfo] = field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.json.get("name")


@dataclass(eq=False)
class Document:
    json: dict = field(default_factory=dict)
    accessors: List[Accessor] = field(default_factory=list)
    meshes: List[Mesh] = field(default_factory=list)
    textures: List[Texture] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    extensions: List["Extension"] = field(default_factory=list)

    @property
    def nodes(self) -> List[dict]:
        return self.json.get("nodes", [])

    def list_primitives(self):
        for mesh in self.meshes:
            yield from mesh.primitives

    def find_extension(self, name: str) -> Optional["Extension"]:
        for ext in self.extensions:
            if ext.name == name:
                return ext
        return None

    def detach_extension(self, ext: "Extension") -> None:
        if ext in self.extensions:
            self.extensions.remove(ext)
