"""vrmdeob.deobfuscator

Vertex displacement reversal.

Obfuscated models have every POSITION component scaled (or, for the legacy
scheme, shifted) by a magnitude sampled from a 256x256 "meta texture". The
texel used for vertex i comes from a per-primitive lookup stream:

    u = floor(lookup[2i] * 256), v = floor(lookup[2i+1] * 256)

Both the texture and the lookup stream are reproducible from the document seed,
so the displacement can be inverted exactly.
"""

from __future__ import annotations

import logging
import math
import struct
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .errors import GeneratorError, UnsupportedVersionError
from .generator import DOMAIN_CONSTANT, ExternalGenerator
from .model import FLOAT, Document, Primitive
from .prng import RandomGenerator

log = logging.getLogger(__name__)

META_SIZE = 256
VERSION_4 = "4.0"
VERSION_5 = "5.0"
LEGACY = "legacy"

# this scheme generation was produced with a different initial x word
LEGACY_X_TIMESTAMP = "1599883309"
LEGACY_X_WORD = 0x2567DE00

ProcessedValueSets = Tuple[Set[float], Set[float], Set[float]]


def _f32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def scale_component(value: float, sample: float) -> float:
    return value * 2 ** (sample / 8)


def shift_component(value: float, sample: float) -> float:
    return value - math.copysign(1.0, value) * (sample / 16) if value else value


def normalize_version(version: Optional[str]) -> str:
    return LEGACY if version in (None, "", LEGACY) else str(version)


def component_transform(version: Optional[str]) -> Callable[[float, float], float]:
    version = normalize_version(version)
    if version in (VERSION_4, VERSION_5):
        return scale_component
    if version == LEGACY:
        return shift_component
    raise UnsupportedVersionError(f"Unknown obfuscation version: {version}")


class Deobfuscator:
    """Reverses the displacement of one document. Not reusable across documents."""

    def __init__(
        self,
        seed: int,
        version: Optional[str],
        timestamp: Optional[str],
        generator: Optional[ExternalGenerator] = None,
    ):
        self.seed = seed
        self.version = normalize_version(version)
        self.timestamp = timestamp
        self.generator = generator
        self._adjust = component_transform(self.version)
        if self.version == VERSION_5 and generator is None:
            raise UnsupportedVersionError(
                f"Obfuscation version {VERSION_5} needs an external generator (see --generator)"
            )
        self.meta_texture = self._generate_meta_texture()

    def _new_prng(self) -> RandomGenerator:
        prng = RandomGenerator(self.seed)
        if self.timestamp == LEGACY_X_TIMESTAMP:
            prng.replace_x(LEGACY_X_WORD)
        return prng

    def _generate_meta_texture(self) -> bytes:
        log.info("Generating meta texture...")
        texels = META_SIZE * META_SIZE
        if self.version == VERSION_5:
            data = bytes(self.generator.generate_texture(self.seed, DOMAIN_CONSTANT))
            if len(data) < texels * 4:
                raise GeneratorError(f"External meta texture too small: {len(data)} bytes")
            return data

        prng = self._new_prng()
        data = bytearray(texels * 4)
        for i in range(texels):
            data[i * 4] = prng.next_in_range(256)
            data[i * 4 + 1] = prng.next_in_range(256)
            data[i * 4 + 2] = prng.next_in_range(256)
            data[i * 4 + 3] = 255
        return bytes(data)

    def meta_sample(self, u: int, v: int) -> Tuple[float, float, float]:
        index = (v * META_SIZE + u) * 4
        tex = self.meta_texture
        return tex[index] / 255, tex[index + 1] / 255, tex[index + 2] / 255

    def lookup_coordinates(self, vertex_count: int) -> Sequence[float]:
        """2 * vertex_count lookup floats for one primitive."""
        count = 2 * vertex_count
        if self.version == VERSION_5:
            buf = self.generator.generate_buffer(self.seed, DOMAIN_CONSTANT, count)
            if len(buf) < count:
                raise GeneratorError(f"External lookup buffer too short: {len(buf)} of {count} values")
            return buf
        prng = self._new_prng()
        return [(prng.next_in_range(256) + 0.5) / 256 for _ in range(count)]

    def process_vertex_displacement(
        self,
        array: List[float],
        vertex_count: int,
        lookup: Sequence[float],
        processed: ProcessedValueSets,
    ) -> None:
        """Correct ``array`` (flat xyz) in place.

        A vertex whose three components were all produced by an earlier
        correction is left alone; this keeps buffers shared between
        primitives from being corrected twice. Unrelated vertices that happen
        to hold already-seen values are skipped too.
        """
        adjust = self._adjust
        px, py, pz = processed
        for i in range(vertex_count):
            u = min(int(math.floor(lookup[i * 2] * 256)), META_SIZE - 1)
            v = min(int(math.floor(lookup[i * 2 + 1] * 256)), META_SIZE - 1)
            x, y, z = self.meta_sample(u, v)

            j = i * 3
            if array[j] in px and array[j + 1] in py and array[j + 2] in pz:
                continue

            array[j] = _f32(adjust(array[j], x))
            array[j + 1] = _f32(adjust(array[j + 1], y))
            array[j + 2] = _f32(adjust(array[j + 2], z))

            px.add(array[j])
            py.add(array[j + 1])
            pz.add(array[j + 2])

    def process_document(self, document: Document) -> None:
        primitives: List[Primitive] = [p for p in document.list_primitives() if "POSITION" in p.attributes]

        lookups: Dict[Primitive, Sequence[float]] = {}
        for prim in primitives:
            lookups[prim] = self.lookup_coordinates(prim.attributes["POSITION"].count)

        processed: ProcessedValueSets = (set(), set(), set())
        log.info("Processing vertex displacement...")
        for prim in primitives:
            position = prim.attributes["POSITION"]
            lookup = lookups.pop(prim)
            if position.component_type != FLOAT:
                log.warning("skipping non-float POSITION accessor (componentType %d)", position.component_type)
                continue
            self.process_vertex_displacement(position.array, position.count, lookup, processed)
