import math
import struct

import pytest

from vrmdeob.deobfuscator import (
    LEGACY_X_TIMESTAMP,
    META_SIZE,
    Deobfuscator,
    component_transform,
    scale_component,
    shift_component,
)
from vrmdeob.errors import GeneratorError, UnsupportedVersionError
from vrmdeob.generator import DOMAIN_CONSTANT
from vrmdeob.model import Accessor, Document, Mesh, Primitive


def f32(v):
    return struct.unpack("<f", struct.pack("<f", v))[0]


class FakeGenerator:
    """Deterministic stand-in for the scheme 5.0 vendor generator."""

    def __init__(self):
        self.calls = []

    def generate_texture(self, seed, domain):
        self.calls.append(("texture", seed, domain))
        return bytes((i * 7 + seed) % 256 for i in range(META_SIZE * META_SIZE * 4))

    def generate_buffer(self, seed, domain, count):
        self.calls.append(("buffer", seed, domain, count))
        return [((i * 37) % 256 + 0.5) / 256 for i in range(count)]


def _doc(*position_lists, shared=False):
    doc = Document()
    mesh = Mesh()
    shared_acc = None
    for values in position_lists:
        if shared and shared_acc is not None:
            acc = shared_acc
        else:
            acc = Accessor(type="VEC3", component_type=5126, array=[f32(v) for v in values])
            doc.accessors.append(acc)
            shared_acc = acc
        mesh.primitives.append(Primitive(attributes={"POSITION": acc}))
    doc.meshes.append(mesh)
    return doc


def _expected(deob, values):
    lookup = deob.lookup_coordinates(len(values) // 3)
    out = []
    for i in range(len(values) // 3):
        u = math.floor(lookup[2 * i] * 256)
        v = math.floor(lookup[2 * i + 1] * 256)
        sample = deob.meta_sample(u, v)
        for c in range(3):
            out.append(f32(scale_component(f32(values[3 * i + c]), sample[c])))
    return out


def test_version_dispatch_formulas():
    assert component_transform("4.0") is scale_component
    assert component_transform("5.0") is scale_component
    assert component_transform("legacy") is shift_component
    assert component_transform(None) is shift_component
    assert scale_component(3.0, 0.5) == 3.0 * 2 ** (0.5 / 8)
    assert shift_component(2.0, 0.8) == 2.0 - 0.8 / 16
    assert shift_component(-2.0, 0.8) == -2.0 + 0.8 / 16
    assert shift_component(0.0, 0.8) == 0.0


def test_unknown_version_raises_without_mutation():
    doc = _doc([1.0, 2.0, 3.0])
    before = list(doc.accessors[0].array)
    with pytest.raises(UnsupportedVersionError):
        Deobfuscator(1, "9.9", "612168628").process_document(doc)
    assert doc.accessors[0].array == before


def test_version_5_requires_generator():
    with pytest.raises(UnsupportedVersionError):
        Deobfuscator(1, "5.0", "1764841611")


def test_prng_meta_texture_matches_stream():
    deob = Deobfuscator(0x5491333, "4.0", "612168628")
    assert len(deob.meta_texture) == META_SIZE * META_SIZE * 4
    assert deob.meta_texture[:4] == bytes([70, 54, 213, 255])
    assert deob.meta_sample(0, 0) == (70 / 255, 54 / 255, 213 / 255)


def test_lookup_coordinates_are_texel_centres():
    deob = Deobfuscator(0x5491333, "4.0", "612168628")
    lookup = deob.lookup_coordinates(2)
    assert len(lookup) == 4
    assert lookup[:3] == [70.5 / 256, 54.5 / 256, 213.5 / 256]
    # every primitive restarts from the document seed
    assert deob.lookup_coordinates(2) == lookup


def test_legacy_timestamp_overrides_x_word():
    plain = Deobfuscator(1000, "4.0", "612168628")
    special = Deobfuscator(1000, "4.0", LEGACY_X_TIMESTAMP)
    assert plain.lookup_coordinates(16) != special.lookup_coordinates(16)
    assert plain.meta_texture != special.meta_texture


def test_version_4_reversal_scales_positions():
    values = [1.0, -2.5, 0.25, 4.0, 8.0, -16.0]
    doc = _doc(values)
    deob = Deobfuscator(4321, "4.0", "612168628")
    expected = _expected(deob, values)
    deob.process_document(doc)
    assert doc.accessors[0].array == expected


def test_version_5_uses_external_generator():
    gen = FakeGenerator()
    values = [1.0, 2.0, 3.0, -1.0, -2.0, -3.0]
    doc = _doc(values, [0.5, 0.5, 0.5])
    deob = Deobfuscator(99, "5.0", "1764841611", generator=gen)
    expected = _expected(deob, values)
    deob.process_document(doc)
    assert doc.accessors[0].array == expected
    assert gen.calls[0] == ("texture", 99, DOMAIN_CONSTANT)
    assert ("buffer", 99, DOMAIN_CONSTANT, 2 * 2) in gen.calls
    assert ("buffer", 99, DOMAIN_CONSTANT, 2 * 1) in gen.calls


class ShortBufferGenerator(FakeGenerator):
    def generate_buffer(self, seed, domain, count):
        return super().generate_buffer(seed, domain, count)[:-1]


def test_version_5_short_lookup_buffer_is_fatal():
    doc = _doc([1.0, 2.0, 3.0])
    deob = Deobfuscator(99, "5.0", "1764841611", generator=ShortBufferGenerator())
    with pytest.raises(GeneratorError):
        deob.process_document(doc)


class SmallTextureGenerator(FakeGenerator):
    def generate_texture(self, seed, domain):
        return bytes(16)


def test_version_5_small_meta_texture_is_fatal():
    with pytest.raises(GeneratorError):
        Deobfuscator(99, "5.0", "1764841611", generator=SmallTextureGenerator())


def test_legacy_reversal_shifts_towards_zero_offset():
    gen_values = [1.0, -1.0, 0.0]
    doc = _doc(gen_values)
    deob = Deobfuscator(5, "legacy", None)
    lookup = deob.lookup_coordinates(1)
    sample = deob.meta_sample(math.floor(lookup[0] * 256), math.floor(lookup[1] * 256))
    deob.process_document(doc)
    arr = doc.accessors[0].array
    assert arr[0] == f32(1.0 - sample[0] / 16)
    assert arr[1] == f32(-1.0 + sample[1] / 16)
    assert arr[2] == 0.0


def test_shared_position_buffer_corrected_once():
    values = [1.0, 2.0, 3.0, -4.0, 5.0, -6.0]
    once = _doc(values)
    twice = _doc(values, values, values, shared=True)
    assert len(twice.accessors) == 1

    Deobfuscator(77, "4.0", "612168628").process_document(once)
    Deobfuscator(77, "4.0", "612168628").process_document(twice)
    assert twice.accessors[0].array == once.accessors[0].array


def test_shared_buffer_result_independent_of_visit_order():
    values = [1.0, 2.0, 3.0, 7.0, 8.0, 9.0]
    other = [0.5, 0.25, 0.125]
    a = _doc(values, values, other, shared=False)
    # first and second primitive alias one accessor, third is separate
    a.meshes[0].primitives[1].attributes["POSITION"] = a.meshes[0].primitives[0].attributes["POSITION"]
    b = _doc(other, values, shared=False)
    b.meshes[0].primitives.append(Primitive(attributes={"POSITION": b.meshes[0].primitives[1].attributes["POSITION"]}))

    Deobfuscator(3, "4.0", "612168628").process_document(a)
    Deobfuscator(3, "4.0", "612168628").process_document(b)
    assert a.meshes[0].primitives[0].attributes["POSITION"].array == b.meshes[0].primitives[1].attributes["POSITION"].array


def test_coincidental_equal_values_are_skipped():
    # known approximation: a separate buffer whose vertex already holds corrected
    # values on all three axes is treated as done
    deob = Deobfuscator(11, "4.0", "612168628")
    first = [1.0, 2.0, 3.0]
    corrected = _expected(deob, first)
    doc = _doc(first, corrected)
    deob.process_document(doc)
    assert doc.accessors[0].array == corrected
    assert doc.accessors[1].array == corrected


def test_primitives_without_position_are_ignored():
    doc = _doc([1.0, 1.0, 1.0])
    doc.meshes[0].primitives.append(Primitive(attributes={}))
    Deobfuscator(1, "4.0", "612168628").process_document(doc)
