"""
Reverses the VRoid Hub preview obfuscation: envelope decryption, seed
derivation, vertex displacement reversal, vendor-block preservation and
texture normalization.
"""

from .deobfuscator import Deobfuscator
from .envelope import decrypt_and_decode
from .errors import (
    DeobError,
    EnvelopeError,
    GeneratorError,
    GlbReadError,
    NetworkError,
    ProtocolMisuseError,
    TranscodeError,
    UnknownSchemeError,
    UnsupportedVersionError,
)
from .pipeline import ObfuscationParameters, deobfuscate_document, run
from .prng import RandomGenerator
from .reader import read_glb
from .seeds import SEED_MAP_BASE, compute_seed_map, parse_model_id, select_seed
from .writer import write_glb

__version__ = "0.3.0"

__all__ = [
    "Deobfuscator",
    "decrypt_and_decode",
    "DeobError",
    "EnvelopeError",
    "GeneratorError",
    "GlbReadError",
    "NetworkError",
    "ProtocolMisuseError",
    "TranscodeError",
    "UnknownSchemeError",
    "UnsupportedVersionError",
    "ObfuscationParameters",
    "deobfuscate_document",
    "run",
    "RandomGenerator",
    "read_glb",
    "SEED_MAP_BASE",
    "compute_seed_map",
    "parse_model_id",
    "select_seed",
    "write_glb",
]
