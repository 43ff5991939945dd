"""External deterministic generator for scheme "5.0".

Newer obfuscation generations no longer use the xorshift stream; both the meta
texture and the per-primitive lookup buffer come from a vendor generator keyed
by (seed, domain constant). The generator is supplied by the caller.
"""

from __future__ import annotations

import importlib
from typing import Optional, Protocol, Sequence

DOMAIN_CONSTANT = 2352940687395663367


class ExternalGenerator(Protocol):
    def generate_texture(self, seed: int, domain: int) -> bytes:
        """256*256 RGBA bytes."""
        ...

    def generate_buffer(self, seed: int, domain: int, count: int) -> Sequence[float]:
        """``count`` lookup floats in [0, 1)."""
        ...


def load_object(path: str):
    """Resolve a ``package.module:attribute`` import path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got {path!r}")
    obj = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


def load_plugin(path: Optional[str]):
    """Generator or transcoder instance named by an import path (None if unset)."""
    if not path:
        return None
    obj = load_object(path)
    # a class or factory is instantiated, a module-like object is used as is
    return obj() if callable(obj) else obj
