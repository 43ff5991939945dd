"""Diagnostic dumps: vendor-block JSON and per-texture raster snapshots.

Nothing downstream reads these files.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

_UNSAFE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_DATA_URI_NAME = re.compile(r"^data:.*?\bbase64,(.+)(.)$")


def make_safe_filename(name: str) -> str:
    return _UNSAFE.sub(lambda m: f"_x{ord(m.group(0)):02x}_", name)


class DebugDump:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def prepare(self) -> None:
        """Create the directory, or empty it from a previous run."""
        if self.directory.exists():
            log.info("Cleaning up debug folder...")
            for p in self.directory.iterdir():
                if p.is_file():
                    p.unlink()
        else:
            self.directory.mkdir(parents=True)

    def dump_json(self, name: str, data) -> Path:
        path = self.directory / f"{make_safe_filename(name)}.json"
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        return path

    def dump_texture(self, name: Optional[str], suffix: str, data: bytes, ext: str = "png") -> Path:
        name = name or "unnamed"
        m = _DATA_URI_NAME.match(name)
        if m:
            # texture named after an inline image: keep the image, name by its hash
            b64 = m.group(1)
            raw = base64.b64decode(b64 + "=" * (-len(b64) % 4))
            name = hashlib.md5(raw).hexdigest() + "_" + m.group(2)
            (self.directory / f"{name}.{suffix}.base64.png").write_bytes(raw)
        path = self.directory / f"{make_safe_filename(name)}.{suffix}.{ext}"
        path.write_bytes(data)
        return path
