"""Runtime settings. Defaults < VRMDEOB_* environment < command line."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping, Optional

ENV_PREFIX = "VRMDEOB_"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class Settings:
    api_base: str = "https://hub.vroid.com/api"
    api_version: str = "11"
    user_agent: str = DEFAULT_USER_AGENT
    cache_dir: Path = Path("cache")
    output_dir: Path = Path(".")
    debug_dir: Optional[Path] = None
    generator: Optional[str] = None
    transcoder: Optional[str] = None
    timeout: float = 60.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        return cls().override(
            **{f.name: environ.get(ENV_PREFIX + f.name.upper()) for f in fields(cls)}
        )

    def override(self, **values) -> "Settings":
        """Copy with every non-None value applied (and coerced to the field type)."""
        changes = {}
        for f in fields(self):
            value = values.get(f.name)
            if value is None:
                continue
            if f.name.endswith("_dir"):
                value = Path(value)
            elif f.name == "timeout":
                value = float(value)
            changes[f.name] = value
        return replace(self, **changes)
