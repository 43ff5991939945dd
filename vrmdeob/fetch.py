"""vrmdeob.fetch

Source retrieval and the local cache.

The cache holds the already-decrypted document as ``<id>.glb`` next to
``<id>.json`` (``{"id": ..., "url": ...}``); the resolved URL is needed again
for seed derivation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from .config import Settings
from .envelope import decrypt_and_decode
from .errors import NetworkError

log = logging.getLogger(__name__)


@dataclass
class SourceFile:
    model_id: str
    url: Optional[str]
    data: bytes


class ModelCache:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _paths(self, model_id: str):
        return self.directory / f"{model_id}.glb", self.directory / f"{model_id}.json"

    def load(self, model_id: str) -> Optional[SourceFile]:
        glb_path, info_path = self._paths(model_id)
        if not info_path.exists() or not glb_path.exists():
            return None
        log.info("Loading cached GLB for ID: %s...", model_id)
        info = json.loads(info_path.read_text(encoding="utf-8"))
        return SourceFile(model_id=model_id, url=info.get("url"), data=glb_path.read_bytes())

    def store(self, source: SourceFile) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        glb_path, info_path = self._paths(source.model_id)
        glb_path.write_bytes(source.data)
        info_path.write_text(json.dumps({"id": source.model_id, "url": source.url}, indent=2), encoding="utf-8")


def _request_headers(settings: Settings) -> dict:
    return {"X-Api-Version": settings.api_version, "User-Agent": settings.user_agent}


def fetch_encrypted(model_id: str, settings: Settings, client: Optional[httpx.Client] = None) -> httpx.Response:
    """GET optimized_preview, falling back once to preview on 404."""
    own_client = client is None
    if own_client:
        client = httpx.Client(follow_redirects=True, timeout=settings.timeout)
    base = settings.api_base.rstrip("/")
    headers = _request_headers(settings)
    try:
        log.info("Fetching VRM data for ID: %s...", model_id)
        response = client.get(f"{base}/character_models/{model_id}/optimized_preview", headers=headers)
        if response.status_code == 404:
            log.info("/optimized_preview not found, trying /preview")
            response = client.get(f"{base}/character_models/{model_id}/preview", headers=headers)
    except httpx.HTTPError as exc:
        raise NetworkError(f"Request for model {model_id} failed: {exc}") from exc
    finally:
        if own_client:
            client.close()

    if not response.is_success:
        raise NetworkError(f"Failed to grab the encrypted VRM (HTTP {response.status_code}).")
    return response


def load_source(
    model_id: str,
    settings: Settings,
    cache: Optional[ModelCache] = None,
    client: Optional[httpx.Client] = None,
) -> SourceFile:
    """Decrypted document bytes plus the URL they were resolved from."""
    cache = cache or ModelCache(settings.cache_dir)
    cached = cache.load(model_id)
    if cached is not None:
        return cached

    response = fetch_encrypted(model_id, settings, client)
    source = SourceFile(model_id=model_id, url=str(response.url), data=decrypt_and_decode(response.content))
    cache.store(source)
    log.info("Fetched and decrypted VRM data for ID: %s.", model_id)
    return source
