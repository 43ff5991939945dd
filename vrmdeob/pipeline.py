"""vrmdeob.pipeline

One document, start to finish:

  source bytes -> seed map -> parse -> obfuscation parameters -> displacement
  reversal -> texture normalization -> serialize -> <id>.deob.vrm
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import httpx

from .config import Settings
from .debug import DebugDump
from .deobfuscator import Deobfuscator
from .errors import UnknownSchemeError
from .extensions import CONSUMED_EXTENSIONS, PREVIEW_MESH
from .fetch import ModelCache, load_source
from .generator import ExternalGenerator, load_plugin
from .model import Document
from .reader import read_glb
from .seeds import compute_seed_map, parse_model_id, select_seed
from .textures import MissingTranscoder, Transcoder, normalize_textures
from .writer import write_glb

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObfuscationParameters:
    seed: int
    version: Optional[str]
    timestamp: Optional[str]


def take_parameters(document: Document, seed_map, debug: Optional[DebugDump] = None) -> ObfuscationParameters:
    """Read the preview-mesh block, then detach it so it is never written back."""
    ext = document.find_extension(PREVIEW_MESH)
    if ext is None:
        raise UnknownSchemeError(f"Document has no {PREVIEW_MESH} block; nothing to deobfuscate")
    if debug:
        debug.dump_json(PREVIEW_MESH.lower(), ext.data)
    timestamp, version = ext.timestamp, ext.version
    ext.dispose()
    return ObfuscationParameters(seed=select_seed(seed_map, timestamp), version=version, timestamp=timestamp)


def dispose_consumed(document: Document) -> None:
    for name in CONSUMED_EXTENSIONS:
        ext = document.find_extension(name)
        if ext is not None:
            ext.dispose()


def deobfuscate_document(
    data: bytes,
    model_id: Union[str, int],
    url: Optional[str],
    generator: Optional[ExternalGenerator] = None,
    transcoder: Optional[Transcoder] = None,
    debug: Optional[DebugDump] = None,
) -> bytes:
    seed_map = compute_seed_map(model_id, url)

    log.info("Reading GLB file...")
    document = read_glb(data)
    params = take_parameters(document, seed_map, debug)
    dispose_consumed(document)
    log.info("Obfuscation version and timestamp: %s %s", params.version, params.timestamp)

    Deobfuscator(params.seed, params.version, params.timestamp, generator).process_document(document)
    normalize_textures(document, transcoder or MissingTranscoder(), debug)
    return write_glb(document, debug)


def write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        os.unlink(tmp)
        raise


def output_path(model_id: str, settings: Settings) -> Path:
    return Path(settings.output_dir) / f"{model_id}.deob.vrm"


def run(target: str, settings: Settings, client: Optional[httpx.Client] = None) -> Path:
    """Deobfuscate the model named by ``target`` (id or hub URL); return the output path."""
    model_id = parse_model_id(target)
    log.info("Starting deobfuscation of model %s...", model_id)

    debug = None
    if settings.debug_dir is not None:
        debug = DebugDump(settings.debug_dir)
        debug.prepare()

    generator = load_plugin(settings.generator)
    transcoder = load_plugin(settings.transcoder) or MissingTranscoder()

    source = load_source(model_id, settings, ModelCache(settings.cache_dir), client)
    out = deobfuscate_document(source.data, model_id, source.url, generator, transcoder, debug)

    path = output_path(model_id, settings)
    write_atomic(path, out)
    log.info("Deobfuscation of model %s completed: %s", model_id, path)
    return path
