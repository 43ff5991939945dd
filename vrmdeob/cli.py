from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings
from .errors import DeobError
from .pipeline import run

console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def validate_target(value: str) -> str:
    if value.startswith("https://"):
        return value
    if not value.strip().lstrip("+-")[:1].isdigit():
        raise argparse.ArgumentTypeError("That's not a valid VRoid Hub URL or model id.")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="vrmdeob", description="Deobfuscate a VRoid Hub preview model")
    p.add_argument("target", type=validate_target, help="model id or https://hub.vroid.com/... URL")
    p.add_argument("--api-base", help="API root (default: https://hub.vroid.com/api)")
    p.add_argument("--cache-dir", help="where decrypted downloads are kept (default: ./cache)")
    p.add_argument("--output-dir", help="where <id>.deob.vrm is written (default: .)")
    p.add_argument("--debug-dir", help="dump vendor JSON and decoded textures here")
    p.add_argument("--generator", help="module:attr of the external generator for scheme 5.0")
    p.add_argument("--transcoder", help="module:attr of the KTX2/Basis transcoder")
    p.add_argument("--timeout", type=float, help="HTTP timeout in seconds")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    settings = Settings.from_env().override(
        api_base=args.api_base,
        cache_dir=args.cache_dir,
        output_dir=args.output_dir,
        debug_dir=args.debug_dir,
        generator=args.generator,
        transcoder=args.transcoder,
        timeout=args.timeout,
    )
    try:
        path = run(args.target, settings)
    except DeobError as exc:
        console.print(f"[bold red]error:[/bold red] {exc}")
        return 1
    console.print(f"[green]Done.[/green] Wrote {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
