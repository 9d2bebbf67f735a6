"""Command line interface for gallery_ingest package."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import IngestProgressDisplay, render_configuration_summary


STORAGE_URL_ENV = "GALLERY_STORAGE_URL"
STORAGE_TOKEN_ENV = "GALLERY_STORAGE_TOKEN"


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # Request lines from httpx drown per-file progress
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _write_output(path: Path, result) -> None:
    payload = {
        "gallery_id": result.gallery_id,
        "chapters": [
            {"id": c.id, "title": c.title, "description": c.description, "position": c.position}
            for c in result.chapters
        ],
        "photos": [photo.to_dict() for photo in result.photos],
        "failures": [{"name": f.name, "reason": f.reason, "attempts": f.attempts} for f in result.upload.failures],
    }
    try:
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not write output file {path}: {exc}") from exc


async def _run_ingest(
    sources: List[Path],
    gallery_id: str,
    storage_url: str,
    storage_token: Optional[str],
    config,
    use_folders: bool,
    output: Optional[Path],
) -> int:
    from .orchestrator import IngestOrchestrator
    from .services import CompressionService, HTTPObjectStorage

    compressor = CompressionService(config) if config.compress else None

    async with HTTPObjectStorage(storage_url, token=storage_token) as client:
        async with IngestOrchestrator(client, config, compressor=compressor) as orchestrator:
            display = IngestProgressDisplay()
            process = orchestrator.ingest(sources, gallery_id, use_folders=use_folders)
            process.on_phase_start(display.on_phase_start)
            process.on_phase_progress(display.on_phase_progress)
            process.on_phase_complete(display.on_phase_complete)
            process.on_progress(display.on_progress)
            process.on_summary(display.on_summary)
            process.on_error(display.on_error)

            result = await process.wait()
            display.on_finish(result)

    if output is not None:
        _write_output(output, result)

    if result.success:
        return 0
    if result.error:
        print(f"ERROR: {result.error}", file=sys.stderr)
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gallery-ingest",
        description="Upload photos (files or folder trees) into a gallery, one chapter per folder.",
    )
    parser.add_argument("sources", nargs="*", type=Path, help="Files and/or folders to ingest")
    parser.add_argument("-g", "--gallery", default=None, help="Target gallery id")
    parser.add_argument(
        "--storage-url",
        default=None,
        help=f"Object storage base URL (default from {STORAGE_URL_ENV})",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        default=None,
        help="Requested parallel uploads (adjusted to batch size)",
    )
    parser.add_argument("--compress", action="store_true", help="Compress images before upload")
    parser.add_argument(
        "--accept",
        default=None,
        help="MIME types to ingest, comma separated (default image/*; '*/*' takes everything)",
    )
    parser.add_argument(
        "--no-chapters",
        action="store_true",
        help="Do not derive chapters from folders",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Write merged photos and chapters as JSON to this file",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="gallery-ingest (from gallery_ingest)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if not args.sources:
        parser.print_help()
        return 0

    sources = [Path(s).expanduser() for s in args.sources]
    missing = [s for s in sources if not s.exists()]
    if missing:
        print(f"ERROR: source does not exist: {missing[0]}", file=sys.stderr)
        return 1

    if not args.gallery:
        print("ERROR: --gallery is required", file=sys.stderr)
        return 1

    storage_url = args.storage_url or os.getenv(STORAGE_URL_ENV)
    if not storage_url:
        print(f"ERROR: --storage-url or {STORAGE_URL_ENV} is required", file=sys.stderr)
        return 1

    from .models import IngestConfig

    overrides = {"concurrency": args.concurrency, "accept": args.accept}
    if args.compress:
        overrides["compress"] = True
    config = IngestConfig.from_env(**overrides)

    render_configuration_summary(
        {
            "Sources": ", ".join(str(s) for s in sources),
            "Gallery": args.gallery,
            "Storage": storage_url,
            "Concurrency": config.concurrency,
            "Chapters": "none" if args.no_chapters else "from folders",
            "Compress": "yes" if config.compress else "no",
            "Accept": config.accept or "*/*",
            "Output": str(args.output) if args.output else "-",
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_ingest(
                sources=sources,
                gallery_id=args.gallery,
                storage_url=storage_url,
                storage_token=os.getenv(STORAGE_TOKEN_ENV),
                config=config,
                use_folders=not args.no_chapters,
                output=args.output,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
