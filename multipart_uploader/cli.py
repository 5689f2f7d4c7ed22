"""Command line interface for multipart_uploader package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional, Sequence

from .cli_progress import MultipartProgressDisplay, human_size, render_configuration_summary
from .models import FileMetadata, UploadConfig
from .orchestrator import UploadOrchestrator
from .planner import part_count

DEFAULT_API_URL = "http://localhost:3001"

_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "KIB": 1024,
    "M": 1024 ** 2,
    "MB": 1024 ** 2,
    "MIB": 1024 ** 2,
    "G": 1024 ** 3,
    "GB": 1024 ** 3,
    "GIB": 1024 ** 3,
}


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

    if silent or (not debug and not log_level and not os.getenv("LOG_LEVEL")):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    from rich.logging import RichHandler

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _parse_size(value: str) -> int:
    """Parse ``5242880``, ``5MB``, ``8MiB`` or ``1.5G`` into bytes."""
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*", value or "")
    if not match:
        raise CLIError(f"invalid size: {value!r}")
    number, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.upper())
    if multiplier is None:
        raise CLIError(f"invalid size unit in {value!r}")
    size = int(float(number) * multiplier)
    if size <= 0:
        raise CLIError(f"size must be positive: {value!r}")
    return size


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


def _build_config(args: argparse.Namespace) -> UploadConfig:
    if args.concurrency is not None and args.concurrency < 1:
        raise CLIError(f"--concurrency must be at least 1, got {args.concurrency}")
    if args.retries is not None and args.retries < 0:
        raise CLIError(f"--retries cannot be negative, got {args.retries}")
    try:
        return UploadConfig.from_env(
            chunk_size=_parse_size(args.chunk_size) if args.chunk_size else None,
            max_concurrency=args.concurrency,
            timeout=args.timeout,
            max_attempts=args.retries + 1 if args.retries is not None else None,
            abort_on_failure=True if args.abort_on_failure else None,
        )
    except ValueError as exc:
        raise CLIError(f"invalid configuration: {exc}") from exc


async def _run_upload(
    source: Path,
    api_url: str,
    config: UploadConfig,
    content_type: Optional[str],
) -> int:
    metadata = FileMetadata.from_path(source, content_type)
    display = MultipartProgressDisplay(metadata.name, metadata.size)

    async with UploadOrchestrator(api_url, config=config) as orchestrator:
        display.attach(orchestrator)
        display.start()
        try:
            outcome = await orchestrator.upload(source, content_type)
        finally:
            display.stop()

    display.on_finish(outcome)
    return 0 if outcome.success else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multipart-up",
        description="Upload a file through an S3-style multipart upload API.",
    )
    parser.add_argument("source", nargs="?", type=Path, help="File to upload")
    parser.add_argument(
        "-u",
        "--api-url",
        default=None,
        help=f"Coordination API URL (default from MULTIPART_API_URL or {DEFAULT_API_URL})",
    )
    parser.add_argument(
        "-s",
        "--chunk-size",
        default=None,
        help="Part size, e.g. 5MB or 8MiB (default from MULTIPART_CHUNK_SIZE or 5MB)",
    )
    parser.add_argument(
        "-j",
        "--concurrency",
        type=int,
        default=None,
        help="Maximum simultaneous part uploads (default: all parts at once)",
    )
    parser.add_argument("-t", "--content-type", default=None, help="Override detected content type")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Retries per network call on transport errors and 5xx (default 0)",
    )
    parser.add_argument(
        "--abort-on-failure",
        action="store_true",
        help="Call the abort endpoint when parts fail",
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
    parser.add_argument("--version", action="version", version="multipart-up 0.1.0")
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

    if args.source is None:
        parser.print_help()
        return 0

    source = Path(args.source).expanduser()
    if not source.is_file():
        print(f"ERROR: source is not a file: {source}", file=sys.stderr)
        return 1

    try:
        config = _build_config(args)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    api_url = args.api_url or os.getenv("MULTIPART_API_URL") or DEFAULT_API_URL
    file_size = source.stat().st_size
    render_configuration_summary(
        {
            "Source": str(source),
            "Size": human_size(file_size),
            "API": api_url,
            "Chunk Size": human_size(config.chunk_size),
            "Parts": part_count(file_size, config.chunk_size) if file_size else 0,
            "Concurrency": config.max_concurrency or "all parts",
            "Timeout": f"{config.timeout:g}s",
            "Attempts": config.max_attempts,
            "Abort On Failure": "yes" if config.abort_on_failure else "no",
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(_run_upload(source, api_url, config, args.content_type))
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
