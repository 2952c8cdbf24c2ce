"""Command line interface for chunked_uploader."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.logging import RichHandler

from . import __version__
from .cli_progress import (
    ConsoleNotifier,
    SingleFileUploadProgress,
    console,
    format_size,
    render_configuration_summary,
    render_file_list,
)
from .exceptions import InvalidInput, UploaderError
from .models import MB, UploadConfig
from .orchestrator import UploadOrchestrator
from .services.api_client import HTTPAPIClient
from .services.credentials import MemoryCredentialStore


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


def _parse_size(value: str) -> int:
    """Parse '20M', '512K', '1G' or plain bytes."""
    text = value.strip().upper().rstrip("B")
    multipliers = {"K": 1024, "M": MB, "G": 1024 * MB}
    try:
        if text and text[-1] in multipliers:
            return int(float(text[:-1]) * multipliers[text[-1]])
        return int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid size: {value!r}") from exc


def _build_credentials(token: Optional[str]) -> MemoryCredentialStore:
    token = token or os.getenv("UPLOADER_TOKEN")
    return MemoryCredentialStore({"Authorization": token} if token else None)


def _build_api_client(api_url: str, config: UploadConfig, token: Optional[str]) -> HTTPAPIClient:
    return HTTPAPIClient(
        api_url,
        timeout=config.request_timeout,
        max_retries=config.api_max_retries,
        retry_backoff=config.retry_backoff,
        credentials=_build_credentials(token),
        language=config.language,
    )


async def _run_upload(source: Path, api_url: str, config: UploadConfig, token: Optional[str]) -> int:
    progress = SingleFileUploadProgress(source)
    async with UploadOrchestrator(
        api_url,
        config=config,
        credentials=_build_credentials(token),
        notifier=ConsoleNotifier(),
    ) as orchestrator:
        progress.attach(orchestrator)
        progress.start()
        try:
            result = await orchestrator.upload(source)
        except asyncio.CancelledError:
            orchestrator.abort()
            raise
        progress.complete(result)
    return 0 if result.success else 1


async def _run_list(api_url: str, config: UploadConfig, token: Optional[str], name: Optional[str]) -> int:
    async with _build_api_client(api_url, config, token) as api:
        render_file_list(await api.list_files(name))
    return 0


async def _run_delete(api_url: str, config: UploadConfig, token: Optional[str], file_id: int) -> int:
    async with _build_api_client(api_url, config, token) as api:
        message = await api.delete_file(file_id)
    console.print(message or f"Deleted {file_id}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunk-up",
        description="Resumable chunked uploads to an object-storage backend.",
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="Upload API base URL (default from UPLOADER_API_URL)",
    )
    parser.add_argument("--token", default=None, help="Authorization token (default from UPLOADER_TOKEN)")
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
    parser.add_argument("--version", action="version", version=f"chunk-up {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    upload = subparsers.add_parser("upload", help="Upload a file")
    upload.add_argument("source", type=Path, help="File to upload")
    upload.add_argument("--chunk-size", type=_parse_size, default=None, help="Chunk size, e.g. 20M")
    upload.add_argument("-p", "--parallel", type=int, default=None, help="Max parallel part uploads")
    upload.add_argument(
        "--hash",
        choices=["blake3", "md5"],
        default=None,
        help=(
            "Content hash algorithm (default blake3; use md5 for backends that key "
            "uploads and listings by MD5)"
        ),
    )
    upload.add_argument("--no-hash-cache", action="store_true", help="Do not read/write the local hash cache")

    ls = subparsers.add_parser("ls", help="List uploaded files")
    ls.add_argument("name", nargs="?", default=None, help="Filter by file name")

    rm = subparsers.add_parser("rm", help="Delete an uploaded file")
    rm.add_argument("file_id", type=int, help="File id (see 'ls')")
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

    if args.command is None:
        parser.print_help()
        return 0

    api_url = args.api_url or os.getenv("UPLOADER_API_URL")
    if not api_url:
        print("ERROR: --api-url or UPLOADER_API_URL is required", file=sys.stderr)
        return 1

    try:
        if args.command == "upload":
            config = UploadConfig.from_env(
                chunk_size=args.chunk_size,
                max_parallel_parts=args.parallel,
                hash_algorithm=args.hash,
                use_hash_cache=False if args.no_hash_cache else None,
            )
        else:
            config = UploadConfig.from_env()
    except InvalidInput as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        if args.command == "upload":
            source = Path(args.source).expanduser()
            if not source.is_file():
                print(f"ERROR: source is not a file: {source}", file=sys.stderr)
                return 1
            render_configuration_summary(
                {
                    "Source": str(source),
                    "Size": format_size(source.stat().st_size),
                    "API": api_url,
                    "Chunk Size": format_size(config.chunk_size),
                    "Parallel Parts": config.max_parallel_parts,
                    "Hash": config.hash_algorithm,
                    "Hash Cache": "yes" if config.use_hash_cache else "no",
                    "Env File": str(used_env_file) if used_env_file else "-",
                    "Logging": effective_log_mode,
                }
            )
            return asyncio.run(_run_upload(source, api_url, config, args.token))
        if args.command == "ls":
            return asyncio.run(_run_list(api_url, config, args.token, args.name))
        if args.command == "rm":
            return asyncio.run(_run_delete(api_url, config, args.token, args.file_id))
    except UploaderError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130

    parser.print_help()
    return 1


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
