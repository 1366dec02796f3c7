"""Sandbox CLI commands.

Each command loads ``.env``, configures logging, performs one session manager
operation and prints its result as JSON on stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from sandboxkit.archs.sandbox import (
    FileWriteRequest,
    SandboxSessionManager,
    SessionManagerConfig,
    encode_ndjson,
)


def build_manager() -> SandboxSessionManager:
    """Session manager used by every command."""
    return SandboxSessionManager(SessionManagerConfig.from_env())


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        type=str,
        default="warning",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: warning)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose output (sets log level to debug)",
    )


def _configure(args: argparse.Namespace) -> None:
    # Load environment variables from .env file
    load_dotenv()

    log_level = "debug" if args.verbose else args.log_level
    numeric_level = getattr(logging, log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,  # Override any existing configuration
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data))


# =============================================================================
# create
# =============================================================================


def setup_create_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help="Sandbox lifetime in milliseconds (600000-2700000, default: 600000)",
    )
    parser.add_argument(
        "--port",
        type=int,
        action="append",
        dest="ports",
        default=[],
        help="Port to expose (repeatable, at most 2)",
    )
    _add_logging_arguments(parser)


def create_main(args: argparse.Namespace) -> int:
    _configure(args)
    manager = build_manager()
    info = asyncio.run(manager.create_session(timeout_ms=args.timeout_ms, exposed_ports=args.ports))
    _print_json({"sandboxId": info.sandbox_id, "ports": info.exposed_ports, "timeout": info.timeout_ms})
    return 0


# =============================================================================
# run
# =============================================================================


def setup_run_parser(parser: argparse.ArgumentParser) -> None:
    parser.epilog = (
        "Options for sandboxkit itself (--sudo, --background, --log-level, --verbose) "
        "must come before SANDBOX_ID. Everything after CMD is passed to the command."
    )
    parser.add_argument("sandbox_id", type=str, help="Sandbox to run the command in")
    parser.add_argument("cmd", type=str, help="Base command (e.g. npm, python, ls); later arguments belong to it")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the command")
    parser.add_argument("--sudo", action="store_true", help="Run the command with sudo")
    parser.add_argument(
        "--background",
        action="store_true",
        help="Start without waiting and stream the command's logs as NDJSON",
    )
    _add_logging_arguments(parser)


async def _run(manager: SandboxSessionManager, args: argparse.Namespace) -> int:
    result = await manager.run_command(args.sandbox_id, args.cmd, args.args, sudo=args.sudo, wait=not args.background)
    if not args.background:
        _print_json(
            {
                "cmdId": result.command_id,
                "exitCode": result.exit_code,
                "stdout": result.stdout,
                "stderr": result.stderr,
            }
        )
        return 0

    _print_json({"cmdId": result.command_id})
    sys.stdout.flush()
    async for line in encode_ndjson(manager.stream_command_logs(result.command_id)):
        sys.stdout.write(line.decode("utf-8"))
        sys.stdout.flush()
    record = manager.get_command(result.command_id)
    _print_json({"cmdId": record.command_id, "exitCode": record.exit_code, "error": record.error_text})
    return 0


def run_main(args: argparse.Namespace) -> int:
    _configure(args)
    return asyncio.run(_run(build_manager(), args))


# =============================================================================
# write / read
# =============================================================================


def setup_write_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("sandbox_id", type=str, help="Target sandbox")
    parser.add_argument("path", type=str, help="Destination path inside the sandbox")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--from-file", type=Path, help="Local file to upload")
    source.add_argument("--content", type=str, help="Literal text content")
    _add_logging_arguments(parser)


def write_main(args: argparse.Namespace) -> int:
    _configure(args)
    if args.from_file is not None:
        if not args.from_file.is_file():
            print(f"Error: local file not found: {args.from_file}", file=sys.stderr)
            return 1
        content = args.from_file.read_bytes()
    else:
        content = args.content.encode("utf-8")

    manager = build_manager()
    asyncio.run(manager.write_files(args.sandbox_id, [FileWriteRequest(args.path, content)]))
    _print_json({"success": True, "path": args.path, "bytes": len(content)})
    return 0


def setup_read_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("sandbox_id", type=str, help="Source sandbox")
    parser.add_argument("path", type=str, help="Path inside the sandbox")
    parser.add_argument("--output", "-o", type=Path, default=None, help="Write to this local file instead of stdout")
    _add_logging_arguments(parser)


async def _read(manager: SandboxSessionManager, args: argparse.Namespace) -> int:
    stream = await manager.read_file(args.sandbox_id, args.path)
    if args.output is not None:
        with args.output.open("wb") as f:
            async for chunk in stream:
                f.write(chunk)
        return 0

    async for chunk in stream:
        sys.stdout.buffer.write(chunk)
    sys.stdout.buffer.flush()
    return 0


def read_main(args: argparse.Namespace) -> int:
    _configure(args)
    return asyncio.run(_read(build_manager(), args))


# =============================================================================
# url / status
# =============================================================================


def setup_url_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("sandbox_id", type=str, help="Sandbox hosting the service")
    parser.add_argument("port", type=int, help="Port the service listens on")
    _add_logging_arguments(parser)


def url_main(args: argparse.Namespace) -> int:
    _configure(args)
    url = asyncio.run(build_manager().resolve_url(args.sandbox_id, args.port))
    _print_json({"url": url})
    return 0


def setup_status_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("sandbox_id", type=str, help="Sandbox to check")
    _add_logging_arguments(parser)


def status_main(args: argparse.Namespace) -> int:
    _configure(args)
    status = asyncio.run(build_manager().get_status(args.sandbox_id))
    _print_json({"status": status.value})
    return 0
