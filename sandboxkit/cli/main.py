"""sandboxkit CLI - Main dispatcher for sandbox commands."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from sandboxkit.cli.commands import sandbox


def create_parser() -> argparse.ArgumentParser:
    """Create the main CLI parser with subcommands.

    Returns:
        Configured ArgumentParser with all subcommands
    """
    parser = argparse.ArgumentParser(
        prog="sandboxkit",
        description="Manage remote E2B sandboxes: create, run commands, transfer files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=False,
    )

    create_parser_ = subparsers.add_parser("create", help="Create a new sandbox")
    sandbox.setup_create_parser(create_parser_)
    create_parser_.set_defaults(func=sandbox.create_main)

    run_parser = subparsers.add_parser("run", help="Run a command inside a sandbox")
    sandbox.setup_run_parser(run_parser)
    run_parser.set_defaults(func=sandbox.run_main)

    write_parser = subparsers.add_parser("write", help="Write a file into a sandbox")
    sandbox.setup_write_parser(write_parser)
    write_parser.set_defaults(func=sandbox.write_main)

    read_parser = subparsers.add_parser("read", help="Read a file from a sandbox")
    sandbox.setup_read_parser(read_parser)
    read_parser.set_defaults(func=sandbox.read_main)

    url_parser = subparsers.add_parser("url", help="Print the public URL of a sandbox port")
    sandbox.setup_url_parser(url_parser)
    url_parser.set_defaults(func=sandbox.url_main)

    status_parser = subparsers.add_parser("status", help="Report whether a sandbox is running")
    sandbox.setup_status_parser(status_parser)
    status_parser.set_defaults(func=sandbox.status_main)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 = success, non-0 = error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # If no command provided, show help
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
