#!/usr/bin/env python3
"""
relaydesk CLI Entry Point

Provides command-line access to the relay admin operations.
Run with: python -m relaydesk <command> [args]
"""

import argparse
import json
import sys

from .core import get_utc_timestamp


def output_json(data: dict, indent: int = 2) -> None:
    """Print JSON output to stdout."""
    print(json.dumps(data, indent=indent, default=str))


def output_error(message: str, exit_code: int = 1, **kwargs) -> None:
    """Print error JSON and exit."""
    error_data = {
        "error": kwargs.pop("error_type", "error"),
        "message": message,
        "query_timestamp": get_utc_timestamp(),
    }
    error_data.update(kwargs)
    output_json(error_data)
    sys.exit(exit_code)


# =============================================================================
# Main Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="relaydesk",
        description="relaydesk - Nostr relay admin tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--app-db",
        help="Control store path (default: RELAYDESK_APP_DB_PATH or data/relaydesk.db)",
    )
    parser.add_argument(
        "--relay-db",
        help="Relay event store path (default: RELAYDESK_RELAY_DB_PATH or data/relay/nostr.db)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from .commands import storage

    storage.register_parsers(subparsers)

    return parser


def main() -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    if not hasattr(args, "func"):
        output_error(
            f"Unknown command: {args.command}",
            error_type="unknown_command",
            hint="Run 'relaydesk --help' for usage",
        )

    try:
        result = args.func(args)

        # Output result if it's a dict (JSON response)
        if isinstance(result, dict) and result:
            output_json(result)

            if "error" in result:
                return 1

        return 0

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        output_error(str(e), error_type="command_error", command=args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
