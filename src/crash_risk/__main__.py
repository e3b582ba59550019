"""
Entry point for running crash_risk as a module.

Usage:
    python -m crash_risk [command] [options]

Commands:
    run         Start the engine (default)
    once        Run a single tick and print the risk map as JSON
    doctor      Validate configuration and check the feed

Options:
    --env ENV                 Environment (development/production)
    --instrument SYM [SYM..]  Override the tracked instruments
    --store sqlite|memory     Override the history store backend
"""

from __future__ import annotations

import argparse
import asyncio
import sys


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Per-instrument crash-risk engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=["run", "once", "doctor"],
        help="Command to execute (default: run)",
    )
    parser.add_argument(
        "--env",
        default="development",
        help="Environment (development/production)",
    )
    parser.add_argument(
        "--instrument",
        nargs="+",
        default=None,
        help="Instruments to track (overrides config)",
    )
    parser.add_argument(
        "--store",
        choices=["sqlite", "memory"],
        default=None,
        help="History store backend (overrides config)",
    )

    args = parser.parse_args(argv)

    # Import here to avoid slow startup for --help
    from crash_risk.app.run import run_doctor, run_engine, run_once

    try:
        if args.command == "run":
            return asyncio.run(run_engine(env=args.env, instruments=args.instrument, store=args.store))
        elif args.command == "once":
            return asyncio.run(run_once(env=args.env, instruments=args.instrument, store=args.store))
        elif args.command == "doctor":
            return asyncio.run(run_doctor(env=args.env))
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
