"""Command-line interface for faceenroll."""

import argparse
import logging
import sys
from typing import List, Optional


def _add_store_args(parser):
    """Add --store, --snapshots args to a parser."""
    parser.add_argument(
        "--store", type=str, default=None,
        help="Enrollment store JSON file (default: $FACEENROLL_HOME/enrollments.json)",
    )
    parser.add_argument(
        "--snapshots", type=str, default=None,
        help="Snapshot directory (default: $FACEENROLL_HOME/snapshots)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="faceenroll",
        description="FaceEnroll - kiosk face enrollment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  faceenroll add-user "Ada Lovelace" ada 00420042     # Register a card holder
  faceenroll serve --address tcp://*:5591             # Run the identity server
  faceenroll simulate                                 # Scripted first-time enrollment
  faceenroll simulate --scenario reenroll             # Replace an existing enrollment
  faceenroll simulate --scenario too-far              # Face never close enough
""",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the identity server",
        description="Serve credential verification and enrollment storage over ZMQ.",
    )
    serve_parser.add_argument(
        "--address", type=str, default="tcp://*:5591",
        help="ZMQ bind address (default: tcp://*:5591)",
    )
    serve_parser.add_argument(
        "--descriptor-dim", type=int, default=128,
        help="Required descriptor length (default: 128)",
    )
    _add_store_args(serve_parser)

    # add-user command
    user_parser = subparsers.add_parser("add-user", help="Register a user and their card")
    user_parser.add_argument("name", help="Display name")
    user_parser.add_argument("username", help="Unique username")
    user_parser.add_argument("card", help="Card number")
    _add_store_args(user_parser)

    # simulate command
    sim_parser = subparsers.add_parser(
        "simulate",
        help="Run a scripted enrollment session",
        description="Drive the workflow on a manual clock with fake camera, model and backend.",
    )
    sim_parser.add_argument(
        "--scenario", choices=["enroll", "reenroll", "too-far", "commit-fail"], default="enroll",
        help="Scripted scenario (default: enroll)",
    )
    sim_parser.add_argument("--config", type=str, help="YAML config file")
    sim_parser.add_argument(
        "--max-seconds", type=float, default=30.0,
        help="Simulated time limit (default: 30)",
    )
    sim_parser.add_argument("--trace", choices=["off", "minimal", "normal", "verbose"], default="off")
    sim_parser.add_argument("--trace-output", type=str, help="Output file for trace records (JSONL)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from faceenroll.cli import commands

    if args.command == "serve":
        return commands.run_serve(args)

    elif args.command == "add-user":
        return commands.run_add_user(args)

    elif args.command == "simulate":
        return commands.run_simulate(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
