"""
Command-line interface for gplace.

    gplace place <design.json>    - Run global placement on a JSON design
    gplace config                 - Show or generate configuration

Examples:
    gplace place design.json -o placed.json
    gplace place design.json --target-density 0.8 --routability
    gplace place placed.json --incremental --max-iter 200
    gplace config --template > .gplace.toml
"""

from __future__ import annotations

import argparse
import logging
import sys

from gplace import __version__

__all__ = ["main"]


def _setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the gplace CLI."""
    parser = argparse.ArgumentParser(
        prog="gplace",
        description="Analytical global placement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"gplace {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    place_parser = subparsers.add_parser("place", help="Place a JSON design")
    place_parser.add_argument("design", help="Path to the design JSON file")
    place_parser.add_argument("-o", "--output", help="Output file (default: overwrite input)")
    place_parser.add_argument("--config", help="TOML config file (default: project/user config)")
    place_parser.add_argument("--max-iter", type=int, help="Nesterov iteration cap")
    place_parser.add_argument("--target-density", type=float, help="Target bin density")
    place_parser.add_argument("--force-cpu", action="store_true", help="Disable GPU kernels")
    place_parser.add_argument(
        "--routability", action="store_true", help="Enable routability-driven inflation"
    )
    place_parser.add_argument(
        "--incremental",
        action="store_true",
        help="Skip initial placement and start from the file's coordinates",
    )
    place_parser.add_argument("--format", choices=["text", "json"], default="text")
    place_parser.add_argument("-v", "--verbose", action="count", default=0)

    config_parser = subparsers.add_parser("config", help="Show or generate configuration")
    group = config_parser.add_mutually_exclusive_group()
    group.add_argument("--template", action="store_true", help="Print a documented template")
    group.add_argument("--paths", action="store_true", help="Show config file paths")
    group.add_argument("--show", action="store_true", help="Show effective configuration")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "place":
        from gplace.cli.place_cmd import run_place

        _setup_logging(args.verbose)
        return run_place(args)

    if args.command == "config":
        from gplace.cli.config_cmd import run_config

        return run_config(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
