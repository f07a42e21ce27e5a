"""config CLI command: inspect and generate gplace configuration.

Usage:
    gplace config --show       Show effective configuration with sources
    gplace config --template   Print a documented template config
    gplace config --paths      Show config file paths
"""

from __future__ import annotations

import argparse

from rich.console import Console
from rich.table import Table

from gplace.cli.utils import print_error
from gplace.config import CONFIG_FILENAMES, FIELD_INDEX, USER_CONFIG_PATH, PlacerConfig, generate_template, get_config_paths
from gplace.exceptions import GPlaceError


def run_config(args: argparse.Namespace) -> int:
    """Execute the config command."""
    if args.template:
        print(generate_template(), end="")
        return 0
    if args.paths:
        return _show_paths()
    try:
        return _show_config()
    except GPlaceError as e:
        print_error(e)
        return 1


def _show_paths() -> int:
    paths = get_config_paths()
    print(f"User config:    {USER_CONFIG_PATH} ({'found' if paths['user'] else 'not found'})")
    if paths["project"]:
        print(f"Project config: {paths['project']}")
    else:
        print(f"Project config: none (searched for {', '.join(CONFIG_FILENAMES)})")
    return 0


def _show_config() -> int:
    config = PlacerConfig.load()
    table = Table(title="Effective gplace configuration")
    table.add_column("Field")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for name, (section, attr) in FIELD_INDEX.items():
        key = attr if section is None else f"{section}.{attr}"
        table.add_row(name, repr(config.get(name)), config.get_source(key))
    Console().print(table)
    return 0
