"""place CLI command: run global placement on a JSON design file.

Usage:
    gplace place design.json
    gplace place design.json -o placed.json --max-iter 1000
    gplace place design.json --routability --target-density 0.8
"""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from gplace.cli.utils import print_error
from gplace.config import PlacerConfig
from gplace.exceptions import GPlaceError
from gplace.io import load_design, save_design
from gplace.replace import GlobalPlacer, PlacementResult


def _build_config(args: argparse.Namespace) -> PlacerConfig:
    config = PlacerConfig.from_file(Path(args.config)) if args.config else PlacerConfig.load()
    overrides: dict[str, Any] = {}
    if args.max_iter is not None:
        overrides["nesterov_max_iter"] = args.max_iter
    if args.target_density is not None:
        overrides["target_density"] = args.target_density
    if args.force_cpu:
        overrides["force_cpu"] = True
    if args.routability:
        overrides["routability_driven_mode"] = True
    return config.replace(**overrides) if overrides else config


def _print_result(console: Console, path: str, result: PlacementResult, elapsed: float) -> None:
    table = Table(title=f"Global placement: {path}", show_header=False)
    table.add_column("Metric", style="dim")
    table.add_column("Value")

    status = "[green]converged[/green]" if result.converged else "[yellow]not converged[/yellow]"
    table.add_row("Status", status)
    table.add_row("Iterations", str(result.iterations))
    table.add_row("Overflow", f"{result.overflow:.4f}")
    table.add_row("HPWL", f"{result.hpwl:,.1f}")
    if result.inflations:
        table.add_row("Inflations", str(result.inflations))
    if result.degenerate:
        table.add_row("Unanchored components", f"[yellow]{len(result.degenerate)}[/yellow]")
    table.add_row("Time", f"{elapsed:.2f}s")
    console.print(table)

    for failure in result.failures:
        console.print(f"[yellow]Warning:[/yellow] {failure.message}")


def run_place(args: argparse.Namespace) -> int:
    """Execute the place command."""
    try:
        config = _build_config(args)
        design = load_design(args.design)
        placer = GlobalPlacer(design, config=config)

        start = time.perf_counter()
        if args.incremental:
            result = placer.run_incremental()
        else:
            placer.run_initial_placement()
            result = placer.run_optimization()
        elapsed = time.perf_counter() - start

        output = args.output or args.design
        save_design(design, output)
    except GPlaceError as e:
        print_error(e, verbose=args.verbose >= 2)
        return 1

    if args.format == "json":
        print(json.dumps({**result.to_dict(), "output": str(output), "seconds": elapsed}, indent=2))
    else:
        console = Console()
        _print_result(console, args.design, result, elapsed)
        console.print(f"Wrote [bold]{output}[/bold]")
    return 0 if result.converged else 2
