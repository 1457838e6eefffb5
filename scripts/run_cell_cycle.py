#!/usr/bin/env python3
"""CLI entrypoint for the cell-cycle scoring and regression walkthrough."""

from __future__ import annotations

import argparse

from scvignettes.workflows.cell_cycle import run_cell_cycle_workflow


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the cell-cycle scoring and regression walkthrough."
    )
    parser.add_argument(
        "--config",
        default="configs/cell_cycle.json",
        help="Path to JSON config for the cell-cycle walkthrough.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    run_cell_cycle_workflow(str(args.config))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
