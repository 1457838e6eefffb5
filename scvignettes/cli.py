"""Command-line interface for the walkthrough workflows."""

from __future__ import annotations

import argparse
import json
from typing import Iterable


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scvignettes",
        description="Run single-cell RNA-seq walkthrough workflows.",
    )
    sub = parser.add_subparsers(dest="workflow", required=True)

    cc = sub.add_parser(
        "cell-cycle", help="Cell-cycle scoring and regression walkthrough."
    )
    cc.add_argument("--config", required=True, help="Path to JSON config.")

    pbmc = sub.add_parser("pbmc", help="PBMC clustering and marker walkthrough.")
    pbmc.add_argument("--config", required=True, help="Path to JSON config.")
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    """Run one workflow; returns the process exit code."""
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    if args.workflow == "cell-cycle":
        from scvignettes.workflows.cell_cycle import run_cell_cycle_workflow

        summary = run_cell_cycle_workflow(args.config)
    else:
        from scvignettes.workflows.pbmc import run_pbmc_workflow

        summary = run_pbmc_workflow(args.config)
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
