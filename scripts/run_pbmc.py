#!/usr/bin/env python3
"""CLI entrypoint for the PBMC clustering walkthrough."""

from __future__ import annotations

import argparse

from scvignettes.workflows.pbmc import run_pbmc_workflow


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the PBMC clustering and marker walkthrough."
    )
    parser.add_argument(
        "--config",
        default="configs/pbmc3k.json",
        help="Path to JSON config for the PBMC walkthrough.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    run_pbmc_workflow(str(args.config))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
