"""End-to-end walkthrough workflows."""

from scvignettes.workflows.cell_cycle import run_cell_cycle, run_cell_cycle_workflow
from scvignettes.workflows.pbmc import run_pbmc, run_pbmc_workflow

__all__ = [
    "run_cell_cycle",
    "run_cell_cycle_workflow",
    "run_pbmc",
    "run_pbmc_workflow",
]
