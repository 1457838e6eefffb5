"""scvignettes public API."""

from scvignettes._version import __version__
from scvignettes.config import (
    CellCycleConfig,
    PbmcConfig,
    load_cell_cycle_config,
    load_json_config,
    load_pbmc_config,
)
from scvignettes.io import (
    read_10x_directory,
    read_cell_cycle_genes,
    read_expression_table,
)


def run_cell_cycle_workflow(*args, **kwargs):
    """Lazy wrapper to avoid importing the plotting stack at import time."""
    from scvignettes.workflows.cell_cycle import (
        run_cell_cycle_workflow as _run_cell_cycle_workflow,
    )

    return _run_cell_cycle_workflow(*args, **kwargs)


def run_pbmc_workflow(*args, **kwargs):
    """Lazy wrapper to avoid importing the plotting stack at import time."""
    from scvignettes.workflows.pbmc import run_pbmc_workflow as _run_pbmc_workflow

    return _run_pbmc_workflow(*args, **kwargs)


__all__ = [
    "__version__",
    "CellCycleConfig",
    "PbmcConfig",
    "load_json_config",
    "load_cell_cycle_config",
    "load_pbmc_config",
    "read_expression_table",
    "read_10x_directory",
    "read_cell_cycle_genes",
    "run_cell_cycle_workflow",
    "run_pbmc_workflow",
]
