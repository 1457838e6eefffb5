"""Cell-cycle scoring and regression walkthrough.

Scores each cell for S and G2/M phase programs, shows how strongly phase
drives the principal components, then regresses the scores out (fully, or
only their difference) and shows the effect on the same components.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import matplotlib

# Use a non-interactive backend for reproducible headless runs.
matplotlib.use("Agg")

from scvignettes.cellcycle import (
    add_cc_difference,
    phase_counts,
    regress_cell_cycle,
    score_cell_cycle,
)
from scvignettes.config import CellCycleConfig, load_cell_cycle_config
from scvignettes.io import (
    read_cell_cycle_genes,
    read_expression_table,
    setup_logger,
    write_table,
)
from scvignettes.plotting import (
    apply_plot_style,
    figure_path,
    plot_dim,
    plot_dim_heatmap,
    plot_ridge,
)
from scvignettes.preprocess import (
    find_variable_features,
    log_normalize,
    pca_loadings_table,
    run_pca,
    scale_data,
)
from scvignettes.workflows.common import (
    now_utc_iso,
    prepare_run_dirs,
    valid_pcs,
    write_run_metadata,
)

LOGGER_NAME = "scvignettes"
LOADING_PCS = 10


def run_cell_cycle(cfg: CellCycleConfig) -> dict[str, Any]:
    started = now_utc_iso()
    dirs = prepare_run_dirs(cfg.outdir)
    logger = setup_logger(dirs["logs"] / "cell_cycle.log", LOGGER_NAME)
    apply_plot_style()
    figures = dirs["figures"]

    genes = read_cell_cycle_genes(cfg.genes_path, n_s_genes=cfg.n_s_genes)
    logger.info(
        "Cell-cycle genes: %d S, %d G2/M", len(genes.s_genes), len(genes.g2m_genes)
    )
    adata = read_expression_table(cfg.expression_path)

    log_normalize(adata)
    hvgs = find_variable_features(adata, n_top=cfg.n_top_genes, flavor=cfg.hvg_flavor)
    scale_data(adata)
    n_comps = run_pca(adata, n_comps=cfg.n_pcs, seed=cfg.seed)

    loadings = pca_loadings_table(
        adata, n_pcs=min(LOADING_PCS, n_comps), n_features=10
    )
    write_table(loadings, dirs["tables"] / "pca_loadings_variable_genes.csv")
    heatmap_pcs = valid_pcs(cfg.heatmap_pcs, n_comps, logger)
    if heatmap_pcs:
        plot_dim_heatmap(
            adata, figure_path(figures, "pca_heatmap_variable_genes"), pcs=heatmap_pcs
        )

    score_cell_cycle(adata, genes, seed=cfg.seed)
    add_cc_difference(adata)
    write_table(
        adata.obs[["S_score", "G2M_score", "CC_difference", "phase"]],
        dirs["tables"] / "cell_cycle_scores.csv",
        index=True,
    )
    plot_ridge(
        adata,
        figure_path(figures, "ridge_cell_cycle_markers"),
        features=cfg.ridge_genes,
        groupby="phase",
    )

    cc_genes = list(genes.all_genes)
    run_pca(adata, n_comps=cfg.n_pcs, features=cc_genes, key="cc", seed=cfg.seed)
    plot_dim(
        adata,
        figure_path(figures, "pca_cell_cycle_genes_before_regression"),
        color_by="phase",
        basis="X_pca_cc",
        title="Cell-cycle genes, before regression",
    )

    regress_cell_cycle(adata, mode="full")
    run_pca(adata, n_comps=cfg.n_pcs, seed=cfg.seed)
    plot_dim(
        adata,
        figure_path(figures, "pca_variable_genes_after_regression"),
        color_by="phase",
        basis="X_pca",
        title="Variable genes, S and G2/M scores regressed",
    )
    run_pca(
        adata, n_comps=cfg.n_pcs, features=cc_genes, key="cc_regressed", seed=cfg.seed
    )
    plot_dim(
        adata,
        figure_path(figures, "pca_cell_cycle_genes_after_regression"),
        color_by="phase",
        basis="X_pca_cc_regressed",
        title="Cell-cycle genes, S and G2/M scores regressed",
    )

    if cfg.run_difference_regression:
        regress_cell_cycle(adata, mode="difference")
        run_pca(
            adata,
            n_comps=cfg.n_pcs,
            features=cc_genes,
            key="cc_difference",
            seed=cfg.seed,
        )
        plot_dim(
            adata,
            figure_path(figures, "pca_cell_cycle_genes_after_difference_regression"),
            color_by="phase",
            basis="X_pca_cc_difference",
            title="Cell-cycle genes, S - G2/M difference regressed",
        )

    summary: dict[str, Any] = {
        "n_cells": int(adata.n_obs),
        "n_genes": int(adata.n_vars),
        "n_variable_genes": len(hvgs),
        "n_pca_components": int(n_comps),
        "phase_counts": {k: int(v) for k, v in phase_counts(adata).items()},
        "figures": sorted(p.name for p in figures.glob("*")),
    }
    if cfg.write_h5ad:
        h5ad_path = dirs["root"] / "cell_cycle.h5ad"
        adata.write_h5ad(h5ad_path)
        summary["h5ad"] = str(h5ad_path)
    write_run_metadata(
        dirs["root"] / "metadata.json",
        workflow="cell_cycle",
        config=cfg,
        summary=summary,
        started_utc=started,
    )
    logger.info("Cell-cycle walkthrough finished: %s", summary["phase_counts"])
    return summary


def run_cell_cycle_workflow(config_path: str | Path) -> dict[str, Any]:
    """Run the cell-cycle walkthrough from a JSON config."""
    return run_cell_cycle(load_cell_cycle_config(config_path))
