"""Cell-cycle phase scoring and cell-cycle effect regression."""

from __future__ import annotations

import logging

import anndata as ad
import pandas as pd
import scanpy as sc

from scvignettes.io import CellCycleGenes
from scvignettes.preprocess import LOGNORM_LAYER, scale_data

logger = logging.getLogger(__name__)

PHASES = ("G1", "S", "G2M")
SCORE_COLUMNS = ("S_score", "G2M_score")
REGRESSION_MODES = {
    "full": ["S_score", "G2M_score"],
    "difference": ["CC_difference"],
}


def _present(adata: ad.AnnData, genes: tuple[str, ...], label: str) -> list[str]:
    present = [g for g in genes if g in adata.var_names]
    missing = [g for g in genes if g not in adata.var_names]
    if missing:
        logger.warning(
            "%d/%d %s genes not in data: %s",
            len(missing),
            len(genes),
            label,
            ", ".join(missing),
        )
    if not present:
        raise ValueError(f"None of the {label} genes are present in the data.")
    return present


def score_cell_cycle(adata: ad.AnnData, genes: CellCycleGenes, seed: int = 0) -> None:
    """Add `S_score`, `G2M_score` and categorical `phase` to `obs`, in place.

    Scores are computed on log-normalized expression. A cell whose scores are
    both negative is G1; otherwise the larger score picks S or G2M.
    """
    if LOGNORM_LAYER not in adata.layers:
        raise KeyError("layers['lognorm'] is missing; run log_normalize first.")
    s_genes = _present(adata, genes.s_genes, "S-phase")
    g2m_genes = _present(adata, genes.g2m_genes, "G2/M")

    tmp = ad.AnnData(
        X=adata.layers[LOGNORM_LAYER].copy(),
        obs=pd.DataFrame(index=adata.obs_names.copy()),
        var=pd.DataFrame(index=adata.var_names.copy()),
    )
    sc.tl.score_genes_cell_cycle(
        tmp, s_genes=s_genes, g2m_genes=g2m_genes, random_state=int(seed)
    )
    adata.obs["S_score"] = tmp.obs["S_score"].to_numpy(dtype=float)
    adata.obs["G2M_score"] = tmp.obs["G2M_score"].to_numpy(dtype=float)
    adata.obs["phase"] = pd.Categorical(
        tmp.obs["phase"].astype(str).to_numpy(), categories=list(PHASES)
    )
    logger.info("Cell-cycle phases: %s", phase_counts(adata).to_dict())


def add_cc_difference(adata: ad.AnnData) -> None:
    missing = [c for c in SCORE_COLUMNS if c not in adata.obs.columns]
    if missing:
        raise KeyError(
            f"Missing {', '.join(missing)} in obs; run score_cell_cycle first."
        )
    adata.obs["CC_difference"] = adata.obs["S_score"] - adata.obs["G2M_score"]


def regress_cell_cycle(adata: ad.AnnData, mode: str = "full") -> list[str]:
    """Rescale data with cell-cycle scores regressed out.

    `full` removes both scores; `difference` removes only the S - G2M
    difference, keeping the signal that separates cycling from non-cycling
    cells.
    """
    if mode not in REGRESSION_MODES:
        raise ValueError(
            f"Unknown regression mode '{mode}'. Use one of: {', '.join(REGRESSION_MODES)}."
        )
    if mode == "difference" and "CC_difference" not in adata.obs.columns:
        add_cc_difference(adata)
    keys = REGRESSION_MODES[mode]
    scale_data(adata, vars_to_regress=keys)
    return keys


def phase_counts(adata: ad.AnnData) -> pd.Series:
    if "phase" not in adata.obs.columns:
        raise KeyError("obs['phase'] missing; run score_cell_cycle first.")
    counts = adata.obs["phase"].value_counts()
    return counts.reindex(list(PHASES), fill_value=0).astype(int)
