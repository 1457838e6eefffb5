"""Per-cell QC metrics and cell/gene filters."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc

from scvignettes.config import QCThresholds

logger = logging.getLogger(__name__)

QC_COLUMNS = ("n_genes_by_counts", "total_counts", "pct_counts_mt")


@dataclass(frozen=True)
class QCReport:
    n_cells_before: int
    n_cells_after: int
    n_failed_min_features: int
    n_failed_max_features: int
    n_failed_pct_mt: int

    def to_json(self) -> dict[str, int]:
        return {
            "n_cells_before": int(self.n_cells_before),
            "n_cells_after": int(self.n_cells_after),
            "n_failed_min_features": int(self.n_failed_min_features),
            "n_failed_max_features": int(self.n_failed_max_features),
            "n_failed_pct_mt": int(self.n_failed_pct_mt),
        }


def annotate_qc_metrics(adata: ad.AnnData, mito_prefix: str = "MT-") -> int:
    """Flag mitochondrial genes and add QC metrics to `obs` in place.

    Returns the number of genes flagged as mitochondrial.
    """
    prefix = str(mito_prefix).upper()
    adata.var["mt"] = adata.var_names.str.upper().str.startswith(prefix)
    n_mt = int(adata.var["mt"].sum())
    if n_mt == 0:
        logger.warning(
            "No genes match mitochondrial prefix '%s'; pct_counts_mt will be 0.",
            mito_prefix,
        )
    sc.pp.calculate_qc_metrics(
        adata, qc_vars=["mt"], percent_top=None, log1p=False, inplace=True
    )
    return n_mt


def filter_object(
    adata: ad.AnnData, min_cells: int = 3, min_features: int = 200
) -> ad.AnnData:
    """Drop genes seen in fewer than `min_cells` cells and cells with too few genes."""
    out = adata.copy()
    n_genes_before, n_cells_before = out.n_vars, out.n_obs
    sc.pp.filter_genes(out, min_cells=int(min_cells))
    sc.pp.filter_cells(out, min_genes=int(min_features))
    if out.n_obs == 0 or out.n_vars == 0:
        raise ValueError(
            f"Object filters (min_cells={min_cells}, min_features={min_features}) "
            "removed every cell or gene."
        )
    logger.info(
        "Object filters kept %d/%d cells and %d/%d genes",
        out.n_obs,
        n_cells_before,
        out.n_vars,
        n_genes_before,
    )
    return out


def qc_mask(obs: pd.DataFrame, thresholds: QCThresholds) -> pd.Series:
    missing = [c for c in QC_COLUMNS if c not in obs.columns]
    if missing:
        raise KeyError(
            f"QC metrics missing from obs ({', '.join(missing)}); "
            "run annotate_qc_metrics first."
        )
    return (
        (obs["n_genes_by_counts"] > thresholds.min_features)
        & (obs["n_genes_by_counts"] < thresholds.max_features)
        & (obs["pct_counts_mt"] < thresholds.max_pct_mt)
    )


def filter_cells_by_qc(
    adata: ad.AnnData, thresholds: QCThresholds
) -> tuple[ad.AnnData, QCReport]:
    obs = adata.obs
    mask = qc_mask(obs, thresholds)
    report = QCReport(
        n_cells_before=int(adata.n_obs),
        n_cells_after=int(mask.sum()),
        n_failed_min_features=int(
            (obs["n_genes_by_counts"] <= thresholds.min_features).sum()
        ),
        n_failed_max_features=int(
            (obs["n_genes_by_counts"] >= thresholds.max_features).sum()
        ),
        n_failed_pct_mt=int((obs["pct_counts_mt"] >= thresholds.max_pct_mt).sum()),
    )
    if report.n_cells_after == 0:
        raise ValueError(
            f"QC thresholds {thresholds} removed all {report.n_cells_before} cells."
        )
    logger.info(
        "QC filter kept %d/%d cells", report.n_cells_after, report.n_cells_before
    )
    return adata[mask.to_numpy()].copy(), report


def qc_summary(adata: ad.AnnData) -> pd.DataFrame:
    """Median/min/max of each QC metric, one row per metric."""
    rows = []
    for col in QC_COLUMNS:
        if col not in adata.obs.columns:
            continue
        values = adata.obs[col].to_numpy(dtype=float)
        rows.append(
            {
                "metric": col,
                "median": float(np.median(values)),
                "min": float(np.min(values)),
                "max": float(np.max(values)),
            }
        )
    return pd.DataFrame(rows)
