"""Normalization, variable-feature selection, scaling/regression, and PCA."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp

logger = logging.getLogger(__name__)

COUNTS_LAYER = "counts"
LOGNORM_LAYER = "lognorm"
HVG_FLAVORS = {"seurat", "seurat_v3", "cell_ranger"}


def _dense(X: Any) -> np.ndarray:
    if sp.issparse(X):
        return X.toarray()
    return np.asarray(X)


def pca_slots(key: str | None) -> tuple[str, str, str]:
    """(obsm, varm, uns) keys of the default PCA or of the PCA stored under `key`."""
    if key is None:
        return "X_pca", "PCs", "pca"
    return f"X_pca_{key}", f"PCs_{key}", f"pca_{key}"


def log_normalize(adata: ad.AnnData, scale_factor: float = 1e4) -> None:
    """Library-size normalize to `scale_factor` and log1p, in place.

    Raw counts are kept in `layers['counts']` and the result in
    `layers['lognorm']`.
    """
    if LOGNORM_LAYER in adata.layers:
        raise ValueError("AnnData is already log-normalized (layers['lognorm'] exists).")
    if scale_factor <= 0:
        raise ValueError("scale_factor must be positive.")
    adata.layers[COUNTS_LAYER] = adata.X.copy()
    sc.pp.normalize_total(adata, target_sum=float(scale_factor))
    sc.pp.log1p(adata)
    adata.layers[LOGNORM_LAYER] = adata.X.copy()
    logger.info("Log-normalized %d cells (scale factor %g)", adata.n_obs, scale_factor)


def find_variable_features(
    adata: ad.AnnData, n_top: int = 2000, flavor: str = "seurat_v3"
) -> list[str]:
    """Flag the `n_top` most variable genes and return them in rank order."""
    if flavor not in HVG_FLAVORS:
        raise ValueError(
            f"Unknown HVG flavor '{flavor}'. Use one of: {', '.join(sorted(HVG_FLAVORS))}."
        )
    layer = COUNTS_LAYER if flavor == "seurat_v3" else LOGNORM_LAYER
    if layer not in adata.layers:
        raise KeyError(f"layers['{layer}'] is required for flavor '{flavor}'.")
    n_top_use = min(int(n_top), int(adata.n_vars))
    if n_top_use < int(n_top):
        logger.warning(
            "Requested %d variable features but only %d genes present.",
            n_top,
            adata.n_vars,
        )
    sc.pp.highly_variable_genes(
        adata, n_top_genes=n_top_use, flavor=flavor, layer=layer
    )
    return top_variable_features(adata, n_top_use)


def top_variable_features(adata: ad.AnnData, n: int = 10) -> list[str]:
    var = adata.var
    if "highly_variable" not in var.columns:
        raise KeyError("No variable features; run find_variable_features first.")
    hvg = var.loc[var["highly_variable"].astype(bool)]
    if "highly_variable_rank" in hvg.columns:
        hvg = hvg.sort_values("highly_variable_rank", kind="mergesort")
    elif "dispersions_norm" in hvg.columns:
        hvg = hvg.sort_values("dispersions_norm", ascending=False, kind="mergesort")
    return [str(g) for g in hvg.index[: int(n)]]


def scale_data(
    adata: ad.AnnData,
    vars_to_regress: Sequence[str] | None = None,
    max_value: float | None = None,
) -> None:
    """Rebuild `X` from the lognorm layer, regress out covariates, then z-score genes.

    Calling it again with different covariates replaces the previous scaling.
    """
    if LOGNORM_LAYER not in adata.layers:
        raise KeyError("layers['lognorm'] is missing; run log_normalize first.")
    keys = [str(k) for k in (vars_to_regress or [])]
    missing = [k for k in keys if k not in adata.obs.columns]
    if missing:
        raise KeyError(f"Covariates not found in obs: {', '.join(missing)}")

    adata.X = _dense(adata.layers[LOGNORM_LAYER]).astype(np.float64)
    if keys:
        logger.info("Regressing out %s", ", ".join(keys))
        sc.pp.regress_out(adata, keys=keys)
    sc.pp.scale(adata, zero_center=True, max_value=max_value)
    adata.uns["scaling"] = {
        "vars_to_regress": keys,
        "max_value": float("nan") if max_value is None else float(max_value),
    }


def run_pca(
    adata: ad.AnnData,
    n_comps: int = 50,
    features: Sequence[str] | None = None,
    key: str | None = None,
    seed: int = 0,
) -> int:
    """PCA over variable features (default) or an explicit gene list.

    With `key`, results go to `obsm['X_pca_<key>']`, `varm['PCs_<key>']`,
    `uns['pca_<key>']` so several PCAs can coexist. Returns the number of
    components computed.
    """
    if "scaling" not in adata.uns:
        logger.warning("Running PCA on data that was not scaled with scale_data.")
    if features is None:
        if "highly_variable" not in adata.var.columns:
            raise KeyError("No variable features; run find_variable_features first.")
        mask = adata.var["highly_variable"].to_numpy(dtype=bool)
    else:
        requested = [str(g) for g in features]
        mask = adata.var_names.isin(requested)
        absent = sorted(set(requested) - set(adata.var_names))
        if absent:
            logger.warning(
                "%d of %d PCA features absent from data: %s",
                len(absent),
                len(requested),
                ", ".join(absent[:10]),
            )
    n_features = int(mask.sum())
    if n_features < 2:
        raise ValueError(f"PCA needs at least 2 features; {n_features} available.")

    n_use = min(int(n_comps), min(adata.n_obs, n_features) - 1)
    if n_use < 1:
        raise ValueError("Too few cells or features for PCA.")
    if n_use < int(n_comps):
        logger.info("Clipping PCA components from %d to %d", n_comps, n_use)

    sub = ad.AnnData(X=_dense(adata.X[:, mask]).astype(np.float64))
    sc.tl.pca(sub, n_comps=n_use, svd_solver="arpack", random_state=int(seed))

    obsm_key, varm_key, uns_key = pca_slots(key)
    adata.obsm[obsm_key] = sub.obsm["X_pca"]
    loadings = np.zeros((adata.n_vars, n_use), dtype=float)
    loadings[mask] = sub.varm["PCs"]
    adata.varm[varm_key] = loadings
    adata.uns[uns_key] = {
        "variance": np.asarray(sub.uns["pca"]["variance"], dtype=float),
        "variance_ratio": np.asarray(sub.uns["pca"]["variance_ratio"], dtype=float),
        "features": np.asarray(adata.var_names[mask], dtype=str),
    }
    logger.info(
        "PCA%s: %d components over %d features",
        "" if key is None else f" [{key}]",
        n_use,
        n_features,
    )
    return n_use


def pca_loadings_table(
    adata: ad.AnnData, n_pcs: int = 5, n_features: int = 5, key: str | None = None
) -> pd.DataFrame:
    """Top positive and negative genes for each of the first `n_pcs` PCs."""
    _, varm_key, uns_key = pca_slots(key)
    if varm_key not in adata.varm:
        raise KeyError(f"varm['{varm_key}'] missing; run run_pca first.")
    features = pd.Index(adata.uns[uns_key]["features"])
    idx = adata.var_names.get_indexer(features)
    loadings = np.asarray(adata.varm[varm_key])[idx]

    rows = []
    for pc in range(min(int(n_pcs), loadings.shape[1])):
        order = np.argsort(loadings[:, pc], kind="mergesort")
        for direction, picks in (
            ("positive", order[::-1][:n_features]),
            ("negative", order[:n_features]),
        ):
            for rank, j in enumerate(picks, start=1):
                rows.append(
                    {
                        "pc": pc + 1,
                        "direction": direction,
                        "rank": rank,
                        "gene": str(features[j]),
                        "loading": float(loadings[j, pc]),
                    }
                )
    return pd.DataFrame(rows, columns=["pc", "direction", "rank", "gene", "loading"])


def pc_standard_deviations(adata: ad.AnnData, key: str | None = None) -> np.ndarray:
    _, _, uns_key = pca_slots(key)
    if uns_key not in adata.uns:
        raise KeyError(f"uns['{uns_key}'] missing; run run_pca first.")
    return np.sqrt(np.asarray(adata.uns[uns_key]["variance"], dtype=float))
