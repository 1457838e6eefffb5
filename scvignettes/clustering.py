"""Neighbor graph, Leiden clustering, UMAP, and cluster relabeling."""

from __future__ import annotations

import logging
from typing import Sequence

import anndata as ad
import pandas as pd
import scanpy as sc

logger = logging.getLogger(__name__)


def build_neighbors(
    adata: ad.AnnData, n_neighbors: int = 15, n_pcs: int = 10, seed: int = 0
) -> None:
    if "X_pca" not in adata.obsm:
        raise KeyError("obsm['X_pca'] missing; run run_pca first.")
    n_pcs_use = min(int(n_pcs), int(adata.obsm["X_pca"].shape[1]))
    n_neighbors_use = min(int(n_neighbors), adata.n_obs - 1)
    if n_neighbors_use < 2:
        raise ValueError(f"Too few cells ({adata.n_obs}) for a neighbor graph.")
    sc.pp.neighbors(
        adata,
        n_neighbors=n_neighbors_use,
        n_pcs=n_pcs_use,
        use_rep="X_pca",
        random_state=int(seed),
    )
    logger.info("Neighbor graph: k=%d over %d PCs", n_neighbors_use, n_pcs_use)


def cluster_cells(
    adata: ad.AnnData, resolution: float = 0.5, key: str = "leiden", seed: int = 0
) -> pd.Series:
    if "connectivities" not in adata.obsp:
        raise KeyError("obsp['connectivities'] missing; run build_neighbors first.")
    sc.tl.leiden(
        adata,
        resolution=float(resolution),
        key_added=key,
        random_state=int(seed),
        flavor="igraph",
        n_iterations=2,
        directed=False,
    )
    sizes = cluster_sizes(adata, key)
    logger.info("Leiden (resolution %g): %d clusters", resolution, sizes.size)
    return sizes


def run_umap(adata: ad.AnnData, min_dist: float = 0.5, seed: int = 0) -> None:
    if "neighbors" not in adata.uns:
        raise KeyError("uns['neighbors'] missing; run build_neighbors first.")
    sc.tl.umap(adata, min_dist=float(min_dist), random_state=int(seed))


def sorted_cluster_ids(values: pd.Series) -> list[str]:
    ids = [str(v) for v in pd.unique(values.astype(str))]
    try:
        return sorted(ids, key=int)
    except ValueError:
        return sorted(ids)


def cluster_sizes(adata: ad.AnnData, key: str) -> pd.Series:
    if key not in adata.obs.columns:
        raise KeyError(f"obs['{key}'] not found.")
    values = adata.obs[key].astype(str)
    return values.value_counts().reindex(sorted_cluster_ids(values)).astype(int)


def rename_clusters(
    adata: ad.AnnData,
    labels: Sequence[str],
    key: str = "leiden",
    new_key: str = "cell_type",
) -> dict[str, str]:
    """Map cluster ids (in numeric order) to `labels`; repeated labels merge clusters."""
    if key not in adata.obs.columns:
        raise KeyError(f"obs['{key}'] not found.")
    ids = sorted_cluster_ids(adata.obs[key])
    if len(ids) != len(labels):
        raise ValueError(
            f"Got {len(labels)} labels for {len(ids)} clusters in obs['{key}']."
        )
    mapping = {cid: str(label) for cid, label in zip(ids, labels)}
    categories = list(dict.fromkeys(mapping.values()))
    adata.obs[new_key] = pd.Categorical(
        adata.obs[key].astype(str).map(mapping), categories=categories
    )
    return mapping
