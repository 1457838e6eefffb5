from __future__ import annotations

import anndata as ad
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from scvignettes.clustering import (
    build_neighbors,
    cluster_cells,
    cluster_sizes,
    rename_clusters,
    run_umap,
    sorted_cluster_ids,
)
from scvignettes.preprocess import (
    find_variable_features,
    log_normalize,
    run_pca,
    scale_data,
)


def _labelled(labels: list[str]) -> ad.AnnData:
    obs = pd.DataFrame(
        {"leiden": pd.Categorical(labels)},
        index=[f"c{i}" for i in range(len(labels))],
    )
    return ad.AnnData(X=np.zeros((len(labels), 2), dtype=np.float32), obs=obs)


def _two_populations(n_per_group: int = 40, seed: int = 0) -> ad.AnnData:
    rng = np.random.default_rng(seed)
    n_genes = 30
    base = rng.uniform(0.5, 4.0, size=n_genes)
    X = rng.poisson(base, size=(2 * n_per_group, n_genes)).astype(np.float32)
    X[:n_per_group, :8] += rng.poisson(20.0, size=(n_per_group, 8))
    X[n_per_group:, 8:16] += rng.poisson(20.0, size=(n_per_group, 8))
    obs = pd.DataFrame(
        {"truth": ["A"] * n_per_group + ["B"] * n_per_group},
        index=[f"cell{i}" for i in range(2 * n_per_group)],
    )
    var = pd.DataFrame(index=[f"G{j}" for j in range(n_genes)])
    adata = ad.AnnData(X=sp.csr_matrix(X), obs=obs, var=var)
    log_normalize(adata)
    find_variable_features(adata, n_top=20, flavor="seurat")
    scale_data(adata)
    run_pca(adata, n_comps=10)
    return adata


def test_sorted_cluster_ids_are_numeric_aware():
    assert sorted_cluster_ids(pd.Series(["10", "2", "0", "2"])) == ["0", "2", "10"]
    assert sorted_cluster_ids(pd.Series(["b", "a"])) == ["a", "b"]


def test_cluster_sizes_follow_cluster_order():
    adata = _labelled(["1", "0", "10", "1", "1"])
    sizes = cluster_sizes(adata, "leiden")
    assert list(sizes.index) == ["0", "1", "10"]
    assert sizes.tolist() == [1, 3, 1]
    with pytest.raises(KeyError):
        cluster_sizes(adata, "louvain")


def test_rename_clusters_maps_in_numeric_order_and_merges_repeats():
    adata = _labelled(["0", "1", "2", "10", "2"])
    mapping = rename_clusters(adata, ["T", "Mono", "T", "B"])
    assert mapping == {"0": "T", "1": "Mono", "2": "T", "10": "B"}
    assert adata.obs["cell_type"].tolist() == ["T", "Mono", "T", "B", "T"]
    assert list(adata.obs["cell_type"].cat.categories) == ["T", "Mono", "B"]


def test_rename_clusters_rejects_count_mismatch():
    adata = _labelled(["0", "1", "2"])
    with pytest.raises(ValueError, match="Got 2 labels for 3 clusters"):
        rename_clusters(adata, ["T", "B"])
    assert "cell_type" not in adata.obs.columns


def test_graph_steps_require_their_inputs():
    adata = _labelled(["0", "1", "1"])
    with pytest.raises(KeyError, match="run_pca"):
        build_neighbors(adata)
    with pytest.raises(KeyError, match="build_neighbors"):
        cluster_cells(adata)
    with pytest.raises(KeyError, match="build_neighbors"):
        run_umap(adata)


def test_leiden_separates_two_populations_and_umap_embeds():
    adata = _two_populations()
    build_neighbors(adata, n_neighbors=10, n_pcs=5)
    sizes = cluster_cells(adata, resolution=0.5, key="leiden")
    assert int(sizes.sum()) == adata.n_obs
    assert sizes.size >= 2
    # No cluster mixes the two populations.
    table = pd.crosstab(adata.obs["leiden"], adata.obs["truth"])
    assert ((table > 0).sum(axis=1) == 1).all()

    run_umap(adata, min_dist=0.5)
    assert adata.obsm["X_umap"].shape == (adata.n_obs, 2)
