from __future__ import annotations

import anndata as ad
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from scvignettes.preprocess import (
    COUNTS_LAYER,
    LOGNORM_LAYER,
    find_variable_features,
    log_normalize,
    pc_standard_deviations,
    pca_loadings_table,
    run_pca,
    scale_data,
    top_variable_features,
)


def _make_counts(n_per_group: int = 30, n_genes: int = 40, seed: int = 0) -> ad.AnnData:
    rng = np.random.default_rng(seed)
    base = rng.uniform(0.5, 5.0, size=n_genes)
    X = rng.poisson(base, size=(2 * n_per_group, n_genes)).astype(np.float32)
    X[:n_per_group, :5] += rng.poisson(15.0, size=(n_per_group, 5))
    X[n_per_group:, 5:10] += rng.poisson(15.0, size=(n_per_group, 5))
    obs = pd.DataFrame(
        {
            "group": pd.Categorical(["A"] * n_per_group + ["B"] * n_per_group),
            "batch": rng.normal(size=2 * n_per_group),
        },
        index=[f"cell{i}" for i in range(2 * n_per_group)],
    )
    var = pd.DataFrame(index=[f"G{j}" for j in range(n_genes)])
    return ad.AnnData(X=sp.csr_matrix(X), obs=obs, var=var)


def _dense(X) -> np.ndarray:
    return X.toarray() if sp.issparse(X) else np.asarray(X)


def test_log_normalize_keeps_counts_and_scales_library_size():
    adata = _make_counts()
    raw = _dense(adata.X).copy()
    log_normalize(adata)
    np.testing.assert_allclose(_dense(adata.layers[COUNTS_LAYER]), raw)
    totals = np.expm1(_dense(adata.layers[LOGNORM_LAYER]).astype(float)).sum(axis=1)
    np.testing.assert_allclose(totals, 1e4, rtol=1e-3)
    with pytest.raises(ValueError, match="already log-normalized"):
        log_normalize(adata)


def test_find_variable_features_returns_ranked_flagged_genes():
    adata = _make_counts()
    log_normalize(adata)
    hvgs = find_variable_features(adata, n_top=10, flavor="seurat")
    assert len(hvgs) == 10
    assert int(adata.var["highly_variable"].sum()) == 10
    assert all(adata.var.loc[hvgs, "highly_variable"])
    assert top_variable_features(adata, 3) == hvgs[:3]


def test_find_variable_features_clips_and_validates():
    adata = _make_counts(n_genes=12)
    log_normalize(adata)
    hvgs = find_variable_features(adata, n_top=50, flavor="seurat")
    assert len(hvgs) <= 12
    with pytest.raises(ValueError, match="Unknown HVG flavor"):
        find_variable_features(adata, flavor="bogus")


def test_scale_data_centers_genes_and_records_covariates():
    adata = _make_counts()
    log_normalize(adata)
    scale_data(adata)
    X = np.asarray(adata.X)
    np.testing.assert_allclose(X.mean(axis=0), 0.0, atol=1e-6)
    assert adata.uns["scaling"]["vars_to_regress"] == []
    assert np.isnan(adata.uns["scaling"]["max_value"])


def test_scale_data_regression_removes_covariate_signal():
    adata = _make_counts()
    log_normalize(adata)
    lognorm = _dense(adata.layers[LOGNORM_LAYER]).astype(float)
    # Inject a linear batch effect into one gene.
    lognorm[:, 20] += 3.0 * adata.obs["batch"].to_numpy()
    adata.layers[LOGNORM_LAYER] = lognorm
    scale_data(adata, vars_to_regress=["batch"])
    corr = np.corrcoef(np.asarray(adata.X)[:, 20], adata.obs["batch"].to_numpy())[0, 1]
    assert abs(corr) < 1e-4
    assert adata.uns["scaling"]["vars_to_regress"] == ["batch"]
    with pytest.raises(KeyError, match="not found in obs"):
        scale_data(adata, vars_to_regress=["absent"])


def test_run_pca_default_and_keyed_slots():
    adata = _make_counts()
    log_normalize(adata)
    find_variable_features(adata, n_top=20, flavor="seurat")
    scale_data(adata)
    n_comps = run_pca(adata, n_comps=5)
    assert n_comps == 5
    assert adata.obsm["X_pca"].shape == (adata.n_obs, 5)
    assert adata.varm["PCs"].shape == (adata.n_vars, 5)
    assert len(adata.uns["pca"]["features"]) == 20
    # Loadings are zero outside the PCA feature set.
    hv = adata.var["highly_variable"].to_numpy(dtype=bool)
    assert np.all(adata.varm["PCs"][~hv] == 0)

    genes = ["G0", "G1", "G2", "G3", "MISSING"]
    n_cc = run_pca(adata, n_comps=50, features=genes, key="cc")
    assert n_cc == 3
    assert adata.obsm["X_pca_cc"].shape == (adata.n_obs, 3)
    assert list(adata.uns["pca_cc"]["features"]) == ["G0", "G1", "G2", "G3"]
    assert adata.obsm["X_pca"].shape[1] == 5


def test_run_pca_needs_two_features():
    adata = _make_counts()
    log_normalize(adata)
    scale_data(adata)
    with pytest.raises(ValueError, match="at least 2 features"):
        run_pca(adata, features=["G0", "NOPE"])


def test_pca_loadings_table_and_standard_deviations():
    adata = _make_counts()
    log_normalize(adata)
    find_variable_features(adata, n_top=20, flavor="seurat")
    scale_data(adata)
    run_pca(adata, n_comps=6)
    table = pca_loadings_table(adata, n_pcs=3, n_features=4)
    assert list(table.columns) == ["pc", "direction", "rank", "gene", "loading"]
    assert len(table) == 3 * 2 * 4
    pos = table[(table["pc"] == 1) & (table["direction"] == "positive")]
    assert pos["loading"].is_monotonic_decreasing
    sd = pc_standard_deviations(adata)
    assert sd.shape == (6,)
    assert np.all(np.diff(sd) <= 1e-9)


def test_find_variable_features_seurat_v3_reads_counts_in_rank_order(caplog):
    adata = _make_counts()
    log_normalize(adata)
    hvgs = find_variable_features(adata, n_top=10, flavor="seurat_v3")
    assert len(hvgs) == 10
    ranks = adata.var.loc[hvgs, "highly_variable_rank"]
    assert ranks.is_monotonic_increasing
    expected = adata.var["variances_norm"].nlargest(10).index
    assert set(hvgs) == set(expected)

    clipped = _make_counts(seed=1)
    log_normalize(clipped)
    all_genes = find_variable_features(clipped, n_top=60, flavor="seurat_v3")
    assert len(all_genes) == clipped.n_vars
    assert "only 40 genes present" in caplog.text

    del clipped.layers[COUNTS_LAYER]
    with pytest.raises(KeyError, match="counts"):
        find_variable_features(clipped, n_top=10, flavor="seurat_v3")
