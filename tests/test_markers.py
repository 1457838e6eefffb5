from __future__ import annotations

import logging

import anndata as ad
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from scvignettes.markers import (
    ROC_COLUMNS,
    TEST_COLUMNS,
    find_all_markers,
    find_markers,
    group_statistics,
    top_markers,
)
from scvignettes.preprocess import log_normalize

UP_IN_A = ["G0", "G1", "G2", "G3", "G4"]
UP_IN_B = ["G5", "G6", "G7", "G8", "G9"]


def _make_normalized(n_per_group: int = 30, n_genes: int = 40, seed: int = 0) -> ad.AnnData:
    rng = np.random.default_rng(seed)
    base = rng.uniform(0.5, 5.0, size=n_genes)
    X = rng.poisson(base, size=(2 * n_per_group, n_genes)).astype(np.float32)
    X[:n_per_group, :5] += rng.poisson(15.0, size=(n_per_group, 5))
    X[n_per_group:, 5:10] += rng.poisson(15.0, size=(n_per_group, 5))
    labels = ["A"] * n_per_group + ["B"] * n_per_group
    obs = pd.DataFrame(
        {"group": pd.Categorical(labels), "tiny": ["x", "x"] + ["y"] * (len(labels) - 2)},
        index=[f"cell{i}" for i in range(2 * n_per_group)],
    )
    var = pd.DataFrame(index=[f"G{j}" for j in range(n_genes)])
    adata = ad.AnnData(X=sp.csr_matrix(X), obs=obs, var=var)
    log_normalize(adata)
    return adata


def test_group_statistics_fold_change_sign():
    adata = _make_normalized()
    labels = adata.obs["group"].astype(str).to_numpy()
    stats_df = group_statistics(adata, labels == "A", labels == "B")
    fc = stats_df.set_index("gene")["avg_log2FC"]
    assert (fc[UP_IN_A] > 1.0).all()
    assert (fc[UP_IN_B] < -1.0).all()
    assert stats_df["pct_1"].between(0, 1).all()


def test_find_markers_wilcoxon_ranks_differential_genes_first():
    adata = _make_normalized()
    res = find_markers(adata, "group", ident_1="A", method="wilcoxon")
    assert list(res.columns) == TEST_COLUMNS
    assert set(res["gene"].head(10)) == set(UP_IN_A + UP_IN_B)
    assert res["p_val"].is_monotonic_increasing
    np.testing.assert_allclose(
        res["p_val_adj"], np.minimum(1.0, res["p_val"] * adata.n_vars)
    )


def test_find_markers_only_pos_keeps_upregulated_genes():
    adata = _make_normalized()
    res = find_markers(adata, "group", ident_1="A", method="t-test", only_pos=True)
    assert (res["avg_log2FC"] > 0).all()
    assert set(res["gene"].head(5)) == set(UP_IN_A)


def test_find_markers_logreg_likelihood_ratio():
    adata = _make_normalized()
    res = find_markers(adata, "group", ident_1="B", method="logreg", only_pos=True)
    assert list(res.columns) == TEST_COLUMNS
    top = res.set_index("gene").loc[UP_IN_B]
    assert (top["p_val"] < 1e-6).all()
    assert (top["score"] > 0).all()


def test_find_markers_roc_reports_auc_and_power():
    adata = _make_normalized()
    res = find_markers(adata, "group", ident_1="A", method="roc", only_pos=True)
    assert list(res.columns) == ROC_COLUMNS
    assert res["power"].between(0, 1).all()
    assert res["myAUC"].between(0, 1).all()
    top = res.set_index("gene").loc[UP_IN_A]
    assert (top["myAUC"] > 0.9).all()
    np.testing.assert_allclose(top["power"], 2 * np.abs(top["myAUC"] - 0.5), atol=2e-3)


def test_find_markers_explicit_second_group():
    adata = _make_normalized()
    adata.obs["cluster"] = np.where(
        np.arange(adata.n_obs) < 30, "0", np.where(np.arange(adata.n_obs) < 45, "1", "2")
    )
    res = find_markers(adata, "cluster", ident_1="0", ident_2=["1", "2"], only_pos=True)
    assert set(UP_IN_A) <= set(res["gene"])


def test_find_markers_empty_after_prefilter(caplog):
    caplog.set_level(logging.WARNING)
    adata = _make_normalized()
    res = find_markers(adata, "group", ident_1="A", min_pct=1.01)
    assert res.empty
    assert list(res.columns) == TEST_COLUMNS
    assert "No genes pass" in caplog.text


def test_find_markers_validation_errors():
    adata = _make_normalized()
    with pytest.raises(KeyError, match="Unknown identity"):
        find_markers(adata, "group", ident_1="Z")
    with pytest.raises(KeyError, match="obs\\['missing'\\]"):
        find_markers(adata, "missing", ident_1="A")
    with pytest.raises(ValueError, match="overlap"):
        find_markers(adata, "group", ident_1="A", ident_2=["A", "B"])
    with pytest.raises(ValueError, match="Unknown DE method"):
        find_markers(adata, "group", ident_1="A", method="bimod")
    with pytest.raises(ValueError, match="need at least 3"):
        find_markers(adata, "tiny", ident_1="x")


def test_find_all_markers_and_top_markers():
    adata = _make_normalized()
    table = find_all_markers(adata, "group", min_pct=0.25, logfc_threshold=0.25)
    assert list(table.columns) == ["cluster"] + TEST_COLUMNS
    assert set(table["cluster"]) == {"A", "B"}
    assert (table["avg_log2FC"] > 0).all()

    top = top_markers(table, n=3)
    assert top.groupby("cluster").size().max() <= 3
    assert list(dict.fromkeys(top["cluster"])) == ["A", "B"]
    top_a = top.loc[top["cluster"] == "A", "avg_log2FC"]
    assert top_a.is_monotonic_decreasing
    assert set(top.loc[top["cluster"] == "A", "gene"]) <= set(UP_IN_A)


def test_top_markers_requires_cluster_column():
    with pytest.raises(KeyError, match="cluster"):
        top_markers(pd.DataFrame({"gene": ["G0"], "avg_log2FC": [1.0]}))
    assert top_markers(pd.DataFrame()).empty
