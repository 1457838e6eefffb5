"""Differential expression between clusters: rank-sum, t-test, logistic LR, ROC."""

from __future__ import annotations

import logging
import warnings
from typing import Any, Iterable

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp
from scipy import stats
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import roc_auc_score

from scvignettes.clustering import sorted_cluster_ids
from scvignettes.preprocess import LOGNORM_LAYER

logger = logging.getLogger(__name__)

METHODS = ("wilcoxon", "t-test", "logreg", "roc")
TEST_COLUMNS = ["gene", "p_val", "avg_log2FC", "pct_1", "pct_2", "p_val_adj", "score"]
ROC_COLUMNS = ["gene", "myAUC", "power", "avg_log2FC", "pct_1", "pct_2"]
MIN_CELLS_PER_GROUP = 3


def _as_ids(ident: Any) -> list[str]:
    if ident is None:
        return []
    if isinstance(ident, (str, int, np.integer)):
        return [str(ident)]
    return [str(x) for x in ident]


def _group_masks(
    adata: ad.AnnData, groupby: str, ident_1: Any, ident_2: Any
) -> tuple[np.ndarray, np.ndarray]:
    if groupby not in adata.obs.columns:
        raise KeyError(f"obs['{groupby}'] not found.")
    labels = adata.obs[groupby].astype(str).to_numpy()
    present = set(labels)
    ids_1 = _as_ids(ident_1)
    ids_2 = _as_ids(ident_2)
    if not ids_1:
        raise ValueError("ident_1 must name at least one group.")
    unknown = [i for i in ids_1 + ids_2 if i not in present]
    if unknown:
        raise KeyError(
            f"Unknown identity {', '.join(unknown)} in obs['{groupby}']. "
            f"Available: {', '.join(sorted_cluster_ids(pd.Series(labels)))}"
        )
    overlap = set(ids_1) & set(ids_2)
    if overlap:
        raise ValueError(f"ident_1 and ident_2 overlap: {', '.join(sorted(overlap))}")

    mask_1 = np.isin(labels, ids_1)
    mask_2 = np.isin(labels, ids_2) if ids_2 else ~mask_1
    for name, mask in (("ident_1", mask_1), ("ident_2", mask_2)):
        if int(mask.sum()) < MIN_CELLS_PER_GROUP:
            raise ValueError(
                f"{name} group has {int(mask.sum())} cells; "
                f"need at least {MIN_CELLS_PER_GROUP}."
            )
    return mask_1, mask_2


def _expression(adata: ad.AnnData) -> Any:
    if LOGNORM_LAYER not in adata.layers:
        raise KeyError("layers['lognorm'] is missing; run log_normalize first.")
    return adata.layers[LOGNORM_LAYER]


def _column_stats(X: Any) -> tuple[np.ndarray, np.ndarray]:
    """Fraction of cells expressing each gene and mean of expm1 per gene."""
    n = X.shape[0]
    if sp.issparse(X):
        X = sp.csr_matrix(X)
        pct = np.asarray((X > 0).sum(axis=0)).ravel() / n
        mean = np.asarray(X.expm1().mean(axis=0)).ravel()
    else:
        X = np.asarray(X)
        pct = (X > 0).sum(axis=0) / n
        mean = np.expm1(X).mean(axis=0)
    return pct.astype(float), mean.astype(float)


def group_statistics(
    adata: ad.AnnData, mask_1: np.ndarray, mask_2: np.ndarray
) -> pd.DataFrame:
    """Per-gene detection rates and log2 fold change of group 1 over group 2."""
    X = _expression(adata)
    pct_1, mean_1 = _column_stats(X[mask_1])
    pct_2, mean_2 = _column_stats(X[mask_2])
    return pd.DataFrame(
        {
            "gene": np.asarray(adata.var_names, dtype=str),
            "pct_1": np.round(pct_1, 3),
            "pct_2": np.round(pct_2, 3),
            "avg_log2FC": np.log2(mean_1 + 1.0) - np.log2(mean_2 + 1.0),
        }
    )


def _prefilter(
    stats_df: pd.DataFrame, min_pct: float, logfc_threshold: float, only_pos: bool
) -> pd.DataFrame:
    keep = np.maximum(stats_df["pct_1"], stats_df["pct_2"]) >= float(min_pct)
    keep &= stats_df["avg_log2FC"].abs() >= float(logfc_threshold)
    if only_pos:
        keep &= stats_df["avg_log2FC"] > 0
    return stats_df.loc[keep].reset_index(drop=True)


def _scanpy_test(
    adata: ad.AnnData,
    mask_1: np.ndarray,
    mask_2: np.ndarray,
    genes: list[str],
    method: str,
) -> pd.DataFrame:
    cells = mask_1 | mask_2
    gene_idx = adata.var_names.get_indexer(genes)
    X = _expression(adata)[cells][:, gene_idx]
    group = np.where(mask_1[cells], "ident_1", "ident_2")
    work = ad.AnnData(
        X=X,
        obs=pd.DataFrame(
            {"_group": pd.Categorical(group, categories=["ident_1", "ident_2"])},
            index=adata.obs_names[cells],
        ),
        var=pd.DataFrame(index=pd.Index(genes)),
    )
    work.uns["log1p"] = {"base": None}
    sc.tl.rank_genes_groups(
        work,
        groupby="_group",
        groups=["ident_1"],
        reference="ident_2",
        method=method,
        n_genes=work.n_vars,
        use_raw=False,
    )
    res = sc.get.rank_genes_groups_df(work, group="ident_1")
    return pd.DataFrame(
        {
            "gene": res["names"].astype(str).to_numpy(),
            "score": res["scores"].to_numpy(dtype=float),
            "p_val": res["pvals"].to_numpy(dtype=float),
        }
    )


def _logreg_test(
    adata: ad.AnnData, mask_1: np.ndarray, mask_2: np.ndarray, genes: list[str]
) -> pd.DataFrame:
    """Per-gene logistic regression of group membership, likelihood-ratio p-value."""
    cells = mask_1 | mask_2
    gene_idx = adata.var_names.get_indexer(genes)
    X = _expression(adata)[cells][:, gene_idx]
    X = X.toarray() if sp.issparse(X) else np.asarray(X)
    y = mask_1[cells].astype(int)
    p = float(y.mean())
    ll_null = float(np.sum(y * np.log(p) + (1 - y) * np.log(1.0 - p)))

    scores = np.zeros(len(genes), dtype=float)
    pvals = np.ones(len(genes), dtype=float)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=ConvergenceWarning)
        for j in range(len(genes)):
            xj = X[:, j : j + 1].astype(float)
            if np.ptp(xj) == 0:
                continue
            clf = LogisticRegression(penalty=None, max_iter=1000)
            clf.fit(xj, y)
            prob = np.clip(clf.predict_proba(xj)[:, 1], 1e-12, 1.0 - 1e-12)
            ll_fit = float(np.sum(y * np.log(prob) + (1 - y) * np.log(1.0 - prob)))
            lr_stat = max(0.0, 2.0 * (ll_fit - ll_null))
            scores[j] = float(clf.coef_[0, 0])
            pvals[j] = float(stats.chi2.sf(lr_stat, df=1))
    return pd.DataFrame({"gene": genes, "score": scores, "p_val": pvals})


def _roc_test(
    adata: ad.AnnData, mask_1: np.ndarray, mask_2: np.ndarray, genes: list[str]
) -> pd.DataFrame:
    cells = mask_1 | mask_2
    gene_idx = adata.var_names.get_indexer(genes)
    X = _expression(adata)[cells][:, gene_idx]
    X = X.toarray() if sp.issparse(X) else np.asarray(X)
    y = mask_1[cells].astype(int)
    auc = np.array([roc_auc_score(y, X[:, j]) for j in range(len(genes))], dtype=float)
    return pd.DataFrame(
        {
            "gene": genes,
            "myAUC": np.round(auc, 3),
            "power": np.round(2.0 * np.abs(auc - 0.5), 3),
        }
    )


def find_markers(
    adata: ad.AnnData,
    groupby: str,
    ident_1: Any,
    ident_2: Any = None,
    method: str = "wilcoxon",
    min_pct: float = 0.1,
    logfc_threshold: float = 0.25,
    only_pos: bool = False,
) -> pd.DataFrame:
    """Differentially expressed genes of `ident_1` versus `ident_2` (or all other cells).

    Genes are first restricted to those detected in at least `min_pct` of
    either group with an absolute log2 fold change of at least
    `logfc_threshold`. Adjusted p-values are Bonferroni over every gene in
    `adata`. The `roc` method reports AUC and power instead of p-values.
    """
    if method not in METHODS:
        raise ValueError(
            f"Unknown DE method '{method}'. Use one of: {', '.join(METHODS)}."
        )
    mask_1, mask_2 = _group_masks(adata, groupby, ident_1, ident_2)
    candidates = _prefilter(
        group_statistics(adata, mask_1, mask_2), min_pct, logfc_threshold, only_pos
    )
    columns = ROC_COLUMNS if method == "roc" else TEST_COLUMNS
    if candidates.empty:
        logger.warning(
            "No genes pass min_pct=%g / logfc_threshold=%g for %s vs %s.",
            min_pct,
            logfc_threshold,
            _as_ids(ident_1),
            _as_ids(ident_2) or "rest",
        )
        return pd.DataFrame(columns=columns)

    genes = candidates["gene"].tolist()
    if method == "roc":
        res = _roc_test(adata, mask_1, mask_2, genes)
        out = candidates.merge(res, on="gene", how="left")
        out = out.sort_values(["power", "avg_log2FC"], ascending=[False, False])
        return out[columns].reset_index(drop=True)

    if method == "logreg":
        res = _logreg_test(adata, mask_1, mask_2, genes)
    else:
        res = _scanpy_test(adata, mask_1, mask_2, genes, method)
    out = candidates.merge(res, on="gene", how="left")
    out["p_val_adj"] = np.minimum(1.0, out["p_val"] * float(adata.n_vars))
    out = out.sort_values(
        ["p_val", "avg_log2FC"], ascending=[True, False], kind="mergesort"
    )
    return out[columns].reset_index(drop=True)


def find_all_markers(
    adata: ad.AnnData,
    groupby: str,
    method: str = "wilcoxon",
    min_pct: float = 0.25,
    logfc_threshold: float = 0.25,
    only_pos: bool = True,
    clusters: Iterable[str] | None = None,
) -> pd.DataFrame:
    """One-vs-rest markers for every cluster, stacked with a `cluster` column."""
    if groupby not in adata.obs.columns:
        raise KeyError(f"obs['{groupby}'] not found.")
    labels = adata.obs[groupby].astype(str)
    ids = list(clusters) if clusters is not None else sorted_cluster_ids(labels)
    tables = []
    for cid in ids:
        if int((labels == str(cid)).sum()) < MIN_CELLS_PER_GROUP:
            logger.warning(
                "Skipping cluster %s: fewer than %d cells.", cid, MIN_CELLS_PER_GROUP
            )
            continue
        table = find_markers(
            adata,
            groupby,
            ident_1=cid,
            method=method,
            min_pct=min_pct,
            logfc_threshold=logfc_threshold,
            only_pos=only_pos,
        )
        table.insert(0, "cluster", str(cid))
        tables.append(table)
    if not tables:
        return pd.DataFrame(columns=["cluster"] + TEST_COLUMNS)
    return pd.concat(tables, ignore_index=True)


def top_markers(table: pd.DataFrame, n: int = 10, by: str = "avg_log2FC") -> pd.DataFrame:
    """The `n` highest-`by` rows of each cluster, clusters in their original order."""
    if table.empty:
        return table.copy()
    if "cluster" not in table.columns:
        raise KeyError("Marker table has no 'cluster' column.")
    if by not in table.columns:
        raise KeyError(f"Marker table has no '{by}' column.")
    order = list(dict.fromkeys(table["cluster"].astype(str)))
    parts = [
        table.loc[table["cluster"].astype(str) == cid].nlargest(int(n), by)
        for cid in order
    ]
    return pd.concat(parts, ignore_index=True)
