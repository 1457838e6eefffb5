"""Variable-feature and PCA figure factories."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import anndata as ad
import matplotlib.patheffects as pe
import matplotlib.pyplot as plt
import numpy as np
import scipy.sparse as sp

from scvignettes.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from scvignettes.preprocess import pca_slots
from scvignettes.plotting.utils import grid_shape, save_figure

VARIANCE_COLUMNS = ("variances_norm", "dispersions_norm")


def plot_variable_features(
    adata: ad.AnnData,
    out_path: Path,
    *,
    label_top: Sequence[str] = (),
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Mean expression vs standardized variance, variable genes highlighted."""
    var = adata.var
    if "highly_variable" not in var.columns or "means" not in var.columns:
        raise KeyError("Variable-feature statistics missing; run find_variable_features.")
    y_col = next((c for c in VARIANCE_COLUMNS if c in var.columns), None)
    if y_col is None:
        raise KeyError("No standardized variance column in var.")

    means = var["means"].to_numpy(dtype=float)
    spread = np.nan_to_num(var[y_col].to_numpy(dtype=float), nan=0.0)
    hv = var["highly_variable"].to_numpy(dtype=bool)
    x = np.log10(np.clip(means, 1e-6, None))

    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    for mask, color, label in (
        (~hv, "black", "Non-variable"),
        (hv, style.highlight_color, "Variable"),
    ):
        ax.scatter(
            x[mask],
            spread[mask],
            s=style.s_jitter,
            color=color,
            alpha=0.7,
            linewidths=0,
            rasterized=True,
            label=f"{label} ({int(mask.sum())})",
        )
    for gene in label_top:
        if gene not in var.index:
            continue
        j = int(var.index.get_loc(gene))
        txt = ax.annotate(
            gene,
            (x[j], spread[j]),
            xytext=(3, 3),
            textcoords="offset points",
            fontsize=style.annotation_fontsize,
        )
        txt.set_path_effects([pe.withStroke(linewidth=2.0, foreground="white")])
    ax.set_xlabel("log10 average expression", fontsize=style.axis_label_fontsize)
    ax.set_ylabel(
        "Standardized variance" if y_col == "variances_norm" else "Normalized dispersion",
        fontsize=style.axis_label_fontsize,
    )
    ax.legend(loc="upper right", fontsize=style.legend_fontsize, frameon=False)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_elbow(
    std_devs: np.ndarray,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Standard deviation of each principal component, for choosing how many to keep."""
    sd = np.asarray(std_devs, dtype=float).ravel()
    if sd.size == 0:
        raise ValueError("No principal components to plot.")
    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    ax.scatter(np.arange(1, sd.size + 1), sd, s=12, color="black")
    ax.set_xlabel("PC", fontsize=style.axis_label_fontsize)
    ax.set_ylabel("Standard deviation", fontsize=style.axis_label_fontsize)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_pca_loadings(
    adata: ad.AnnData,
    out_path: Path,
    *,
    pcs: Sequence[int] = (1, 2),
    n_features: int = 30,
    key: str | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Dot plot of the genes with the largest absolute loadings per PC."""
    _, varm_key, _ = pca_slots(key)
    if varm_key not in adata.varm:
        raise KeyError(f"varm['{varm_key}'] missing; run run_pca first.")
    loadings = np.asarray(adata.varm[varm_key])
    genes = np.asarray(adata.var_names, dtype=str)

    nrow, ncol = grid_shape(len(pcs), len(pcs))
    cw, ch = style.figsize_grid_cell
    fig, axes = plt.subplots(
        nrow, ncol, figsize=(cw * ncol, max(ch, 0.18 * n_features) * nrow)
    )
    axes = np.atleast_1d(axes).ravel()
    for ax, pc in zip(axes, pcs):
        if pc < 1 or pc > loadings.shape[1]:
            raise ValueError(f"PC {pc} out of range 1..{loadings.shape[1]}.")
        vals = loadings[:, pc - 1]
        top = np.argsort(np.abs(vals), kind="mergesort")[::-1][:n_features]
        top = top[np.argsort(vals[top], kind="mergesort")]
        ax.scatter(vals[top], np.arange(top.size), s=12, color="black")
        ax.set_yticks(np.arange(top.size))
        ax.set_yticklabels(genes[top], fontsize=style.annotation_fontsize)
        ax.set_xlabel(f"PC_{pc}", fontsize=style.axis_label_fontsize)
    for ax in axes[len(pcs):]:
        ax.set_visible(False)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def dim_heatmap_matrix(
    adata: ad.AnnData,
    pc: int,
    *,
    n_cells: int = 500,
    n_features: int = 30,
    key: str | None = None,
) -> tuple[np.ndarray, list[str]]:
    """Scaled expression of the extreme cells and genes of one PC.

    Half of `n_cells` come from each end of the PC score distribution and
    half of `n_features` from each end of the loadings. Rows are genes
    (positive loadings first), columns are cells ordered by score.
    """
    obsm_key, varm_key, uns_key = pca_slots(key)
    if obsm_key not in adata.obsm or varm_key not in adata.varm:
        raise KeyError(f"PCA slots for key {key!r} missing; run run_pca first.")
    scores = np.asarray(adata.obsm[obsm_key])
    if pc < 1 or pc > scores.shape[1]:
        raise ValueError(f"PC {pc} out of range 1..{scores.shape[1]}.")
    cell_scores = scores[:, pc - 1]
    order = np.argsort(cell_scores, kind="mergesort")
    if order.size > n_cells:
        half = n_cells // 2
        order = np.concatenate([order[:half], order[-(n_cells - half):]])

    feature_names = list(np.asarray(adata.uns[uns_key]["features"], dtype=str))
    idx = adata.var_names.get_indexer(feature_names)
    loads = np.asarray(adata.varm[varm_key])[idx, pc - 1]
    g_order = np.argsort(loads, kind="mergesort")
    half_f = max(1, n_features // 2)
    positive = [int(j) for j in g_order[::-1][:half_f]]
    taken = set(positive)
    negative = [int(j) for j in g_order[:half_f][::-1] if int(j) not in taken]
    picks = positive + negative
    gene_idx = idx[picks]

    X = adata.X
    block = X[order][:, gene_idx]
    block = block.toarray() if sp.issparse(block) else np.asarray(block)
    return block.T.astype(float), [feature_names[j] for j in picks]


def plot_dim_heatmap(
    adata: ad.AnnData,
    out_path: Path,
    *,
    pcs: Sequence[int] = (1,),
    n_cells: int = 500,
    n_features: int = 30,
    key: str | None = None,
    ncol: int = 3,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Heatmaps of scaled expression for the extreme cells and genes of each PC."""
    nrow, ncol_use = grid_shape(len(pcs), ncol)
    cw, ch = style.figsize_grid_cell
    fig, axes = plt.subplots(
        nrow,
        ncol_use,
        figsize=(cw * 1.3 * ncol_use, max(ch, 0.16 * n_features) * nrow),
        squeeze=False,
    )
    flat = axes.ravel()
    clip = style.heatmap_clip
    for ax, pc in zip(flat, pcs):
        mat, genes = dim_heatmap_matrix(
            adata, pc, n_cells=n_cells, n_features=n_features, key=key
        )
        ax.imshow(
            np.clip(mat, -clip, clip),
            aspect="auto",
            cmap=style.cmap_heatmap,
            vmin=-clip,
            vmax=clip,
            interpolation="nearest",
        )
        ax.set_yticks(np.arange(len(genes)))
        ax.set_yticklabels(genes, fontsize=max(4, style.annotation_fontsize - 2))
        ax.set_xticks([])
        ax.set_title(f"PC_{pc}", fontsize=style.title_fontsize)
    for ax in flat[len(pcs):]:
        ax.set_visible(False)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)
