"""Embedding (PCA/UMAP) figure factories."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import anndata as ad
import matplotlib.axes
import matplotlib.patheffects as pe
import matplotlib.pyplot as plt
import numpy as np

from scvignettes.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from scvignettes.plotting.utils import (
    gene_values,
    grid_shape,
    ordered_categories,
    palette,
    save_figure,
)

AXIS_PREFIX = {"X_umap": "UMAP", "X_pca": "PC"}


def embedding_xy(
    adata: ad.AnnData, basis: str, dims: tuple[int, int] = (1, 2)
) -> np.ndarray:
    if basis not in adata.obsm:
        raise KeyError(f"obsm['{basis}'] not found.")
    emb = np.asarray(adata.obsm[basis], dtype=float)
    if emb.ndim != 2 or emb.shape[1] < max(dims):
        raise ValueError(f"obsm['{basis}'] has too few dimensions for {dims}.")
    return emb[:, [dims[0] - 1, dims[1] - 1]]


def _axis_labels(basis: str, dims: tuple[int, int]) -> tuple[str, str]:
    prefix = AXIS_PREFIX.get(basis, "PC" if basis.startswith("X_pca") else basis)
    return f"{prefix}_{dims[0]}", f"{prefix}_{dims[1]}"


def finalize_embedding_axes(
    ax: matplotlib.axes.Axes,
    title: str,
    *,
    xlabel: str,
    ylabel: str,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    ax.set_title(title, fontsize=style.title_fontsize)
    ax.set_xlabel(xlabel, fontsize=style.axis_label_fontsize)
    ax.set_ylabel(ylabel, fontsize=style.axis_label_fontsize)
    ax.set_xticks([])
    ax.set_yticks([])


def plot_dim(
    adata: ad.AnnData,
    out_path: Path,
    *,
    color_by: str,
    basis: str = "X_umap",
    dims: tuple[int, int] = (1, 2),
    title: str | None = None,
    label_on_data: bool = False,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Embedding scatter colored by a categorical obs column."""
    if color_by not in adata.obs.columns:
        raise KeyError(f"obs['{color_by}'] not found.")
    xy = embedding_xy(adata, basis, dims)
    labels = adata.obs[color_by]
    label_str = labels.astype(str).to_numpy()
    categories = ordered_categories(labels)
    colors = palette(categories)

    fig, ax = plt.subplots(figsize=style.figsize_embedding)
    for cat in categories:
        mask = label_str == cat
        ax.scatter(
            xy[mask, 0],
            xy[mask, 1],
            s=style.s_point,
            color=colors[cat],
            alpha=style.alpha_point,
            linewidths=0,
            rasterized=True,
            label=f"{cat}",
        )
        if label_on_data and mask.any():
            txt = ax.text(
                float(np.median(xy[mask, 0])),
                float(np.median(xy[mask, 1])),
                str(cat),
                fontsize=style.annotation_fontsize + 1,
                ha="center",
                va="center",
            )
            txt.set_path_effects([pe.withStroke(linewidth=2.0, foreground="white")])

    xlabel, ylabel = _axis_labels(basis, dims)
    finalize_embedding_axes(
        ax, title or color_by, xlabel=xlabel, ylabel=ylabel, style=style
    )
    if len(categories) <= style.max_legend_categories:
        ax.legend(
            loc="upper left",
            bbox_to_anchor=(1.02, 1.0),
            borderaxespad=0.0,
            fontsize=style.legend_fontsize,
            frameon=False,
            markerscale=2.0,
        )
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def _numeric_panel(
    ax: matplotlib.axes.Axes,
    xy: np.ndarray,
    values: np.ndarray,
    title: str,
    *,
    basis: str,
    dims: tuple[int, int],
    style: PlotStyle,
) -> Any:
    # Draw high values last so expressing cells stay visible.
    order = np.argsort(values, kind="mergesort")
    pts = ax.scatter(
        xy[order, 0],
        xy[order, 1],
        c=values[order],
        cmap=style.cmap_feature,
        s=style.s_point,
        linewidths=0,
        rasterized=True,
    )
    xlabel, ylabel = _axis_labels(basis, dims)
    finalize_embedding_axes(ax, title, xlabel=xlabel, ylabel=ylabel, style=style)
    return pts


def plot_features(
    adata: ad.AnnData,
    out_path: Path,
    *,
    features: Sequence[str],
    basis: str = "X_umap",
    dims: tuple[int, int] = (1, 2),
    layer: str | None = "lognorm",
    ncol: int = 3,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Grid of embeddings colored by gene expression or numeric obs columns."""
    if not features:
        raise ValueError("No features to plot.")
    xy = embedding_xy(adata, basis, dims)
    nrow, ncol_use = grid_shape(len(features), ncol)
    cw, ch = style.figsize_grid_cell
    fig, axes = plt.subplots(
        nrow, ncol_use, figsize=(cw * ncol_use, ch * nrow), squeeze=False
    )
    flat = axes.ravel()
    for ax, feature in zip(flat, features):
        if feature in adata.obs.columns:
            values = adata.obs[feature].to_numpy(dtype=float)
        else:
            values = gene_values(adata, feature, layer=layer)
        pts = _numeric_panel(
            ax, xy, values, feature, basis=basis, dims=dims, style=style
        )
        fig.colorbar(pts, ax=ax, shrink=0.8, pad=0.02)
    for ax in flat[len(features):]:
        ax.set_visible(False)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)
