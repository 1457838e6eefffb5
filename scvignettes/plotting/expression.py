"""Per-group expression figure factories: ridges, violins, heatmaps."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import anndata as ad
import matplotlib.pyplot as plt
import numpy as np
import scipy.sparse as sp
from scipy.stats import gaussian_kde

from scvignettes.plotting.qc import violin_with_jitter
from scvignettes.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from scvignettes.plotting.utils import (
    gene_values,
    grid_shape,
    ordered_categories,
    palette,
    present_genes,
    save_figure,
)

logger = logging.getLogger(__name__)


def _usable_genes(adata: ad.AnnData, genes: Sequence[str]) -> list[str]:
    present, missing = present_genes(adata, genes)
    if missing:
        logger.warning("Genes not in data, skipped in plot: %s", ", ".join(missing))
    if not present:
        raise ValueError("None of the requested genes are present in the data.")
    return present


def plot_ridge(
    adata: ad.AnnData,
    out_path: Path,
    *,
    features: Sequence[str],
    groupby: str,
    layer: str | None = "lognorm",
    ncol: int = 2,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Stacked expression densities of each gene, one ridge per group."""
    if groupby not in adata.obs.columns:
        raise KeyError(f"obs['{groupby}'] not found.")
    genes = _usable_genes(adata, features)
    labels = adata.obs[groupby]
    label_str = labels.astype(str).to_numpy()
    categories = ordered_categories(labels)
    colors = palette(categories)

    nrow, ncol_use = grid_shape(len(genes), ncol)
    cw, ch = style.figsize_grid_cell
    fig, axes = plt.subplots(
        nrow, ncol_use, figsize=(cw * ncol_use, ch * nrow), squeeze=False
    )
    flat = axes.ravel()
    for ax, gene in zip(flat, genes):
        values = gene_values(adata, gene, layer=layer)
        lo, hi = float(np.min(values)), float(np.max(values))
        pad = 0.1 * (hi - lo) if hi > lo else 0.5
        grid = np.linspace(lo - pad, hi + pad, 200)
        for k, cat in enumerate(categories):
            group = values[label_str == cat]
            if group.size > 1 and np.ptp(group) > 0:
                density = gaussian_kde(group)(grid)
                density = 0.9 * density / float(density.max())
            else:
                density = np.zeros_like(grid)
            ax.fill_between(grid, k, k + density, color=colors[cat], alpha=0.7)
            ax.plot(grid, k + density, color="black", linewidth=0.6)
        ax.set_yticks(np.arange(len(categories)))
        ax.set_yticklabels(categories, fontsize=style.axis_label_fontsize)
        ax.set_xlabel("Expression level", fontsize=style.axis_label_fontsize)
        ax.set_title(gene, fontsize=style.title_fontsize)
    for ax in flat[len(genes):]:
        ax.set_visible(False)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_marker_violins(
    adata: ad.AnnData,
    out_path: Path,
    *,
    genes: Sequence[str],
    groupby: str,
    layer: str | None = "lognorm",
    ncol: int = 2,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Violin of each gene's expression across groups."""
    if groupby not in adata.obs.columns:
        raise KeyError(f"obs['{groupby}'] not found.")
    use = _usable_genes(adata, genes)
    labels = adata.obs[groupby]
    label_str = labels.astype(str).to_numpy()
    categories = ordered_categories(labels)

    nrow, ncol_use = grid_shape(len(use), ncol)
    cw, ch = style.figsize_grid_cell
    fig, axes = plt.subplots(
        nrow, ncol_use, figsize=(cw * 1.4 * ncol_use, ch * nrow), squeeze=False
    )
    flat = axes.ravel()
    for ax, gene in zip(flat, use):
        values = gene_values(adata, gene, layer=layer)
        violin_with_jitter(
            ax, [values[label_str == c] for c in categories], categories, style=style
        )
        ax.set_title(gene, fontsize=style.title_fontsize)
        ax.set_ylabel("Expression level", fontsize=style.axis_label_fontsize)
    for ax in flat[len(use):]:
        ax.set_visible(False)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_marker_heatmap(
    adata: ad.AnnData,
    out_path: Path,
    *,
    genes: Sequence[str],
    groupby: str,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Scaled expression (`X`) of marker genes, cells grouped by `groupby`."""
    if groupby not in adata.obs.columns:
        raise KeyError(f"obs['{groupby}'] not found.")
    use = list(dict.fromkeys(_usable_genes(adata, genes)))
    labels = adata.obs[groupby]
    label_str = labels.astype(str).to_numpy()
    categories = ordered_categories(labels)

    cell_order = np.concatenate(
        [np.flatnonzero(label_str == cat) for cat in categories]
    )
    gene_idx = adata.var_names.get_indexer(use)
    block = adata.X[cell_order][:, gene_idx]
    block = block.toarray() if sp.issparse(block) else np.asarray(block, dtype=float)
    clip = style.heatmap_clip

    fig, ax = plt.subplots(
        figsize=(style.figsize_heatmap[0], max(3.0, 0.14 * len(use) + 1.5))
    )
    im = ax.imshow(
        np.clip(block.T, -clip, clip),
        aspect="auto",
        cmap=style.cmap_heatmap,
        vmin=-clip,
        vmax=clip,
        interpolation="nearest",
    )
    bounds = np.cumsum([int((label_str == cat).sum()) for cat in categories])
    for b in bounds[:-1]:
        ax.axvline(b - 0.5, color="white", linewidth=1.0)
    starts = np.concatenate([[0], bounds[:-1]])
    ax.set_xticks((starts + bounds) / 2.0 - 0.5)
    ax.set_xticklabels(
        categories, rotation=45, ha="left", fontsize=style.annotation_fontsize
    )
    ax.xaxis.tick_top()
    ax.set_yticks(np.arange(len(use)))
    ax.set_yticklabels(use, fontsize=max(4, style.annotation_fontsize - 2))
    fig.colorbar(im, ax=ax, shrink=0.6, pad=0.02, label="Scaled expression")
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)
