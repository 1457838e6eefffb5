"""QC metric figure factories."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import anndata as ad
import matplotlib.axes
import matplotlib.pyplot as plt
import numpy as np

from scvignettes.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from scvignettes.plotting.utils import save_figure

QC_LABELS = {
    "n_genes_by_counts": "Genes per cell",
    "total_counts": "UMIs per cell",
    "pct_counts_mt": "Percent mitochondrial",
}


def violin_with_jitter(
    ax: matplotlib.axes.Axes,
    groups: Sequence[np.ndarray],
    labels: Sequence[str],
    *,
    seed: int = 0,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    """Violins for each value group with jittered points on top."""
    positions = np.arange(1, len(groups) + 1)
    plottable = [
        (p, g) for p, g in zip(positions, groups) if g.size > 1 and np.ptp(g) > 0
    ]
    if plottable:
        parts = ax.violinplot(
            [g for _, g in plottable],
            positions=[p for p, _ in plottable],
            showextrema=False,
            widths=0.8,
        )
        for body in parts["bodies"]:
            body.set_alpha(style.alpha_violin)
    rng = np.random.default_rng(seed)
    for pos, values in zip(positions, groups):
        jitter = rng.uniform(-0.2, 0.2, size=values.size)
        ax.scatter(
            pos + jitter,
            values,
            s=style.s_jitter,
            color="black",
            alpha=0.4,
            linewidths=0,
            rasterized=True,
        )
    ax.set_xticks(positions)
    if len(labels) > 3:
        ax.set_xticklabels(labels, rotation=45, ha="right")
    else:
        ax.set_xticklabels(labels)


def plot_qc_violins(
    adata: ad.AnnData,
    out_path: Path,
    *,
    metrics: Sequence[str] = ("n_genes_by_counts", "total_counts", "pct_counts_mt"),
    groupby: str | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """One violin panel per QC metric, optionally split by an obs column."""
    missing = [m for m in metrics if m not in adata.obs.columns]
    if missing:
        raise KeyError(f"QC metrics not in obs: {', '.join(missing)}")
    if groupby is None:
        labels = ["all cells"]
        masks = [np.ones(adata.n_obs, dtype=bool)]
    else:
        if groupby not in adata.obs.columns:
            raise KeyError(f"obs['{groupby}'] not found.")
        group_values = adata.obs[groupby].astype(str).to_numpy()
        labels = sorted(set(group_values))
        masks = [group_values == lab for lab in labels]

    width, height = style.figsize_violin_panel
    fig, axes = plt.subplots(1, len(metrics), figsize=(width * len(metrics), height))
    axes = np.atleast_1d(axes)
    for ax, metric in zip(axes, metrics):
        values = adata.obs[metric].to_numpy(dtype=float)
        violin_with_jitter(ax, [values[m] for m in masks], labels, style=style)
        ax.set_title(QC_LABELS.get(metric, metric), fontsize=style.title_fontsize)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_feature_scatter(
    adata: ad.AnnData,
    x: str,
    y: str,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> float:
    """Scatter two obs metrics; title carries their Pearson correlation.

    Returns the correlation.
    """
    for key in (x, y):
        if key not in adata.obs.columns:
            raise KeyError(f"obs['{key}'] not found.")
    xv = adata.obs[x].to_numpy(dtype=float)
    yv = adata.obs[y].to_numpy(dtype=float)
    if xv.size > 1 and np.ptp(xv) > 0 and np.ptp(yv) > 0:
        r = float(np.corrcoef(xv, yv)[0, 1])
    else:
        r = float("nan")

    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    ax.scatter(
        xv,
        yv,
        s=style.s_point,
        alpha=style.alpha_point,
        linewidths=0,
        rasterized=True,
    )
    ax.set_xlabel(QC_LABELS.get(x, x), fontsize=style.axis_label_fontsize)
    ax.set_ylabel(QC_LABELS.get(y, y), fontsize=style.axis_label_fontsize)
    ax.set_title(f"r = {r:.2f}", fontsize=style.title_fontsize)
    fig.tight_layout()
    save_figure(fig, out_path, style=style)
    return r
