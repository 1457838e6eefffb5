"""Figure saving and data-access helpers shared by the plot factories."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import anndata as ad
import matplotlib.figure
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scipy.sparse as sp

from scvignettes.clustering import sorted_cluster_ids
from scvignettes.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle


def sanitize_stem(label: str, max_len: int = 60) -> str:
    """Create deterministic filesystem-safe stems for figure names."""
    clean = "".join(
        ch if (ch.isalnum() or ch in {"_", "-"}) else "_" for ch in str(label)
    )
    clean = clean.strip("_") or "figure"
    return clean[:max_len]


def figure_path(out_dir: Path, name: str, style: PlotStyle = DEFAULT_PLOT_STYLE) -> Path:
    return Path(out_dir) / f"{sanitize_stem(name)}.{style.image_format}"


def save_figure(
    fig: matplotlib.figure.Figure,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
    bbox_tight: bool = True,
    close: bool = True,
) -> Path:
    """Save a figure (JPEG by default) and optionally close it."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    save_kwargs: dict[str, object] = {
        "dpi": style.dpi,
        "facecolor": "white",
        "pad_inches": 0.05,
    }
    if out_path.suffix.lower() in {".jpg", ".jpeg"}:
        save_kwargs["pil_kwargs"] = {"quality": int(style.jpeg_quality)}
    if bbox_tight:
        save_kwargs["bbox_inches"] = "tight"
    fig.savefig(out_path, **save_kwargs)
    if close:
        plt.close(fig)
    return out_path


def grid_shape(n: int, ncol: int) -> tuple[int, int]:
    ncol_use = max(1, min(int(ncol), int(n)))
    nrow = int(np.ceil(int(n) / ncol_use))
    return nrow, ncol_use


def gene_values(adata: ad.AnnData, gene: str, layer: str | None = "lognorm") -> np.ndarray:
    """Dense expression vector of one gene from `layer` (or `X` when None)."""
    if gene not in adata.var_names:
        raise KeyError(f"Gene '{gene}' not found in var_names.")
    j = int(adata.var_names.get_loc(gene))
    if layer is None:
        mat = adata.X
    else:
        if layer not in adata.layers:
            raise KeyError(f"Layer '{layer}' not found.")
        mat = adata.layers[layer]
    col = mat[:, j]
    if sp.issparse(col):
        return col.toarray().ravel().astype(float)
    return np.asarray(col).ravel().astype(float)


def present_genes(adata: ad.AnnData, genes: Sequence[str]) -> tuple[list[str], list[str]]:
    present = [g for g in genes if g in adata.var_names]
    missing = [g for g in genes if g not in adata.var_names]
    return present, missing


def ordered_categories(labels: pd.Series) -> list[str]:
    """Categories in declared order if categorical, else numeric-aware sort."""
    if isinstance(labels.dtype, pd.CategoricalDtype):
        used = set(labels.astype(str))
        return [str(c) for c in labels.cat.categories if str(c) in used]
    return sorted_cluster_ids(labels)


def palette(categories: Sequence[str]) -> dict[str, tuple[float, float, float, float]]:
    cmap = plt.get_cmap("tab20")
    return {cat: cmap(i % 20) for i, cat in enumerate(categories)}
