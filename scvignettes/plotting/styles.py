"""Shared plotting style settings for walkthrough figures."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import matplotlib
import matplotlib.pyplot as plt


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across figures."""

    dpi: int = 150
    image_format: str = "jpg"
    jpeg_quality: int = 90
    figsize_embedding: tuple[float, float] = (6.5, 5.0)
    figsize_violin_panel: tuple[float, float] = (3.2, 4.0)
    figsize_scatter: tuple[float, float] = (5.0, 4.5)
    figsize_heatmap: tuple[float, float] = (9.0, 7.0)
    figsize_grid_cell: tuple[float, float] = (3.6, 3.2)
    s_point: float = 6.0
    s_jitter: float = 2.0
    alpha_point: float = 0.85
    alpha_violin: float = 0.6
    cmap_feature: str = "Reds"
    cmap_heatmap: str = "RdBu_r"
    highlight_color: str = "#d62728"
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11
    annotation_fontsize: int = 8
    heatmap_clip: float = 2.5
    max_legend_categories: int = 25


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Set matplotlib rcParams shared by every walkthrough figure."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.format": style.image_format,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "axes.spines.top": False,
            "axes.spines.right": False,
            "legend.fontsize": style.legend_fontsize,
            "legend.frameon": False,
            "image.cmap": style.cmap_heatmap,
        }
    )


def plot_style_dict(style: PlotStyle = DEFAULT_PLOT_STYLE) -> dict[str, Any]:
    """Style fields plus the matplotlib backend and version, for run metadata."""
    out = asdict(style)
    out["backend"] = str(matplotlib.get_backend())
    out["matplotlib_version"] = str(matplotlib.__version__)
    return out
