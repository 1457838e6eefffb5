"""Figure factories for the walkthrough pipelines (JPEG output)."""

from scvignettes.plotting.dimred import (
    dim_heatmap_matrix,
    plot_dim_heatmap,
    plot_elbow,
    plot_pca_loadings,
    plot_variable_features,
)
from scvignettes.plotting.embedding import plot_dim, plot_features
from scvignettes.plotting.expression import (
    plot_marker_heatmap,
    plot_marker_violins,
    plot_ridge,
)
from scvignettes.plotting.qc import plot_feature_scatter, plot_qc_violins
from scvignettes.plotting.styles import (
    DEFAULT_PLOT_STYLE,
    PlotStyle,
    apply_plot_style,
    plot_style_dict,
)
from scvignettes.plotting.utils import figure_path, sanitize_stem, save_figure

__all__ = [
    "PlotStyle",
    "DEFAULT_PLOT_STYLE",
    "apply_plot_style",
    "plot_style_dict",
    "save_figure",
    "figure_path",
    "sanitize_stem",
    "plot_qc_violins",
    "plot_feature_scatter",
    "plot_variable_features",
    "plot_elbow",
    "plot_pca_loadings",
    "plot_dim_heatmap",
    "dim_heatmap_matrix",
    "plot_dim",
    "plot_features",
    "plot_ridge",
    "plot_marker_violins",
    "plot_marker_heatmap",
]
