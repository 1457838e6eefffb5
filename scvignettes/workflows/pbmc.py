"""PBMC clustering walkthrough: QC, normalization, PCA, Leiden, UMAP, markers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import anndata as ad
import matplotlib

# Use a non-interactive backend for reproducible headless runs.
matplotlib.use("Agg")
import pandas as pd

from scvignettes.clustering import (
    build_neighbors,
    cluster_cells,
    cluster_sizes,
    rename_clusters,
    run_umap,
)
from scvignettes.config import PbmcConfig, load_pbmc_config
from scvignettes.io import read_10x_directory, setup_logger, write_table
from scvignettes.markers import (
    ROC_COLUMNS,
    TEST_COLUMNS,
    find_all_markers,
    find_markers,
    top_markers,
)
from scvignettes.plotting import (
    apply_plot_style,
    figure_path,
    plot_dim,
    plot_dim_heatmap,
    plot_elbow,
    plot_feature_scatter,
    plot_features,
    plot_marker_heatmap,
    plot_marker_violins,
    plot_pca_loadings,
    plot_qc_violins,
    plot_variable_features,
)
from scvignettes.preprocess import (
    find_variable_features,
    log_normalize,
    pc_standard_deviations,
    pca_loadings_table,
    run_pca,
    scale_data,
)
from scvignettes.qc import (
    annotate_qc_metrics,
    filter_cells_by_qc,
    filter_object,
    qc_summary,
)
from scvignettes.workflows.common import (
    now_utc_iso,
    prepare_run_dirs,
    valid_pcs,
    write_run_metadata,
)

LOGGER_NAME = "scvignettes"
HEATMAP_GRID_PCS = 15


def _safe_markers(
    adata: ad.AnnData,
    *,
    label: str,
    logger: logging.Logger,
    **kwargs: Any,
) -> pd.DataFrame:
    """Run find_markers; a comparison the clustering cannot support is skipped."""
    try:
        return find_markers(adata, **kwargs)
    except (KeyError, ValueError) as exc:
        logger.warning("Marker comparison '%s' skipped: %s", label, exc)
        columns = ROC_COLUMNS if kwargs.get("method") == "roc" else TEST_COLUMNS
        return pd.DataFrame(columns=columns)


def _qc_stage(
    adata: ad.AnnData, cfg: PbmcConfig, dirs: dict[str, Path]
) -> tuple[ad.AnnData, dict[str, int]]:
    figures = dirs["figures"]
    annotate_qc_metrics(adata, mito_prefix=cfg.mito_prefix)
    write_table(qc_summary(adata), dirs["tables"] / "qc_summary_before_filter.csv")
    plot_qc_violins(adata, figure_path(figures, "qc_violins"))
    plot_feature_scatter(
        adata,
        "total_counts",
        "pct_counts_mt",
        figure_path(figures, "qc_scatter_counts_vs_percent_mt"),
    )
    plot_feature_scatter(
        adata,
        "total_counts",
        "n_genes_by_counts",
        figure_path(figures, "qc_scatter_counts_vs_genes"),
    )
    filtered, report = filter_cells_by_qc(adata, cfg.qc)
    write_table(qc_summary(filtered), dirs["tables"] / "qc_summary_after_filter.csv")
    return filtered, report.to_json()


def run_pbmc(cfg: PbmcConfig) -> dict[str, Any]:
    started = now_utc_iso()
    dirs = prepare_run_dirs(cfg.outdir)
    logger = setup_logger(dirs["logs"] / "pbmc.log", LOGGER_NAME)
    apply_plot_style()
    figures, tables = dirs["figures"], dirs["tables"]

    adata = read_10x_directory(cfg.tenx_dir)
    adata = filter_object(adata, min_cells=cfg.min_cells, min_features=cfg.min_features)
    adata.obs["sample"] = pd.Categorical([cfg.sample_name] * adata.n_obs)
    adata, qc_report = _qc_stage(adata, cfg, dirs)

    log_normalize(adata)
    hvgs = find_variable_features(adata, n_top=cfg.n_top_genes, flavor=cfg.hvg_flavor)
    logger.info("Top 10 variable genes: %s", ", ".join(hvgs[:10]))
    plot_variable_features(
        adata, figure_path(figures, "variable_features"), label_top=hvgs[:10]
    )
    scale_data(adata)

    n_comps = run_pca(adata, n_comps=cfg.n_pcs, seed=cfg.seed)
    write_table(
        pca_loadings_table(adata, n_pcs=min(5, n_comps), n_features=5),
        tables / "pca_loadings.csv",
    )
    plot_pca_loadings(
        adata, figure_path(figures, "pca_loadings"), pcs=[1, 2][: min(2, n_comps)]
    )
    plot_dim(adata, figure_path(figures, "pca"), color_by="sample", basis="X_pca")
    heatmap_pcs = valid_pcs(cfg.heatmap_pcs, n_comps, logger)
    if heatmap_pcs:
        plot_dim_heatmap(
            adata, figure_path(figures, "pca_heatmap"), pcs=heatmap_pcs
        )
    plot_dim_heatmap(
        adata,
        figure_path(figures, "pca_heatmap_grid"),
        pcs=list(range(1, min(HEATMAP_GRID_PCS, n_comps) + 1)),
    )
    plot_elbow(pc_standard_deviations(adata), figure_path(figures, "elbow"))

    clus = cfg.clustering
    build_neighbors(adata, n_neighbors=clus.n_neighbors, n_pcs=clus.n_pcs, seed=cfg.seed)
    sizes = cluster_cells(adata, resolution=clus.resolution, key=clus.key, seed=cfg.seed)
    write_table(
        sizes.rename_axis("cluster").reset_index(name="n_cells"),
        tables / "cluster_sizes.csv",
    )
    run_umap(adata, min_dist=clus.umap_min_dist, seed=cfg.seed)
    plot_dim(
        adata,
        figure_path(figures, "umap_clusters"),
        color_by=clus.key,
        label_on_data=True,
    )

    mk = cfg.markers
    contrast_name = "_".join(mk.contrast_ident_2)
    marker_tables = {
        f"markers_cluster{mk.ident_1}_vs_rest": _safe_markers(
            adata,
            label=f"{mk.ident_1} vs rest",
            logger=logger,
            groupby=clus.key,
            ident_1=mk.ident_1,
            method=mk.method,
            min_pct=mk.min_pct,
            logfc_threshold=mk.logfc_threshold,
        ),
        f"markers_cluster{mk.contrast_ident_1}_vs_{contrast_name}": _safe_markers(
            adata,
            label=f"{mk.contrast_ident_1} vs {', '.join(mk.contrast_ident_2)}",
            logger=logger,
            groupby=clus.key,
            ident_1=mk.contrast_ident_1,
            ident_2=list(mk.contrast_ident_2),
            method=mk.method,
            min_pct=mk.min_pct,
            logfc_threshold=mk.logfc_threshold,
        ),
        f"markers_cluster{mk.roc_ident}_roc": _safe_markers(
            adata,
            label=f"{mk.roc_ident} ROC",
            logger=logger,
            groupby=clus.key,
            ident_1=mk.roc_ident,
            method="roc",
            min_pct=mk.min_pct,
            logfc_threshold=mk.logfc_threshold,
            only_pos=True,
        ),
    }
    all_markers = find_all_markers(
        adata,
        clus.key,
        method=mk.method,
        min_pct=mk.min_pct,
        logfc_threshold=mk.logfc_threshold,
        only_pos=True,
    )
    marker_tables["markers_all_clusters"] = all_markers
    for name, table in marker_tables.items():
        write_table(table, tables / f"{name}.csv")

    if any(g in adata.var_names for g in cfg.violin_genes):
        plot_marker_violins(
            adata,
            figure_path(figures, "violin_markers"),
            genes=cfg.violin_genes,
            groupby=clus.key,
        )
    else:
        logger.warning("None of the configured violin genes are present; skipped.")
    marker_genes = [g for g in cfg.marker_genes if g in adata.var_names]
    if marker_genes:
        plot_features(
            adata, figure_path(figures, "umap_marker_expression"), features=marker_genes
        )
    else:
        logger.warning("None of the configured marker genes are present; skipped.")
    top = top_markers(all_markers, n=mk.top_n)
    write_table(top, tables / f"markers_top{mk.top_n}_per_cluster.csv")
    if not top.empty:
        plot_marker_heatmap(
            adata,
            figure_path(figures, f"heatmap_top{mk.top_n}_markers"),
            genes=top["gene"].tolist(),
            groupby=clus.key,
        )

    cell_type_map: dict[str, str] = {}
    if cfg.cell_types is not None:
        try:
            cell_type_map = rename_clusters(adata, cfg.cell_types, key=clus.key)
        except ValueError as exc:
            logger.warning("Cluster relabeling skipped: %s", exc)
        else:
            plot_dim(
                adata,
                figure_path(figures, "umap_cell_types"),
                color_by="cell_type",
                label_on_data=True,
            )

    summary: dict[str, Any] = {
        "n_cells": int(adata.n_obs),
        "n_genes": int(adata.n_vars),
        "qc": qc_report,
        "n_variable_genes": len(hvgs),
        "top10_variable_genes": hvgs[:10],
        "n_pca_components": int(n_comps),
        "cluster_sizes": {
            str(k): int(v) for k, v in cluster_sizes(adata, clus.key).items()
        },
        "cell_types": cell_type_map,
        "n_markers": {name: int(len(t)) for name, t in marker_tables.items()},
        "figures": sorted(p.name for p in figures.glob("*")),
    }
    if cfg.write_h5ad:
        h5ad_path = dirs["root"] / "pbmc.h5ad"
        adata.write_h5ad(h5ad_path)
        summary["h5ad"] = str(h5ad_path)
    write_run_metadata(
        dirs["root"] / "metadata.json",
        workflow="pbmc",
        config=cfg,
        summary=summary,
        started_utc=started,
    )
    logger.info("PBMC walkthrough finished: %d clusters", len(summary["cluster_sizes"]))
    return summary


def run_pbmc_workflow(config_path: str | Path) -> dict[str, Any]:
    """Run the PBMC clustering walkthrough from a JSON config."""
    return run_pbmc(load_pbmc_config(config_path))
