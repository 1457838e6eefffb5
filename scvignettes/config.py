"""Configuration loading and typed parameter sets for the walkthrough pipelines."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

DEFAULT_RIDGE_GENES = ("PCNA", "TOP2A", "MCM6", "MKI67")

# Cluster labels for the PBMC 3k dataset at resolution 0.5, in cluster id order.
PBMC_CELL_TYPES = (
    "Naive CD4 T",
    "CD14+ Mono",
    "Memory CD4 T",
    "B",
    "CD8 T",
    "FCGR3A+ Mono",
    "NK",
    "DC",
    "Platelet",
)

PBMC_MARKER_GENES = (
    "MS4A1",
    "GNLY",
    "CD3E",
    "CD14",
    "FCER1A",
    "FCGR3A",
    "LYZ",
    "PPBP",
    "CD8A",
)


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load a pipeline config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def _check_keys(cls: type, payload: dict[str, Any], section: str) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(
            f"Unknown key(s) in '{section}': {', '.join(unknown)}. "
            f"Allowed: {', '.join(sorted(known))}."
        )


@dataclass(frozen=True)
class QCThresholds:
    """Cell filters applied after QC metrics are computed (exclusive bounds)."""

    min_features: int = 200
    max_features: int = 2500
    max_pct_mt: float = 5.0

    def __post_init__(self) -> None:
        if self.min_features < 0:
            raise ValueError("min_features must be non-negative.")
        if self.max_features <= self.min_features:
            raise ValueError("max_features must be greater than min_features.")
        if not 0.0 < self.max_pct_mt <= 100.0:
            raise ValueError("max_pct_mt must be in (0, 100].")

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "QCThresholds":
        _check_keys(QCThresholds, payload, "qc")
        return QCThresholds(
            min_features=int(payload.get("min_features", 200)),
            max_features=int(payload.get("max_features", 2500)),
            max_pct_mt=float(payload.get("max_pct_mt", 5.0)),
        )


@dataclass(frozen=True)
class ClusteringParams:
    n_pcs: int = 10
    n_neighbors: int = 15
    resolution: float = 0.5
    umap_min_dist: float = 0.5
    key: str = "leiden"

    def __post_init__(self) -> None:
        if self.n_pcs < 2 or self.n_neighbors < 2:
            raise ValueError("n_pcs and n_neighbors must both be >= 2.")
        if self.resolution <= 0:
            raise ValueError("resolution must be positive.")

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ClusteringParams":
        _check_keys(ClusteringParams, payload, "clustering")
        return ClusteringParams(
            n_pcs=int(payload.get("n_pcs", 10)),
            n_neighbors=int(payload.get("n_neighbors", 15)),
            resolution=float(payload.get("resolution", 0.5)),
            umap_min_dist=float(payload.get("umap_min_dist", 0.5)),
            key=str(payload.get("key", "leiden")),
        )


@dataclass(frozen=True)
class MarkerParams:
    method: str = "wilcoxon"
    min_pct: float = 0.25
    logfc_threshold: float = 0.25
    top_n: int = 10
    ident_1: str = "2"
    contrast_ident_1: str = "5"
    contrast_ident_2: tuple[str, ...] = ("0", "3")
    roc_ident: str = "0"

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "MarkerParams":
        _check_keys(MarkerParams, payload, "markers")
        return MarkerParams(
            method=str(payload.get("method", "wilcoxon")),
            min_pct=float(payload.get("min_pct", 0.25)),
            logfc_threshold=float(payload.get("logfc_threshold", 0.25)),
            top_n=int(payload.get("top_n", 10)),
            ident_1=str(payload.get("ident_1", "2")),
            contrast_ident_1=str(payload.get("contrast_ident_1", "5")),
            contrast_ident_2=tuple(
                str(x) for x in payload.get("contrast_ident_2", ("0", "3"))
            ),
            roc_ident=str(payload.get("roc_ident", "0")),
        )


@dataclass(frozen=True)
class CellCycleConfig:
    """Parameters of the cell-cycle scoring and regression walkthrough."""

    expression_path: str
    genes_path: str
    outdir: str = "outputs/cell_cycle"
    n_s_genes: int = 43
    n_top_genes: int = 2000
    hvg_flavor: str = "seurat"
    n_pcs: int = 50
    heatmap_pcs: tuple[int, ...] = (8, 10)
    ridge_genes: tuple[str, ...] = DEFAULT_RIDGE_GENES
    run_difference_regression: bool = True
    write_h5ad: bool = False
    seed: int = 0

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CellCycleConfig":
        _check_keys(CellCycleConfig, payload, "cell_cycle")
        for key in ("expression_path", "genes_path"):
            if key not in payload:
                raise ValueError(f"Config is missing required key '{key}'.")
        return CellCycleConfig(
            expression_path=str(payload["expression_path"]),
            genes_path=str(payload["genes_path"]),
            outdir=str(payload.get("outdir", "outputs/cell_cycle")),
            n_s_genes=int(payload.get("n_s_genes", 43)),
            n_top_genes=int(payload.get("n_top_genes", 2000)),
            hvg_flavor=str(payload.get("hvg_flavor", "seurat")),
            n_pcs=int(payload.get("n_pcs", 50)),
            heatmap_pcs=tuple(int(x) for x in payload.get("heatmap_pcs", (8, 10))),
            ridge_genes=tuple(
                str(x) for x in payload.get("ridge_genes", DEFAULT_RIDGE_GENES)
            ),
            run_difference_regression=bool(
                payload.get("run_difference_regression", True)
            ),
            write_h5ad=bool(payload.get("write_h5ad", False)),
            seed=int(payload.get("seed", 0)),
        )


@dataclass(frozen=True)
class PbmcConfig:
    """Parameters of the PBMC clustering walkthrough."""

    tenx_dir: str
    outdir: str = "outputs/pbmc"
    sample_name: str = "pbmc3k"
    min_cells: int = 3
    min_features: int = 200
    mito_prefix: str = "MT-"
    qc: QCThresholds = field(default_factory=QCThresholds)
    n_top_genes: int = 2000
    hvg_flavor: str = "seurat_v3"
    n_pcs: int = 50
    heatmap_pcs: tuple[int, ...] = (1,)
    clustering: ClusteringParams = field(default_factory=ClusteringParams)
    markers: MarkerParams = field(default_factory=MarkerParams)
    marker_genes: tuple[str, ...] = PBMC_MARKER_GENES
    violin_genes: tuple[str, ...] = ("MS4A1", "CD79A")
    cell_types: tuple[str, ...] | None = PBMC_CELL_TYPES
    write_h5ad: bool = False
    seed: int = 0

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "PbmcConfig":
        _check_keys(PbmcConfig, payload, "pbmc")
        if "tenx_dir" not in payload:
            raise ValueError("Config is missing required key 'tenx_dir'.")
        cell_types = payload.get("cell_types", PBMC_CELL_TYPES)
        return PbmcConfig(
            tenx_dir=str(payload["tenx_dir"]),
            outdir=str(payload.get("outdir", "outputs/pbmc")),
            sample_name=str(payload.get("sample_name", "pbmc3k")),
            min_cells=int(payload.get("min_cells", 3)),
            min_features=int(payload.get("min_features", 200)),
            mito_prefix=str(payload.get("mito_prefix", "MT-")),
            qc=QCThresholds.from_dict(payload.get("qc", {})),
            n_top_genes=int(payload.get("n_top_genes", 2000)),
            hvg_flavor=str(payload.get("hvg_flavor", "seurat_v3")),
            n_pcs=int(payload.get("n_pcs", 50)),
            heatmap_pcs=tuple(int(x) for x in payload.get("heatmap_pcs", (1,))),
            clustering=ClusteringParams.from_dict(payload.get("clustering", {})),
            markers=MarkerParams.from_dict(payload.get("markers", {})),
            marker_genes=tuple(
                str(x) for x in payload.get("marker_genes", PBMC_MARKER_GENES)
            ),
            violin_genes=tuple(
                str(x) for x in payload.get("violin_genes", ("MS4A1", "CD79A"))
            ),
            cell_types=None if cell_types is None else tuple(str(x) for x in cell_types),
            write_h5ad=bool(payload.get("write_h5ad", False)),
            seed=int(payload.get("seed", 0)),
        )


def load_cell_cycle_config(path: str | Path) -> CellCycleConfig:
    return CellCycleConfig.from_dict(load_json_config(path))


def load_pbmc_config(path: str | Path) -> PbmcConfig:
    return PbmcConfig.from_dict(load_json_config(path))
