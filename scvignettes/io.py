"""Input loaders, output helpers, and logging setup."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp

logger = logging.getLogger(__name__)

TENX_MATRIX_NAMES = ("matrix.mtx", "matrix.mtx.gz")


@dataclass(frozen=True)
class CellCycleGenes:
    """S-phase and G2/M marker gene lists."""

    s_genes: tuple[str, ...]
    g2m_genes: tuple[str, ...]

    @property
    def all_genes(self) -> tuple[str, ...]:
        return self.s_genes + self.g2m_genes


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)


def setup_logger(log_path: Path, logger_name: str = "scvignettes") -> logging.Logger:
    ensure_dir(log_path.parent)
    out = logging.getLogger(logger_name)
    out.setLevel(logging.INFO)
    for handler in list(out.handlers):
        handler.close()
    out.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    out.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    out.addHandler(sh)
    return out


def read_expression_table(path: str | Path, sep: str = "\t") -> ad.AnnData:
    """Read a genes x cells delimited expression table as a cells x genes AnnData.

    The first column holds gene names and the header row holds cell names. A
    header one field shorter than the body rows is accepted.
    """
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Expression table not found: {table_path}")

    df = pd.read_csv(table_path, sep=sep, index_col=0)
    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ValueError(f"Expression table '{table_path}' is empty.")

    values = df.apply(pd.to_numeric, errors="coerce")
    bad = values.isna().to_numpy()
    if bad.any():
        row, col = np.argwhere(bad)[0]
        raise ValueError(
            f"Non-numeric value in '{table_path}' at gene '{df.index[row]}', "
            f"cell '{df.columns[col]}'."
        )

    X = sp.csr_matrix(values.to_numpy(dtype=np.float32).T)
    adata = ad.AnnData(
        X=X,
        obs=pd.DataFrame(index=df.columns.astype(str)),
        var=pd.DataFrame(index=df.index.astype(str)),
    )
    if not adata.var_names.is_unique:
        logger.warning("Duplicate gene names in %s; making them unique.", table_path)
        adata.var_names_make_unique()
    logger.info(
        "Loaded %s: %d cells x %d genes", table_path.name, adata.n_obs, adata.n_vars
    )
    return adata


def read_10x_directory(
    path: str | Path, var_names: str = "gene_symbols"
) -> ad.AnnData:
    """Read a 10x Genomics matrix directory (matrix, barcodes, genes/features)."""
    tenx_dir = Path(path)
    if not tenx_dir.is_dir():
        raise FileNotFoundError(f"10x directory not found: {tenx_dir}")
    if not any((tenx_dir / name).exists() for name in TENX_MATRIX_NAMES):
        raise FileNotFoundError(
            f"No matrix.mtx(.gz) in '{tenx_dir}'; is this a 10x output directory?"
        )

    adata = sc.read_10x_mtx(tenx_dir, var_names=var_names, cache=False)
    adata.var_names_make_unique()
    logger.info(
        "Loaded 10x directory %s: %d cells x %d genes",
        tenx_dir,
        adata.n_obs,
        adata.n_vars,
    )
    return adata


def read_cell_cycle_genes(path: str | Path, n_s_genes: int = 43) -> CellCycleGenes:
    """Read a one-gene-per-line list whose first `n_s_genes` entries are S phase.

    The remaining entries are G2/M genes.
    """
    genes_path = Path(path)
    if not genes_path.exists():
        raise FileNotFoundError(f"Cell-cycle gene list not found: {genes_path}")
    genes = [
        line.strip().split("\t")[0]
        for line in genes_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    if n_s_genes <= 0:
        raise ValueError("n_s_genes must be positive.")
    if len(genes) <= n_s_genes:
        raise ValueError(
            f"Gene list '{genes_path}' has {len(genes)} genes; expected more than "
            f"{n_s_genes} (S genes followed by G2/M genes)."
        )
    return CellCycleGenes(
        s_genes=tuple(genes[:n_s_genes]), g2m_genes=tuple(genes[n_s_genes:])
    )


def write_table(df: pd.DataFrame, path: str | Path, index: bool = False) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=index)
    return out
