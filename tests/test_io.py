from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import scipy.io
import scipy.sparse as sp

from scvignettes.io import (
    read_10x_directory,
    read_cell_cycle_genes,
    read_expression_table,
    setup_logger,
    write_table,
)


def _write_table(path: Path) -> None:
    lines = [
        "gene\tcellA\tcellB\tcellC",
        "PCNA\t1\t0\t3",
        "TOP2A\t0\t5\t2",
        "ACTB\t10\t12\t9",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_tenx(tenx_dir: Path) -> np.ndarray:
    tenx_dir.mkdir(parents=True)
    counts = np.array(
        [
            [1, 0, 2, 0, 3],
            [0, 4, 0, 1, 0],
            [5, 0, 0, 0, 2],
            [0, 0, 7, 1, 1],
        ],
        dtype=np.int64,
    )
    # genes x cells on disk
    scipy.io.mmwrite(str(tenx_dir / "matrix.mtx"), sp.coo_matrix(counts))
    genes = ["ENSG01\tMS4A1", "ENSG02\tCD3E", "ENSG03\tMT-CO1", "ENSG04\tLYZ"]
    (tenx_dir / "genes.tsv").write_text("\n".join(genes) + "\n", encoding="utf-8")
    barcodes = [f"AAAC{i}-1" for i in range(counts.shape[1])]
    (tenx_dir / "barcodes.tsv").write_text("\n".join(barcodes) + "\n", encoding="utf-8")
    return counts


def test_read_expression_table_transposes_genes_by_cells(tmp_path: Path):
    path = tmp_path / "expr.txt"
    _write_table(path)
    adata = read_expression_table(path)
    assert adata.shape == (3, 3)
    assert list(adata.obs_names) == ["cellA", "cellB", "cellC"]
    assert list(adata.var_names) == ["PCNA", "TOP2A", "ACTB"]
    assert sp.issparse(adata.X)
    dense = adata.X.toarray()
    assert dense[1, 1] == 5.0
    assert dense[2, 0] == 3.0


def test_read_expression_table_rejects_non_numeric(tmp_path: Path):
    path = tmp_path / "bad.txt"
    path.write_text("gene\tc1\tc2\nPCNA\t1\tabc\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Non-numeric value"):
        read_expression_table(path)


def test_read_expression_table_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_expression_table(tmp_path / "absent.txt")


def test_read_expression_table_deduplicates_gene_names(tmp_path: Path, caplog):
    caplog.set_level(logging.WARNING)
    path = tmp_path / "dup.txt"
    path.write_text("gene\tc1\tc2\nPCNA\t1\t2\nPCNA\t3\t4\n", encoding="utf-8")
    adata = read_expression_table(path)
    assert adata.var_names.is_unique
    assert "Duplicate gene names" in caplog.text


def test_read_cell_cycle_genes_splits_s_and_g2m(tmp_path: Path):
    path = tmp_path / "genes.txt"
    path.write_text("MCM5\nPCNA\nTYMS\n\nHMGB2\nCDK1\n", encoding="utf-8")
    genes = read_cell_cycle_genes(path, n_s_genes=3)
    assert genes.s_genes == ("MCM5", "PCNA", "TYMS")
    assert genes.g2m_genes == ("HMGB2", "CDK1")
    assert genes.all_genes == ("MCM5", "PCNA", "TYMS", "HMGB2", "CDK1")


def test_read_cell_cycle_genes_requires_g2m_genes(tmp_path: Path):
    path = tmp_path / "genes.txt"
    path.write_text("MCM5\nPCNA\n", encoding="utf-8")
    with pytest.raises(ValueError, match="expected more than 2"):
        read_cell_cycle_genes(path, n_s_genes=2)


def test_read_10x_directory_legacy_layout(tmp_path: Path):
    counts = _write_tenx(tmp_path / "hg19")
    adata = read_10x_directory(tmp_path / "hg19")
    assert adata.shape == (5, 4)
    assert list(adata.var_names) == ["MS4A1", "CD3E", "MT-CO1", "LYZ"]
    assert adata.obs_names[0] == "AAAC0-1"
    X = adata.X.toarray() if sp.issparse(adata.X) else np.asarray(adata.X)
    np.testing.assert_allclose(X, counts.T)


def test_read_10x_directory_errors(tmp_path: Path):
    with pytest.raises(FileNotFoundError, match="10x directory not found"):
        read_10x_directory(tmp_path / "missing")
    (tmp_path / "empty").mkdir()
    with pytest.raises(FileNotFoundError, match="matrix.mtx"):
        read_10x_directory(tmp_path / "empty")


def test_setup_logger_writes_file_and_replaces_handlers(tmp_path: Path):
    log_path = tmp_path / "logs" / "run.log"
    log = setup_logger(log_path, "scvignettes.test_io")
    setup_logger(log_path, "scvignettes.test_io")
    assert len(log.handlers) == 2
    log.info("hello from the test")
    for handler in log.handlers:
        handler.flush()
    text = log_path.read_text(encoding="utf-8")
    assert "| INFO | hello from the test" in text


def test_write_table_creates_parent(tmp_path: Path):
    out = write_table(pd.DataFrame({"a": [1, 2]}), tmp_path / "nested" / "t.csv")
    assert out.read_text(encoding="utf-8").splitlines() == ["a", "1", "2"]


def test_read_expression_table_accepts_header_without_gene_column(tmp_path: Path):
    path = tmp_path / "short_header.txt"
    lines = [
        "cellA\tcellB\tcellC",
        "PCNA\t1\t0\t3",
        "TOP2A\t0\t5\t2",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    adata = read_expression_table(path)
    assert adata.shape == (3, 2)
    assert list(adata.obs_names) == ["cellA", "cellB", "cellC"]
    assert list(adata.var_names) == ["PCNA", "TOP2A"]
    np.testing.assert_allclose(adata.X.toarray()[:, 1], [0.0, 5.0, 2.0])
