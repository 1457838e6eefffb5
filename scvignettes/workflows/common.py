"""Output layout and run manifests shared by the walkthrough workflows."""

from __future__ import annotations

import importlib.metadata as importlib_metadata
import logging
import platform
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from scvignettes._version import __version__
from scvignettes.io import ensure_dir, write_json
from scvignettes.plotting.styles import plot_style_dict

TRACKED_PACKAGES = (
    "scanpy",
    "anndata",
    "numpy",
    "pandas",
    "scipy",
    "scikit-learn",
    "matplotlib",
)


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def prepare_run_dirs(outdir: str | Path) -> dict[str, Path]:
    root = ensure_dir(outdir)
    return {
        "root": root,
        "figures": ensure_dir(root / "figures"),
        "tables": ensure_dir(root / "tables"),
        "logs": ensure_dir(root / "logs"),
    }


def library_versions() -> dict[str, str]:
    versions = {"scvignettes": __version__, "python": platform.python_version()}
    for name in TRACKED_PACKAGES:
        try:
            versions[name] = importlib_metadata.version(name)
        except importlib_metadata.PackageNotFoundError:
            versions[name] = "not installed"
    return versions


def write_run_metadata(
    path: Path,
    *,
    workflow: str,
    config: Any,
    summary: dict[str, Any],
    started_utc: str,
) -> None:
    payload = {
        "workflow": workflow,
        "started_utc": started_utc,
        "finished_utc": now_utc_iso(),
        "config": asdict(config) if is_dataclass(config) else dict(config),
        "summary": summary,
        "versions": library_versions(),
        "plot_style": plot_style_dict(),
    }
    write_json(path, payload)


def valid_pcs(
    requested: tuple[int, ...] | list[int], n_comps: int, logger: logging.Logger
) -> list[int]:
    keep = [pc for pc in requested if 1 <= pc <= n_comps]
    dropped = [pc for pc in requested if pc not in keep]
    if dropped:
        logger.warning(
            "Heatmap PCs %s exceed the %d computed components; skipped.",
            dropped,
            n_comps,
        )
    return keep
