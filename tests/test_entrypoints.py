from __future__ import annotations

import importlib.util
import json
import sys
from pathlib import Path

import pytest

from scvignettes import cli
from scvignettes.workflows import cell_cycle, pbmc


def _load_script_module(script_name: str):
    root = Path(__file__).resolve().parents[1]
    script_path = root / "scripts" / script_name
    spec = importlib.util.spec_from_file_location(script_name.replace(".py", ""), script_path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Unable to load script module: {script_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_run_cell_cycle_script_calls_workflow(monkeypatch):
    module = _load_script_module("run_cell_cycle.py")
    called: list[str] = []
    monkeypatch.setattr(module, "run_cell_cycle_workflow", called.append)
    monkeypatch.setattr(sys, "argv", ["run_cell_cycle.py", "--config", "tiny.json"])

    rc = module.main()
    assert rc == 0
    assert called == ["tiny.json"]


def test_run_pbmc_script_defaults_to_project_config(monkeypatch):
    module = _load_script_module("run_pbmc.py")
    called: list[str] = []
    monkeypatch.setattr(module, "run_pbmc_workflow", called.append)

    rc = module.main([])
    assert rc == 0
    assert called == ["configs/pbmc3k.json"]


def test_cli_dispatches_to_workflow_and_prints_summary(monkeypatch, capsys):
    monkeypatch.setattr(
        cell_cycle, "run_cell_cycle_workflow", lambda path: {"config": str(path)}
    )
    monkeypatch.setattr(pbmc, "run_pbmc_workflow", lambda path: {"pbmc": str(path)})

    assert cli.main(["cell-cycle", "--config", "cc.json"]) == 0
    assert json.loads(capsys.readouterr().out) == {"config": "cc.json"}
    assert cli.main(["pbmc", "--config", "p.json"]) == 0
    assert json.loads(capsys.readouterr().out) == {"pbmc": "p.json"}


def test_cli_requires_a_workflow():
    with pytest.raises(SystemExit):
        cli.main([])
