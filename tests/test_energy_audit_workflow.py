import json
from pathlib import Path

import pytest

from febopy.workflows import main, run_energy_audit, write_input_template


EXAMPLES = Path(__file__).parents[1] / "examples"


def _write_config(tmp_path: Path, **overrides) -> Path:
    cfg = {
        "run": {"name": "griewank audit", "output_dir": "out"},
        "document": {"path": str(EXAMPLES / "griewank.febo.yaml"), "parameters": {"n": 2}},
        "assignments": [{"x": [0.0, 0.0]}, {"x": [1.0, 1.0]}],
        "evaluation": {"verify": True},
    }
    cfg.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(cfg), encoding="utf-8")
    return path


def test_run_energy_audit_writes_report(tmp_path) -> None:
    report = run_energy_audit(_write_config(tmp_path))
    assert report["run"]["status"] == "ok"
    assert report["run"]["name"] == "griewank_audit"
    assert report["document"]["name"] == "griewank"
    assert len(report["results"]) == 2
    assert report["results"][0]["total"] == pytest.approx(0.0, abs=1e-15)
    assert report["results"][1]["total"] == pytest.approx(0.5898, abs=1e-4)
    assert all(entry["verified"] for entry in report["results"])
    assert report["error"] is None

    report_path = Path(report["outputs"]["report"])
    assert report_path == tmp_path / "out" / "griewank_audit_report.json"
    on_disk = json.loads(report_path.read_text(encoding="utf-8"))
    assert on_disk["results"][1]["audit"]["components"]["oscill"]["aggregator"]["kind"] == "prod"
    assert (tmp_path / "out" / "input.json").is_file()


def test_run_energy_audit_reports_failures(tmp_path) -> None:
    path = _write_config(tmp_path, assignments=[{"x": [1.0, 2.0, 3.0]}])
    report = run_energy_audit(path)
    assert report["run"]["status"] == "failed"
    assert report["results"] == []
    assert report["error"]["errors"][0]["kind"] == "EvalError:ShapeMismatch"


def test_run_energy_audit_collects_parameter_errors(tmp_path) -> None:
    doc_cfg = {"path": str(EXAMPLES / "griewank.febo.yaml"), "parameters": {"n": 0, "m": 1}, "collect_errors": True}
    report = run_energy_audit(_write_config(tmp_path, document=doc_cfg))
    assert report["error"]["kind"] == "FeboErrorGroup:Collected"
    kinds = sorted(e["kind"] for e in report["error"]["errors"])
    assert kinds == ["ResolveError:BoundsViolation", "ResolveError:UnknownParameter"]


def test_config_requires_document_and_assignments(tmp_path) -> None:
    with pytest.raises(ValueError):
        run_energy_audit(_write_config(tmp_path, document={}))
    with pytest.raises(ValueError):
        run_energy_audit(_write_config(tmp_path, assignments=[]))


def test_cli_template_and_run(tmp_path, capsys) -> None:
    template = tmp_path / "template.json"
    assert main(["--write-template", str(template)]) == 0
    cfg = json.loads(template.read_text(encoding="utf-8"))
    assert cfg["document"]["path"] == "griewank.febo.yaml"

    assert main(["--input", str(_write_config(tmp_path))]) == 0
    out = capsys.readouterr().out
    assert "Run complete: griewank_audit (ok)" in out
    assert "assignment[1]" in out
