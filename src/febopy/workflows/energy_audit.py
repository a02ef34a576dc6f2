"""JSON-configured FEBO energy audit: parse, build, evaluate, report."""

from __future__ import annotations

import argparse
import hashlib
import json
import logging
import re
import socket
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np

from febopy.core import evaluate_batch, verify_audit
from febopy.errors import FeboError
from febopy.io import PythonFunctionRegistry, data_provider_from_document, load_document
from febopy.modeling import BuildConfig, EvaluationConfig, build_graph, resolve_parameters


logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")


def _sanitize_token(value: str) -> str:
    token = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip())
    return token if token else "unnamed"


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        while True:
            chunk = fh.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_path(base_dir: Path, path_like: str | Path) -> Path:
    p = Path(path_like)
    return p if p.is_absolute() else (base_dir / p)


def _git_head_sha(cwd: Path) -> str | None:
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=str(cwd), text=True, stderr=subprocess.DEVNULL).strip()
    except (OSError, subprocess.CalledProcessError):
        return None
    return out if out else None


def _to_builtin(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (np.floating, np.integer)):
        return value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    return value


def _load_json_config(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8-sig") as fh:
        cfg = json.load(fh)
    if not isinstance(cfg, dict):
        raise ValueError("Input config must be a JSON object.")
    return cfg


def _save_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(_to_builtin(payload), fh, indent=2, sort_keys=True)
        fh.write("\n")


def _default_template() -> dict[str, Any]:
    return {
        "run": {
            "name": "febo_audit",
            "output_dir": "outputs/febo_audit",
            "timestamped_run_dir": False,
            "write_report": True,
            "write_input_snapshot": True,
        },
        "document": {
            "path": "griewank.febo.yaml",
            "parameters": {},
            "collect_errors": False,
        },
        "assignments": [
            {"x": [0.0, 0.0]},
            {"x": [1.0, 1.0]},
        ],
        "evaluation": {
            "audit_instance_cap": 10_000,
            "check_variable_bounds": False,
            "max_workers": None,
            "verify": True,
            "rtol": 1e-9,
            "atol": 1e-12,
        },
    }


def write_input_template(path: str | Path) -> Path:
    out = Path(path)
    _save_json(out, _default_template())
    return out


def _failure_payload(exc: FeboError) -> dict[str, Any]:
    errors = list(exc) if hasattr(exc, "errors") else [exc]
    return {
        "kind": exc.kind,
        "errors": [{"kind": e.kind, "path": list(e.path), "message": e.message, "context": e.context} for e in errors],
    }


def run_energy_audit(config_path: str | Path) -> dict[str, Any]:
    """Run one audit from a JSON config; returns the report (also written to disk)."""

    t0 = time.perf_counter()
    started = _utc_now_iso()
    cfg_path = Path(config_path)
    cfg = _load_json_config(cfg_path)
    base_dir = cfg_path.resolve().parent

    run_cfg = dict(cfg.get("run", {}))
    doc_cfg = dict(cfg.get("document", {}))
    eval_cfg = dict(cfg.get("evaluation", {}))
    run_name = _sanitize_token(str(run_cfg.get("name", "febo_audit")))

    if "path" not in doc_cfg:
        raise ValueError("Config 'document.path' is required.")
    doc_path = _resolve_path(base_dir, doc_cfg["path"])
    assignments = cfg.get("assignments")
    if assignments is None:
        assignments = [cfg["assignment"]] if "assignment" in cfg else []
    if not isinstance(assignments, list) or not assignments:
        raise ValueError("Config needs a non-empty 'assignments' list (or one 'assignment').")

    output_dir = _resolve_path(base_dir, run_cfg.get("output_dir", "outputs/febo_audit"))
    if bool(run_cfg.get("timestamped_run_dir", False)):
        output_dir = output_dir / f"{_utc_stamp()}_{run_name}"

    collect = bool(doc_cfg.get("collect_errors", False))
    evaluation = EvaluationConfig(
        audit_instance_cap=int(eval_cfg.get("audit_instance_cap", 10_000)),
        check_variable_bounds=bool(eval_cfg.get("check_variable_bounds", False)),
        max_workers=eval_cfg.get("max_workers"),
    )

    results: list[dict[str, Any]] = []
    failure: dict[str, Any] | None = None
    document = None
    try:
        document = load_document(doc_path, collect=collect)
        params = resolve_parameters(document, doc_cfg.get("parameters", {}), collect=collect)
        build_cfg = BuildConfig(collect_errors=collect, base_dir=doc_path.resolve().parent)
        provider = data_provider_from_document(document, base_dir=build_cfg.base_dir)
        graph = build_graph(document, params, provider, build_cfg)
        registry = PythonFunctionRegistry.from_document(document)
        logger.debug("Evaluating %d assignment(s) for run '%s'.", len(assignments), run_name)
        evaluated = evaluate_batch(graph, assignments, provider, registry, evaluation)
        for k, result in enumerate(evaluated):
            entry: dict[str, Any] = {"index": k, "total": result.total, "audit": result.audit.to_dict()}
            if bool(eval_cfg.get("verify", True)):
                mismatches = verify_audit(
                    result.audit,
                    rtol=float(eval_cfg.get("rtol", 1e-9)),
                    atol=float(eval_cfg.get("atol", 1e-12)),
                )
                entry["verified"] = not mismatches
                entry["mismatches"] = [vars(m) for m in mismatches]
            results.append(entry)
    except FeboError as exc:
        failure = _failure_payload(exc)

    finished = _utc_now_iso()
    outputs: dict[str, Any] = {}
    report: dict[str, Any] = {
        "run": {
            "name": run_name,
            "started_utc": started,
            "finished_utc": finished,
            "runtime_seconds": float(time.perf_counter() - t0),
            "status": "failed" if failure is not None else "ok",
        },
        "document": {
            "path": str(doc_path),
            "sha256": _sha256_file(doc_path) if doc_path.is_file() else None,
            "name": document.name if document is not None else None,
            "version": document.version if document is not None else None,
            "parameters": doc_cfg.get("parameters", {}),
        },
        "evaluation": {
            "audit_instance_cap": evaluation.audit_instance_cap,
            "check_variable_bounds": evaluation.check_variable_bounds,
            "max_workers": evaluation.max_workers,
        },
        "results": results,
        "error": failure,
        "provenance": {
            "config_sha256": _sha256_file(cfg_path),
            "workspace": str(base_dir),
            "git_head": _git_head_sha(base_dir),
            "hostname": socket.gethostname(),
        },
        "outputs": outputs,
    }

    if bool(run_cfg.get("write_input_snapshot", True)):
        snapshot = output_dir / "input.json"
        _save_json(snapshot, cfg)
        outputs["input_snapshot"] = str(snapshot)
    if bool(run_cfg.get("write_report", True)):
        report_path = output_dir / run_cfg.get("report_filename", f"{run_name}_report.json")
        outputs["report"] = str(report_path)
        _save_json(report_path, report)
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--input", type=Path, default=None, help="Path to JSON run configuration.")
    parser.add_argument("--write-template", type=Path, default=None, help="Write template config and exit.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if args.write_template is not None:
        out = write_input_template(args.write_template)
        print(f"Wrote template: {out}")
        return 0
    if args.input is None:
        parser.error("Provide --input <config.json> or --write-template <path>.")

    report = run_energy_audit(args.input)
    print(f"Run complete: {report['run']['name']} ({report['run']['status']})")
    print(f"runtime_seconds={report['run']['runtime_seconds']:.3f}")
    for entry in report["results"]:
        print(f"assignment[{entry['index']}] total={entry['total']!r}")
    if report["error"] is not None:
        for err in report["error"]["errors"]:
            print(f"{err['kind']} at {'/'.join(err['path'])}: {err['message']}")
    print(f"outputs={report['outputs']}")
    return 0 if report["error"] is None else 1


if __name__ == "__main__":
    raise SystemExit(main())
