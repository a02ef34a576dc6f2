"""Run the JSON-configured audit on the bundled Griewank document."""

import json
from pathlib import Path

from febopy.workflows import run_energy_audit


here = Path(__file__).parent
config = {
    "run": {"name": "griewank_audit", "output_dir": "griewank_audit"},
    "document": {"path": str(here / "griewank.febo.yaml"), "parameters": {"n": 2}},
    "assignments": [{"x": [0.0, 0.0]}, {"x": [1.0, 1.0]}],
    "evaluation": {"verify": True},
}
config_path = here / "outputs" / "griewank_audit_config.json"
config_path.parent.mkdir(parents=True, exist_ok=True)
config_path.write_text(json.dumps(config, indent=2), encoding="utf-8")

report = run_energy_audit(config_path)
for entry in report["results"]:
    print(f"assignment {entry['index']}: total={entry['total']:.6f} verified={entry['verified']}")
