"""JSON arrays, or objects carrying the payload under ``values``."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from febopy.io.registry import as_numeric


def read_json(path: str | Path) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        if "values" not in payload:
            raise ValueError(f"JSON data file '{path}' must be an array or an object with 'values'.")
        payload = payload["values"]
    return as_numeric(payload)
