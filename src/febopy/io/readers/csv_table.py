"""Comma-separated numeric tables.

Rows may have different lengths (``groups`` member lists); rectangular
tables come back as 2-D arrays, single-column tables as 1-D arrays.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

from febopy.io.registry import as_numeric


def _parse_cell(cell: str) -> int | float:
    text = cell.strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def read_csv(path: str | Path) -> Any:
    rows = []
    with Path(path).open("r", encoding="utf-8", newline="") as f:
        for raw in csv.reader(f):
            cells = [c for c in raw if c.strip()]
            if not cells or cells[0].lstrip().startswith("#"):
                continue
            rows.append([_parse_cell(c) for c in cells])
    if rows and all(len(r) == 1 for r in rows):
        return as_numeric([r[0] for r in rows])
    return as_numeric(rows)
