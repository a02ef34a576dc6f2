"""NumPy binary arrays (``.npy``)."""

from __future__ import annotations

from pathlib import Path

import numpy as np


def read_npy(path: str | Path) -> np.ndarray:
    return np.load(Path(path), allow_pickle=False)
