"""Reader registry for external data sources (selected by file suffix)."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np


Reader = Callable[[Path], Any]
_READERS: dict[str, Reader] = {}


def _key(name: str) -> str:
    return name.strip().lower().lstrip(".")


def register_reader(name: str, reader: Reader) -> None:
    key = _key(name)
    if not key:
        raise ValueError("Reader name must be non-empty.")
    _READERS[key] = reader


def get_reader(name: str) -> Reader:
    key = _key(name)
    try:
        return _READERS[key]
    except KeyError as exc:
        available = ", ".join(sorted(_READERS)) or "<none>"
        raise KeyError(f"Unknown data reader '{name}'. Available readers: {available}") from exc


def list_readers() -> tuple[str, ...]:
    return tuple(sorted(_READERS.keys()))


def read_source(source: str | Path, reader: str | None = None, *, base_dir: str | Path | None = None) -> Any:
    """Read ``source`` with ``reader`` or, by default, the reader for its suffix.

    Relative paths are taken against ``base_dir`` when given.
    """

    path = Path(source)
    if base_dir is not None and not path.is_absolute():
        path = Path(base_dir) / path
    if not path.is_file():
        raise FileNotFoundError(f"Data source '{path}' does not exist.")
    name = reader if reader is not None else path.suffix
    return get_reader(name)(path)


def as_numeric(values: Any) -> Any:
    """Rectangular numeric payloads become arrays; ragged ones stay nested lists."""

    if isinstance(values, np.ndarray):
        return values
    try:
        arr = np.asarray(values)
    except ValueError:
        return [list(item) if isinstance(item, (list, tuple)) else item for item in values]
    if arr.dtype == object:
        return [list(item) if isinstance(item, (list, tuple)) else item for item in values]
    return arr
