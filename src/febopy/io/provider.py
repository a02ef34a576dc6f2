"""In-memory data provider and its construction from ``data`` declarations."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from febopy.errors import ResolveError
from febopy.io.registry import as_numeric, read_source

if TYPE_CHECKING:
    from febopy.modeling.schema import Document


logger = logging.getLogger(__name__)


class ArrayDataProvider:
    """Name -> array lookup over a fixed mapping; read-only after construction."""

    def __init__(self, arrays: Mapping[str, Any] | None = None) -> None:
        self._arrays = {name: as_numeric(values) for name, values in (arrays or {}).items()}

    def get(self, name: str) -> Any:
        try:
            return self._arrays[name]
        except KeyError as exc:
            available = ", ".join(sorted(self._arrays)) or "<none>"
            raise KeyError(f"Unknown data source '{name}'. Available: {available}") from exc

    def get_shape(self, name: str) -> tuple[int, ...]:
        value = self.get(name)
        if isinstance(value, np.ndarray):
            return tuple(int(d) for d in value.shape)
        return (len(value),)

    def __contains__(self, name: object) -> bool:
        return name in self._arrays

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._arrays)


class DocumentDataProvider(ArrayDataProvider):
    """Provider over ``data`` declarations.

    Inline values are available at once; a ``source`` file is read on the
    first ``get``/``get_shape`` of its name and cached afterwards, so entries
    nothing asks for are never opened.
    """

    def __init__(self, document: Document, base_dir: str | Path | None = None) -> None:
        super().__init__({decl.name: decl.values for decl in document.data if decl.values is not None})
        self._sources = {decl.name: decl.source for decl in document.data if decl.values is None}
        self._base_dir = base_dir

    def get(self, name: str) -> Any:
        if name not in self._arrays and name in self._sources:
            self._arrays[name] = as_numeric(self._read(name))
        return super().get(name)

    def _read(self, name: str) -> Any:
        source = self._sources[name]
        try:
            values = read_source(source, base_dir=self._base_dir)
        except (OSError, KeyError, ValueError) as exc:
            raise ResolveError(
                "BadSourceReference",
                f"Cannot read data '{name}' from '{source}': {exc}",
                path=("data", name),
                context={"data": name, "source": source},
            ) from exc
        logger.debug("Read data '%s' from '%s'.", name, source)
        return values

    def __contains__(self, name: object) -> bool:
        return name in self._arrays or name in self._sources

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys([*self._arrays, *self._sources]))


def data_provider_from_document(document: Document, base_dir: str | Path | None = None) -> DocumentDataProvider:
    """Data provider for ``document``: inline values first, else the source file on demand."""

    return DocumentDataProvider(document, base_dir=base_dir)
