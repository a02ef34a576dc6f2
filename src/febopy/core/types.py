"""Collaborator interfaces consumed by the FEBO core."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, Union, runtime_checkable

import numpy as np


Array = np.ndarray
IndexTuple = tuple[int, ...]
Shape = tuple[int, ...]


@runtime_checkable
class DataProvider(Protocol):
    """Name -> typed multi-dimensional array, backed by any loader."""

    def get(self, name: str) -> Array: ...

    def get_shape(self, name: str) -> Shape: ...


@runtime_checkable
class FunctionRegistry(Protocol):
    """Synchronous numeric hook for functional terms."""

    def invoke(self, function_id: str, args: Sequence[float]) -> float: ...


@runtime_checkable
class SupportsGet(Protocol):
    def get(self, name: str) -> Any: ...


VariableAssignment = Union[Mapping[str, Any], SupportsGet]


class EmptyDataProvider:
    """Data provider for documents without ``data:`` declarations."""

    def get(self, name: str) -> Array:
        raise KeyError(f"Unknown data source '{name}'.")

    def get_shape(self, name: str) -> Shape:
        raise KeyError(f"Unknown data source '{name}'.")
