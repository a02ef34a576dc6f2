"""Function registry for ``functional`` terms backed by Python callables."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from febopy.errors import ResolveError

if TYPE_CHECKING:
    from febopy.modeling.schema import Document


logger = logging.getLogger(__name__)

NumericFunction = Callable[..., float]


def import_locator(locator: str) -> NumericFunction:
    """Import ``package.module:attribute`` (dotted attributes allowed)."""

    module_name, sep, attr_path = locator.partition(":")
    if not sep or not module_name or not attr_path:
        raise ValueError(f"Python locator '{locator}' must look like 'module:attribute'.")
    obj = importlib.import_module(module_name)
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise TypeError(f"Python locator '{locator}' does not name a callable.")
    return obj


class PythonFunctionRegistry:
    """``invoke(function_id, args)`` over registered callables.

    Callables receive the evaluated arguments positionally and must return a
    number.
    """

    def __init__(self, functions: dict[str, NumericFunction] | None = None) -> None:
        self._functions: dict[str, NumericFunction] = {}
        for function_id, fn in (functions or {}).items():
            self.register(function_id, fn)

    def register(self, function_id: str, fn: NumericFunction) -> None:
        if not callable(fn):
            raise TypeError(f"Function '{function_id}' must be callable.")
        self._functions[function_id] = fn

    def invoke(self, function_id: str, args: Sequence[float]) -> float:
        try:
            fn = self._functions[function_id]
        except KeyError as exc:
            raise KeyError(f"Function '{function_id}' is not registered.") from exc
        return float(fn(*args))

    def __contains__(self, function_id: object) -> bool:
        return function_id in self._functions

    @classmethod
    def from_document(
        cls,
        document: Document,
        extra: dict[str, NumericFunction] | None = None,
    ) -> PythonFunctionRegistry:
        """Import every ``python``-kind declaration; other kinds must come via ``extra``."""

        registry = cls(extra)
        for decl in document.functions:
            if decl.kind != "python" or decl.id in registry:
                continue
            try:
                registry.register(decl.id, import_locator(decl.locator))
            except (ImportError, AttributeError, TypeError, ValueError) as exc:
                raise ResolveError(
                    "BadSourceReference",
                    f"Cannot load function '{decl.id}' from '{decl.locator}': {exc}",
                    path=("functions", decl.id),
                    context={"function": decl.id, "locator": decl.locator},
                ) from exc
        logger.debug("Function registry ready with %d function(s).", len(registry._functions))
        return registry
