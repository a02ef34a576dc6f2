"""Error taxonomy for FEBO compilation, resolution, validation and evaluation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


Span = tuple[int, int]


class FeboError(ValueError):
    """Base class for all FEBO core errors.

    ``code`` is the error kind within its category (e.g. ``"Syntax"``),
    ``context`` holds structured diagnostics and ``path`` the id chain that
    locates the offending declaration.
    """

    category = "FeboError"

    def __init__(
        self,
        code: str,
        message: str,
        *,
        path: Iterable[str] = (),
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.path = tuple(str(p) for p in path)
        self.context = dict(context or {})
        super().__init__(self._render())

    def _render(self) -> str:
        where = "/".join(self.path)
        prefix = f"{self.category}:{self.code}"
        return f"{prefix} at {where}: {self.message}" if where else f"{prefix}: {self.message}"

    @property
    def kind(self) -> str:
        return f"{self.category}:{self.code}"

    def with_path(self, *prefix: str) -> FeboError:
        """Return a copy of this error with ``prefix`` prepended to its path."""

        clone = type(self).__new__(type(self))
        FeboError.__init__(clone, self.code, self.message, path=(*prefix, *self.path), context=self.context)
        for key, value in self.__dict__.items():
            if key not in {"code", "message", "path", "context"}:
                setattr(clone, key, value)
        return clone


class CompileError(FeboError):
    """Expression text could not be compiled; always localized to a span."""

    category = "CompileError"

    def __init__(
        self,
        code: str,
        message: str,
        *,
        source: str = "",
        span: Span = (0, 0),
        path: Iterable[str] = (),
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.source = source
        self.span = span
        ctx = {"source": source, "span": span}
        ctx.update(context or {})
        super().__init__(code, message, path=path, context=ctx)


class ResolveError(FeboError):
    category = "ResolveError"


class ValidationError(FeboError):
    category = "ValidationError"


class EvalError(FeboError):
    category = "EvalError"


class FeboErrorGroup(FeboError):
    """Every error found in collect-all mode, in discovery order."""

    category = "FeboErrorGroup"

    def __init__(self, errors: Iterable[FeboError]) -> None:
        self.errors = tuple(errors)
        if not self.errors:
            raise ValueError("FeboErrorGroup requires at least one error.")
        summary = "; ".join(str(err) for err in self.errors[:5])
        if len(self.errors) > 5:
            summary += f"; ... ({len(self.errors) - 5} more)"
        super().__init__("Collected", f"{len(self.errors)} error(s): {summary}")

    def __iter__(self):
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)


class ErrorSink:
    """Raise-first or collect-all policy shared by parse, resolve and build."""

    def __init__(self, collect: bool = False) -> None:
        self.collect = collect
        self.errors: list[FeboError] = []

    def report(self, error: FeboError) -> None:
        if not self.collect:
            raise error
        if isinstance(error, FeboErrorGroup):
            self.errors.extend(error.errors)
        else:
            self.errors.append(error)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self) -> None:
        if self.errors:
            raise FeboErrorGroup(self.errors)
