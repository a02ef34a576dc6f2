"""Resolve interaction declarations into concrete index domains."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import numpy as np
from scipy import sparse

from febopy.core.graph import ResolvedInteraction
from febopy.core.types import DataProvider, EmptyDataProvider
from febopy.errors import FeboError, ResolveError, ValidationError
from febopy.io.registry import read_source
from febopy.modeling.parameters import ResolvedParameters, evaluate_int
from febopy.modeling.schema import InteractionDecl


logger = logging.getLogger(__name__)

GRID_CONNECTIVITY = {"axis": "axis", "full": "full", "4": "axis", "8": "full"}


def _path(decl: InteractionDecl) -> tuple[str, ...]:
    return ("interactions", decl.id)


def _bad_source(decl: InteractionDecl, message: str, **context: Any) -> ResolveError:
    return ResolveError(
        "BadSourceReference",
        f"Interaction '{decl.id}': {message}",
        path=_path(decl),
        context={"interaction": decl.id, **context},
    )


def _load_source(
    decl: InteractionDecl,
    inline_keys: tuple[str, ...],
    provider: DataProvider,
    base_dir: str | Path | None,
) -> Any:
    """Inline payload, then ``source`` as a data key, then ``source`` as a file."""

    for key in inline_keys:
        if key in decl.spec:
            return decl.spec[key]
    source = decl.spec.get("source")
    if source is None:
        raise _bad_source(decl, f"needs one of {list(inline_keys)} or 'source'.")
    source = str(source)
    if source.startswith("data:"):
        name = source[len("data:"):]
        try:
            return provider.get(name)
        except KeyError as exc:
            raise _bad_source(decl, f"unknown data key '{name}'.", source=source) from exc
    try:
        return provider.get(source)
    except KeyError:
        pass
    try:
        return read_source(source, base_dir=base_dir)
    except (OSError, KeyError, ValueError) as exc:
        raise _bad_source(decl, f"cannot read '{source}': {exc}", source=source) from exc


def _as_index(decl: InteractionDecl, value: Any) -> int:
    if isinstance(value, (bool, np.bool_)):
        raise ResolveError(
            "TypeMismatch",
            f"Interaction '{decl.id}': index {value!r} is not an integer.",
            path=_path(decl),
            context={"interaction": decl.id, "value": value},
        )
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return int(value)
    raise ResolveError(
        "TypeMismatch",
        f"Interaction '{decl.id}': index {value!r} is not an integer.",
        path=_path(decl),
        context={"interaction": decl.id, "value": value},
    )


def _rows(payload: Any) -> list[Any]:
    if isinstance(payload, np.ndarray):
        return payload.tolist()
    if isinstance(payload, (list, tuple)):
        return list(payload)
    raise TypeError(f"expected a list, got {type(payload).__name__}")


def _check_bind_width(decl: InteractionDecl, bind: tuple[str, ...], width: int) -> None:
    if len(bind) != width:
        raise ValidationError(
            "ArityMismatch",
            f"Interaction '{decl.id}' binds {len(bind)} symbol(s) {list(bind)} but its domain has width {width}.",
            path=_path(decl),
            context={"interaction": decl.id, "expected": width, "actual": len(bind)},
        )


def _resolve_all_indices(decl: InteractionDecl, params: Mapping[str, Any], base: int) -> ResolvedInteraction:
    path = _path(decl)

    def _pair(raw: Any, where: tuple[str, ...]) -> tuple[int, int]:
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            raise ValidationError("InvalidField", "range must be [lo, hi].", path=where, context={"value": raw})
        return (
            evaluate_int(raw[0], params, path=where, what="range lower bound"),
            evaluate_int(raw[1], params, path=where, what="range upper bound"),
        )

    if "ranges" in decl.spec:
        raw = decl.spec["ranges"]
        if isinstance(raw, Mapping):
            symbols = tuple(str(s) for s in raw)
            if decl.bind is not None and set(decl.bind) != set(symbols):
                raise ValidationError(
                    "InvalidField",
                    f"Interaction '{decl.id}': bind {list(decl.bind)} does not match ranges {list(symbols)}.",
                    path=path,
                )
            if decl.bind is not None:
                symbols = decl.bind
            ranges = tuple(_pair(raw[s], (*path, "ranges", s)) for s in symbols)
        elif isinstance(raw, (list, tuple)):
            symbols = decl.bind if decl.bind is not None else tuple(f"i{k}" for k in range(len(raw)))
            _check_bind_width(decl, symbols, len(raw))
            ranges = tuple(_pair(r, (*path, "ranges", str(k))) for k, r in enumerate(raw))
        else:
            raise ValidationError("InvalidField", "ranges must be a mapping or a list.", path=path)
    elif "range" in decl.spec:
        symbols = decl.bind if decl.bind is not None else ("i",)
        pair = _pair(decl.spec["range"], (*path, "range"))
        ranges = tuple(pair for _ in symbols)
    else:
        raise ValidationError("MissingField", f"Interaction '{decl.id}' needs 'range' or 'ranges'.", path=path)
    return ResolvedInteraction(id=decl.id, kind="all_indices", symbols=symbols, ranges=ranges, index_base=base)


def _resolve_sparse(decl: InteractionDecl, provider: DataProvider, base_dir: Any, base: int) -> ResolvedInteraction:
    payload = _load_source(decl, ("pairs", "tuples"), provider, base_dir)
    try:
        rows = _rows(payload)
    except TypeError as exc:
        raise _bad_source(decl, str(exc)) from exc
    tuples = tuple(
        tuple(_as_index(decl, v) for v in row) if isinstance(row, (list, tuple)) else (_as_index(decl, row),)
        for row in rows
    )
    widths = {len(t) for t in tuples}
    if len(widths) > 1:
        raise ValidationError(
            "ShapeMismatch",
            f"Interaction '{decl.id}' mixes tuple widths {sorted(widths)}.",
            path=_path(decl),
            context={"interaction": decl.id, "widths": sorted(widths)},
        )
    width = widths.pop() if widths else len(decl.bind or ("i",))
    if decl.bind is not None:
        symbols = decl.bind
    elif width == 1:
        symbols = ("i",)
    elif width == 2:
        symbols = ("i", "j")
    else:
        raise ValidationError(
            "MissingField",
            f"Interaction '{decl.id}' has {width}-tuples and needs an explicit 'bind'.",
            path=_path(decl),
            context={"interaction": decl.id, "width": width},
        )
    _check_bind_width(decl, symbols, width)
    return ResolvedInteraction(id=decl.id, kind="sparse", symbols=symbols, tuples=tuples, index_base=base)


def _resolve_groups(decl: InteractionDecl, provider: DataProvider, base_dir: Any, base: int) -> ResolvedInteraction:
    payload = _load_source(decl, ("groups", "members"), provider, base_dir)
    try:
        rows = _rows(payload)
    except TypeError as exc:
        raise _bad_source(decl, str(exc)) from exc
    groups = []
    for g, row in enumerate(rows):
        if not isinstance(row, (list, tuple)):
            raise _bad_source(decl, f"group {g} is not a list of indices.", group=g)
        members = tuple(_as_index(decl, v) for v in row)
        seen: set[int] = set()
        for k in members:
            if k in seen:
                raise ResolveError(
                    "DuplicateIndex",
                    f"Interaction '{decl.id}': group {g} lists index {k} more than once.",
                    path=_path(decl),
                    context={"interaction": decl.id, "group": g, "index": k},
                )
            seen.add(k)
        groups.append(members)
    symbols = decl.bind if decl.bind is not None else ("i",)
    _check_bind_width(decl, symbols, 1)
    return ResolvedInteraction(id=decl.id, kind="groups", symbols=symbols, groups=tuple(groups), index_base=base)


def _resolve_laplacian(decl: InteractionDecl, params: Mapping[str, Any], base: int) -> ResolvedInteraction:
    path = _path(decl)
    raw_dims = decl.spec.get("dims", decl.spec.get("shape"))
    if raw_dims is None:
        raise ValidationError("MissingField", f"Interaction '{decl.id}' needs 'dims'.", path=path)
    if not isinstance(raw_dims, (list, tuple)):
        raw_dims = [raw_dims]
    dims = tuple(evaluate_int(d, params, path=(*path, "dims"), what="grid dimension") for d in raw_dims)
    if not dims or any(d < 1 for d in dims):
        raise ValidationError("InvalidField", f"Interaction '{decl.id}': dims must be positive.", path=path)
    raw_conn = str(decl.spec.get("connectivity", "axis")).strip().lower()
    connectivity = GRID_CONNECTIVITY.get(raw_conn)
    if connectivity is None or (raw_conn in ("4", "8") and len(dims) != 2):
        raise ValidationError(
            "InvalidField",
            f"Interaction '{decl.id}': connectivity '{raw_conn}' is not valid for a {len(dims)}-D grid.",
            path=path,
            context={"connectivity": raw_conn, "ndim": len(dims)},
        )
    symbols = decl.bind if decl.bind is not None else ("i", "j")
    _check_bind_width(decl, symbols, 2)
    return ResolvedInteraction(
        id=decl.id,
        kind="laplacian",
        symbols=symbols,
        grid_dims=dims,
        connectivity=connectivity,
        index_base=base,
    )


def _resolve_low_rank(decl: InteractionDecl, provider: DataProvider, base_dir: Any, base: int) -> ResolvedInteraction:
    if "factor" not in decl.spec and "source" not in decl.spec and "U" not in decl.spec:
        raise ValidationError("MissingField", f"Interaction '{decl.id}' needs 'factor'.", path=_path(decl))
    raw = decl.spec.get("factor", decl.spec.get("U"))
    if isinstance(raw, str):
        name = raw[len("data:"):] if raw.startswith("data:") else raw
        try:
            raw = provider.get(name)
        except KeyError as exc:
            raise _bad_source(decl, f"unknown factor data '{name}'.", source=raw) from exc
    elif raw is None:
        raw = _load_source(decl, (), provider, base_dir)
    factor = raw if sparse.issparse(raw) else np.asarray(raw, dtype=float)
    if len(factor.shape) != 2:
        raise ValidationError(
            "ShapeMismatch",
            f"Interaction '{decl.id}': low-rank factor must be 2-D (r, n), got shape {tuple(factor.shape)}.",
            path=_path(decl),
            context={"interaction": decl.id, "shape": tuple(factor.shape)},
        )
    symbols = decl.bind if decl.bind is not None else ("i",)
    _check_bind_width(decl, symbols, 1)
    return ResolvedInteraction(id=decl.id, kind="low_rank", symbols=symbols, factor=factor, index_base=base)


def resolve_interaction(
    decl: InteractionDecl,
    data_provider: DataProvider | None = None,
    parameters: ResolvedParameters | Mapping[str, Any] | None = None,
    *,
    index_base: int = 0,
    base_dir: str | Path | None = None,
) -> ResolvedInteraction:
    """Turn an interaction declaration into its concrete index domain.

    ``all_indices`` and ``laplacian`` stay lazy; explicit lists are read from
    the inline payload, a data key or an external file, in that order.
    """

    provider = data_provider if data_provider is not None else EmptyDataProvider()
    if isinstance(parameters, ResolvedParameters):
        params: Mapping[str, Any] = parameters.values
    else:
        params = parameters or {}

    kind = decl.kind
    try:
        if kind == "none":
            if decl.bind:
                raise ValidationError(
                    "ArityMismatch",
                    f"Interaction '{decl.id}' of type none cannot bind symbols.",
                    path=_path(decl),
                )
            resolved = ResolvedInteraction(id=decl.id, kind="none", index_base=index_base)
        elif kind == "all_indices":
            resolved = _resolve_all_indices(decl, params, index_base)
        elif kind == "sparse":
            resolved = _resolve_sparse(decl, provider, base_dir, index_base)
        elif kind == "groups":
            resolved = _resolve_groups(decl, provider, base_dir, index_base)
        elif kind == "laplacian":
            resolved = _resolve_laplacian(decl, params, index_base)
        elif kind == "low_rank":
            resolved = _resolve_low_rank(decl, provider, base_dir, index_base)
        else:
            raise ValidationError("InvalidField", f"Unknown interaction type '{kind}'.", path=_path(decl))
    except FeboError as exc:
        if exc.path[:2] == _path(decl):
            raise
        raise exc.with_path(*_path(decl)) from exc
    logger.debug("Resolved interaction '%s' (%s) over symbols %s.", decl.id, kind, resolved.symbols)
    return resolved
