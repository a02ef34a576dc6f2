"""Parse a decoded FEBO mapping into an immutable :class:`Document`."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from febopy.core.aggregators import AGGREGATOR_KINDS, AggregatorSpec
from febopy.core.expr import EXPR_LANG, CompiledExpr, compile_expression
from febopy.errors import CompileError, ErrorSink, FeboError, ValidationError
from febopy.modeling.schema import (
    ComponentDecl,
    Conventions,
    DataDecl,
    Document,
    FunctionDecl,
    HamiltonianDecl,
    InteractionDecl,
    Parameter,
    TermDecl,
    Variable,
    WeightedUse,
)
from febopy.modeling.schema.document import (
    FUNCTION_KINDS,
    HAMILTONIAN_TYPES,
    INTERACTION_KINDS,
    PARAMETER_TYPES,
    TERM_KINDS,
    VARIABLE_TYPES,
)


logger = logging.getLogger(__name__)

TOP_LEVEL_KEYS = (
    "version",
    "name",
    "conventions",
    "parameters",
    "variables",
    "data",
    "functions",
    "interactions",
    "terms",
    "components",
    "hamiltonians",
    "ensemble",
)
NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")
SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.+-]+)?$")
IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _invalid(path: tuple[str, ...], message: str, **context: Any) -> ValidationError:
    return ValidationError("InvalidField", message, path=path, context=context)


def _missing(path: tuple[str, ...], key: str) -> ValidationError:
    return ValidationError("MissingField", f"Required field '{key}' is missing.", path=path, context={"field": key})


def _entries(raw: Any, section: str, sink: ErrorSink) -> list[tuple[str, Any]]:
    """Normalize a mapping-keyed or list-of-entries collection to (id, body) pairs."""

    if raw is None:
        return []
    out: list[tuple[str, Any]] = []
    seen: set[str] = set()
    if isinstance(raw, Mapping):
        items = [(str(k), v) for k, v in raw.items()]
    elif isinstance(raw, list):
        items = []
        for pos, item in enumerate(raw):
            if not isinstance(item, Mapping):
                sink.report(_invalid((section, str(pos)), "List entries must be mappings with an 'id' or 'name'."))
                continue
            key = item.get("id", item.get("name"))
            if key is None:
                sink.report(_missing((section, str(pos)), "id"))
                continue
            items.append((str(key), item))
    else:
        sink.report(_invalid((section,), f"'{section}' must be a mapping or a list."))
        return []
    for key, body in items:
        if key in seen:
            sink.report(
                ValidationError("DuplicateId", f"Duplicate id '{key}' in '{section}'.", path=(section, key), context={"id": key})
            )
            continue
        seen.add(key)
        out.append((key, body))
    return out


def _compile(text: Any, arity: Any, path: tuple[str, ...], sink: ErrorSink) -> CompiledExpr | None:
    try:
        return compile_expression(text, arity)
    except CompileError as exc:
        sink.report(exc.with_path(*path))
        return None


def _infer_parameter_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, str):
        return "string"
    return "float"


def _parse_bounds_pair(raw: Any, path: tuple[str, ...], sink: ErrorSink) -> tuple[Any, Any] | None:
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        sink.report(_invalid(path, "bounds must be a two-element list [lower, upper].", value=raw))
        return None
    return (raw[0], raw[1])


def _parse_parameters(raw: Any, sink: ErrorSink) -> tuple[Parameter, ...]:
    out = []
    for name, body in _entries(raw, "parameters", sink):
        path = ("parameters", name)
        if not IDENT_RE.match(name):
            sink.report(_invalid(path, f"Parameter name '{name}' is not an identifier."))
            continue
        if not isinstance(body, Mapping):
            out.append(Parameter(name=name, type=_infer_parameter_type(body), default=body, required=False))
            continue
        has_default = "default" in body
        default = body.get("default")
        ptype = str(body.get("type", _infer_parameter_type(default) if has_default else "float"))
        if ptype not in PARAMETER_TYPES:
            sink.report(_invalid(path, f"Unknown parameter type '{ptype}'.", expected=PARAMETER_TYPES, actual=ptype))
            continue
        bounds = _parse_bounds_pair(body.get("bounds"), path, sink)
        out.append(
            Parameter(
                name=name,
                type=ptype,
                default=default,
                required=not has_default,
                bounds=bounds,
                description=str(body.get("description", "")),
            )
        )
    return tuple(out)


def _as_shape(raw: Any, path: tuple[str, ...], sink: ErrorSink) -> tuple[Any, ...] | None:
    if raw is None:
        return ()
    if isinstance(raw, (int, str)) and not isinstance(raw, bool):
        return (raw,)
    if isinstance(raw, (list, tuple)) and all(isinstance(d, (int, str)) and not isinstance(d, bool) for d in raw):
        return tuple(raw)
    sink.report(_invalid(path, "shape must be a list of integers or parameter names.", value=raw))
    return None


def _parse_variables(raw: Any, sink: ErrorSink) -> tuple[Variable, ...]:
    out = []
    for name, body in _entries(raw, "variables", sink):
        path = ("variables", name)
        if not IDENT_RE.match(name):
            sink.report(_invalid(path, f"Variable name '{name}' is not an identifier."))
            continue
        body = body if isinstance(body, Mapping) else {"shape": body}
        vtype = str(body.get("type", "continuous"))
        if vtype not in VARIABLE_TYPES:
            sink.report(_invalid(path, f"Unknown variable type '{vtype}'.", expected=VARIABLE_TYPES, actual=vtype))
            continue
        shape = _as_shape(body.get("shape"), path, sink)
        if shape is None:
            continue
        bounds = _parse_bounds_pair(body.get("bounds"), path, sink)
        if bounds is None and vtype == "binary":
            bounds = (0, 1)
        out.append(Variable(name=name, type=vtype, shape=shape, bounds=bounds or (None, None)))
    return tuple(out)


def _parse_data(raw: Any, sink: ErrorSink) -> tuple[DataDecl, ...]:
    out = []
    for name, body in _entries(raw, "data", sink):
        path = ("data", name)
        if isinstance(body, str):
            out.append(DataDecl(name=name, source=body))
            continue
        if not isinstance(body, Mapping):
            out.append(DataDecl(name=name, values=body))
            continue
        if "source" not in body and "values" not in body:
            sink.report(ValidationError("MissingField", "Data declaration needs 'source' or 'values'.", path=path))
            continue
        shape = _as_shape(body["shape"], path, sink) if "shape" in body else None
        source = body.get("source")
        out.append(DataDecl(name=name, source=None if source is None else str(source), values=body.get("values"), shape=shape))
    return tuple(out)


def _parse_functions(raw: Any, sink: ErrorSink) -> tuple[FunctionDecl, ...]:
    out = []
    for fid, body in _entries(raw, "functions", sink):
        path = ("functions", fid)
        if not isinstance(body, Mapping):
            sink.report(_invalid(path, "Function declaration must be a mapping."))
            continue
        kind = body.get("kind")
        if kind is None:
            sink.report(_missing(path, "kind"))
            continue
        if kind not in FUNCTION_KINDS:
            sink.report(_invalid(path, f"Unknown function kind '{kind}'.", expected=FUNCTION_KINDS, actual=kind))
            continue
        locator = body.get("locator", body.get("entry", body.get("url", body.get("path", ""))))
        out.append(FunctionDecl(id=fid, kind=str(kind), locator=str(locator)))
    return tuple(out)


def _parse_bind(raw: Any, path: tuple[str, ...], sink: ErrorSink) -> tuple[str, ...] | None:
    if raw is None:
        return None
    symbols = (raw,) if isinstance(raw, str) else raw
    if not isinstance(symbols, (list, tuple)) or not all(isinstance(s, str) and IDENT_RE.match(s) for s in symbols):
        sink.report(_invalid(path, "bind must be a symbol or a list of symbols.", value=raw))
        return None
    if len(set(symbols)) != len(symbols):
        sink.report(_invalid(path, "bind symbols must be distinct.", value=list(symbols)))
        return None
    return tuple(symbols)


def _parse_interaction(iid: str, body: Any, path: tuple[str, ...], sink: ErrorSink, inline: bool = False) -> InteractionDecl | None:
    if not isinstance(body, Mapping):
        sink.report(_invalid(path, "Interaction declaration must be a mapping."))
        return None
    kind = body.get("type", body.get("kind"))
    if kind is None:
        sink.report(_missing(path, "type"))
        return None
    if kind not in INTERACTION_KINDS:
        sink.report(_invalid(path, f"Unknown interaction type '{kind}'.", expected=INTERACTION_KINDS, actual=kind))
        return None
    bind = _parse_bind(body.get("bind"), path, sink)
    spec = {k: v for k, v in body.items() if k not in {"id", "name", "type", "kind", "bind"}}
    return InteractionDecl(id=iid, kind=str(kind), bind=bind, spec=spec, inline=inline)


def _parse_interactions(raw: Any, sink: ErrorSink) -> tuple[InteractionDecl, ...]:
    out = []
    for iid, body in _entries(raw, "interactions", sink):
        decl = _parse_interaction(iid, body, ("interactions", iid), sink)
        if decl is not None:
            out.append(decl)
    return tuple(out)


def _parse_arity(raw: Any, path: tuple[str, ...], sink: ErrorSink) -> tuple[bool, Any]:
    if raw is None or isinstance(raw, str) or (isinstance(raw, int) and not isinstance(raw, bool) and raw >= 0):
        return True, raw
    sink.report(_invalid(path, "arity must be a non-negative integer or a symbolic name.", value=raw))
    return False, None


def _parse_term(tid: str, body: Any, path: tuple[str, ...], sink: ErrorSink, inline: bool = False) -> TermDecl | None:
    if isinstance(body, (int, float)) and not isinstance(body, bool):
        body = {"kind": "constant", "value": body}
    elif isinstance(body, str):
        body = {"kind": "analytic", "expr": body}
    if not isinstance(body, Mapping):
        sink.report(_invalid(path, "Term declaration must be a mapping."))
        return None
    kind = body.get("kind")
    if kind is None:
        kind = "functional" if "function" in body else ("constant" if "value" in body else "analytic")
    if kind not in TERM_KINDS:
        sink.report(_invalid(path, f"Unknown term kind '{kind}'.", expected=TERM_KINDS, actual=kind))
        return None
    ok, arity = _parse_arity(body.get("arity"), path, sink)
    if not ok:
        return None
    compat_raw = body.get("compat", ())
    compat = (compat_raw,) if isinstance(compat_raw, str) else tuple(str(c) for c in compat_raw)

    if kind == "constant":
        if "value" not in body:
            sink.report(_missing(path, "value"))
            return None
        expr = _compile(body["value"], 0, (*path, "value"), sink)
        if expr is None:
            return None
        return TermDecl(id=tid, kind=kind, arity=0 if arity is None else arity, expr=expr, compat=compat, inline=inline)

    if kind == "analytic":
        text = body.get("expr", body.get("expression"))
        if text is None:
            sink.report(_missing(path, "expr"))
            return None
        expr = _compile(text, arity, (*path, "expr"), sink)
        if expr is None:
            return None
        return TermDecl(id=tid, kind=kind, arity=arity, expr=expr, compat=compat, inline=inline)

    function = body.get("function")
    if function is None:
        sink.report(_missing(path, "function"))
        return None
    raw_args = body.get("args", [])
    if not isinstance(raw_args, list):
        sink.report(_invalid(path, "args must be a list of expressions."))
        return None
    args = []
    for pos, text in enumerate(raw_args):
        compiled = _compile(text, arity, (*path, "args", str(pos)), sink)
        if compiled is None:
            return None
        args.append(compiled)
    return TermDecl(id=tid, kind=kind, arity=arity, function=str(function), args=tuple(args), compat=compat, inline=inline)


def _parse_terms(raw: Any, sink: ErrorSink) -> tuple[TermDecl, ...]:
    out = []
    for tid, body in _entries(raw, "terms", sink):
        decl = _parse_term(tid, body, ("terms", tid), sink)
        if decl is not None:
            out.append(decl)
    return tuple(out)


def _parse_aggregator(raw: Any, path: tuple[str, ...], sink: ErrorSink) -> AggregatorSpec | None:
    if isinstance(raw, str):
        raw = {"kind": raw}
    if not isinstance(raw, Mapping):
        sink.report(_invalid(path, "aggregator must be a name or a mapping with 'kind'.", value=raw))
        return None
    kind = raw.get("kind", raw.get("type"))
    if kind not in AGGREGATOR_KINDS:
        sink.report(_invalid(path, f"Unknown aggregator '{kind}'.", expected=AGGREGATOR_KINDS, actual=kind))
        return None
    try:
        return AggregatorSpec(kind=str(kind), beta=float(raw.get("beta", 1.0)), alpha=float(raw.get("alpha", 0.95)))
    except (TypeError, ValueError) as exc:
        sink.report(_invalid(path, str(exc), value=dict(raw)))
        return None


def _parse_components(raw: Any, sink: ErrorSink) -> tuple[ComponentDecl, ...]:
    out = []
    for cid, body in _entries(raw, "components", sink):
        path = ("components", cid)
        if not isinstance(body, Mapping):
            sink.report(_invalid(path, "Component declaration must be a mapping."))
            continue
        if "term" not in body:
            sink.report(_missing(path, "term"))
            continue
        term_raw = body["term"]
        if isinstance(term_raw, Mapping):
            term: str | TermDecl | None = _parse_term(f"{cid}.term", term_raw, (*path, "term"), sink, inline=True)
        else:
            term = str(term_raw)
        if term is None:
            continue

        inter_raw = body.get("interaction", "none")
        if inter_raw is None:
            inter_raw = "none"
        if isinstance(inter_raw, Mapping):
            interaction: str | InteractionDecl | None = _parse_interaction(
                f"{cid}.interaction", inter_raw, (*path, "interaction"), sink, inline=True
            )
        else:
            interaction = str(inter_raw)
        if interaction is None:
            continue

        agg_raw = body.get("agg", body.get("aggregator"))
        aggregator = None
        if agg_raw is not None:
            aggregator = _parse_aggregator(agg_raw, (*path, "aggregator"), sink)
            if aggregator is None:
                continue
        out.append(ComponentDecl(id=cid, term=term, interaction=interaction, aggregator=aggregator))
    return tuple(out)


def _parse_weighted(item: Any, key: str, path: tuple[str, ...], sink: ErrorSink) -> WeightedUse | None:
    if isinstance(item, str):
        return WeightedUse(use=item, weight=compile_expression(1))
    if not isinstance(item, Mapping):
        sink.report(_invalid(path, "Entry must be an id or a mapping with 'use'."))
        return None
    if "use" not in item:
        sink.report(_missing(path, "use"))
        return None
    raw = item.get(key, 1)
    weight = _compile(raw, 0, (*path, key), sink)
    if weight is None:
        return None
    return WeightedUse(use=str(item["use"]), weight=weight)


def _parse_hamiltonians(raw: Any, sink: ErrorSink) -> tuple[HamiltonianDecl, ...]:
    out = []
    for hid, body in _entries(raw, "hamiltonians", sink):
        path = ("hamiltonians", hid)
        if not isinstance(body, Mapping):
            sink.report(_invalid(path, "Hamiltonian declaration must be a mapping."))
            continue
        items = body.get("components")
        if items is None:
            sink.report(_missing(path, "components"))
            continue
        if not isinstance(items, list):
            sink.report(_invalid(path, "components must be a list."))
            continue
        uses = []
        failed = False
        for pos, item in enumerate(items):
            use = _parse_weighted(item, "alpha", (*path, "components", str(pos)), sink)
            if use is None:
                failed = True
                continue
            uses.append(use)
        if failed:
            continue
        couples_raw = body.get("couples") or ()
        couples = (couples_raw,) if isinstance(couples_raw, str) else tuple(str(c) for c in couples_raw)
        htype = body.get("type")
        if htype is not None and htype not in HAMILTONIAN_TYPES:
            sink.report(_invalid(path, f"Unknown hamiltonian type '{htype}'.", expected=HAMILTONIAN_TYPES, actual=htype))
            continue
        out.append(HamiltonianDecl(id=hid, components=tuple(uses), couples=couples, type=htype))
    return tuple(out)


def _parse_ensemble(raw: Any, sink: ErrorSink) -> tuple[WeightedUse, ...]:
    if raw is None:
        return ()
    if isinstance(raw, Mapping):
        raw = raw.get("hamiltonians", raw.get("members"))
    if not isinstance(raw, list):
        sink.report(_invalid(("ensemble",), "ensemble must be a list of hamiltonian uses."))
        return ()
    out = []
    for pos, item in enumerate(raw):
        use = _parse_weighted(item, "weight", ("ensemble", str(pos)), sink)
        if use is not None:
            out.append(use)
    return tuple(out)


def _parse_conventions(raw: Any, sink: ErrorSink) -> Conventions:
    if raw is None:
        return Conventions()
    if not isinstance(raw, Mapping):
        sink.report(_invalid(("conventions",), "conventions must be a mapping."))
        return Conventions()
    base = raw.get("index_base", 0)
    if isinstance(base, bool) or base not in (0, 1):
        sink.report(_invalid(("conventions", "index_base"), "index_base must be 0 or 1.", value=base))
        base = 0
    lang = str(raw.get("expr_lang", EXPR_LANG))
    if lang != EXPR_LANG:
        sink.report(_invalid(("conventions", "expr_lang"), f"Unsupported expression language '{lang}'.", expected=EXPR_LANG))
    return Conventions(index_base=int(base), expr_lang=lang)


def _check_namespaces(doc_parts: dict[str, tuple[Any, ...]], sink: ErrorSink) -> None:
    owner: dict[str, str] = {}
    for section, attr in (("parameters", "name"), ("variables", "name"), ("data", "name"), ("functions", "id")):
        for decl in doc_parts[section]:
            key = getattr(decl, attr)
            if key in owner:
                sink.report(
                    ValidationError(
                        "DuplicateId",
                        f"Name '{key}' is declared in both '{owner[key]}' and '{section}'.",
                        path=(section, key),
                        context={"id": key, "first": owner[key], "second": section},
                    )
                )
                continue
            owner[key] = section


def parse_document(mapping: Mapping[str, Any], *, collect: bool = False) -> Document:
    """Validate the structure of a decoded document and compile its expressions.

    In normal mode the first error is raised; with ``collect=True`` every
    error is gathered and raised together as a
    :class:`~febopy.errors.FeboErrorGroup`.
    """

    sink = ErrorSink(collect=collect)
    if not isinstance(mapping, Mapping):
        sink.report(_invalid((), "Document must be a mapping."))
        sink.raise_if_any()

    for key in mapping:
        if key not in TOP_LEVEL_KEYS:
            sink.report(_invalid((str(key),), f"Unknown top-level key '{key}'.", expected=TOP_LEVEL_KEYS))

    version = mapping.get("version")
    if version is None:
        sink.report(_missing((), "version"))
    elif not SEMVER_RE.match(str(version)):
        sink.report(_invalid(("version",), f"version '{version}' is not a semantic version."))
    name = mapping.get("name")
    if name is None:
        sink.report(_missing((), "name"))
    elif not isinstance(name, str) or not NAME_RE.match(name):
        sink.report(_invalid(("name",), f"name '{name}' must match {NAME_RE.pattern}."))

    parts: dict[str, tuple[Any, ...]] = {}
    try:
        conventions = _parse_conventions(mapping.get("conventions"), sink)
        parts["parameters"] = _parse_parameters(mapping.get("parameters"), sink)
        parts["variables"] = _parse_variables(mapping.get("variables"), sink)
        parts["data"] = _parse_data(mapping.get("data"), sink)
        parts["functions"] = _parse_functions(mapping.get("functions"), sink)
        _check_namespaces(parts, sink)
        parts["interactions"] = _parse_interactions(mapping.get("interactions"), sink)
        parts["terms"] = _parse_terms(mapping.get("terms"), sink)
        parts["components"] = _parse_components(mapping.get("components"), sink)
        parts["hamiltonians"] = _parse_hamiltonians(mapping.get("hamiltonians"), sink)
        parts["ensemble"] = _parse_ensemble(mapping.get("ensemble"), sink)
    except FeboError:
        logger.debug("Document parse aborted on first error.")
        raise
    sink.raise_if_any()

    doc = Document(version=str(version), name=str(name), conventions=conventions, **parts)
    logger.debug(
        "Parsed document '%s': %d terms, %d components, %d hamiltonians.",
        doc.name,
        len(doc.terms),
        len(doc.components),
        len(doc.hamiltonians),
    )
    return doc
