"""Load FEBO documents from YAML or JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from febopy.errors import ValidationError

if TYPE_CHECKING:
    from febopy.modeling.schema import Document


logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")
JSON_SUFFIXES = (".json",)


def load_document_mapping(path: str | Path) -> dict[str, Any]:
    """Decode a ``.febo.yaml``/``.febo.yml``/``.yaml``/``.json`` file to a mapping."""

    path = Path(path)
    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as f:
        if suffix in YAML_SUFFIXES:
            payload = yaml.safe_load(f)
        elif suffix in JSON_SUFFIXES:
            payload = json.load(f)
        else:
            raise ValueError(f"Unsupported document suffix '{path.suffix}' for '{path}'.")
    if not isinstance(payload, dict):
        raise ValidationError("InvalidField", f"Document '{path}' must decode to a mapping.", context={"path": str(path)})
    logger.debug("Loaded document mapping from %s (%d top-level keys).", path, len(payload))
    return payload


def load_document(path: str | Path, *, collect: bool = False) -> Document:
    from febopy.modeling.parser import parse_document

    return parse_document(load_document_mapping(path), collect=collect)
