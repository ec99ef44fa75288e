"""Serialization of AST nodes to JSON-compatible dicts."""

from __future__ import annotations

import dataclasses
import math

from .ast import Pos, Program
from .parse import Diagnostic


def serialize(obj: object) -> object:
    """Recursively serialize an object to a JSON-compatible structure."""
    if obj is None:
        return None
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj
    if isinstance(obj, (int, str)):
        return obj
    if isinstance(obj, (list, tuple)):
        return [serialize(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): serialize(v) for k, v in obj.items()}
    if isinstance(obj, Pos):
        return {"line": obj.line, "col": obj.col}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _serialize_node(obj)
    raise TypeError("cannot serialize " + type(obj).__name__)


def _serialize_node(obj: object) -> dict[str, object]:
    """Dataclass node: ``_type`` names the class, then one key per field."""
    out: dict[str, object] = {"_type": type(obj).__name__}
    for f in dataclasses.fields(obj):  # type: ignore[arg-type]
        out[f.name] = serialize(getattr(obj, f.name))
    return out


def program_to_dict(program: Program) -> dict[str, object]:
    """Serialize a parsed Program to ``{"rules": [...], "init": [...]}``."""
    return {"rules": serialize(program.rules), "init": serialize(program.init)}


def diagnostics_to_list(diagnostics: list[Diagnostic]) -> list[dict[str, object]]:
    return [
        {"severity": d.severity, "message": d.message, "line": d.line, "col": d.col}
        for d in diagnostics
    ]
