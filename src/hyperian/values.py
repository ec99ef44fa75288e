"""Dynamic value helpers: text form, numeric coercion, equality, ordering."""

from __future__ import annotations

import json
import math


def is_number(v: object) -> bool:
    """True for int and float, never for bool."""
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def normalize(v: object) -> object:
    """Integral floats become ints; NaN and infinities stay floats."""
    if isinstance(v, float) and v.is_integer():
        return int(v)
    return v


def to_number(v: object) -> int | float:
    """Numeric coercion. Unconvertible values give NaN."""
    if v is None:
        return 0
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, (int, float)):
        return normalize(v)  # type: ignore[return-value]
    if isinstance(v, str):
        s = v.strip()
        if s == "":
            return 0
        try:
            return normalize(float(s))  # type: ignore[return-value]
        except ValueError:
            return math.nan
    if isinstance(v, list):
        if len(v) == 0:
            return 0
        if len(v) == 1:
            return to_number(v[0])
    return math.nan


def to_int(v: object, default: int = 0) -> int:
    n = to_number(v)
    if isinstance(n, float) and (math.isnan(n) or math.isinf(n)):
        return default
    return int(n)


def _float_text(f: float) -> str:
    if math.isnan(f):
        return "NaN"
    if math.isinf(f):
        return "Infinity" if f > 0 else "-Infinity"
    if f.is_integer():
        return str(int(f))
    return repr(f)


def to_text(v: object) -> str:
    """String coercion used by concatenation and interpolation."""
    if v is None:
        return "null"
    if v is True:
        return "true"
    if v is False:
        return "false"
    if isinstance(v, int):
        return str(v)
    if isinstance(v, float):
        return _float_text(v)
    if isinstance(v, str):
        return v
    if isinstance(v, list):
        return ",".join("" if x is None else to_text(x) for x in v)
    if isinstance(v, dict):
        return to_json(v)
    return str(v)


def display(v: object) -> str:
    """Form used by ``print`` and ``log``: containers render as JSON."""
    if isinstance(v, (list, dict)):
        return to_json(v)
    return to_text(v)


def plain(v: object) -> object:
    """Strip values with no data form (bound methods, NaN) for serialization."""
    if isinstance(v, dict):
        return {str(k): plain(x) for k, x in v.items() if _is_data(x)}
    if isinstance(v, list):
        return [plain(x) if _is_data(x) else None for x in v]
    if isinstance(v, float) and (math.isnan(v) or math.isinf(v)):
        return None
    if _is_data(v):
        return v
    return None


def _is_data(v: object) -> bool:
    return v is None or isinstance(v, (bool, int, float, str, list, dict))


def to_json(v: object) -> str:
    return json.dumps(plain(v), separators=(",", ":"), ensure_ascii=False)


def to_bool(v: object) -> bool:
    if v is None:
        return False
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return v != 0 and not (isinstance(v, float) and math.isnan(v))
    if isinstance(v, str):
        return v != ""
    return True


def is_empty(v: object) -> bool:
    """null, "", 0, false and [] are empty."""
    if v is None or v is False:
        return True
    if isinstance(v, str):
        return v == ""
    if is_number(v):
        return v == 0
    if isinstance(v, list):
        return len(v) == 0
    return False


def type_name(v: object) -> str:
    if isinstance(v, list):
        return "array"
    if v is None:
        return "nothing"
    if isinstance(v, bool):
        return "boolean"
    if is_number(v):
        return "number"
    if isinstance(v, str):
        return "string"
    if isinstance(v, dict):
        return "object"
    return "function"


def loose_equal(a: object, b: object) -> bool:
    """Value equality, falling back to text comparison across types."""
    if is_number(a) and is_number(b):
        return a == b
    if type(a) is type(b) and a == b:
        return True
    return to_text(a) == to_text(b)


def compare(a: object, b: object) -> int | None:
    """Three-way ordering; None when the operands are incomparable."""
    if isinstance(a, str) and isinstance(b, str):
        return (a > b) - (a < b)
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return None
    x = to_number(a)
    y = to_number(b)
    if math.isnan(x) or math.isnan(y):
        return None
    return (x > y) - (x < y)
