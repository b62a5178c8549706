"""
Untyped JSON tree returned by the Proxmox API.

Numeric literals are kept as their original text until a consumer asks for a
float, so large byte counters are never rounded during decoding.
"""

import json
import re
from enum import Enum


class Kind(Enum):
    MAPPING = "mapping"
    SEQUENCE = "sequence"
    NUMBER = "number"
    STRING = "string"
    BOOL = "bool"
    NULL = "null"


# Strings the API uses for measurements, e.g. "cpu": "0.05" or "mhz": "2400.000"
_NUMERIC_TEXT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class _Number(str):
    """Marker for numeric literals coming out of the JSON decoder"""


class Node:
    __slots__ = ("kind", "value")

    def __init__(self, kind, value=None):
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "value", value)

    def __setattr__(self, name, value):
        raise AttributeError("Node is immutable")

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return self.kind is other.kind and self.value == other.value

    def __hash__(self):
        if self.kind is Kind.MAPPING:
            return hash((self.kind, tuple(self.value.items())))
        return hash((self.kind, self.value))

    def __repr__(self):
        return f"Node({self.kind.name}, {self.value!r})"

    def get(self, key):
        """Child of a mapping, or a null node when absent or not a mapping"""
        if self.kind is Kind.MAPPING:
            return self.value.get(key, NULL)
        return NULL

    def items(self):
        if self.kind is Kind.MAPPING:
            return list(self.value.items())
        return []

    def __iter__(self):
        if self.kind is Kind.SEQUENCE:
            return iter(self.value)
        return iter(())

    def __len__(self):
        if self.kind in (Kind.MAPPING, Kind.SEQUENCE):
            return len(self.value)
        return 0

    def __bool__(self):
        return self.kind is not Kind.NULL

    @property
    def is_mapping(self):
        return self.kind is Kind.MAPPING

    def is_numeric(self):
        if self.kind is Kind.NUMBER:
            return True
        if self.kind is Kind.STRING:
            return _NUMERIC_TEXT.match(self.value) is not None
        return False

    def as_float(self):
        if not self.is_numeric():
            return None
        try:
            return float(self.value)
        except (OverflowError, ValueError):
            return None

    def as_text(self):
        if self.kind in (Kind.NUMBER, Kind.STRING):
            return str(self.value)
        if self.kind is Kind.BOOL:
            return "true" if self.value else "false"
        if self.kind is Kind.NULL:
            return ""
        return json.dumps(to_json(self), separators=(",", ":"))

    def is_truthy_flag(self):
        """True for the API's boolean encodings: 1, "1" and true"""
        if self.kind is Kind.BOOL:
            return self.value
        if self.is_numeric():
            return self.as_float() == 1
        return False


NULL = Node(Kind.NULL)


def from_json(obj):
    """Wrap an already decoded JSON value"""
    if isinstance(obj, _Number):
        return Node(Kind.NUMBER, str(obj))
    if isinstance(obj, bool):
        return Node(Kind.BOOL, obj)
    if isinstance(obj, (int, float)):
        return Node(Kind.NUMBER, repr(obj))
    if isinstance(obj, str):
        return Node(Kind.STRING, obj)
    if obj is None:
        return NULL
    if isinstance(obj, dict):
        return Node(Kind.MAPPING, {str(k): from_json(v) for k, v in obj.items()})
    if isinstance(obj, (list, tuple)):
        return Node(Kind.SEQUENCE, tuple(from_json(v) for v in obj))
    raise TypeError(f"Cannot wrap {type(obj).__name__} as a document node")


def to_json(node):
    """Plain Python structure, numbers still as text"""
    if node.kind is Kind.MAPPING:
        return {k: to_json(v) for k, v in node.value.items()}
    if node.kind is Kind.SEQUENCE:
        return [to_json(v) for v in node.value]
    return node.value


# Hooks for json.loads and requests.Response.json()
DECODE_HOOKS = {
    "parse_int": _Number,
    "parse_float": _Number,
    "parse_constant": _Number,
}


def decode(text):
    """Parse a JSON body; raises ValueError on malformed input"""
    return from_json(json.loads(text, **DECODE_HOOKS))
