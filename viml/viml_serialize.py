from __future__ import annotations

import json
import collections.abc
from pathlib import Path
from typing import Any, Optional

import yaml

from viml.viml_datatypes import (
    VimDataType, VimInt, VimFloat, VimString, VimList, VimDictionary, VimFuncref, VimBlob,
)


# --------------------------
# Value conversion
# --------------------------

def to_vim(obj: Any) -> VimDataType:
    """Converts a plain Python value into a Vim value."""
    if isinstance(obj, VimDataType):
        return obj
    if obj is None:
        return VimInt(0)
    # bool before int: bool is an int subclass
    if isinstance(obj, bool):
        return VimInt(1 if obj else 0)
    if isinstance(obj, int):
        return VimInt(obj)
    if isinstance(obj, float):
        return VimFloat(obj)
    if isinstance(obj, str):
        return VimString(obj)
    if isinstance(obj, (bytes, bytearray)):
        return VimBlob(bytes(obj))
    if isinstance(obj, collections.abc.Mapping):
        out = VimDictionary()
        for k, v in obj.items():
            if not isinstance(k, str):
                raise TypeError(f"Dictionary keys must be strings, got {type(k).__name__}")
            out[k] = to_vim(v)
        return out
    if isinstance(obj, (list, tuple)):
        return VimList([to_vim(v) for v in obj])
    raise TypeError(f"Cannot convert {type(obj).__name__} to a Vim value")


def to_python(value: VimDataType, _seen: Optional[set] = None) -> Any:
    """Converts a Vim value into plain Python data. Funcrefs become their names."""
    seen = _seen if _seen is not None else set()
    match value:
        case VimInt() | VimFloat() | VimString():
            return value.value
        case VimBlob():
            return bytes(value.data)
        case VimFuncref():
            return value.name
        case VimList():
            if id(value) in seen:
                raise ValueError("Cannot convert a recursive List")
            seen.add(id(value))
            out = [to_python(v, seen) for v in value.values]
            seen.discard(id(value))
            return out
        case VimDictionary():
            if id(value) in seen:
                raise ValueError("Cannot convert a recursive Dictionary")
            seen.add(id(value))
            out = {k: to_python(v, seen) for k, v in value.items()}
            seen.discard(id(value))
            return out
    raise TypeError(f"Cannot convert {type(value).__name__} to a Python value")


# --------------------------
# Text formats
# --------------------------

def detect_format(text: str) -> str:
    """'json' when the text looks like a JSON document, 'yaml' otherwise."""
    s = text.lstrip()
    if s.startswith('{') or s.startswith('['):
        return 'json'
    return 'yaml'


def deserialize(text: bytes | bytearray | str, fmt: Optional[str] = None) -> Any:
    """Parses JSON or YAML text into plain Python data. JSON that fails to load is retried as YAML."""
    if isinstance(text, (bytes, bytearray)):
        text = text.decode('utf-8', errors='replace')
    f = (fmt or detect_format(text)).lower()
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return yaml.safe_load(text)
    if f == 'yaml':
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def serialize(value: Any, fmt: str = 'json', pretty: bool = True) -> str:
    """Renders a Vim value (or plain Python data) as JSON or YAML."""
    built = to_python(value) if isinstance(value, VimDataType) else value
    f = (fmt or '').lower()
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def load_tree(source: str | Path) -> Any:
    """Loads a parser tree from a `.json`/`.yaml`/`.yml` file path or from document text."""
    if isinstance(source, Path) or (isinstance(source, str) and '\n' not in source
                                     and source.endswith(('.json', '.yaml', '.yml'))):
        path = Path(source)
        fmt = 'json' if path.suffix == '.json' else 'yaml'
        return deserialize(path.read_text(encoding='utf-8'), fmt=fmt)
    return deserialize(source)


__all__ = [
    "to_vim",
    "to_python",
    "detect_format",
    "deserialize",
    "serialize",
    "load_tree",
]
