from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Optional
import collections.abc

import tomllib
import yaml
import xmltodict


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        text = bytes(data).decode(encoding or 'utf-8')
        # A BOM that survived decoding is not part of the content
        return text[1:] if text.startswith('\ufeff') else text
    return data


def _to_builtin(obj: Any) -> Any:
    # xmltodict returns nested mappings that aren't plain dicts
    if isinstance(obj, list):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {k: _to_builtin(v) for k, v in obj.items()}
    return obj


def _json_float(s: str) -> Any:
    return Decimal(s)


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                fmt: str,
                encoding: Optional[str] = None,
                namespaces: bool = False) -> Any:
    """
    Convert file content (bytes/string) to plain Python structures.
    Supported fmt: 'json', 'yaml', 'toml', 'xml'.
    Parse errors propagate; real numbers of JSON become Decimal, like
    numbers written in TDD.
    """
    if fmt == 'toml':
        # TOML is always UTF-8
        return tomllib.loads(_norm_text(data, encoding='utf-8'))
    if fmt == 'xml':
        # Bytes go to the XML parser as they are, so the XML declaration can
        # tell the encoding
        parsed = xmltodict.parse(data, encoding=encoding, process_namespaces=namespaces)
        return _to_builtin(parsed)
    text = _norm_text(data, encoding=encoding)
    if fmt == 'json':
        return json.loads(text, parse_float=_json_float)
    if fmt == 'yaml':
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported format: {fmt!r}")


__all__ = [
    "deserialize",
]
