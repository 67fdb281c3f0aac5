"""
A pretty-printer for TDD values. The output is valid TDD wherever the value
consists of plain TDD types.
"""
import collections.abc
from decimal import Decimal

from tdd.tdd_datatypes import FunctionCall


_JQUOTE_ESCAPES = {
    '\\': '\\\\', '"': '\\"',
    '\n': '\\n', '\r': '\\r', '\t': '\\t', '\b': '\\b', '\f': '\\f',
}


def quote_string(s: str) -> str:
    """Quotes with quotation marks; escapes so that TDD reads it back."""
    out = ['"']
    for c in s:
        esc = _JQUOTE_ESCAPES.get(c)
        if esc is not None:
            out.append(esc)
        elif c < ' ':
            out.append(f"\\u{ord(c):04X}")
        else:
            out.append(c)
    out.append('"')
    return "".join(out)


class Dumper:
    """Formats TDD values into TDD source.

    Hashes and sequences are laid out one item per line; the arguments of
    function calls are printed on a single line.
    """

    def __init__(self, indent_width=4, line_break="\n"):
        self._indent_step = " " * indent_width
        self._lb = line_break
        self._handlers = self._create_handlers()

    def pformat(self, obj, indent=""):
        """Formats ``obj``; ``indent`` is the indentation of its first line's
        surroundings (nested lines get one more step)."""
        handler = self._get_handler(obj)
        return handler(obj, indent)

    def pformat_inline(self, obj):
        """Formats ``obj`` on a single line."""
        if isinstance(obj, collections.abc.Mapping):
            return "{" + ", ".join(f"{quote_string(str(k))}:{self.pformat_inline(v)}"
                                   for k, v in obj.items()) + "}"
        if isinstance(obj, (list, tuple)):
            return "[" + ", ".join(self.pformat_inline(v) for v in obj) + "]"
        return self.pformat(obj)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, bool): return self._pformat_bool
        if isinstance(obj, str): return self._pformat_str
        if isinstance(obj, (int, float, Decimal)): return self._pformat_number
        if isinstance(obj, collections.abc.Mapping): return self._pformat_hash
        if isinstance(obj, (list, tuple)): return self._pformat_sequence
        return self._pformat_other

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            bool: self._pformat_bool,
            int: self._pformat_number,
            float: self._pformat_number,
            Decimal: self._pformat_number,
            type(None): self._pformat_none,
            dict: self._pformat_hash,
            list: self._pformat_sequence,
            tuple: self._pformat_sequence,
            FunctionCall: self._pformat_function_call,
        }

    def _pformat_str(self, obj, indent):
        return quote_string(obj)

    def _pformat_bool(self, obj, indent):
        return "true" if obj else "false"

    def _pformat_number(self, obj, indent):
        # "+" can only start an unquoted token, so 1E+3 is written as 1E3
        return str(obj).replace("E+", "E").replace("e+", "e")

    def _pformat_none(self, obj, indent):
        return "<null>"

    def _pformat_hash(self, obj, indent):
        inner = indent + self._indent_step
        lines = ["{" + self._lb]
        for k, v in obj.items():
            lines.append(f"{inner}{quote_string(str(k))}: {self.pformat(v, inner)}{self._lb}")
        lines.append(indent + "}")
        return "".join(lines)

    def _pformat_sequence(self, obj, indent):
        inner = indent + self._indent_step
        lines = ["[" + self._lb]
        for v in obj:
            lines.append(f"{inner}{self.pformat(v, inner)}{self._lb}")
        lines.append(indent + "]")
        return "".join(lines)

    def _pformat_function_call(self, obj, indent):
        args = ", ".join(self.pformat_inline(p) for p in obj.params)
        return f"{obj.name}({args})"

    def _pformat_other(self, obj, indent):
        return f"<{type(obj).__name__} {quote_string(str(obj))}>"


_default_dumper = Dumper()


def dump(value) -> str:
    """Returns the TDD source form of ``value``."""
    return _default_dumper.pformat(value)
