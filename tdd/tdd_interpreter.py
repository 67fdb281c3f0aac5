"""
The TDD interpreter.

A single-pass, recursive-descent scanner: values are produced directly while
the text is scanned, there is no intermediate AST. Function calls are handed
to an EvaluationEnvironment, which also receives structural notifications
and may ask for parts of the text to be captured as Fragments instead of
being evaluated.

    >>> eval_as_hash("a: 1, b: [x, 'y'], c")
    {'a': 1, 'b': ['x', 'y'], 'c': True}
"""
import codecs
import collections.abc
import numbers
import re
import string
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, BinaryIO, Dict, List, Optional, Union

from tdd.tdd_datatypes import (
    Fragment, FunctionCall, TddError, TddSyntaxError, TddEvalError,
    TypeNotConvertableToMap
)
from tdd.tdd_environment import (
    Event, Directive, EvaluationEnvironment, SIMPLE_EVALUATION_ENVIRONMENT
)
from tdd.tdd_printer import quote_string
from tdd.tdd_util import convert_to_data_map

# What the scanner returns instead of a character at the end of the text.
# Also used as the terminator of brace-less hashes and bracket-less lists.
EOS = None

# Characters up to U+00A0 that end an unquoted token. Above U+00A0 only
# whitespace ends a token. A '+' is still allowed as the first character,
# and ':' is allowed anywhere except in hash keys.
_UQSTR_STOP = frozenset('\t\n\x0b\x0c\r "\'()+,:;<=>[]{}\x85\xa0')
_UQSTR_TABLE_END = 0xA0

_INTEGER = re.compile(r'[+-]?[0-9]+', re.ASCII)
_DECIMAL = re.compile(r'[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?', re.ASCII)

_SIMPLE_ESCAPES = {
    '"': '"', "'": "'", '\\': '\\',
    'n': '\n', 'r': '\r', 't': '\t', 'f': '\f', 'b': '\b',
    'g': '>', 'l': '<', 'a': '&', '{': '{',
}

_DEPRECATED_PLUS = (
    "The + operator (\"hash union\") is not allowed anymore. "
    "Please use \"hash addition\" instead. For example, instead of this:\n"
    "data={a:1, b:2} + properties(data/style.properties) + birds:csv(data/birds.csv)\n"
    "you should write this:\n"
    "data=a:1, b:2, tdd(data/style.tdd), birds:csv(data/birds.csv)"
)

# Latin-1 characters that count as whitespace in an encoding header.
_HEADER_WS = "\t\n\x0b\x0c\r\x1c\x1d\x1e\x1f "
_ENCODING_HEADER = re.compile(
    r'[\t\x0b\x0c\x1c-\x1f ]*(?:encoding|charset)'
    r'[\t\x0b\x0c\x1c-\x1f ]*:'
    r'[\t\x0b\x0c\x1c-\x1f ]*([^\t-\r\x1c-\x1f ]+)',
    re.IGNORECASE | re.ASCII)
_UTF8_BOM = "\xef\xbb\xbf"


def is_ws(c: str) -> bool:
    """Whitespace test used everywhere in TDD; the BOM counts as whitespace."""
    return c.isspace() or c == '\ufeff'


def _is_uqstr_char(c: str, first: bool, hash_key: bool) -> bool:
    if ord(c) <= _UQSTR_TABLE_END:
        if c in _UQSTR_STOP:
            return (first and c == '+') or (not hash_key and c == ':')
        return True
    return not is_ws(c)


def _quote_or_name(c: str) -> str:
    if c == "'":
        return "apostrophe-quote"
    if c == '"':
        return "quotation mark"
    return repr(c)


def _classify(token: str) -> Any:
    """Turns an unquoted token into a boolean, a number, or leaves it as is."""
    match token:
        case "true":
            return True
        case "false":
            return False
    if token[0] in "0123456789+-":
        s = token[1:] if token[0] == '+' else token
        if _INTEGER.fullmatch(s):
            try:
                return int(s)
            except ValueError:
                # Too many digits for int(); Decimal has no such limit.
                pass
        if _DECIMAL.fullmatch(s):
            return Decimal(s)
    return token


def get_type_name(value: Any) -> str:
    """The TDD name of the type of a value, for error messages."""
    match value:
        case None:
            return "null"
        case str():
            return "string"
        case bool():
            return "boolean"
        case numbers.Number():
            return "number"
        case list() | tuple():
            return "sequence"
        case collections.abc.Mapping():
            return "hash"
        case FunctionCall():
            return "function call"
        case Fragment():
            return "fragment"
        case _:
            return type(value).__name__


@dataclass
class ParseState:
    """Everything that changes while a text is scanned."""
    text: str
    pos: int = 0
    end: int = 0
    file_name: Optional[str] = None
    # Set by skip_ws when the skipped whitespace contained a line break.
    skipped_newline: bool = False


class Interpreter:
    """Evaluates one TDD text. Create a new instance for each evaluation."""

    def __init__(self, text: str, env: Optional[EvaluationEnvironment] = None,
                 file_name: Optional[str] = None, start: int = 0, end: Optional[int] = None):
        self.state = ParseState(text, start, len(text) if end is None else end, file_name)
        self.env = env if env is not None else SIMPLE_EVALUATION_ENVIRONMENT

    @classmethod
    def for_fragment(cls, fragment: Fragment, env: Optional[EvaluationEnvironment] = None) -> "Interpreter":
        return cls(fragment.text, env, fragment.file_name, fragment.start, fragment.end)

    # -----------------------------------------------------------------
    # What environments may look at

    @property
    def position(self) -> int:
        return self.state.pos

    @property
    def text(self) -> str:
        return self.state.text

    @property
    def file_name(self) -> Optional[str]:
        return self.state.file_name

    @property
    def environment(self) -> EvaluationEnvironment:
        return self.env

    # -----------------------------------------------------------------
    # Top-level productions

    def eval_expression(self, force_str: bool = False) -> Any:
        if self.skip_ws() is EOS:
            raise self._syntax_error("The text is empty.")
        res = self.fetch_expression(force_str, False)
        if self.skip_ws() is not EOS:
            raise self._syntax_error("Extra character(s) after the expression.")
        return res

    def eval_hash(self, force_str: bool = False) -> Dict[str, Any]:
        res: Dict[str, Any] = {}
        with self._scope(Event.ENTER_HASH, extra=res):
            return self.fetch_hash_inner(res, EOS, force_str)

    def eval_sequence(self, force_str: bool = False) -> List[Any]:
        res: List[Any] = []
        with self._scope(Event.ENTER_SEQUENCE, extra=res):
            return self.fetch_sequence_inner(res, EOS, force_str)

    # -----------------------------------------------------------------
    # Grammar

    def fetch_sequence_inner(self, items: List[Any], terminator: Optional[str],
                             force_str: bool) -> List[Any]:
        """Fetches separated expressions up to ``terminator``; the cursor is
        left on the terminator."""
        st = self.state
        list_pos = st.pos - 1
        self.skip_ws()
        if terminator is EOS:
            list_pos = st.pos

        while True:
            if st.pos < st.end:
                c = st.text[st.pos]
                if c == terminator:
                    return items
                if c == ',':
                    raise self._syntax_error("List item is missing before the comma.")
            elif terminator is EOS:
                return items
            else:
                raise self._syntax_error(
                    "Reached the end of the text, but the list was not closed with "
                    f"{_quote_or_name(terminator)}.", list_pos)
            items.append(self.fetch_expression(force_str, False))
            c = self.skip_separator(terminator, None, "This is a list, and not a hash.")
            if c == terminator:
                return items

    def fetch_hash_inner(self, target: Dict[str, Any], terminator: Optional[str],
                         force_str: bool) -> Dict[str, Any]:
        """Fetches separated key:value pairs (and bare keys, and hashes to
        merge) up to ``terminator``; the cursor is left on the terminator."""
        st = self.state
        map_pos = st.pos - 1
        self.skip_ws()
        if terminator is EOS:
            map_pos = st.pos

        while True:
            if st.pos < st.end:
                c = st.text[st.pos]
                if c == terminator:
                    return target
                if c == ',':
                    raise self._syntax_error("Key-value pair is missing before the comma.")
            elif terminator is EOS:
                return target
            else:
                raise self._syntax_error(
                    "Reached the end of the text, but the map was not closed with "
                    f"{_quote_or_name(terminator)}.", map_pos)

            key_pos = st.pos
            key = self.fetch_expression(False, True)
            key_func = None
            if isinstance(key, FunctionCall):
                key_func = key
                key = self._call(key_func, key_pos)

            c = self.skip_separator(terminator, None, None)
            if c == ':':
                if not isinstance(key, str):
                    if key is key_func:
                        raise self._unusable_function_error(key_pos)
                    raise self._error(
                        f"The key must be a String, but it is a(n) {get_type_name(key)}.", key_pos)
                if st.pos == st.end:
                    raise self._syntax_error(
                        "The key must be followed by a value because colon was used.", key_pos)
                with self._scope(Event.ENTER_HASH_KEY, name=key, position=key_pos) as response:
                    if response is None:
                        target[key] = self.fetch_expression(force_str, False)
                    else:
                        start = st.pos
                        self.skip_expression(False)
                        if response is Directive.FRAGMENT:
                            target[key] = Fragment(st.text, start, st.pos, st.file_name)
                c = self.skip_separator(
                    terminator, None,
                    "Colon is for separating the key from the value, "
                    "and the value was already given previously.")
            elif key_func is None:
                if isinstance(key, str):
                    with self._scope(Event.ENTER_HASH_KEY, name=key, position=key_pos) as response:
                        if response is None or response is Directive.FRAGMENT:
                            target[key] = True
                else:
                    self._merge(target, key, key_pos,
                                "This expression should be either a string or a hash, "
                                f"but it is a(n) {get_type_name(key)}.")
            else:
                if key is key_func:
                    self._merge(target, key, key_pos, None)
                else:
                    self._merge(target, key, key_pos,
                                f"Function doesn't evaluate to a hash, but to {get_type_name(key)}, "
                                "so it can't be merged into the hash.")
            if c == terminator:
                return target

    def _merge(self, target: Dict[str, Any], value: Any, position: int,
               not_a_map_message: Optional[str]) -> None:
        try:
            target.update(convert_to_data_map(value))
        except TypeNotConvertableToMap:
            if not_a_map_message is None:
                raise self._unusable_function_error(position)
            raise self._error(not_a_map_message, position)
        except Exception as e:
            raise self._wrapped_error(e)

    def fetch_expression(self, force_str: bool, hash_key: bool) -> Any:
        """Fetches one expression; no whitespace is allowed around it."""
        st = self.state
        if st.pos >= st.end:
            raise AssertionError("fetch_expression called at the end of the text")
        text = st.text
        c = text[st.pos]

        if c == '{':
            st.pos += 1
            target: Dict[str, Any] = {}
            with self._scope(Event.ENTER_HASH, extra=target) as response:
                if response is None:
                    self.fetch_hash_inner(target, '}', force_str)
                    res = target
                else:
                    st.pos -= 1
                    start = st.pos
                    self.skip_expression(False)
                    res = Fragment(text, start, st.pos, st.file_name)
                    st.pos -= 1
            st.pos += 1
            return res

        if c == '[':
            st.pos += 1
            items: List[Any] = []
            with self._scope(Event.ENTER_SEQUENCE, extra=items):
                self.fetch_sequence_inner(items, ']', force_str)
            st.pos += 1
            return items

        if c == '"' or c == "'":
            return self._fetch_quoted_string(c)

        b = st.pos
        c2 = text[b + 1] if b < st.end - 1 else None
        if c == 'r' and (c2 == '"' or c2 == "'"):
            close = text.find(c2, b + 2, st.end)
            if close == -1:
                raise self._missing_quote_error(c2, b)
            st.pos = close + 1
            return text[b + 2:close]

        # Unquoted string, boolean, number or function call
        self._skip_token(hash_key)
        token = text[b:st.pos]
        token_end = st.pos
        if self.skip_ws() == '(':
            st.pos += 1
            with self._scope(Event.ENTER_FUNCTION_PARAMS, name=token, position=b):
                params = self.fetch_sequence_inner([], ')', force_str)
            st.pos += 1
            call = FunctionCall(token, params)
            if hash_key:
                return call
            return self._call(call, b)
        st.pos = token_end
        if force_str or hash_key:
            return token
        return _classify(token)

    def _fetch_quoted_string(self, q: str) -> str:
        st = self.state
        text = st.text
        b = st.pos
        st.pos += 1
        while st.pos < st.end:
            c = text[st.pos]
            if c == '\\':
                break
            st.pos += 1
            if c == q:
                return text[b + 1:st.pos - 1]
        if st.pos == st.end:
            raise self._missing_quote_error(q, b)

        # There are escapes; st.pos is on a backslash here
        parts = []
        chunk_start = b + 1
        while True:
            parts.append(text[chunk_start:st.pos])
            if st.pos == st.end - 1:
                raise self._missing_quote_error(q, b)
            c = text[st.pos + 1]
            if c in _SIMPLE_ESCAPES:
                parts.append(_SIMPLE_ESCAPES[c])
                chunk_start = st.pos + 2
            elif c == 'x' or c == 'u':
                st.pos += 2
                x = st.pos
                limit = min(st.pos + 4, st.end)
                while st.pos < limit and text[st.pos] in string.hexdigits:
                    st.pos += 1
                if x == st.pos:
                    raise self._syntax_error(
                        "Invalid hexadecimal UNICODE escape in the string literal.", x - 2)
                parts.append(chr(int(text[x:st.pos], 16)))
                chunk_start = st.pos
            elif is_ws(c):
                chunk_start = self._skip_escaped_line_break(st.pos + 1)
            else:
                raise self._syntax_error(f"Invalid escape sequence \\{c} in the string literal.")

            st.pos = chunk_start
            while True:
                if st.pos == st.end:
                    raise self._missing_quote_error(q, b)
                c = text[st.pos]
                if c == '\\':
                    break
                if c == q:
                    parts.append(text[chunk_start:st.pos])
                    st.pos += 1
                    return "".join(parts)
                st.pos += 1

    def _skip_escaped_line_break(self, i: int) -> int:
        """Handles backslash + whitespace: drops the whitespace up to the
        first non-whitespace, but never past a second line break. Returns
        the index where the string continues."""
        st = self.state
        text = st.text
        found_line_break = False
        c = text[i]
        while True:
            if c == '\n' or c == '\r':
                if found_line_break:
                    break
                found_line_break = True
                if c == '\r' and i < st.end - 1 and text[i + 1] == '\n':
                    i += 1
            i += 1
            if i == st.end:
                break
            c = text[i]
            if not is_ws(c):
                break
        if not found_line_break:
            raise self._syntax_error(
                "Invalid usage of escape sequence \\white-space. "
                "This escape sequence can be used only before line-break.")
        return i

    def _skip_token(self, hash_key: bool) -> None:
        """Moves the cursor over an unquoted token; raises if there is none."""
        st = self.state
        text = st.text
        b = st.pos
        while _is_uqstr_char(text[st.pos], st.pos == b, hash_key):
            st.pos += 1
            if st.pos == st.end:
                break
        if st.pos == b:
            raise self._syntax_error("Unexpected character.", b)

    # -----------------------------------------------------------------
    # Skipping without evaluation (for Fragments and skipped values)

    def skip_expression(self, hash_key: bool) -> None:
        """Skips one expression. Syntax errors inside it are ignored as far as
        its end can still be found."""
        st = self.state
        if st.pos >= st.end:
            raise AssertionError("skip_expression called at the end of the text")
        text = st.text
        c = text[st.pos]

        closers = {'{': '}', '[': ']', '<': '>', '(': ')'}
        if c in closers:
            st.pos += 1
            self.skip_listing(closers[c])
            st.pos += 1
            return

        b = st.pos
        if c == '"' or c == "'":
            st.pos += 1
            while st.pos < st.end:
                c2 = text[st.pos]
                if c2 == '\\' and st.pos != st.end - 1:
                    st.pos += 1
                st.pos += 1
                if c2 == c:
                    return
            raise self._missing_quote_error(c, b)

        c2 = text[b + 1] if b < st.end - 1 else None
        if c == 'r' and (c2 == '"' or c2 == "'"):
            close = text.find(c2, b + 2, st.end)
            if close == -1:
                raise self._missing_quote_error(c2, b)
            st.pos = close + 1
            return

        self._skip_token(hash_key)
        token_end = st.pos
        if self.skip_ws() == '(':
            st.pos += 1
            self.skip_listing(')')
            st.pos += 1
        else:
            st.pos = token_end

    def skip_listing(self, terminator: str) -> None:
        st = self.state
        list_pos = st.pos - 1
        self.skip_ws()
        while True:
            if st.pos >= st.end:
                raise self._syntax_error(
                    f"Reached the end of the text, but the closing {_quote_or_name(terminator)} is missing.",
                    list_pos)
            c = st.text[st.pos]
            if c == terminator:
                return
            if c in ',:;=':
                st.pos += 1
            else:
                self.skip_expression(False)
            if self.skip_ws() == terminator:
                return

    # -----------------------------------------------------------------
    # Whitespace, comments, separators

    def skip_separator(self, terminator: Optional[str], comma_bad_reason: Optional[str],
                       colon_bad_reason: Optional[str]) -> Optional[str]:
        """Skips the separator after an item.

        Returns ',' (also for a line break used as comma), ':', the
        terminator, or EOS. The cursor is left on the next item or on the
        terminator.
        """
        st = self.state
        initial_pos = st.pos
        c = self.skip_ws()
        if c == '+':
            raise self._syntax_error(_DEPRECATED_PLUS)
        if c == ',' or c == ':':
            if comma_bad_reason is not None and c == ',':
                raise self._syntax_error("Comma (,) shouldn't be used here. " + comma_bad_reason)
            if colon_bad_reason is not None and c == ':':
                raise self._syntax_error("Colon (:) shouldn't be used here. " + colon_bad_reason)
            st.pos += 1
            self.skip_ws()
            return c
        if c == terminator:
            return terminator
        if c == ';':
            raise self._syntax_error(
                "Semicolon (;) was unexpected here. If you want to separate items "
                "in a listing then use comma (,) instead.")
        if c == '=':
            raise self._syntax_error(
                "Equals sign (=) was unexpected here. If you want to associate a key "
                "with a value then use colon (:) instead.")
        if c is EOS:
            return EOS
        if st.skipped_newline:
            if comma_bad_reason is not None:
                raise self._syntax_error(
                    "Line-break shouldn't be used before this item as separator "
                    "(which is the same as using comma). " + comma_bad_reason)
            return ','
        if st.pos == initial_pos:
            raise self._syntax_error(f"Character {_quote_or_name(c)} shouldn't occur here.")
        raise self._syntax_error(
            "No separator was used before the item. Items in listings should be "
            "separated with comma (,) or line-break. Keys and values in hashes "
            "should be separated with colon (:).")

    def skip_ws(self) -> Optional[str]:
        """Skips whitespace and comments. Returns the character it stopped
        at (the cursor stays on it), or EOS."""
        st = self.state
        text = st.text
        st.skipped_newline = False
        while st.pos < st.end:
            c = text[st.pos]
            if not is_ws(c):
                if c == '#' and self._is_line_empty_before(st.pos):
                    while True:
                        st.pos += 1
                        if st.pos == st.end:
                            return EOS
                        if text[st.pos] in '\r\n':
                            break
                elif c == '<' and st.pos < st.end - 3 and text.startswith('#--', st.pos + 1):
                    comment_pos = st.pos
                    while True:
                        st.pos += 1
                        if st.pos >= st.end - 2:
                            raise self._syntax_error('Comment was not closed with "-->".', comment_pos)
                        if text.startswith('-->', st.pos):
                            st.pos += 2
                            break
                else:
                    return c
            elif c == '\r' or c == '\n':
                st.skipped_newline = True
            st.pos += 1
        return EOS

    def _is_line_empty_before(self, pos: int) -> bool:
        text = self.state.text
        pos -= 1
        while pos >= 0:
            c = text[pos]
            if c == '\n' or c == '\r':
                return True
            if not is_ws(c):
                return False
            pos -= 1
        return True

    # -----------------------------------------------------------------
    # Environment callbacks

    def _call(self, call: FunctionCall, position: int) -> Any:
        try:
            return self.env.eval_function_call(call, self)
        except Exception as e:
            raise self._error(f"Failed to evaluate function {quote_string(call.name)}.", position, e)

    @contextmanager
    def _scope(self, event: Event, name: Optional[str] = None, extra: Any = None,
               position: Optional[int] = None):
        """Sends ``event``, yields the response, and sends the matching leave
        event when the block exits, also on errors."""
        try:
            response = self.env.notify(event, self, name, extra)
        except Exception as e:
            raise self._wrapped_error(e, position)
        try:
            yield response
        finally:
            try:
                self.env.notify(event.leave, self, name, extra)
            except Exception as e:
                raise self._wrapped_error(e)

    # -----------------------------------------------------------------
    # Errors

    def _syntax_error(self, message: str, position: Optional[int] = None) -> TddSyntaxError:
        st = self.state
        return TddSyntaxError("TDD syntax error: " + message, st.text,
                              st.pos if position is None else position, st.file_name)

    def _error(self, message: str, position: int,
               cause: Optional[BaseException] = None) -> TddEvalError:
        st = self.state
        if cause is not None:
            message = f"{message}\nCause: {_first_line(cause)}"
        return TddEvalError("TDD error: " + message, st.text, position, st.file_name, cause)

    def _wrapped_error(self, e: Exception, position: Optional[int] = None) -> TddError:
        if isinstance(e, TddError):
            return e
        st = self.state
        return TddEvalError(f"Error while evaluating TDD: {e}", st.text,
                            st.pos if position is None else position, st.file_name, e)

    def _missing_quote_error(self, q: str, position: int) -> TddSyntaxError:
        return self._syntax_error(f"The closing {_quote_or_name(q)} of the string is missing.", position)

    def _unusable_function_error(self, position: int) -> TddEvalError:
        return self._error(
            "You can't use the function here, because it can't be evaluated in this context.",
            position)


def _first_line(e: BaseException) -> str:
    msg = str(e) or type(e).__name__
    return msg.splitlines()[0]


# =================================================================
# Public API
# =================================================================

def eval_tdd(text: Union[str, Fragment], env: Optional[EvaluationEnvironment] = None,
             force_string_values: bool = False, file_name: Optional[str] = None) -> Any:
    """Evaluates a text (or a Fragment) as a single TDD expression.

    ``force_string_values`` makes ``true`` and ``123`` strings instead of a
    boolean and a number. ``file_name`` is only used in error messages; for
    a Fragment its own file name is used.
    """
    if isinstance(text, Fragment):
        ip = Interpreter.for_fragment(text, env)
    else:
        ip = Interpreter(text, env, file_name)
    return ip.eval_expression(force_string_values)


def eval_as_hash(text: str, env: Optional[EvaluationEnvironment] = None,
                 force_string_values: bool = False, file_name: Optional[str] = None) -> Dict[str, Any]:
    """Evaluates a text as the inside of a hash, without the braces."""
    return Interpreter(text, env, file_name).eval_hash(force_string_values)


def eval_as_sequence(text: str, env: Optional[EvaluationEnvironment] = None,
                     force_string_values: bool = False, file_name: Optional[str] = None) -> List[Any]:
    """Evaluates a text as the inside of a sequence, without the brackets."""
    return Interpreter(text, env, file_name).eval_sequence(force_string_values)


def detect_encoding(data: bytes) -> Optional[str]:
    """Finds the ``#encoding: name`` (or ``#charset: name``) header comment.

    Returns None when there's no such header, or it's malformed.
    """
    s = bytes(data).decode("latin-1")
    p = 0
    while p < len(s) and s[p] in _HEADER_WS:
        p += 1
    if s.startswith(_UTF8_BOM + "#", p):
        p += len(_UTF8_BOM)
    if not s.startswith("#", p):
        return None
    m = _ENCODING_HEADER.match(s, p + 1)
    return m.group(1) if m else None


def load_tdd(data: Union[bytes, bytearray, BinaryIO], default_encoding: str = "utf-8") -> str:
    """Decodes a TDD file, honoring its ``#encoding:`` header if it has one."""
    if not isinstance(data, (bytes, bytearray)):
        data = data.read()
    encoding = detect_encoding(data)
    if encoding is not None:
        try:
            codec_name = codecs.lookup(encoding).name
        except LookupError:
            encoding = None
        else:
            # Without a BOM, UTF-16 is big-endian
            if codec_name == "utf-16" and not data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
                encoding = "utf-16-be"
    return bytes(data).decode(encoding or default_encoding, errors="replace")
