"""
Defines the value and error types shared by the TDD interpreter, its
evaluation environments and the data loaders.

Plain TDD values are ordinary Python objects (str, int, Decimal, bool, list,
dict). The two types below represent values whose evaluation was deferred.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple


# =================================================================
# Deferred values
# =================================================================

@dataclass(frozen=True)
class FunctionCall:
    """A parsed ``name(arg, ...)`` call that was not (yet) resolved.

    The arguments are already evaluated TDD values.
    """
    name: str
    params: Tuple[Any, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "params", tuple(self.params))

    def __str__(self):
        # Imported lazily; the printer depends on this module.
        from tdd.tdd_printer import dump
        return dump(self)


@dataclass(frozen=True)
class Fragment:
    """An unevaluated slice of a TDD text.

    ``text`` is the whole source the fragment was cut from, so positions in
    error messages stay meaningful when the fragment is evaluated later.
    """
    text: str = field(repr=False)
    start: int
    end: int
    file_name: Optional[str] = None

    def __str__(self):
        return self.text[self.start:self.end]

    def __repr__(self):
        return f"Fragment({str(self)!r}, start={self.start}, end={self.end}, file_name={self.file_name!r})"


# =================================================================
# Errors
# =================================================================

def _locate(text: str, position: int) -> Tuple[int, int]:
    """Returns (row, row_begin) of position; rows are 1 based, CR, LF and
    CRLF all count as one line break."""
    row, row_begin = 1, 0
    for i in range(1, position + 1):
        prev = text[i - 1]
        if prev == "\n" or (prev == "\r" and text[i] != "\n"):
            row += 1
            row_begin = i
    return row, row_begin


def format_source_error(message: str, text: str, position: int,
                        file_name: Optional[str] = None, max_width: int = 56) -> str:
    """Appends a caret diagnostic that points at ``position`` in ``text``."""
    where = file_name if file_name is not None else "the text"
    ln = len(text)
    position = max(position, 0)
    if position >= ln:
        if position == ln:
            return f"{message}\nError location: The very end of {where}."
        return f"{message}\nError location: ??? (after the end of {where})"

    row, row_begin = _locate(text, position)
    row_end = position
    while row_end < ln and text[row_end] not in "\r\n":
        row_end += 1
    col = position - row_begin + 1
    in_file = f" in {file_name}" if file_name is not None else ""
    header = f"{message}\nError location: line {row}, column {col}{in_file}:"
    if row_begin == row_end:
        return f"{header}\n(Can't show the line because it is empty.)"

    line = text[row_begin:row_end].expandtabs(8)
    before = text[row_begin:position].expandtabs(8)
    after = line[len(before):]
    ln1, ln2 = len(before), len(after)
    if ln1 + ln2 > max_width:
        new_ln2 = max(ln2 - ((ln1 + ln2) - max_width), 6)
        if new_ln2 < ln2:
            after = after[:new_ln2 - 3] + "..."
            ln2 = new_ln2
        if ln1 + ln2 > max_width:
            before = "..." + before[(ln1 + ln2) - max_width + 3:]
    return f"{header}\n{before}{after}\n{' ' * len(before)}^"


class TddError(Exception):
    """Base class of the errors raised while evaluating TDD.

    Carries the source text and the character offset of the problem, so
    ``str()`` can show where it happened.
    """
    def __init__(self, message: str, text: Optional[str] = None,
                 position: Optional[int] = None, file_name: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.message = message
        self.text = text
        self.position = position
        self.file_name = file_name
        if text is not None and position is not None:
            full = format_source_error(message, text, position, file_name)
        else:
            full = message
        super().__init__(full)
        if cause is not None:
            self.__cause__ = cause

    @property
    def line(self) -> Optional[int]:
        if self.text is None or self.position is None or self.position >= len(self.text):
            return None
        return _locate(self.text, max(self.position, 0))[0]

    @property
    def column(self) -> Optional[int]:
        if self.text is None or self.position is None or self.position >= len(self.text):
            return None
        position = max(self.position, 0)
        return position - _locate(self.text, position)[1] + 1


class TddSyntaxError(TddError):
    """Malformed TDD: unterminated literals, illegal characters, bad separators."""
    pass


class TddEvalError(TddError):
    """Well-formed TDD that can't be evaluated, or a failure of the
    evaluation environment."""
    pass


class TypeNotConvertableToMap(TypeError):
    def __init__(self, value: Any):
        super().__init__(f"{type(value).__name__} can't be converted to a hash")
        self.value = value


class DataLoaderError(Exception):
    """A data loader can't be found, or was called with bad arguments."""
    pass
