"""
Data loaders: the functions that TDD function calls resolve to in the stock
evaluation environment.

    data = eval_as_hash(
        "birds: csv(data/birds.csv, {separator: ','}), style: properties(style.properties)",
        DataLoaderEvaluationEnvironment(DataContext(data_root="src")))
"""
from __future__ import annotations

import csv
import io
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from tdd.tdd_datatypes import DataLoaderError
from tdd.tdd_file import resolve_path, read_bytes
from tdd.tdd_interpreter import eval_as_hash, eval_as_sequence, load_tdd
from tdd.tdd_printer import quote_string
from tdd.tdd_runtime import DataContext, DataLoaderEvaluationEnvironment, _dbg
from tdd.tdd_serialize import deserialize

BOM = "\N{ZERO WIDTH NO-BREAK SPACE}"


# =================================================================
# Option helpers
# =================================================================

def _str_option(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise DataLoaderError(f"The value of option {quote_string(name)} must be a string.")
    return value


def _bool_option(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise DataLoaderError(f"The value of option {quote_string(name)} must be a boolean.")
    return value


def _char_option(name: str, value: Any) -> str:
    value = _str_option(name, value)
    if len(value) != 1:
        raise DataLoaderError(f"The value of option {quote_string(name)} must be a 1 character long string.")
    return value


def _str_list_option(name: str, value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise DataLoaderError(f"The value of option {quote_string(name)} must be a sequence of strings.")
    return value


def _options_arg(args: List[Any], index: int) -> Mapping[str, Any]:
    if len(args) <= index:
        return {}
    options = args[index]
    if not isinstance(options, Mapping):
        raise DataLoaderError(f"The {_ordinal(index + 1)} argument (options) must be a hash.")
    return options


def _unknown_option(name: str, supported: str) -> DataLoaderError:
    return DataLoaderError(f"Unknown option: {quote_string(name)}. The supported options are: {supported}")


def _ordinal(n: int) -> str:
    return {1: "1st", 2: "2nd", 3: "3rd"}.get(n, f"{n}th")


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith(BOM) else text


# =================================================================
# Loader contract
# =================================================================

class DataLoader(ABC):
    """Creates a value from the arguments of a TDD function call.

    A new instance is created for each call.
    """

    @abstractmethod
    def load(self, context: DataContext, args: List[Any]) -> Any:
        raise NotImplementedError


class FileDataLoader(DataLoader):
    """Base of loaders whose 1st argument is a file name, relative to the
    data root of the context."""

    def load(self, context: DataContext, args: List[Any]) -> Any:
        self.context = context
        self.args = args
        if len(args) < 1:
            raise DataLoaderError("At least 1 argument (file name) needed")
        if not isinstance(args[0], str):
            raise DataLoaderError("The 1st argument (file name) must be a string.")
        self.data_file = resolve_path(args[0], context.data_root)
        _dbg("FILE", type(self).__name__, self.data_file)
        return self.load_data(read_bytes(self.data_file))

    @abstractmethod
    def load_data(self, data: bytes) -> Any:
        raise NotImplementedError

    def _encoding_arg(self, loader_name: str) -> str:
        """For the ``name(filename)`` / ``name(filename, encoding)`` forms."""
        if len(self.args) > 2:
            raise DataLoaderError(
                f"{loader_name} data loader needs 1 or 2 arguments: "
                f"{loader_name}(filename) or {loader_name}(filename, encoding)")
        if len(self.args) > 1:
            if not isinstance(self.args[1], str):
                raise DataLoaderError("The 2nd argument (encoding) must be a string.")
            return self.args[1]
        return self.context.source_encoding


class AbstractTextDataLoader(FileDataLoader):
    """Decodes the file, then parses the text. The 2nd argument is an
    options hash, handled by ``parse_options``."""

    # Used in error messages
    name = "text"

    def load_data(self, data: bytes) -> Any:
        encoding = self.parse_options(_options_arg(self.args, 1))
        if len(self.args) > 2:
            raise DataLoaderError(
                f"{self.name} data loader needs 1 or 2 arguments: "
                f"{self.name}(filename) or {self.name}(filename, options)")
        text = data.decode(encoding or self.context.source_encoding)
        return self.parse_text(_strip_bom(text))

    @abstractmethod
    def parse_options(self, options: Mapping[str, Any]) -> Optional[str]:
        """Processes the options; returns the encoding option, if any."""
        raise NotImplementedError

    @abstractmethod
    def parse_text(self, text: str) -> Any:
        raise NotImplementedError


# =================================================================
# Structured formats
# =================================================================

class PropertiesDataLoader(FileDataLoader):
    """``properties(filename)``: a Java .properties file, as a hash of strings."""

    def load_data(self, data):
        if len(self.args) != 1:
            raise DataLoaderError("Properties data loader needs exactly 1 argument: properties(filename)")
        return parse_properties(data.decode("iso-8859-1"))


_PROPERTY_ESCAPE = re.compile(r'\\(u[0-9a-fA-F]{4}|u|.)', re.DOTALL)
_PROPERTY_ESCAPES = {'t': '\t', 'n': '\n', 'r': '\r', 'f': '\f'}
_PROPERTY_WS = ' \t\f'


def _unescape_property(s: str) -> str:
    def replace(m):
        esc = m.group(1)
        if esc[0] == 'u':
            if len(esc) == 1:
                raise DataLoaderError("Malformed \\uxxxx encoding in properties file.")
            return chr(int(esc[1:], 16))
        return _PROPERTY_ESCAPES.get(esc, esc)
    return _PROPERTY_ESCAPE.sub(replace, s)


def _continues(line: str) -> bool:
    n = len(line) - len(line.rstrip('\\'))
    return n % 2 == 1


def parse_properties(text: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    lines = iter(re.split(r'\r\n|\r|\n', text))
    for line in lines:
        line = line.lstrip(_PROPERTY_WS)
        if not line or line[0] in '#!':
            continue
        while _continues(line):
            nxt = next(lines, None)
            line = line[:-1]
            if nxt is None:
                break
            line += nxt.lstrip(_PROPERTY_WS)

        i = 0
        while i < len(line):
            c = line[i]
            if c == '\\':
                i += 2
                continue
            if c in '=:' or c in _PROPERTY_WS:
                break
            i += 1
        key = line[:i]
        j = i
        while j < len(line) and line[j] in _PROPERTY_WS:
            j += 1
        if j < len(line) and line[j] in '=:':
            j += 1
            while j < len(line) and line[j] in _PROPERTY_WS:
                j += 1
        result[_unescape_property(key)] = _unescape_property(line[j:])
    return result


class JsonDataLoader(FileDataLoader):
    """``json(filename[, encoding])``"""

    def load_data(self, data):
        return deserialize(data, fmt="json", encoding=self._encoding_arg("json"))


class YamlDataLoader(FileDataLoader):
    """``yaml(filename[, encoding])``"""

    def load_data(self, data):
        return deserialize(data, fmt="yaml", encoding=self._encoding_arg("yaml"))


class TomlDataLoader(FileDataLoader):
    """``toml(filename)``"""

    def load_data(self, data):
        if len(self.args) != 1:
            raise DataLoaderError("toml data loader needs exactly 1 argument: toml(filename)")
        return deserialize(data, fmt="toml")


class XmlDataLoader(FileDataLoader):
    """``xml(filename[, {encoding: ..., namespaces: ...}])``

    The document becomes nested hashes: attributes are ``@name`` keys, text
    next to child elements is ``#text``.
    """

    def load_data(self, data):
        if len(self.args) > 2:
            raise DataLoaderError("xml data loader needs 1 or 2 arguments: xml(filename) or xml(filename, options)")
        encoding = None
        namespaces = False
        for name, value in _options_arg(self.args, 1).items():
            match name:
                case "encoding":
                    encoding = _str_option(name, value)
                case "namespaces":
                    namespaces = _bool_option(name, value)
                case _:
                    raise _unknown_option(name, "encoding, namespaces")
        return deserialize(data, fmt="xml", encoding=encoding, namespaces=namespaces)


# =================================================================
# CSV
# =================================================================

_CSV_TYPES = {
    "n": "number", "number": "number",
    "s": "string", "string": "string",
    "b": "boolean", "boolean": "boolean",
    "d": "date", "date": "date",
    "t": "time", "time": "time",
    "dt": "dateTime", "datetime": "dateTime",
}
_TRUE_WORDS = ("true", "yes", "y", "1")
_FALSE_WORDS = ("false", "no", "n", "0")


class CsvDataLoader(FileDataLoader):
    """``csv(filename[, options])``: a sequence of row hashes.

    Header cells may specify the type of the column, like ``price:n``. The
    types are ``n`` (number), ``s`` (string, the default), ``b`` (boolean),
    ``d`` (date), ``t`` (time) and ``dt`` (date-time); empty cells of typed
    columns are None.
    """

    SUPPORTED_OPTIONS = (
        "encoding, separator, headers, replaceHeaders, normalizeHeaders, "
        "trimCells, emptyValue, groupingSeparator, decimalSeparator, altTrue, altFalse")

    def __init__(self):
        self.separator = ";"
        self.external_headers: Optional[List[str]] = None
        self.has_header_row = True
        self.normalize_headers = False
        self.trim_cells = False
        self.empty_values: List[str] = []
        self.grouping_separator: Optional[str] = None
        self.decimal_separator = "."
        self.alt_true: Optional[str] = None
        self.alt_false: Optional[str] = None

    def load_data(self, data):
        if len(self.args) > 2:
            raise DataLoaderError("csv data loader needs 1 or 2 arguments: csv(filename) or csv(filename, options)")
        encoding = self.context.source_encoding
        header_option_used = False
        for name, value in _options_arg(self.args, 1).items():
            match name:
                case "headers" | "replaceHeaders":
                    if header_option_used:
                        raise DataLoaderError(
                            "Only one of the \"headers\" and \"replaceHeaders\" options can be used at once.")
                    self.external_headers = _str_list_option(name, value)
                    self.has_header_row = name == "replaceHeaders"
                    header_option_used = True
                case "normalizeHeaders":
                    self.normalize_headers = _bool_option(name, value)
                case "trimCells":
                    self.trim_cells = _bool_option(name, value)
                case "emptyValue":
                    self.empty_values = _str_list_option(name, value)
                case "separator":
                    self.separator = _char_option(name, value)
                case "groupingSeparator":
                    self.grouping_separator = _char_option(name, value)
                case "decimalSeparator":
                    self.decimal_separator = _char_option(name, value)
                case "encoding":
                    encoding = _str_option(name, value)
                case "altTrue":
                    self.alt_true = _str_option(name, value).lower()
                case "altFalse":
                    self.alt_false = _str_option(name, value).lower()
                case _:
                    raise _unknown_option(name, self.SUPPORTED_OPTIONS)
        return self.parse(_strip_bom(data.decode(encoding)))

    def parse(self, text: str) -> List[Dict[str, Any]]:
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.separator,
                            quotechar='"', doublequote=True, strict=True)
        try:
            rows = [row for row in reader if row]
        except csv.Error as e:
            raise DataLoaderError(f"Malformed CSV: {e}") from e

        if self.external_headers is None:
            if not rows:
                return []
            header_cells, rows = rows[0], rows[1:]
        else:
            header_cells = self.external_headers
            if self.has_header_row:
                rows = rows[1:]
        columns = [self._parse_header(h) for h in header_cells]

        result = []
        for row_index, row in enumerate(rows):
            if len(row) > len(columns):
                raise DataLoaderError(
                    f"Row {row_index + 2} contains more columns than the number of header cells.")
            record: Dict[str, Any] = {name: None for name, _ in columns}
            for (name, col_type), cell in zip(columns, row):
                if self.trim_cells:
                    cell = cell.strip()
                if cell in self.empty_values:
                    cell = ""
                record[name] = self._convert(cell, col_type)
            result.append(record)
        return result

    def _parse_header(self, header: str):
        if self.normalize_headers:
            opening = header.find("(")
            closing = header.rfind(")")
            if opening != -1 and closing != -1 and opening < closing:
                header = header[:opening] + header[closing + 1:]
        i = header.rfind(":")
        if i == -1:
            name, col_type = header.strip(), "string"
        else:
            type_name = header[i + 1:].strip().lower()
            name = header[:i].strip()
            col_type = _CSV_TYPES.get(type_name)
            if col_type is None:
                raise DataLoaderError(f"Unknown data type in a header: {quote_string(type_name)}")
        if self.normalize_headers:
            name = re.sub(r"[ \-,;:]", "_", name.lower())
            name = re.sub(r"_{2,}", "_", name)
        return name, col_type

    def _convert(self, cell: str, col_type: str) -> Any:
        if col_type == "string":
            return cell
        cell = cell.strip()
        if not cell:
            return None
        match col_type:
            case "number":
                if self.grouping_separator is not None:
                    cell = cell.replace(self.grouping_separator, "")
                if self.decimal_separator != ".":
                    cell = cell.replace(self.decimal_separator, ".")
                try:
                    return Decimal(cell)
                except InvalidOperation:
                    raise DataLoaderError(f"Malformed number: {quote_string(cell)}") from None
            case "boolean":
                s = cell.lower()
                if self.alt_true is not None and s == self.alt_true:
                    return True
                if self.alt_false is not None and s == self.alt_false:
                    return False
                if s in _TRUE_WORDS:
                    return True
                if s in _FALSE_WORDS:
                    return False
                raise DataLoaderError(f"Malformed boolean: {quote_string(cell)}")
            case "date":
                return self._parse_temporal(date.fromisoformat, cell, "date")
            case "time":
                return self._parse_temporal(time.fromisoformat, cell, "time")
            case "dateTime":
                value = self._parse_temporal(datetime.fromisoformat, cell, "date-time")
                if value.tzinfo is None and self.context.time_zone is not None:
                    value = value.replace(tzinfo=ZoneInfo(self.context.time_zone))
                return value

    @staticmethod
    def _parse_temporal(parse, cell, what):
        try:
            return parse(cell)
        except ValueError:
            raise DataLoaderError(f"Malformed {what} (ISO 8601 format expected): {quote_string(cell)}") from None


# =================================================================
# Plain text
# =================================================================

class TextDataLoader(FileDataLoader):
    """``text(filename[, encoding])``: the content of the file as a string."""

    def load_data(self, data):
        return _strip_bom(data.decode(self._encoding_arg("text")))


class SlicedTextDataLoader(AbstractTextDataLoader):
    """``slicedText(filename[, options])``: the file split into a list of strings.

    A line break in the separator matches any of CR, LF and CRLF, and spaces
    or tabs right before it (except when the separator starts with it).
    """

    name = "slicedText"

    def __init__(self):
        self.separator = "\n"
        self.trim = False
        self.drop_empty_last_item = True

    def parse_options(self, options):
        encoding = None
        for name, value in options.items():
            match name:
                case "separator":
                    sep = re.sub(r"\r\n?", "\n", _str_option(name, value))
                    if not sep:
                        raise DataLoaderError(f"The value of the {quote_string(name)} option can't be 0 length string.")
                    self.separator = sep
                case "encoding":
                    encoding = _str_option(name, value)
                case "trim":
                    self.trim = _bool_option(name, value)
                case "dropEmptyLastItem":
                    self.drop_empty_last_item = _bool_option(name, value)
                case _:
                    raise _unknown_option(name, "encoding, separator, trim, dropEmptyLastItem")
        return encoding

    def _match_separator(self, text: str, i: int) -> int:
        """Returns the index after the separator at ``i``, or -1."""
        ln = len(text)
        for si, sc in enumerate(self.separator):
            if sc == "\n":
                # Spaces and tabs are allowed before the line break
                while si != 0 and i < ln and text[i] in " \t":
                    i += 1
                if i >= ln:
                    return -1
                if text[i] == "\n":
                    i += 1
                elif text[i] == "\r":
                    i += 1
                    if i < ln and text[i] == "\n":
                        i += 1
                else:
                    return -1
            else:
                if i >= ln or text[i] != sc:
                    return -1
                i += 1
        return i

    def parse_text(self, text):
        items = []
        b = e = 0
        ln = len(text)
        while e < ln:
            after = self._match_separator(text, e)
            if after == -1:
                e += 1
                continue
            items.append(text[b:e])
            b = e = after
        items.append(text[b:])
        if self.trim:
            items = [item.strip() for item in items]
        if self.drop_empty_last_item and items[-1] == "":
            items.pop()
        return items


# =================================================================
# Nested TDD
# =================================================================

class TddDataLoader(FileDataLoader):
    """``tdd(filename[, encoding])``: a TDD file evaluated as a hash."""

    def load_data(self, data):
        return eval_as_hash(
            load_tdd(data, self._encoding_arg("tdd")),
            DataLoaderEvaluationEnvironment(self.context),
            False, self.data_file)


class TddSequenceDataLoader(FileDataLoader):
    """``tddSequence(filename[, encoding])``: a TDD file evaluated as a sequence."""

    def load_data(self, data):
        return eval_as_sequence(
            load_tdd(data, self._encoding_arg("tddSequence")),
            DataLoaderEvaluationEnvironment(self.context),
            False, self.data_file)


# =================================================================
# Current time
# =================================================================

_DATE_STYLES = {"short": "%m/%d/%y", "medium": "%b %d, %Y", "long": "%B %d, %Y", "default": "%b %d, %Y"}
_TIME_STYLES = {"short": "%H:%M", "medium": "%H:%M:%S", "long": "%H:%M:%S %Z", "default": "%H:%M:%S"}


class NowDataLoader(DataLoader):
    """``now([{pattern: ..., date: ..., time: ..., zone: ...}])``: the current
    date and/or time as a string. ``pattern`` is a ``strftime`` pattern;
    ``date`` and ``time`` are ``short``, ``medium``, ``long`` or ``default``."""

    def load(self, context, args):
        if len(args) > 1:
            raise DataLoaderError("now data loader needs 0 or 1 arguments.")
        if args and not isinstance(args[0], Mapping):
            raise DataLoaderError("The argument of now data loader must be a hash.")
        pattern = None
        date_style = time_style = None
        zone = context.time_zone
        for name, value in (args[0] if args else {}).items():
            match name:
                case "pattern":
                    pattern = _str_option(name, value)
                case "date":
                    date_style = self._style(name, value, _DATE_STYLES)
                case "time":
                    time_style = self._style(name, value, _TIME_STYLES)
                case "zone":
                    zone = _str_option(name, value)
                case _:
                    raise _unknown_option(name, "date, time, pattern, zone")

        if pattern is not None:
            if date_style is not None or time_style is not None:
                raise DataLoaderError("You can't use the the date/time options together with the pattern option.")
        elif date_style is None and time_style is None:
            pattern = f"{_DATE_STYLES['short']} {_TIME_STYLES['short']}"
        else:
            pattern = " ".join(p for p in (date_style, time_style) if p is not None)

        now = datetime.now(ZoneInfo(zone)) if zone is not None else datetime.now().astimezone()
        return now.strftime(pattern)

    @staticmethod
    def _style(name, value, styles):
        value = _str_option(name, value)
        style = styles.get(value.lower())
        if style is None:
            raise DataLoaderError(
                f"Illegal value for the {name} option: {quote_string(value)}. "
                "Valid values are: short, medium, long, default")
        return style
