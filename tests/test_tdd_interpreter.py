from decimal import Decimal

import pytest

from tdd.tdd_interpreter import eval_tdd, eval_as_hash, eval_as_sequence
from tdd.tdd_datatypes import FunctionCall, TddSyntaxError, TddEvalError


# Test cases: (id, text, expected_value)
EVAL_TEST_CASES = [
    ("int", "123", 123),
    ("negative_int", "-5", -5),
    ("plus_sign_is_dropped", "+5", 5),
    ("decimal", "3.14", Decimal("3.14")),
    ("decimal_exponent", "1e3", Decimal("1e3")),
    ("decimal_leading_minus_dot", "-.5", Decimal("-0.5")),
    ("dot_first_is_string", ".5", ".5"),
    ("lone_minus", "-", "-"),
    ("version_like", "1.2.3", "1.2.3"),
    ("true", "true", True),
    ("false", "false", False),
    ("unquoted", "foo", "foo"),
    ("unquoted_path", "data/birds.csv", "data/birds.csv"),
    ("colon_in_value_token", "a:b", "a:b"),
    ("unquoted_non_ascii", "árvíztűrő", "árvíztűrő"),
    ("quoted", '"hello world"', "hello world"),
    ("apostrophe_quoted", "'say \"hi\"'", 'say "hi"'),
    ("escapes", r'"a\nb\tc\\d"', "a\nb\tc\\d"),
    ("markup_escapes", r'"\l\g\a\{"', "<>&{"),
    ("quote_escapes", r"""'\'\"'""", "'\""),
    ("hex_escapes", r'"\x41\u00e9"', "A\u00e9"),
    ("raw_string", r'r"a\nb"', "a\\nb"),
    ("raw_apostrophe", r"r'c:\temp'", "c:\\temp"),
    ("line_continuation", '"a\\\n    b"', "ab"),
    ("line_continuation_crlf", '"a\\  \r\n  b"', "ab"),
    ("line_continuation_stops_at_2nd_line_break", '"a\\\n\n b"', "a\n b"),
    ("empty_hash", "{}", {}),
    ("empty_sequence", "[]", []),
    ("hash", "{a: 1, b: [x, 'y']}", {"a": 1, "b": ["x", "y"]}),
    ("bare_keys", "{a, b: false}", {"a": True, "b": False}),
    ("numeric_looking_key", "{1: x}", {"1": "x"}),
    ("key_stops_at_colon", "{a:b:c}", {"a": "b:c"}),
    ("hash_merge", "{{a: 1, b: 1}, b: 2}", {"a": 1, "b": 2}),
    ("nested", "[{a: 1}, [2, [3]]]", [{"a": 1}, [2, [3]]]),
    ("newline_separates", "[1\n2\n3]", [1, 2, 3]),
    ("trailing_comma", "[1, 2,]", [1, 2]),
    ("function_call", "foo(1, 2)", FunctionCall("foo", (1, 2))),
    ("function_call_space", "foo (x)", FunctionCall("foo", ("x",))),
    ("function_call_no_args", "now()", FunctionCall("now", ())),
    ("function_call_hash_arg", "csv(a.csv, {separator: ','})",
     FunctionCall("csv", ("a.csv", {"separator": ","}))),
    ("line_comment", "# comment\n123", 123),
    ("hash_mark_in_token", "a#b", "a#b"),
    ("block_comment", "<#-- c --> [1, <#-- d --> 2]", [1, 2]),
    ("whitespace_around", "  \n 7 \n ", 7),
    ("bom_is_whitespace", "\N{ZERO WIDTH NO-BREAK SPACE}x", "x"),
]


@pytest.mark.parametrize("test_id, text, expected", EVAL_TEST_CASES, ids=[c[0] for c in EVAL_TEST_CASES])
def test_eval_tdd(test_id, text, expected):
    assert eval_tdd(text) == expected


def test_numbers_keep_their_type():
    assert type(eval_tdd("42")) is int
    assert type(eval_tdd("4.2")) is Decimal
    assert type(eval_tdd("true")) is bool


def test_huge_integer_does_not_fail():
    digits = "9" * 5000
    assert eval_tdd(digits) == Decimal(digits)


@pytest.mark.parametrize("text, expected", [
    ("123", "123"),
    ("true", "true"),
    ("[1, 2.5]", ["1", "2.5"]),
    ("{a: 1}", {"a": "1"}),
])
def test_force_string_values(text, expected):
    assert eval_tdd(text, force_string_values=True) == expected


def test_eval_as_hash():
    assert eval_as_hash("foo, bar: 1") == {"foo": True, "bar": 1}
    assert eval_as_hash("a: 1\nb: 2\n") == {"a": 1, "b": 2}
    assert eval_as_hash("") == {}
    assert eval_as_hash("# only a comment") == {}


def test_eval_as_hash_force_string_values():
    assert eval_as_hash("a: 1, b: true", force_string_values=True) == {"a": "1", "b": "true"}


def test_eval_as_hash_later_key_wins():
    assert eval_as_hash("a: 1, a: 2") == {"a": 2}


def test_eval_as_sequence():
    assert eval_as_sequence("1\n2\n3") == eval_as_sequence("1,2,3") == [1, 2, 3]
    assert eval_as_sequence("") == []
    assert eval_as_sequence("a, [b], {c: d}") == ["a", ["b"], {"c": "d"}]


def test_hash_key_order_is_kept():
    assert list(eval_as_hash("z: 1, a: 2, m: 3")) == ["z", "a", "m"]


# Test cases: (id, text, message_part)
SYNTAX_ERROR_CASES = [
    ("empty", "", "The text is empty."),
    ("only_whitespace", "  \n ", "The text is empty."),
    ("extra", "1 2", "Extra character(s) after the expression."),
    ("unclosed_hash", "{a: 1", "the map was not closed with '}'"),
    ("unclosed_sequence", "[1", "the list was not closed with ']'"),
    ("unclosed_string", "'abc", "The closing apostrophe-quote of the string is missing."),
    ("unclosed_string_quotation_mark", '"abc', "The closing quotation mark of the string is missing."),
    ("unclosed_raw_string", 'r"abc', "The closing quotation mark of the string is missing."),
    ("backslash_at_end", '"abc\\', "The closing quotation mark of the string is missing."),
    ("unclosed_comment", "<#-- abc", 'Comment was not closed with "-->".'),
    ("semicolon", "[1; 2]", "Semicolon (;) was unexpected here."),
    ("equals", "{a = 1}", "Equals sign (=) was unexpected here."),
    ("plus", "{a: 1 + b: 2}", "is not allowed anymore"),
    ("missing_separator", "[a b]", "No separator was used before the item."),
    ("unexpected_character", "[a)", "Character ')' shouldn't occur here."),
    ("colon_in_list", "[a : 1]", "This is a list, and not a hash."),
    ("second_colon", "{a: 1 : 2}", "the value was already given previously"),
    ("list_leading_comma", "[,]", "List item is missing before the comma."),
    ("hash_leading_comma", "{,}", "Key-value pair is missing before the comma."),
    ("bad_escape", r'"\q"', "Invalid escape sequence \\q in the string literal."),
    ("bad_hex_escape", r'"\x"', "Invalid hexadecimal UNICODE escape"),
    ("backslash_space", '"a\\ b"', "Invalid usage of escape sequence \\white-space."),
    ("closing_bracket_first", "]", "Unexpected character."),
    ("key_without_value", "{a:", "The key must be followed by a value because colon was used."),
]


@pytest.mark.parametrize("test_id, text, message", SYNTAX_ERROR_CASES, ids=[c[0] for c in SYNTAX_ERROR_CASES])
def test_syntax_errors(test_id, text, message):
    with pytest.raises(TddSyntaxError) as exc_info:
        eval_tdd(text)
    assert message in str(exc_info.value)
    assert exc_info.value.message.startswith("TDD syntax error: ")


# Test cases: (id, text, message_part)
EVAL_ERROR_CASES = [
    ("sequence_key", "{[1]: x}", "The key must be a String, but it is a(n) sequence."),
    ("sequence_merge", "{[1]}", "This expression should be either a string or a hash, but it is a(n) sequence."),
    ("unresolved_function_key", "{foo(): 1}", "You can't use the function here"),
    ("unresolved_function_merge", "{foo()}", "You can't use the function here"),
]


@pytest.mark.parametrize("test_id, text, message", EVAL_ERROR_CASES, ids=[c[0] for c in EVAL_ERROR_CASES])
def test_eval_errors(test_id, text, message):
    with pytest.raises(TddEvalError) as exc_info:
        eval_tdd(text)
    assert message in str(exc_info.value)
    assert exc_info.value.message.startswith("TDD error: ")


def test_error_position():
    with pytest.raises(TddSyntaxError) as exc_info:
        eval_tdd("{\n  a = 1\n}", file_name="conf.tdd")
    e = exc_info.value
    assert e.position == 6
    assert e.line == 2
    assert e.column == 5
    assert e.file_name == "conf.tdd"
    assert "Error location: line 2, column 5 in conf.tdd:" in str(e)


def test_unclosed_hash_points_at_opening_brace():
    with pytest.raises(TddSyntaxError) as exc_info:
        eval_tdd("[1, {a: 1")
    assert exc_info.value.position == 4


def test_missing_value_points_at_key():
    with pytest.raises(TddSyntaxError) as exc_info:
        eval_as_hash("x: 1, a:")
    assert exc_info.value.position == 6
    assert "The key must be followed by a value" in str(exc_info.value)
