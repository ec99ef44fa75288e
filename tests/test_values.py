"""Value coercion, equality and ordering."""

import math

import pytest

from hyperian.values import (
    compare,
    display,
    is_empty,
    loose_equal,
    plain,
    to_int,
    to_number,
    to_text,
    type_name,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, 0),
        (True, 1),
        (2.0, 2),
        (" 3.5 ", 3.5),
        ("", 0),
        ([], 0),
        (["7"], 7),
    ],
)
def test_to_number(value, expected):
    assert to_number(value) == expected


def test_unconvertible_number_is_nan():
    assert math.isnan(to_number("seven"))
    assert math.isnan(to_number({"a": 1}))
    assert to_int("seven", -1) == -1


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, "null"),
        (True, "true"),
        (3.0, "3"),
        (0.5, "0.5"),
        (math.inf, "Infinity"),
        ([1, None, "a"], "1,,a"),
        ({"a": 1}, '{"a":1}'),
    ],
)
def test_to_text(value, expected):
    assert to_text(value) == expected


def test_display_renders_lists_as_json():
    assert display([1, "a"]) == '[1,"a"]'
    assert display("plain") == "plain"


@pytest.mark.parametrize("value", [None, "", 0, 0.0, False, []])
def test_empty_values(value):
    assert is_empty(value)


@pytest.mark.parametrize("value", ["x", 1, True, [0], {}])
def test_non_empty_values(value):
    assert not is_empty(value)


def test_loose_equal():
    assert loose_equal(1, 1.0)
    assert loose_equal("5", 5)
    assert loose_equal(True, "true")
    assert not loose_equal(None, 0)
    assert loose_equal([1, 2], [1, 2])


def test_compare():
    assert compare(1, 2) == -1
    assert compare("b", "a") == 1
    assert compare("10", 9) == 1
    assert compare(None, 0) == 0
    assert compare([1], 1) is None
    assert compare("x", 1) is None


def test_type_name():
    assert [type_name(v) for v in ([], None, False, 1, "s", {})] == [
        "array",
        "nothing",
        "boolean",
        "number",
        "string",
        "object",
    ]
    assert type_name(len) == "function"


def test_plain_drops_non_data():
    assert plain({"a": 1, "f": len, "n": math.nan}) == {"a": 1, "n": None}
    assert plain([len, 2]) == [None, 2]
