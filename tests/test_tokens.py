"""Tokenizer tests."""

import pytest

from hyperian.tokens import (
    TK_ACTION,
    TK_BOOLEAN,
    TK_COMPARISON,
    TK_EOF,
    TK_IDENT,
    TK_KEYWORD,
    TK_NULL,
    TK_NUMBER,
    TK_OPERATOR,
    TK_PREP,
    TK_PUNCT,
    TK_STRING,
    classify_word,
    tokenize,
)


def kinds(source: str) -> list[tuple[str, object]]:
    return [(t.type, t.value) for t in tokenize(source)[:-1]]


@pytest.mark.parametrize(
    "word,expected",
    [
        ("when", (TK_KEYWORD, "when")),
        ("WHEN", (TK_KEYWORD, "when")),
        ("let", (TK_ACTION, "let")),
        ("print", (TK_ACTION, "print")),
        ("into", (TK_PREP, "into")),
        ("less", (TK_COMPARISON, "less")),
        ("true", (TK_BOOLEAN, True)),
        ("False", (TK_BOOLEAN, False)),
        ("nothing", (TK_NULL, None)),
        ("plus", (TK_OPERATOR, "+")),
        ("modulo", (TK_OPERATOR, "%")),
        ("times", (TK_KEYWORD, "times")),
        ("divided", (TK_KEYWORD, "divided")),
        ("Player", (TK_IDENT, "Player")),
        ("maxHp", (TK_IDENT, "maxHp")),
        ("weakTo", (TK_IDENT, "weakTo")),
    ],
)
def test_classify_word(word, expected):
    assert classify_word(word) == expected


def test_simple_statement():
    assert kinds("let score be 5") == [
        (TK_ACTION, "let"),
        (TK_IDENT, "score"),
        (TK_PREP, "be"),
        (TK_NUMBER, 5),
    ]


def test_eof_always_last():
    tokens = tokenize("")
    assert len(tokens) == 1
    assert tokens[0].type == TK_EOF
    assert (tokens[0].line, tokens[0].col) == (1, 1)


def test_positions_are_one_based():
    tokens = tokenize('let x be 1\n  print "hi"')
    printed = tokens[4]
    assert printed.value == "print"
    assert (printed.line, printed.col) == (2, 3)
    assert (tokens[5].line, tokens[5].col) == (2, 9)


def test_minus_before_digit_is_negative_number():
    assert kinds("x -1") == [(TK_IDENT, "x"), (TK_NUMBER, -1)]


def test_spaced_minus_is_operator():
    assert kinds("x - 1") == [(TK_IDENT, "x"), (TK_OPERATOR, "-"), (TK_NUMBER, 1)]


def test_number_values():
    assert kinds("3.5 2.0 4. 10") == [
        (TK_NUMBER, 3.5),
        (TK_NUMBER, 2),
        (TK_NUMBER, 4),
        (TK_NUMBER, 10),
    ]
    assert isinstance(tokenize("2.0")[0].value, int)


def test_strings_are_verbatim():
    tokens = tokenize(r'"a {b} \n" "say \"hi\""')
    assert tokens[0].type == TK_STRING
    assert tokens[0].value == r"a {b} \n"
    assert tokens[1].value == r"say \"hi\""


def test_string_keeps_keywords_and_comment_marks():
    assert kinds('"when # not a comment"') == [(TK_STRING, "when # not a comment")]


def test_unterminated_string_runs_to_end():
    assert kinds('"open') == [(TK_STRING, "open")]


def test_comments_skipped():
    source = "# heading\nlet a be 1 // trailing\nlet b be 2"
    values = [t.value for t in tokenize(source)[:-1]]
    assert values == ["let", "a", "be", 1, "let", "b", "be", 2]


def test_comment_does_not_shift_lines():
    tokens = tokenize("# one\n# two\nprint 1")
    assert tokens[0].line == 3


def test_punctuation_and_assign():
    assert kinds("x = [1, 2]") == [
        (TK_IDENT, "x"),
        ("ASSIGN", "="),
        (TK_PUNCT, "["),
        (TK_NUMBER, 1),
        (TK_PUNCT, ","),
        (TK_NUMBER, 2),
        (TK_PUNCT, "]"),
    ]


def test_unknown_characters_skipped():
    assert kinds("let @ x $") == [(TK_ACTION, "let"), (TK_IDENT, "x")]


def test_identifier_with_digits_and_underscore():
    assert kinds("level_2 boss3") == [(TK_IDENT, "level_2"), (TK_IDENT, "boss3")]
