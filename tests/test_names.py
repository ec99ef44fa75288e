"""Multi-word name coalescing."""

import pytest

from hyperian.parse import ParseError, Parser, parse_source
from hyperian.tokens import tokenize


def name_of(source: str, stop: set[str] | None = None) -> tuple[str, object]:
    """Parsed name plus the value of the token the parser stopped on."""
    parser = Parser(tokenize(source))
    name = parser.parse_name(stop if stop is not None else set())
    return name, parser.current().value


def test_words_join_with_underscore():
    assert name_of("player score") == ("player_score", None)


def test_stop_word_ends_name():
    assert name_of("high score is 5", {"is"}) == ("high_score", "is")


def test_first_word_may_start_a_statement():
    assert name_of("print total") == ("print_total", None)
    assert name_of("return value", {"be"}) == ("return_value", None)


@pytest.mark.parametrize("source", ["is ready", "be 2"])
def test_leading_stop_word_is_an_error(source):
    parser = Parser(tokenize(source))
    with pytest.raises(ParseError, match="expected variable name"):
        parser.parse_name({"is", "be"})


def test_leading_article_dropped():
    assert name_of("the big boss") == ("big_boss", None)
    assert name_of("my gold") == ("gold", None)


def test_lone_article_is_the_name():
    assert name_of("the") == ("the", None)
    assert name_of("the is", {"is"}) == ("the", "is")


def test_statement_start_ends_name():
    assert name_of("total print 1") == ("total", "print")
    assert name_of("total if") == ("total", "if")


def test_non_statement_action_joins():
    assert name_of("item count") == ("item_count", None)


def test_keywords_and_preps_join():
    assert name_of("max hp") == ("max_hp", None)


def test_literal_ends_name():
    assert name_of("lives 3") == ("lives", 3)


def test_no_word_is_an_error():
    parser = Parser(tokenize("42"))
    with pytest.raises(ParseError, match="expected variable name"):
        parser.parse_name(set())


@pytest.mark.parametrize(
    "source,name",
    [
        ("let player score be 10", "player_score"),
        ("let the final boss be 1", "final_boss"),
        ("set hit points to 3", "hit_points"),
        ("increase coin count by 2", "coin_count"),
    ],
)
def test_statement_names(source, name):
    program, diagnostics = parse_source(source)
    assert diagnostics == []
    assert program.init[0].name == name


@pytest.mark.parametrize(
    "line,kind",
    [
        ('throw "boom"', "ThrowStmt"),
        ('raise "boom"', "ThrowStmt"),
        ("try\n  print 1\nend", "TryStmt"),
        ("skip", "SkipStmt"),
        ("class Box with size\nend", "DefineClass"),
        ('import "helpers"', "ImportStmt"),
        ("export total", "ExportStmt"),
        ("await reply into answer", "AwaitStmt"),
        ('query "SELECT 1" into rows', "DbQuery"),
        ("insert {a: 1} into users", "DbInsert"),
        ("select * from users into rows", "DbSelect"),
        ('regex "a+" into pattern', "RegexStmt"),
        ('extract "a" from text into hits', "RegexExtract"),
        ('test "abc" against "a" into found', "RegexTest"),
        ('connect to websocket "ws://x" into sock', "ConnectSocket"),
        ('broadcast "hi"', "Broadcast"),
        ('execute "ls" into out', "ExecCommand"),
        ('shell "ls" into out', "ExecCommand"),
        ("any n in xs is greater than 1 into some", "EveryAny"),
        ('list files in "." into names', "ListFiles"),
        ('file exists "a.txt" into found', "FileExists"),
        ("type of total into kind", "TypeOfStmt"),
    ],
)
def test_next_line_statement_ends_names(line, kind):
    program, diagnostics = parse_source("let a be b\n" + line)
    assert diagnostics == []
    assert [type(s).__name__ for s in program.init] == ["LetStmt", kind]
    assert program.init[0].value.name == "b"

    program, diagnostics = parse_source("copy b into a\n" + line)
    assert diagnostics == []
    assert [type(s).__name__ for s in program.init] == ["CopyStmt", kind]
    assert program.init[0].out == "a"


def test_every_then_any_on_separate_lines():
    program, _ = parse_source(
        "every x in xs is greater than 1 into all_big\n"
        "any x in xs is less than 0 into some_negative\n"
    )
    assert [s.out for s in program.init] == ["all_big", "some_negative"]


def test_malformed_let_does_not_swallow_next_line():
    program, diagnostics = parse_source("let a be 1\nlet be\nlet b be 2\n")
    assert [s.name for s in program.init] == ["a", "b"]
    assert [d.message for d in diagnostics] == ["expected variable name, got 'be' (PREP)"]
