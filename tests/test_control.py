"""Control flow: Flow outcomes, loops, try/finally and the while cap."""

import pytest

from hyperian import HyperianLang, Interpreter, Options
from hyperian.parse import parse_source
from hyperian.runtime import Flow


def run_script(world, source: str, **kwargs) -> tuple[HyperianLang, list]:
    lang = HyperianLang(world, **kwargs)
    return lang, lang.load(source)


@pytest.mark.parametrize(
    "source,flow",
    [
        ("let a be 1", Flow("normal")),
        ("break", Flow("break")),
        ("skip", Flow("skip")),
        ("return 5", Flow("return", 5)),
    ],
)
def test_block_flow(world, source, flow):
    program, _ = parse_source(source)
    assert Interpreter(world).exec_block(program.init) == flow


def test_statements_after_flow_change_do_not_run(world):
    program, _ = parse_source("break\nlet after be 1")
    interp = Interpreter(world)
    interp.exec_block(program.init)
    assert not interp.env.has("after")


def test_return_passes_through_loops(world):
    lang, errors = run_script(
        world,
        "define function find_big with items\n"
        "  for each n in items do\n"
        "    if n is greater than 2 then\n"
        "      return n\n"
        "    end\n"
        "  end\n"
        "  return 0\n"
        "end\n"
        "let r be call function find_big with [1, 5, 7]\n",
    )
    assert errors == []
    assert lang.vars["r"] == 5


def test_break_only_leaves_inner_loop(world):
    lang, errors = run_script(
        world,
        "let count be 0\n"
        "repeat 3 times\n"
        "  repeat 5 times\n"
        "    increase count by 1\n"
        "    break\n"
        "  end\n"
        "end\n",
    )
    assert errors == []
    assert lang.vars["count"] == 3


def test_while_cap_from_options(world):
    lang, errors = run_script(
        world,
        "let n be 0\nwhile true do\n  increase n by 1\nend\nlet after be 1\n",
        options=Options(while_limit=3),
    )
    assert errors == []
    assert lang.vars["n"] == 3
    assert lang.vars["after"] == 1
    warnings = [d.message for d in lang.diagnostics if d.severity == "warning"]
    assert warnings == ["while loop stopped after 3 iterations"]


def test_while_under_cap_does_not_warn(world):
    lang, _ = run_script(
        world,
        "let n be 0\nwhile n is less than 3 do\n  increase n by 1\nend\n",
        options=Options(while_limit=3),
    )
    assert lang.vars["n"] == 3
    assert lang.diagnostics == []


def test_finally_runs_on_return(world):
    lang, errors = run_script(
        world,
        "define function guarded\n"
        "  try\n"
        "    return 1\n"
        "  finally\n"
        '    print "cleanup"\n'
        "  end\n"
        "  return 2\n"
        "end\n"
        "let r be call function guarded\n",
    )
    assert errors == []
    assert lang.vars["r"] == 1
    assert world.lines == ["cleanup"]


def test_finally_runs_on_break(world):
    lang, errors = run_script(
        world,
        "repeat 3 times\n"
        "  try\n"
        "    break\n"
        "  finally\n"
        '    print "cleanup"\n'
        "  end\n"
        "end\n",
    )
    assert errors == []
    assert world.lines == ["cleanup"]


def test_error_in_catch_propagates(world):
    lang, errors = run_script(
        world,
        'try\n  throw "first"\ncatch problem\n  throw "second"\nend\nlet after be 1\n',
    )
    assert [e.msg for e in errors] == ["second"]
    assert "after" not in lang.vars


def test_uncaught_error_carries_position(world):
    lang, errors = run_script(world, 'let a be 1\nthrow "bad"\n')
    assert len(errors) == 1
    assert errors[0].pos.line == 2
    assert str(errors[0]) == "bad at line 2 col 1"
    assert [str(d) for d in lang.diagnostics] == ["error: bad at line 2"]


def test_malformed_statement_does_not_stop_later_ones(world):
    lang, errors = run_script(world, "print ]\nlet after be 2\n")
    assert errors == []
    assert lang.vars["after"] == 2
    assert any(d.severity == "error" for d in lang.diagnostics)
