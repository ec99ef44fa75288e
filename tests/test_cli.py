"""In-process tests for argument handling; end-to-end runs live in cli/*.tests."""

import json
import os
from pathlib import Path

import pytest

from hyperian.cli import CliArgs, build_options, main, parse_args


def test_parse_args_defaults():
    assert parse_args(["game.hl"]) == CliArgs("game.hl")


def test_parse_args_all_flags():
    args = parse_args(["--event", "doorbell", "--while-limit", "5", "--db", "x.db", "-v", "--parse", "a.hl"])
    assert args == CliArgs("a.hl", "doorbell", True, 5, "x.db", True)


@pytest.mark.parametrize(
    "argv,message",
    [
        ([], "no input file"),
        (["--bogus", "a.hl"], "unknown flag '--bogus'"),
        (["a.hl", "b.hl"], "unexpected argument 'b.hl'"),
        (["a.hl", "--event"], "--event requires an argument"),
        (["--while-limit", "many", "a.hl"], "--while-limit expects an integer, got 'many'"),
        (["--while-limit", "0", "a.hl"], "--while-limit must be positive"),
    ],
)
def test_usage_errors(argv, message, capsys):
    with pytest.raises(SystemExit) as info:
        parse_args(argv)
    assert info.value.code == 2
    assert capsys.readouterr().err == "error: " + message + "\n"


def test_build_options_uses_script_directory(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("HYPERIAN_WHILE_LIMIT", raising=False)
    script = tmp_path / "main.hl"
    opts = build_options(CliArgs(str(script), while_limit=9, db="s.db"))
    assert opts.module_dir == str(tmp_path)
    assert opts.while_limit == 9
    assert opts.database_path == "s.db"


def test_bad_environment_exits_2(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setenv("HYPERIAN_TILE_SIZE", "big")
    script = tmp_path / "main.hl"
    script.write_text('print "hi"\n')
    assert main([str(script)]) == 2
    assert "HYPERIAN_TILE_SIZE: expected an integer" in capsys.readouterr().err


def test_main_parse_prints_json(tmp_path: Path, capsys):
    script = tmp_path / "main.hl"
    script.write_text("let x be 1\n")
    assert main(["--parse", str(script)]) == 0
    tree = json.loads(capsys.readouterr().out)
    assert tree["init"][0]["_type"] == "LetStmt"
    assert tree["rules"] == []


def test_main_runs_script(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    script = tmp_path / "main.hl"
    script.write_text('when game starts then\n  print "ready"\nend\nexit with code 5\n')
    assert main([str(script), "--db", os.path.join(str(tmp_path), "t.db")]) == 5
    assert capsys.readouterr().out == ""


def test_main_missing_file(tmp_path: Path, capsys):
    assert main([str(tmp_path / "absent.hl")]) == 1
    assert "cannot open" in capsys.readouterr().err
