"""Options defaults and HYPERIAN_* environment overrides."""

import os

import pytest

from hyperian.config import ConfigError, Options


def test_defaults():
    opts = Options()
    assert opts.while_limit == 10000
    assert opts.tile_size == 32
    assert opts.database_path == "hyperianlang.db"
    assert opts.module_dir == os.getcwd()
    assert opts.http_timeout == 10.0


def test_empty_environment_keeps_defaults():
    assert Options.from_env({}) == Options()


def test_overrides():
    opts = Options.from_env(
        {
            "HYPERIAN_WHILE_LIMIT": "50",
            "HYPERIAN_TILE_SIZE": "16",
            "HYPERIAN_DB": "game.db",
            "HYPERIAN_MODULE_DIR": "/srv/scripts",
            "HYPERIAN_HTTP_TIMEOUT": "2.5",
        }
    )
    assert opts.while_limit == 50
    assert opts.tile_size == 16
    assert opts.database_path == "game.db"
    assert opts.module_dir == "/srv/scripts"
    assert opts.http_timeout == 2.5


def test_unrelated_variables_ignored():
    assert Options.from_env({"HOME": "/root", "HYPERIAN": "x"}) == Options()


@pytest.mark.parametrize(
    "environ,message",
    [
        ({"HYPERIAN_WHILE_LIMIT": "lots"}, "HYPERIAN_WHILE_LIMIT: expected an integer, got 'lots'"),
        ({"HYPERIAN_WHILE_LIMIT": "0"}, "HYPERIAN_WHILE_LIMIT must be positive"),
        ({"HYPERIAN_TILE_SIZE": "-4"}, "HYPERIAN_TILE_SIZE must be positive"),
        ({"HYPERIAN_DB": "  "}, "HYPERIAN_DB must not be empty"),
        ({"HYPERIAN_HTTP_TIMEOUT": "soon"}, "HYPERIAN_HTTP_TIMEOUT: expected seconds, got 'soon'"),
        ({"HYPERIAN_HTTP_TIMEOUT": "0"}, "HYPERIAN_HTTP_TIMEOUT must be positive"),
    ],
)
def test_bad_values(environ, message):
    with pytest.raises(ConfigError) as info:
        Options.from_env(environ)
    assert str(info.value) == message


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("HYPERIAN_WHILE_LIMIT", "7")
    assert Options.from_env().while_limit == 7
