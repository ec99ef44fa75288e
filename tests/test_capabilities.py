"""Host capabilities: absent ones, fakes, and the local platform implementations."""

import json
import urllib.request
from pathlib import Path

import pytest

from hyperian import HyperianLang, Options
from hyperian.host import (
    EntityHost,
    ExitProgram,
    HostError,
    NetworkHost,
    ProcessHost,
    build_response,
    detect_content_type,
    mime_type,
)
from hyperian.platform import HttpNetwork, LocalProcess, SqliteDatabase


def warnings_of(lang: HyperianLang) -> list[str]:
    return [d.message for d in lang.diagnostics if d.severity == "warning"]


# ---------------------------------------------------------------------------
# Absent capabilities
# ---------------------------------------------------------------------------


def test_missing_entity_host_warns():
    lang = HyperianLang(None)
    assert lang.load('print "hi"\nlet after be 1') == []
    assert warnings_of(lang) == ["no entity capability: cannot print"]
    assert lang.vars["after"] == 1


def test_missing_persistence_host_warns():
    lang = HyperianLang(EntityHost())
    lang.load('save data "best" as 99\nload data "best" into top')
    assert warnings_of(lang) == [
        "no persistence capability: cannot save data best",
        "no persistence capability: cannot load data best",
    ]
    assert lang.vars["top"] is None


@pytest.mark.parametrize(
    "source,warning",
    [
        ('run "ls" into out', "no process capability: cannot run command"),
        ('fetch "http://example.invalid" into page', "no network capability: cannot fetch"),
        ('query "SELECT 1" into rows', "no database capability: cannot query"),
        ('connect to websocket "ws://x" as sock', "no socket capability: cannot connect"),
    ],
)
def test_missing_capability_warns(world, source, warning):
    lang = HyperianLang(world)
    assert lang.load(source) == []
    assert warnings_of(lang) == [warning]


# ---------------------------------------------------------------------------
# Fake hosts
# ---------------------------------------------------------------------------


class FakeProcess(ProcessHost):
    def __init__(self):
        self.commands: list[str] = []
        self.exited: int | None = None

    def get_env(self, key):
        return {"HOME": "/home/player"}.get(key)

    def exit(self, code):
        self.exited = code
        raise ExitProgram(code)

    def execute(self, command):
        self.commands.append(command)
        if command == "bad":
            return {"error": "bad", "code": 2}
        return "ok:" + command


class FakeNetwork(NetworkHost):
    def __init__(self):
        self.requests: list[tuple[str, str, object]] = []

    def request(self, method, url, body):
        self.requests.append((method, url, body))
        if url.endswith("/down"):
            raise HostError("request to " + url + " failed: refused")
        return {"method": method, "received": body}


def test_fake_process_commands(world):
    proc = FakeProcess()
    lang = HyperianLang(world, process=proc)
    assert lang.load('run "ls" into out\nget env "HOME" into home') == []
    assert proc.commands == ["ls"]
    assert lang.vars["out"] == "ok:ls"
    assert lang.vars["home"] == "/home/player"


def test_failed_command_into_variable_warns(world):
    lang = HyperianLang(world, process=FakeProcess())
    lang.load('run "bad" into out\nexecute command "bad" into result')
    assert lang.vars["out"] == "bad"
    assert lang.vars["result"] == {"error": "bad", "code": 2}
    assert warnings_of(lang) == ["bad", "bad"]


def test_failed_command_without_variable_raises(world):
    lang = HyperianLang(world, process=FakeProcess())
    errors = lang.load('run "bad"\nlet after be 1')
    assert [e.msg for e in errors] == ["bad"]
    assert "after" not in lang.vars


def test_exit_reaches_process_host(world):
    proc = FakeProcess()
    lang = HyperianLang(world, process=proc)
    with pytest.raises(ExitProgram) as info:
        lang.load("exit with code 4")
    assert info.value.code == 4
    assert proc.exited == 4


def test_fake_network(world):
    net = FakeNetwork()
    lang = HyperianLang(world, network=net)
    errors = lang.load(
        'fetch "http://x/items" into items\n'
        'post to "http://x/items" with {n: 1} into created\n'
        'fetch "http://x/down" into down\n'
    )
    assert errors == []
    assert lang.vars["items"] == {"method": "GET", "received": None}
    assert lang.vars["created"] == {"method": "POST", "received": {"n": 1}}
    assert lang.vars["down"] is None
    assert warnings_of(lang) == ["request to http://x/down failed: refused"]


# ---------------------------------------------------------------------------
# LocalProcess
# ---------------------------------------------------------------------------


def test_local_file_round_trip(tmp_path: Path):
    proc = LocalProcess()
    path = str(tmp_path / "notes.txt")
    proc.write_file(path, "one", False)
    proc.write_file(path, "two", True)
    assert proc.read_file(path) == "onetwo\n"
    assert proc.file_exists(path)
    proc.create_folder(str(tmp_path / "sub" / "deeper"))
    assert proc.list_files(str(tmp_path)) == ["notes.txt", "sub"]
    proc.delete_file(path)
    assert not proc.file_exists(path)


def test_local_file_errors(tmp_path: Path):
    proc = LocalProcess()
    with pytest.raises(HostError, match="cannot read file"):
        proc.read_file(str(tmp_path / "missing.txt"))
    with pytest.raises(HostError, match="cannot delete file"):
        proc.delete_file(str(tmp_path / "missing.txt"))
    with pytest.raises(HostError, match="cannot list"):
        proc.list_files(str(tmp_path / "nowhere"))


def test_local_execute():
    proc = LocalProcess()
    assert proc.execute("echo hi") == "hi"
    result = proc.execute("exit 3")
    assert result == {"error": "Command failed: exit 3", "code": 3}


def test_local_exit_raises():
    with pytest.raises(ExitProgram) as info:
        LocalProcess().exit(2)
    assert info.value.code == 2


def test_load_module_appends_extension(tmp_path: Path):
    (tmp_path / "tools.hl").write_text("let t be 1\n")
    proc = LocalProcess(Options(module_dir=str(tmp_path)))
    assert proc.load_module("tools") == "let t be 1\n"
    assert proc.load_module("tools.hl") == "let t be 1\n"
    assert proc.load_module("absent") is None


def test_file_statements(world, tmp_path: Path):
    target = tmp_path / "out.txt"
    lang = HyperianLang(world, process=LocalProcess())
    errors = lang.load(
        f'write file "{target}" with "saved"\n'
        f'read file "{target}" into contents\n'
        f'file exists "{target}" into there\n'
        f'list files in "{tmp_path}" into names\n'
        f'delete file "{target}"\n'
        f'read file "{target}" into gone\n'
    )
    assert errors == []
    assert lang.vars["contents"] == "saved"
    assert lang.vars["there"] is True
    assert lang.vars["names"] == ["out.txt"]
    assert lang.vars["gone"] is None
    assert len(warnings_of(lang)) == 1
    assert warnings_of(lang)[0].startswith("cannot read file")


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


@pytest.fixture
def db():
    database = SqliteDatabase(":memory:")
    database.query("CREATE TABLE users (name TEXT, age INTEGER)", [])
    yield database
    database.close()


def test_insert_and_select(db):
    assert db.insert("users", {"name": "ann", "age": 30}) == {"changes": 1, "lastInsertRowid": 1}
    db.insert("users", {"name": "bob", "age": 20})
    db.insert("users", {"name": "cy", "age": 40})
    assert db.select("users", ["name"], "age > 25", None, None) == [{"name": "ann"}, {"name": "cy"}]
    assert db.select("users", None, None, 1, 1) == [{"name": "bob", "age": 20}]
    assert db.select("users", ["name"], None, None, 2) == [{"name": "cy"}]


def test_query_with_params(db):
    db.insert("users", {"name": "ann", "age": 30})
    rows = db.query("SELECT age FROM users WHERE name = ?", ["ann"])
    assert rows == [{"age": 30}]


def test_query_error(db):
    with pytest.raises(HostError, match="database error: no such table"):
        db.query("SELECT * FROM nope", [])


def test_database_statements(world, db):
    lang = HyperianLang(world, database=db)
    errors = lang.load(
        'insert {name: "ann", age: 30} into users\n'
        'insert into users with {name: "bob", age: 20}\n'
        'select name from users where "age > 25" into rows\n'
        'query "SELECT * FROM nope" into failed\n'
    )
    assert errors == []
    assert lang.vars["rows"] == [{"name": "ann"}]
    assert lang.vars["failed"] == {"error": "database error: no such table: nope"}
    assert warnings_of(lang) == ["database error: no such table: nope"]


def test_database_error_without_variable(world, db):
    lang = HyperianLang(world, database=db)
    errors = lang.load('query "SELECT * FROM nope"\n')
    assert [e.msg for e in errors] == ["database error: no such table: nope"]


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


ROUTES = """
route "GET" "/ping" then
  respond with 200 and "pong"
end
route "POST" "/echo" with req then
  respond with 201 and req
end
route "GET" "/quiet" then
  let touched be true
end
route "GET" "/boom" then
  throw "kaput"
end
"""


def test_route_response(world):
    lang = HyperianLang(world)
    lang.load(ROUTES)
    response = lang.interp.handle_request({"method": "get", "url": "/ping"})
    assert response.status == 200
    assert response.content_type == "text/plain"
    assert response.body == b"pong"


def test_route_sees_request(world):
    lang = HyperianLang(world)
    lang.load(ROUTES)
    response = lang.interp.handle_request({"method": "POST", "url": "/echo", "body": {"n": 1}})
    assert response.status == 201
    assert response.content_type == "application/json"
    assert json.loads(response.body)["body"] == {"n": 1}


def test_unmatched_route_is_404(world):
    lang = HyperianLang(world)
    lang.load(ROUTES)
    response = lang.interp.handle_request({"method": "GET", "url": "/missing"})
    assert response.status == 404
    assert json.loads(response.body) == {"error": "Not Found"}


def test_route_without_respond_is_204(world):
    lang = HyperianLang(world)
    lang.load(ROUTES)
    response = lang.interp.handle_request({"method": "GET", "url": "/quiet"})
    assert response.status == 204
    assert response.body == b""


def test_failing_route_is_500(world):
    lang = HyperianLang(world)
    lang.load(ROUTES)
    response = lang.interp.handle_request({"method": "GET", "url": "/boom"})
    assert response.status == 500
    assert json.loads(response.body) == {"error": "kaput"}


def test_respond_outside_request_warns(world):
    lang = HyperianLang(world)
    lang.load('respond with 200 and "hi"')
    assert warnings_of(lang) == ["respond outside of a request"]


@pytest.mark.parametrize(
    "text,kind",
    [
        ("<html><body></body></html>", "text/html"),
        ("<p>hi</p>", "text/html"),
        ('{"a": 1}', "application/json"),
        ("body { color: red }", "text/css"),
        ("plain words", "text/plain"),
    ],
)
def test_detect_content_type(text, kind):
    assert detect_content_type(text) == kind


def test_build_response_named_type():
    response = build_response(200, "<b>x</b>", "text")
    assert response.content_type == "text/plain"
    assert build_response(200, None, None).body == b""


def test_mime_type():
    assert mime_type("site/index.html") == "text/html"
    assert mime_type("logo.PNG") == "image/png"
    assert mime_type("archive.tar.xz") == "application/octet-stream"
    assert mime_type("README") == "application/octet-stream"


def test_live_server_round_trip(world):
    net = HttpNetwork(Options(http_timeout=5))
    lang = HyperianLang(world, network=net)
    try:
        assert lang.load("start server on port 0\n" + ROUTES) == []
        base = "http://127.0.0.1:" + str(net.port)
        with urllib.request.urlopen(base + "/ping", timeout=5) as response:
            assert response.read() == b"pong"
        assert net.request("POST", base + "/echo", {"n": 2})["body"] == {"n": 2}
        assert net.request("GET", base + "/missing", None) == {"error": "Not Found"}
    finally:
        net.stop()
    assert net.port is None


def test_request_to_closed_port_fails():
    net = HttpNetwork(Options(http_timeout=2))
    with pytest.raises(HostError, match="request to http://127.0.0.1:1/ failed"):
        net.request("GET", "http://127.0.0.1:1/", None)
