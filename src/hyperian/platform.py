"""Default process, network and database capabilities for a local machine."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import subprocess
import threading
import urllib.error
import urllib.parse
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from .config import Options
from .host import (
    DatabaseHost,
    ExitProgram,
    HostError,
    HttpResponse,
    NetworkHost,
    ProcessHost,
    RequestHandler,
)
from .values import plain, to_json

logger = logging.getLogger("hyperian.platform")


# ============================================================
# Process
# ============================================================


class LocalProcess(ProcessHost):
    """Environment, shell and filesystem of the current process."""

    def __init__(self, options: Options | None = None):
        self.options = options if options is not None else Options()

    def get_env(self, key: str) -> str | None:
        return os.environ.get(key)

    def exit(self, code: int) -> None:
        raise ExitProgram(code)

    def execute(self, command: str) -> object:
        logger.debug("execute: %s", command)
        proc = subprocess.run(command, shell=True, capture_output=True, text=True)
        if proc.returncode != 0:
            message = proc.stderr.strip() or "Command failed: " + command
            return {"error": message, "code": proc.returncode}
        return proc.stdout.strip()

    def read_file(self, path: str) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise HostError("cannot read file '" + path + "': " + str(e.strerror)) from e

    def read_bytes(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise HostError("cannot read file '" + path + "': " + str(e.strerror)) from e

    def write_file(self, path: str, contents: str, append: bool) -> None:
        try:
            if append:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(contents + "\n")
            else:
                Path(path).write_text(contents, encoding="utf-8")
        except OSError as e:
            raise HostError("cannot write file '" + path + "': " + str(e.strerror)) from e

    def delete_file(self, path: str) -> None:
        try:
            Path(path).unlink()
        except OSError as e:
            raise HostError("cannot delete file '" + path + "': " + str(e.strerror)) from e

    def file_exists(self, path: str) -> bool:
        return Path(path).exists()

    def list_files(self, path: str) -> list[str]:
        try:
            return sorted(p.name for p in Path(path).iterdir())
        except OSError as e:
            raise HostError("cannot list '" + path + "': " + str(e.strerror)) from e

    def create_folder(self, path: str) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise HostError("cannot create folder '" + path + "': " + str(e.strerror)) from e

    def load_module(self, name: str) -> str | None:
        if not name.endswith(".hl") and not name.endswith(".es"):
            name += ".hl"
        path = Path(self.options.module_dir) / name
        if not path.is_file():
            logger.debug("module not found: %s", path)
            return None
        return path.read_text(encoding="utf-8")


# ============================================================
# HTTP
# ============================================================


def _decode_body(raw: bytes) -> object:
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpNetwork(NetworkHost):
    """Outbound requests via urllib; inbound via a threaded HTTP server."""

    def __init__(self, options: Options | None = None):
        self.options = options if options is not None else Options()
        self.server: ThreadingHTTPServer | None = None
        self.thread: threading.Thread | None = None

    def request(self, method: str, url: str, body: object) -> object:
        data = None
        headers: dict[str, str] = {}
        if body is not None:
            data = to_json(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        logger.debug("%s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=self.options.http_timeout) as response:
                return _decode_body(response.read())
        except urllib.error.HTTPError as e:
            return _decode_body(e.read())
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise HostError("request to " + url + " failed: " + str(e)) from e

    def listen(self, port: int, handler: RequestHandler) -> None:
        if self.server is not None:
            return
        self.server = ThreadingHTTPServer(("", port), _make_handler(handler))
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        logger.info("server running on port %d", self.server.server_address[1])

    @property
    def port(self) -> int | None:
        if self.server is None:
            return None
        return self.server.server_address[1]

    def wait(self) -> None:
        """Block until the listener stops."""
        if self.thread is not None:
            self.thread.join()

    def stop(self) -> None:
        if self.server is None:
            return
        self.server.shutdown()
        self.server.server_close()
        if self.thread is not None:
            self.thread.join()
        self.server = None
        self.thread = None


def _make_handler(handler: RequestHandler) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        def _dispatch(self) -> None:
            parts = urllib.parse.urlsplit(self.path)
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length > 0 else b""
            body: object = {}
            if raw:
                body = _decode_body(raw)
            request = {
                "method": self.command,
                "url": parts.path,
                "headers": {k.lower(): v for k, v in self.headers.items()},
                "body": body,
                "query": dict(urllib.parse.parse_qsl(parts.query)),
            }
            response = handler(request)
            self.send_response(response.status)
            self.send_header("Content-Type", response.content_type)
            self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            self.wfile.write(response.body)

        do_GET = _dispatch
        do_POST = _dispatch
        do_PUT = _dispatch
        do_DELETE = _dispatch
        do_PATCH = _dispatch

        def log_message(self, format: str, *args: object) -> None:
            logger.debug("%s - %s", self.address_string(), format % args)

    return _Handler


def not_found() -> HttpResponse:
    return HttpResponse(404, "application/json", b'{"error":"Not Found"}')


# ============================================================
# SQLite
# ============================================================


def _dict_row(cursor: sqlite3.Cursor, row: tuple[object, ...]) -> dict[str, object]:
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


class SqliteDatabase(DatabaseHost):
    """SQLite file opened on first use; rows come back as dicts."""

    def __init__(self, path: str = "hyperianlang.db"):
        self.path = path
        self.conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        if self.conn is None:
            logger.debug("opening database %s", self.path)
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
            self.conn.row_factory = _dict_row
        return self.conn

    def query(self, sql: str, params: list[object]) -> object:
        conn = self._connect()
        try:
            cursor = conn.execute(sql, [plain(p) for p in params])
            if sql.strip().lower().startswith("select"):
                return cursor.fetchall()
            conn.commit()
            return {"changes": cursor.rowcount, "lastInsertRowid": cursor.lastrowid}
        except sqlite3.Error as e:
            raise HostError("database error: " + str(e)) from e

    def insert(self, table: str, data: dict[str, object]) -> object:
        columns = list(data.keys())
        placeholders = ", ".join("?" for _ in columns)
        sql = "INSERT INTO " + table + " (" + ", ".join(columns) + ") VALUES (" + placeholders + ")"
        return self.query(sql, list(data.values()))

    def select(
        self,
        table: str,
        columns: list[str] | None,
        where: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, object]]:
        cols = ", ".join(columns) if columns else "*"
        sql = "SELECT " + cols + " FROM " + table
        if where:
            sql += " WHERE " + where
        if limit is not None:
            sql += " LIMIT " + str(limit)
        elif offset is not None:
            # SQLite only accepts OFFSET after a LIMIT
            sql += " LIMIT -1"
        if offset is not None:
            sql += " OFFSET " + str(offset)
        rows = self.query(sql, [])
        return rows if isinstance(rows, list) else []

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
