"""Host capabilities the interpreter talks to, plus the in-memory World.

Each capability is a plain base class. Methods that only notify the host are
no-ops here, so a host overrides just what it renders; methods that must
produce a value raise NotImplementedError.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .ast import Pos
from .values import plain, to_json, to_number

logger = logging.getLogger("hyperian.host")


# ============================================================
# Errors
# ============================================================


class HyperianError(Exception):
    """Runtime failure a script can catch with try/catch."""

    def __init__(self, msg: str, pos: Pos | None = None):
        if pos is None:
            super().__init__(msg)
        else:
            super().__init__(f"{msg} at line {pos.line} col {pos.col}")
        self.msg = msg
        self.pos = pos


class ScriptError(HyperianError):
    """Raised by ``throw``."""


class HostError(HyperianError):
    """A host operation failed (bad JSON, regex, subprocess, query, I/O)."""


class ExitProgram(Exception):
    """Raised by ``exit``; carries the process exit code to the host."""

    def __init__(self, code: int):
        super().__init__("exit with code " + str(code))
        self.code = code


# ============================================================
# Entity host
# ============================================================


class EntityHost:
    """Entities, dialogue, audio, screen effects, game state and RPG stubs."""

    tile_size: int = 32

    # ---- Entities ----------------------------------------------------------

    def spawn_entity(self, name: str, x: float, y: float) -> None:
        pass

    def destroy_entity(self, name: str) -> None:
        pass

    def show_entity(self, name: str) -> None:
        pass

    def hide_entity(self, name: str) -> None:
        pass

    def freeze_entity(self, name: str) -> None:
        pass

    def unfreeze_entity(self, name: str) -> None:
        pass

    def move_entity(self, name: str, x: float, y: float, relative: bool) -> None:
        pass

    def apply_impulse(self, name: str, x: float, y: float) -> None:
        pass

    def apply_force(self, name: str, x: float, y: float) -> None:
        pass

    def get_property(self, entity: str, prop: str) -> object:
        return None

    def set_property(self, entity: str, prop: str, value: object) -> None:
        pass

    # ---- Switches ----------------------------------------------------------

    def is_switch(self, switch_id: str) -> bool:
        return False

    def turn_on_switch(self, switch_id: str) -> None:
        pass

    def turn_off_switch(self, switch_id: str) -> None:
        pass

    # ---- Output and timing -------------------------------------------------

    def log(self, message: str) -> None:
        pass

    def show_dialogue(self, text: str, speaker: str, portrait: str) -> None:
        pass

    def show_choice(self, prompt: str, options: list[str]) -> int:
        """Index of the selected option, 0-based."""
        return 0

    def wait(self, seconds: float) -> None:
        pass

    # ---- Audio, screen, animation ------------------------------------------

    def play_sound(self, name: str) -> None:
        pass

    def stop_sound(self, name: str | None) -> None:
        pass

    def stop_all_sounds(self) -> None:
        pass

    def play_music(self, name: str, loop: bool) -> None:
        pass

    def stop_music(self) -> None:
        pass

    def set_volume(self, value: float) -> None:
        pass

    def load_tileset(self, src: str) -> None:
        pass

    def screen_shake(self, intensity: float, duration: float) -> None:
        pass

    def screen_flash(self, color: str, duration: float) -> None:
        pass

    def screen_tint(self, color: str, alpha: float) -> None:
        pass

    def define_sprite(self, entity: str, src: str, frame_w: float, frame_h: float) -> None:
        pass

    def define_animation(
        self, entity: str, name: str, frames: list[int | float], fps: float, loop: bool
    ) -> None:
        pass

    def play_animation(self, entity: str | None, name: str) -> None:
        pass

    def stop_animation(self, entity: str | None) -> None:
        pass

    # ---- Events and host functions -----------------------------------------

    def emit_event(self, name: str, data: object) -> None:
        pass

    def call_function(self, name: str, args: list[object]) -> object:
        logger.warning("unknown host function: %s", name)
        return None

    # ---- Game state --------------------------------------------------------

    def end_game(self) -> None:
        pass

    def win_game(self) -> None:
        pass

    def lose_game(self) -> None:
        pass

    def restart_game(self) -> None:
        pass

    def load_scene(self, scene_id: str) -> None:
        pass

    # ---- RPG ---------------------------------------------------------------

    def heal(self, target: str, amount: float | None) -> None:
        pass

    def recover(self, target: str) -> None:
        pass

    def give_exp(self, amount: float) -> None:
        pass

    def give_gold(self, amount: float) -> None:
        pass

    def add_to_party(self, member: str) -> None:
        pass

    def remove_from_party(self, member: str) -> None:
        pass

    def change_map(self, map_id: str, x: float | None, y: float | None) -> None:
        pass

    def change_gold(self, amount: float, relative: bool) -> None:
        pass

    def change_stat(self, stat: str, entity: str, amount: float, relative: bool) -> None:
        pass

    def change_level(self, entity: str, amount: float, relative: bool) -> None:
        pass

    def change_exp(self, entity: str, amount: float, relative: bool) -> None:
        pass

    def change_class(self, entity: str, class_id: str) -> None:
        pass

    def change_encounter_rate(self, rate: float) -> None:
        pass

    def learn_skill(self, skill: str, target: str) -> None:
        pass

    def forget_skill(self, skill: str, target: str) -> None:
        pass

    def equip_item(self, item: str, slot: str | None) -> None:
        pass

    def apply_status(self, effect: str, target: str, duration: float) -> None:
        pass

    def has_status(self, entity: str, effect: str) -> bool:
        return False

    def set_formula(self, key: str, value: object) -> None:
        pass

    def set_autotile(self, tile: object, name: object) -> None:
        pass

    def set_zone(self, zone: object) -> None:
        pass

    # ---- Data definitions --------------------------------------------------

    def define_data(self, kind: str, data_id: str, props: dict[str, object]) -> None:
        pass

    def define_event(self, event_id: str, body: list[object]) -> None:
        pass

    def define_zone(self, zone_id: str, entries: list[dict[str, object]]) -> None:
        pass

    def define_status(
        self, status_id: str, props: dict[str, object], turn_ops: list[dict[str, object]]
    ) -> None:
        pass


# ============================================================
# Persistence host
# ============================================================


class PersistenceHost:
    """Key/value data, inventory counters, records and game slots."""

    def save_data(self, key: str, value: object) -> None:
        raise NotImplementedError

    def load_data(self, key: str) -> object:
        raise NotImplementedError

    def delete_data(self, key: str) -> None:
        raise NotImplementedError

    def add_item(self, item: str, quantity: float) -> None:
        raise NotImplementedError

    def remove_item(self, item: str, quantity: float) -> None:
        raise NotImplementedError

    def item_count(self, item: str) -> float:
        raise NotImplementedError

    def save_record(self, table: str, record_id: str, data: object) -> None:
        raise NotImplementedError

    def load_record(self, table: str, record_id: str) -> object:
        raise NotImplementedError

    def delete_record(self, table: str, record_id: str) -> None:
        raise NotImplementedError

    def save_game(self, slot: str, snapshot: dict[str, object]) -> None:
        raise NotImplementedError

    def load_game(self, slot: str) -> dict[str, object] | None:
        raise NotImplementedError


# ============================================================
# Process, network, database, sockets
# ============================================================


class ProcessHost:
    """Environment, subprocesses, files and module source loading."""

    def get_env(self, key: str) -> str | None:
        raise NotImplementedError

    def exit(self, code: int) -> None:
        raise NotImplementedError

    def execute(self, command: str) -> object:
        """Trimmed stdout, or ``{"error", "code"}`` when the command fails."""
        raise NotImplementedError

    def read_file(self, path: str) -> str:
        raise NotImplementedError

    def read_bytes(self, path: str) -> bytes:
        raise NotImplementedError

    def write_file(self, path: str, contents: str, append: bool) -> None:
        raise NotImplementedError

    def delete_file(self, path: str) -> None:
        raise NotImplementedError

    def file_exists(self, path: str) -> bool:
        raise NotImplementedError

    def list_files(self, path: str) -> list[str]:
        raise NotImplementedError

    def create_folder(self, path: str) -> None:
        raise NotImplementedError

    def load_module(self, name: str) -> str | None:
        """Source of a module, or None when it cannot be found."""
        raise NotImplementedError


@dataclass
class HttpResponse:
    status: int = 200
    content_type: str = "application/json"
    body: bytes = b""


RequestHandler = Callable[[dict[str, object]], HttpResponse]


class NetworkHost:
    """Outbound HTTP and an inbound listener."""

    def request(self, method: str, url: str, body: object) -> object:
        raise NotImplementedError

    def listen(self, port: int, handler: RequestHandler) -> None:
        raise NotImplementedError


class DatabaseHost:
    def query(self, sql: str, params: list[object]) -> object:
        raise NotImplementedError

    def insert(self, table: str, data: dict[str, object]) -> object:
        raise NotImplementedError

    def select(
        self,
        table: str,
        columns: list[str] | None,
        where: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, object]]:
        raise NotImplementedError


class SocketHost:
    def connect(self, url: str) -> object:
        raise NotImplementedError

    def broadcast(self, message: str, target: str, room: str | None) -> None:
        raise NotImplementedError


# ============================================================
# HTTP response helpers
# ============================================================


MIME_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".txt": "text/plain",
}

_NAMED_TYPES: dict[str, str] = {
    "html": "text/html",
    "css": "text/css",
    "json": "application/json",
    "text": "text/plain",
    "javascript": "application/javascript",
    "js": "application/javascript",
}


def detect_content_type(text: str) -> str:
    """Guess a response type from the body text."""
    trimmed = text.strip()
    if trimmed.startswith("<!DOCTYPE") or trimmed.startswith("<html"):
        return "text/html"
    if trimmed.startswith("<") and "</" in trimmed:
        return "text/html"
    if trimmed.startswith("{") or trimmed.startswith("["):
        return "application/json"
    if "body {" in trimmed or ("." in trimmed and "{" in trimmed):
        return "text/css"
    return "text/plain"


def build_response(status: int, body: object, content_type: str | None) -> HttpResponse:
    """Encode a script value as an HTTP response body."""
    if isinstance(body, str):
        text = body
        kind = detect_content_type(body)
    elif isinstance(body, (dict, list)):
        text = to_json(body)
        kind = "application/json"
    elif body is None:
        text = ""
        kind = "text/plain"
    else:
        text = to_json(body)
        kind = "text/plain"
    if content_type is not None:
        kind = _NAMED_TYPES.get(content_type, content_type)
    return HttpResponse(status, kind, text.encode("utf-8"))


def mime_type(path: str) -> str:
    dot = path.rfind(".")
    if dot < 0 or "/" in path[dot:]:
        return "application/octet-stream"
    return MIME_TYPES.get(path[dot:].lower(), "application/octet-stream")


# ============================================================
# World: default in-memory entity + persistence host
# ============================================================


class World(EntityHost, PersistenceHost):
    """In-memory world for terminals, servers and tests.

    Every line the world would show is appended to ``lines``; it is also
    printed when ``echo`` is set and no matching callback is installed.
    Emitted events are recorded in ``events`` as ``[name, data]`` pairs.
    """

    def __init__(
        self,
        *,
        tile_size: int = 32,
        echo: bool = True,
        sleep: bool = True,
        on_dialogue: Callable[[str, str], None] | None = None,
        on_choice: Callable[[str, list[str]], int] | None = None,
        on_log: Callable[[str], None] | None = None,
        on_event: Callable[[str, object], None] | None = None,
    ):
        self.tile_size = tile_size
        self.echo = echo
        self.sleep = sleep
        self.on_dialogue = on_dialogue
        self.on_choice = on_choice
        self.on_log = on_log
        self.on_event = on_event
        self.entities: dict[str, dict[str, float]] = {}
        self.props: dict[str, dict[str, object]] = {}
        self.switches: dict[str, bool] = {}
        self.store: dict[str, object] = {}
        self.records: dict[str, dict[str, object]] = {}
        self.statuses: dict[str, dict[str, float]] = {}
        self.lines: list[str] = []
        self.events: list[list[object]] = []
        self.running = True

    def _write(self, line: str) -> None:
        self.lines.append(line)
        if self.echo:
            print(line)

    # ---- Entities ----------------------------------------------------------

    def spawn_entity(self, name: str, x: float, y: float) -> None:
        self.entities[name] = {"x": x or 0, "y": y or 0}
        self.props.setdefault(name, {})

    def destroy_entity(self, name: str) -> None:
        self.entities.pop(name, None)
        self.props.pop(name, None)

    def show_entity(self, name: str) -> None:
        self.set_property(name, "visible", True)

    def hide_entity(self, name: str) -> None:
        self.set_property(name, "visible", False)

    def freeze_entity(self, name: str) -> None:
        self.set_property(name, "frozen", True)

    def unfreeze_entity(self, name: str) -> None:
        self.set_property(name, "frozen", False)

    def move_entity(self, name: str, x: float, y: float, relative: bool) -> None:
        e = self.entities.get(name)
        if e is None:
            return
        if relative:
            e["x"] += x
            e["y"] += y
        else:
            e["x"] = x
            e["y"] = y

    def get_property(self, entity: str, prop: str) -> object:
        if prop in ("x", "y") and entity in self.entities:
            return self.entities[entity][prop]
        return self.props.get(entity, {}).get(prop)

    def set_property(self, entity: str, prop: str, value: object) -> None:
        self.props.setdefault(entity, {})[prop] = value

    # ---- Switches ----------------------------------------------------------

    def is_switch(self, switch_id: str) -> bool:
        return self.switches.get(switch_id, False)

    def turn_on_switch(self, switch_id: str) -> None:
        self.switches[switch_id] = True

    def turn_off_switch(self, switch_id: str) -> None:
        self.switches[switch_id] = False

    # ---- Output ------------------------------------------------------------

    def log(self, message: str) -> None:
        if self.on_log is not None:
            self.lines.append(message)
            self.on_log(message)
            return
        self._write(message)

    def show_dialogue(self, text: str, speaker: str, portrait: str) -> None:
        if self.on_dialogue is not None:
            self.on_dialogue(text, speaker)
            return
        prefix = "[" + speaker + "]: " if speaker else ""
        self._write(prefix + text)

    def show_choice(self, prompt: str, options: list[str]) -> int:
        if self.on_choice is not None:
            return self.on_choice(prompt, options)
        if prompt:
            self._write(prompt)
        for i, option in enumerate(options):
            self._write("  " + str(i + 1) + ". " + option)
        return 0

    def wait(self, seconds: float) -> None:
        if self.sleep and seconds > 0:
            time.sleep(seconds)

    # ---- Events ------------------------------------------------------------

    def emit_event(self, name: str, data: object) -> None:
        self.events.append([name, data])
        if self.on_event is not None:
            self.on_event(name, data)

    def call_function(self, name: str, args: list[object]) -> object:
        fn = getattr(self, name, None)
        if name.startswith("_") or not callable(fn):
            logger.warning("unknown host function: %s", name)
            return None
        return fn(*args)

    # ---- Game state --------------------------------------------------------

    def end_game(self) -> None:
        self.running = False

    def win_game(self) -> None:
        self.running = False
        self._write("[HLRuntime] Game won!")

    def lose_game(self) -> None:
        self.running = False
        self._write("[HLRuntime] Game over.")

    def restart_game(self) -> None:
        self._write("[HLRuntime] Restart requested.")

    def load_scene(self, scene_id: str) -> None:
        self._write("[HLRuntime] Load scene: " + scene_id)

    # ---- Statuses ----------------------------------------------------------

    def apply_status(self, effect: str, target: str, duration: float) -> None:
        self.statuses.setdefault(target, {})[effect] = duration

    def has_status(self, entity: str, effect: str) -> bool:
        return effect in self.statuses.get(entity, {})

    # ---- Persistence -------------------------------------------------------

    def save_data(self, key: str, value: object) -> None:
        self.store[key] = plain(value)

    def load_data(self, key: str) -> object:
        return self.store.get(key)

    def delete_data(self, key: str) -> None:
        self.store.pop(key, None)

    def add_item(self, item: str, quantity: float) -> None:
        key = "inv:" + item
        self.store[key] = to_number(self.store.get(key)) + quantity

    def remove_item(self, item: str, quantity: float) -> None:
        key = "inv:" + item
        self.store[key] = max(0, to_number(self.store.get(key)) - quantity)

    def item_count(self, item: str) -> float:
        return to_number(self.store.get("inv:" + item))

    def save_record(self, table: str, record_id: str, data: object) -> None:
        self.records.setdefault(table, {})[record_id] = plain(data)

    def load_record(self, table: str, record_id: str) -> object:
        return self.records.get(table, {}).get(record_id)

    def delete_record(self, table: str, record_id: str) -> None:
        self.records.get(table, {}).pop(record_id, None)

    def save_game(self, slot: str, snapshot: dict[str, object]) -> None:
        self.store["game:" + slot] = plain(snapshot)

    def load_game(self, slot: str) -> dict[str, object] | None:
        snapshot = self.store.get("game:" + slot)
        if isinstance(snapshot, dict):
            return dict(snapshot)
        return None
