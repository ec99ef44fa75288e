"""HyperianLang interpreter: event registry, statement executors and the run helper."""

from __future__ import annotations

import dataclasses
import functools
import json
import logging
import math
import posixpath
import random
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, cast

from .ast import (
    AddItem,
    AppendStmt,
    ApplyForce,
    ApplyStatus,
    ArrayLit,
    ArrayTake,
    AssignStmt,
    AttackStmt,
    AwaitStmt,
    BattleEnemy,
    BattleStmt,
    Becomes,
    BinaryOp,
    BoolCond,
    BoolLit,
    BreakStmt,
    Broadcast,
    CallEvent,
    CallExpr,
    CallFunction,
    CallMethod,
    ChangeClass,
    ChangeEncounterRate,
    ChangeExp,
    ChangeGold,
    ChangeLevel,
    ChangeMap,
    ChangeStat,
    CharAt,
    ChoiceIs,
    ChoiceStmt,
    ClampStmt,
    Clicks,
    CombatDefeat,
    CombatHit,
    CombatStart,
    Comparison,
    Cond,
    ConditionEvent,
    ConnectSocket,
    Contains,
    Convert,
    CopyStmt,
    CreateFolder,
    CustomEvent,
    DbInsert,
    DbQuery,
    DbSelect,
    DefineAnimation,
    DefineClass,
    DefineData,
    DefineEvent,
    DefineFunction,
    DefineSprite,
    DefineStatus,
    DefineZone,
    DeleteData,
    DeleteFile,
    DeleteKey,
    DeleteRecord,
    EmitStmt,
    EndBattle,
    EndsWith,
    Enters,
    EntityStmt,
    EquipItem,
    Event,
    EveryAny,
    ExecCommand,
    ExitStmt,
    ExportStmt,
    Expr,
    FetchUrl,
    FileExists,
    FilterStmt,
    FindStmt,
    FlattenStmt,
    ForEach,
    FuncExpr,
    GameOver,
    GameState,
    GetClock,
    GetEnv,
    GetIndex,
    GetKey,
    GetKeyStmt,
    GiveExp,
    GiveGold,
    HasItem,
    HasKey,
    HasStatus,
    HealStmt,
    HostCall,
    Ident,
    IfStmt,
    ImportFrom,
    ImportStmt,
    IndexOfStmt,
    KeysValues,
    Leaves,
    LetStmt,
    ListFiles,
    LoadData,
    LoadGame,
    LoadRecord,
    LoadScene,
    LoadTileset,
    Logical,
    LogStmt,
    MatchStmt,
    MathConst,
    MergeStmt,
    MethodDef,
    ModifyStmt,
    MoveStmt,
    NewInstance,
    Not,
    NullLit,
    NumberLit,
    ObjectLit,
    OpenFormulaEditor,
    OpenMenu,
    OpenShop,
    PadStmt,
    ParseJson,
    PartyStmt,
    PathOp,
    PlayStmt,
    Pos,
    Presses,
    PrintStmt,
    Program,
    PropCondition,
    ReadFile,
    RecoverStmt,
    ReduceStmt,
    RegexExtract,
    RegexStmt,
    RegexTest,
    RemoveItem,
    RepeatStmt,
    RepeatStr,
    ReplaceStr,
    RespondStmt,
    ReturnStmt,
    ReverseStmt,
    RouteStmt,
    Rule,
    RunCommand,
    SaveData,
    SaveGame,
    SaveRecord,
    SayStmt,
    ScreenFlash,
    ScreenShake,
    ScreenTint,
    ServeFile,
    ServeStmt,
    SetAutotile,
    SetFormula,
    SetIndex,
    SetKey,
    SetStmt,
    SetVolume,
    SetZone,
    SkillStmt,
    SkipStmt,
    SliceStmt,
    SortStmt,
    SpawnStmt,
    SplitStr,
    Starts,
    StartsWith,
    Stmt,
    StopStmt,
    StringLit,
    Stringify,
    SwitchCond,
    TeleportStmt,
    ThrowStmt,
    ToggleInventory,
    ToggleStmt,
    Touches,
    TransformStmt,
    TryStmt,
    TurnSwitch,
    TypeCheck,
    TypeOfStmt,
    Uses,
    ValueCompare,
    VarCondition,
    WaitStmt,
    WhileStmt,
    WriteFile,
)
from .config import Options
from .host import (
    DatabaseHost,
    EntityHost,
    ExitProgram,
    HostError,
    HttpResponse,
    HyperianError,
    NetworkHost,
    PersistenceHost,
    ProcessHost,
    ScriptError,
    SocketHost,
    World,
    build_response,
    mime_type,
)
from .parse import Diagnostic, parse_source
from .platform import LocalProcess, not_found
from .values import (
    compare,
    display,
    is_empty,
    is_number,
    loose_equal,
    normalize,
    plain,
    to_bool,
    to_int,
    to_json,
    to_number,
    to_text,
    type_name,
)

__all__ = [
    "BoundMethod",
    "ClassDef",
    "Environment",
    "ExitProgram",
    "Flow",
    "FunctionDef",
    "HostError",
    "HyperianError",
    "HyperianLang",
    "Interpreter",
    "RunResult",
    "ScriptError",
    "event_key",
    "run",
]

logger = logging.getLogger("hyperian.runtime")

MAX_CALL_DEPTH = 64


# ============================================================
# Control flow
# ============================================================


@dataclass
class Flow:
    """Outcome of a statement or block: normal, break, skip or return."""

    kind: str
    value: object = None


FLOW_NORMAL = Flow("normal")
FLOW_BREAK = Flow("break")
FLOW_SKIP = Flow("skip")


def _return(value: object) -> Flow:
    return Flow("return", value)


# ============================================================
# Environment
# ============================================================


class Environment:
    """The variable bag plus a stack of saved copies for calls."""

    def __init__(self) -> None:
        self.vars: dict[str, object] = {}
        self._snapshots: list[dict[str, object]] = []

    def get(self, name: str, default: object = None) -> object:
        return self.vars.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.vars

    def set(self, name: str, value: object) -> None:
        self.vars[name] = value

    def push_snapshot(self) -> None:
        self._snapshots.append(dict(self.vars))

    def pop_snapshot(self) -> None:
        saved = self._snapshots.pop()
        # keep the same dict so callers holding ``vars`` see the restore
        self.vars.clear()
        self.vars.update(saved)

    @property
    def depth(self) -> int:
        return len(self._snapshots)


# ============================================================
# Functions and classes
# ============================================================


@dataclass
class FunctionDef:
    name: str
    params: list[str]
    body: list[Stmt]


@dataclass
class ClassDef:
    name: str
    parent: str | None
    properties: list[str] = field(default_factory=list)
    methods: dict[str, MethodDef] = field(default_factory=dict)
    constructor: MethodDef | None = None


class BoundMethod:
    """A class method closed over one instance."""

    def __init__(self, interp: Interpreter, instance: dict[str, object], method: MethodDef):
        self.interp = interp
        self.instance = instance
        self.method = method

    def __call__(self, args: list[object]) -> object:
        return self.interp.invoke(self.method.params, self.method.body, args, this=self.instance)

    def __repr__(self) -> str:
        return "<method " + self.method.name + ">"


@dataclass
class Route:
    method: str
    path: str
    req_var: str
    body: list[Stmt]


# ============================================================
# Event keys
# ============================================================


def event_key(event: Event) -> str | None:
    """Dispatch key of an event pattern; None for polled conditions."""
    if isinstance(event, Starts):
        return "starts:" + event.subject
    if isinstance(event, Touches):
        return "touches:" + event.subject + ":" + event.object
    if isinstance(event, Presses):
        return "presses:" + event.subject + ":" + event.key
    if isinstance(event, Clicks):
        return "clicks:" + event.subject
    if isinstance(event, Enters):
        return "enters:" + event.subject + ":" + event.zone
    if isinstance(event, Leaves):
        return "leaves:" + event.subject + ":" + event.zone
    if isinstance(event, Becomes):
        return "becomes:" + event.subject
    if isinstance(event, CombatStart):
        return "combat:start:" + event.attacker + ":" + event.defender
    if isinstance(event, CombatHit):
        return "combat:hit:" + event.attacker + ":" + event.defender
    if isinstance(event, CombatDefeat):
        return "combat:defeat:" + event.entity
    if isinstance(event, Uses):
        return "uses:" + event.subject + ":" + event.item
    if isinstance(event, CustomEvent):
        return event.name
    return None


# ============================================================
# Interpreter
# ============================================================


_CAPABILITY_ATTR = {
    "entity": "world",
    "persistence": "persistence",
    "process": "process",
    "network": "network",
    "database": "database",
    "socket": "sockets",
}

_INTERP_RE = re.compile(r"\{([\w.]+)\}")


class Interpreter:
    """Executes a Program against a variable bag and injected host capabilities."""

    def __init__(
        self,
        world: EntityHost | None = None,
        *,
        persistence: PersistenceHost | None = None,
        process: ProcessHost | None = None,
        network: NetworkHost | None = None,
        database: DatabaseHost | None = None,
        sockets: SocketHost | None = None,
        options: Options | None = None,
    ):
        self.world = world
        if persistence is None and isinstance(world, PersistenceHost):
            persistence = world
        self.persistence = persistence
        self.process = process
        self.network = network
        self.database = database
        self.sockets = sockets
        self.options = options if options is not None else Options()

        self.program: Program | None = None
        self.event_rules: dict[str, list[Rule]] = {}
        self.condition_rules: list[Rule] = []
        self.functions: dict[str, FunctionDef] = {}
        self.classes: dict[str, ClassDef] = {}
        self.defined_events: dict[str, list[Stmt]] = {}
        self.modules: dict[str, dict[str, FunctionDef]] = {}
        self.routes: list[Route] = []
        self.env = Environment()
        self.diagnostics: list[Diagnostic] = []
        self.last_choice: int | None = None
        self.lock = threading.RLock()

        self.pos: Pos | None = None
        self._depth = 0
        self._importing: set[str] = set()
        self._exports: set[str] | None = None
        self._in_request = False
        self._response: HttpResponse | None = None

    # ---- Registration ------------------------------------------------------

    def load(self, program: Program) -> None:
        self.program = program
        self.event_rules = {}
        self.condition_rules = []
        for rule in program.rules:
            self.add_rule(rule)
        logger.debug(
            "loaded %d rules, %d init statements", len(program.rules), len(program.init)
        )

    def add_rule(self, rule: Rule) -> None:
        if isinstance(rule.event, ConditionEvent):
            self.condition_rules.append(rule)
            return
        key = event_key(rule.event)
        if key is None:
            raise ValueError("no dispatch key for " + type(rule.event).__name__)
        self.event_rules.setdefault(key, []).append(rule)

    def remove_rules(self, tag: str) -> int:
        """Drop every rule carrying ``tag``; returns how many were removed."""
        removed = 0
        for key in list(self.event_rules):
            kept = [r for r in self.event_rules[key] if r.tag != tag]
            removed += len(self.event_rules[key]) - len(kept)
            if kept:
                self.event_rules[key] = kept
            else:
                del self.event_rules[key]
        kept_conds = [r for r in self.condition_rules if r.tag != tag]
        removed += len(self.condition_rules) - len(kept_conds)
        self.condition_rules = kept_conds
        return removed

    # ---- Entry points ------------------------------------------------------

    def run(self) -> list[HyperianError]:
        """Execute the program's top-level statements once."""
        if self.program is None:
            return []
        err = self.run_body(self.program.init)
        return [err] if err is not None else []

    def trigger(self, key: str) -> list[HyperianError]:
        logger.debug("trigger %s", key)
        failures: list[HyperianError] = []
        for rule in list(self.event_rules.get(key, [])):
            err = self.run_body(rule.body)
            if err is not None:
                failures.append(err)
        return failures

    def tick(self) -> list[HyperianError]:
        failures: list[HyperianError] = []
        for rule in list(self.condition_rules):
            ev = rule.event
            if not isinstance(ev, ConditionEvent):
                continue
            with self.lock:
                try:
                    hit = self.compare_with(self.prop_value(ev.subject, ev.prop), ev.comparison)
                except HyperianError as e:
                    self._fail(e)
                    failures.append(e)
                    continue
            if hit:
                err = self.run_body(rule.body)
                if err is not None:
                    failures.append(err)
        return failures

    def run_body(self, body: list[Stmt]) -> HyperianError | None:
        """Run one rule or init body; an uncaught failure ends it and is returned."""
        with self.lock:
            try:
                self.exec_block(body)
            except HyperianError as e:
                self._fail(e)
                return e
        return None

    # ---- Diagnostics -------------------------------------------------------

    def _fail(self, e: HyperianError) -> None:
        line = e.pos.line if e.pos is not None else 0
        col = e.pos.col if e.pos is not None else 0
        self.diagnostics.append(Diagnostic("error", e.msg, line, col))
        logger.error("%s", e)

    def warn(self, message: str) -> None:
        line = self.pos.line if self.pos is not None else 0
        col = self.pos.col if self.pos is not None else 0
        diag = Diagnostic("warning", message, line, col)
        self.diagnostics.append(diag)
        logger.warning("%s", diag)

    def host(self, cap: str, op: str) -> object:
        """The capability object, or None after recording why it is missing."""
        value = getattr(self, _CAPABILITY_ATTR[cap])
        if value is None:
            self.warn("no " + cap + " capability: cannot " + op)
        return value

    def host_failure(self, e: HostError, out: str | None, fallback: object) -> None:
        """Report a failed host operation into ``out``, or raise when there is none."""
        if out is None:
            raise e
        self.env.set(out, fallback)
        self.warn(e.msg)

    def set_out(self, out: str | None, value: object) -> None:
        if out is not None:
            self.env.set(out, value)

    # ---- Statements --------------------------------------------------------

    def exec_block(self, body: list[Stmt]) -> Flow:
        for st in body:
            flow = self.exec_stmt(st)
            if flow is not None and flow.kind != "normal":
                return flow
        return FLOW_NORMAL

    def exec_stmt(self, st: Stmt) -> Flow | None:
        self.pos = st.pos
        fn = _STMT_EXEC.get(type(st))
        if fn is None:
            raise HyperianError("unsupported statement " + type(st).__name__, st.pos)
        try:
            return fn(self, st)
        except HyperianError as e:
            if e.pos is None:
                e.pos = st.pos
            raise

    def run_loop_body(self, body: list[Stmt]) -> Flow | None:
        """One loop iteration; returns a flow only when the loop must stop."""
        flow = self.exec_block(body)
        if flow.kind == "break":
            return FLOW_NORMAL
        if flow.kind == "return":
            return flow
        return None

    # ---- Expressions -------------------------------------------------------

    def eval(self, expr: Expr) -> object:
        if isinstance(expr, NumberLit):
            return expr.value
        if isinstance(expr, StringLit):
            return self.interpolate(expr.value)
        if isinstance(expr, BoolLit):
            return expr.value
        if isinstance(expr, NullLit):
            return None
        if isinstance(expr, Ident):
            return self.resolve_name(expr.name)
        if isinstance(expr, ArrayLit):
            return [self.eval(e) for e in expr.elements]
        if isinstance(expr, ObjectLit):
            return {p.key: self.eval(p.value) for p in expr.pairs}
        if isinstance(expr, BinaryOp):
            return _binary(expr.op, self.eval(expr.left), self.eval(expr.right))
        if isinstance(expr, FuncExpr):
            fn = _FUNC_EXPR.get(expr.fn)
            if fn is None:
                raise HyperianError("unknown function expression '" + expr.fn + "'", expr.pos)
            return fn([self.eval(a) for a in expr.args])
        if isinstance(expr, GetKey):
            return self.read_key(expr.obj, self.eval(expr.key))
        if isinstance(expr, CallExpr):
            return self.call_function(expr.name, [self.eval(a) for a in expr.args])
        if isinstance(expr, MathConst):
            return _MATH_CONSTS.get(expr.name, math.nan)
        raise HyperianError("unsupported expression " + type(expr).__name__, expr.pos)

    def resolve_name(self, name: str) -> object:
        if name in self.env.vars:
            return self.env.vars[name]
        if self.world is not None:
            value = self.world.get_property("_vars", name)
            if value is not None:
                return value
        return name

    def interpolate(self, text: str) -> str:
        if "{" not in text:
            return text
        return _INTERP_RE.sub(lambda m: self._interp_field(m.group(1)), text)

    def _interp_field(self, name: str) -> str:
        if "." in name:
            owner, prop = name.split(".", 1)
            obj = self.env.get(owner)
            if isinstance(obj, dict) and prop in obj:
                return to_text(obj[prop])
            if self.world is not None:
                value = self.world.get_property(owner, prop)
                if value is not None:
                    return to_text(value)
            return ""
        if name in self.env.vars:
            return to_text(self.env.vars[name])
        if self.world is not None:
            value = self.world.get_property("player", name)
            if value is not None:
                return to_text(value)
        return ""

    def read_key(self, obj_name: str, key: object) -> object:
        if obj_name not in self.env.vars and self.world is not None:
            return self.world.get_property(obj_name, to_text(key))
        return _get_key(self.env.get(obj_name), key)

    def bag_text(self, name: str) -> str:
        value = self.env.get(name)
        return "" if value is None else to_text(value)

    # ---- Conditions --------------------------------------------------------

    def test(self, cond: Cond) -> bool:
        if isinstance(cond, Logical):
            if cond.op == "and":
                return self.test(cond.left) and self.test(cond.right)
            return self.test(cond.left) or self.test(cond.right)
        if isinstance(cond, Not):
            return not self.test(cond.cond)
        if isinstance(cond, BoolCond):
            return cond.value
        if isinstance(cond, ValueCompare):
            return self.compare_with(self.eval(cond.left), cond.comparison)
        if isinstance(cond, PropCondition):
            return self.compare_with(self.prop_value(cond.subject, cond.prop), cond.comparison)
        if isinstance(cond, VarCondition):
            return self.compare_with(self.lookup_var(cond.name), cond.comparison)
        if isinstance(cond, SwitchCond):
            switch_id = to_text(self.eval(cond.switch))
            on = self.world.is_switch(switch_id) if self.world is not None else False
            return on if cond.on else not on
        if isinstance(cond, ChoiceIs):
            if self.last_choice is None:
                return False
            return to_number(self.eval(cond.value)) == self.last_choice
        if isinstance(cond, HasItem):
            store = self.host("persistence", "check item " + cond.item)
            if store is None:
                return False
            return to_number(store.item_count(cond.item)) > 0
        if isinstance(cond, HasStatus):
            if self.world is None:
                return False
            return bool(self.world.has_status(cond.entity, cond.effect))
        if isinstance(cond, Contains):
            return _contains(self.resolve_name(cond.subject), self.eval(cond.value))
        if isinstance(cond, StartsWith):
            return to_text(self.resolve_name(cond.subject)).startswith(to_text(self.eval(cond.value)))
        if isinstance(cond, EndsWith):
            return to_text(self.resolve_name(cond.subject)).endswith(to_text(self.eval(cond.value)))
        if isinstance(cond, HasKey):
            obj = self.env.get(cond.subject)
            return isinstance(obj, dict) and to_text(self.eval(cond.key)) in obj
        if isinstance(cond, TypeCheck):
            return _is_type(self.env.get(cond.subject), cond.type_name)
        raise HyperianError("unsupported condition " + type(cond).__name__, cond.pos)

    def prop_value(self, subject: str, prop: str) -> object:
        obj = self.env.get(subject)
        if isinstance(obj, dict):
            return obj.get(prop)
        if self.world is None:
            return None
        return self.world.get_property(subject, prop)

    def lookup_var(self, name: str) -> object:
        """Bag value; ``a_b`` also reads key b of object a or entity property."""
        if name in self.env.vars:
            return self.env.vars[name]
        if "_" in name:
            head, rest = name.split("_", 1)
            obj = self.env.get(head)
            if isinstance(obj, dict) and rest in obj:
                return obj[rest]
            if self.world is not None:
                value = self.world.get_property(head, rest)
                if value is not None:
                    return value
        if self.world is not None:
            return self.world.get_property("_vars", name)
        return None

    def compare_with(self, value: object, cmp: Comparison) -> bool:
        op = cmp.op
        if op == "empty":
            return is_empty(value)
        if op == "notEmpty":
            return not is_empty(value)
        if op in ("exists", "notNothing"):
            return value is not None
        if op in ("notExists", "nothing"):
            return value is None
        if op == "between":
            lo = compare(value, self.eval(cmp.low)) if cmp.low is not None else None
            hi = compare(value, self.eval(cmp.high)) if cmp.high is not None else None
            return lo is not None and hi is not None and lo >= 0 and hi <= 0
        target = self.eval(cmp.value) if cmp.value is not None else None
        if op == "equal":
            return loose_equal(value, target)
        if op == "notEqual":
            return not loose_equal(value, target)
        c = compare(value, target)
        if c is None:
            return False
        if op == "less":
            return c < 0
        if op == "greater":
            return c > 0
        raise HyperianError("unknown comparison '" + op + "'", self.pos)

    # ---- Calls -------------------------------------------------------------

    def find_function(self, name: str) -> FunctionDef | None:
        fn = self.functions.get(name)
        if fn is None and "." in name:
            alias, member = name.split(".", 1)
            fn = self.modules.get(alias, {}).get(member)
        return fn

    def call_function(self, name: str, args: list[object]) -> object:
        fn = self.find_function(name)
        if fn is None:
            self.warn("unknown function '" + name + "'")
            return None
        return self.invoke(fn.params, fn.body, args)

    def invoke(
        self,
        params: list[str],
        body: list[Stmt],
        args: list[object],
        *,
        this: dict[str, object] | None = None,
    ) -> object:
        """Run a body against a snapshot of the bag, restoring it afterwards."""
        if self._depth >= MAX_CALL_DEPTH:
            raise HyperianError("maximum call depth exceeded", self.pos)
        self.env.push_snapshot()
        self._depth += 1
        try:
            if this is not None:
                self.env.set("this", this)
            for i, p in enumerate(params):
                self.env.set(p, args[i] if i < len(args) else None)
            flow = self.exec_block(body)
        finally:
            self._depth -= 1
            self.env.pop_snapshot()
        if flow.kind == "return":
            return flow.value
        return None

    # ---- Classes -----------------------------------------------------------

    def define_class(self, st: DefineClass) -> ClassDef:
        cls = ClassDef(st.name, None)
        parent = st.parent
        if parent is not None:
            base = self.classes.get(parent)
            if parent == st.name:
                self.warn("class '" + st.name + "' cannot extend itself")
            elif base is None:
                self.warn("unknown parent class '" + parent + "' for '" + st.name + "'")
            else:
                cls.parent = parent
                cls.properties = list(base.properties)
                cls.methods = dict(base.methods)
                cls.constructor = base.constructor
        for prop in st.properties:
            if prop not in cls.properties:
                cls.properties.append(prop)
        for m in st.methods:
            if m.is_constructor:
                cls.constructor = m
            else:
                cls.methods[m.name] = m
        self.classes[st.name] = cls
        return cls

    def instantiate(self, class_name: str, args: list[object]) -> dict[str, object] | None:
        cls = self.classes.get(class_name)
        if cls is None:
            self.warn("unknown class '" + class_name + "'")
            return None
        inst: dict[str, object] = {"__class__": cls.name}
        for i, prop in enumerate(cls.properties):
            inst[prop] = args[i] if i < len(args) else None
        if cls.constructor is not None:
            self.invoke(cls.constructor.params, cls.constructor.body, args, this=inst)
        for m in cls.methods.values():
            inst[m.name] = BoundMethod(self, inst, m)
        return inst

    # ---- Modules -----------------------------------------------------------

    def _load_module(self, file: str) -> Program | None:
        proc = self.host("process", "import " + file)
        if proc is None:
            return None
        source = proc.load_module(file)
        if source is None:
            self.warn("module not found: " + file)
            return None
        program, diags = parse_source(source)
        self.diagnostics.extend(diags)
        return program

    def import_module(
        self, file: str, *, isolated: bool
    ) -> tuple[dict[str, object], dict[str, FunctionDef]] | None:
        """Run a module's top-level statements.

        Returns the variables and functions it defined. With ``isolated`` the
        module's variables are taken back out of the bag afterwards.
        """
        if file in self._importing:
            self.warn("circular import of " + file)
            return None
        program = self._load_module(file)
        if program is None:
            return None
        logger.debug("import %s", file)
        before_fns = dict(self.functions)
        before_vars = dict(self.env.vars)
        saved_exports = self._exports
        self._exports = set()
        self._importing.add(file)
        if isolated:
            self.env.push_snapshot()
        try:
            self.exec_block(program.init)
            module_vars = {
                k: v
                for k, v in self.env.vars.items()
                if k not in before_vars or before_vars[k] is not v
            }
            exports = self._exports
        finally:
            if isolated:
                self.env.pop_snapshot()
            self._importing.discard(file)
            self._exports = saved_exports
        module_fns = {k: f for k, f in self.functions.items() if before_fns.get(k) is not f}
        if exports:
            module_vars = {k: v for k, v in module_vars.items() if k in exports}
            module_fns = {k: f for k, f in module_fns.items() if k in exports}
        return module_vars, module_fns

    # ---- Server ------------------------------------------------------------

    def handle_request(self, request: dict[str, object]) -> HttpResponse:
        """Run the matching route body and return its response."""
        method = to_text(request.get("method")).upper()
        url = to_text(request.get("url"))
        with self.lock:
            route = None
            for r in self.routes:
                if r.method == method and r.path == url:
                    route = r
                    break
            if route is None:
                return not_found()
            saved = (self._in_request, self._response)
            self._in_request = True
            self._response = None
            try:
                self.env.set(route.req_var, request)
                err = self.run_body(route.body)
                response = self._response
            finally:
                self._in_request, self._response = saved
        if response is not None:
            return response
        if err is not None:
            return build_response(500, {"error": err.msg}, None)
        return HttpResponse(204, "text/plain", b"")


# ============================================================
# Value helpers
# ============================================================


def _binary(op: str, left: object, right: object) -> object:
    if op == "+":
        if isinstance(left, (str, list, dict)) or isinstance(right, (str, list, dict)):
            return to_text(left) + to_text(right)
        return normalize(to_number(left) + to_number(right))
    a = to_number(left)
    b = to_number(right)
    if op == "-":
        return normalize(a - b)
    if op == "*":
        return normalize(a * b)
    if op == "/":
        if b == 0:
            return 0
        return normalize(a / b)
    if op == "%":
        if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
            return math.nan
        return normalize(math.fmod(a, b))
    raise HyperianError("unknown operator '" + op + "'")


def _same(a: object, b: object) -> bool:
    """Strict equality used for membership and index lookups."""
    if is_number(a) and is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _contains(haystack: object, needle: object) -> bool:
    if isinstance(haystack, list):
        return any(_same(x, needle) for x in haystack)
    if isinstance(haystack, dict):
        return to_text(needle) in haystack
    if haystack is None:
        return False
    return to_text(needle) in to_text(haystack)


def _index_of(haystack: object, needle: object) -> int:
    if isinstance(haystack, list):
        for i, x in enumerate(haystack):
            if _same(x, needle):
                return i
        return -1
    if haystack is None:
        return -1
    return to_text(haystack).find(to_text(needle))


def _get_key(container: object, key: object) -> object:
    if isinstance(container, dict):
        return container.get(to_text(key))
    if isinstance(container, (list, str)):
        if key == "length":
            return len(container)
        n = to_number(key)
        if isinstance(n, int) and 0 <= n < len(container):
            return container[n]
    return None


def _is_type(value: object, want: str) -> bool:
    if want in ("text", "string"):
        return isinstance(value, str)
    if want == "integer":
        return is_number(value) and math.isfinite(value) and float(value).is_integer()
    return type_name(value) == want


def _js_min(a: float, b: float) -> float:
    if math.isnan(a) or math.isnan(b):
        return math.nan
    return min(a, b)


def _js_max(a: float, b: float) -> float:
    if math.isnan(a) or math.isnan(b):
        return math.nan
    return max(a, b)


def _split(text: str, sep: str) -> list[str]:
    if sep == "":
        return list(text)
    return text.split(sep)


def _sort_cmp(a: object, b: object) -> int:
    if is_number(a) and is_number(b):
        return (a > b) - (a < b)
    x = to_text(a)
    y = to_text(b)
    return (x > y) - (x < y)


def _flatten(items: list[object]) -> list[object]:
    out: list[object] = []
    for x in items:
        if isinstance(x, list):
            out.extend(_flatten(x))
        else:
            out.append(x)
    return out


def _as_list(value: object) -> list[object]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _pad(src: str, length: int, fill: str, left: bool) -> str:
    need = length - len(src)
    if need <= 0 or fill == "":
        return src
    padding = (fill * (need // len(fill) + 1))[:need]
    return padding + src if left else src + padding


def _revive(raw: object) -> object:
    """Numeric strings from a store come back as numbers."""
    if isinstance(raw, str) and raw.strip() != "":
        n = to_number(raw)
        if not (isinstance(n, float) and math.isnan(n)):
            return n
    return raw


_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def _compile(pattern: object, flags: str) -> tuple[re.Pattern[str], bool]:
    """Compile a regex value or pattern text; the bool reports the global flag."""
    if isinstance(pattern, dict) and "pattern" in pattern:
        flags = flags or to_text(pattern.get("flags") or "")
        pattern = pattern["pattern"]
    bits = 0
    for ch in flags:
        bits |= _REGEX_FLAGS.get(ch, 0)
    try:
        return re.compile(to_text(pattern), bits), "g" in flags
    except re.error as e:
        raise HostError("invalid regular expression '" + to_text(pattern) + "': " + str(e)) from e


# ============================================================
# Built-in function expressions
# ============================================================


def _arg(args: list[object], i: int) -> object:
    return args[i] if i < len(args) else None


def _num(args: list[object], i: int) -> float:
    return to_number(_arg(args, i))


def _fx_round(args: list[object]) -> object:
    x = _num(args, 0)
    if not math.isfinite(x):
        return x
    return math.floor(x + 0.5)


def _fx_floor(args: list[object]) -> object:
    x = _num(args, 0)
    return math.floor(x) if math.isfinite(x) else x


def _fx_ceil(args: list[object]) -> object:
    x = _num(args, 0)
    return math.ceil(x) if math.isfinite(x) else x


def _fx_abs(args: list[object]) -> object:
    return abs(_num(args, 0))


def _fx_sqrt(args: list[object]) -> object:
    x = _num(args, 0)
    if math.isnan(x) or x < 0:
        return math.nan
    return normalize(math.sqrt(x))


def _fx_sign(args: list[object]) -> object:
    x = _num(args, 0)
    if math.isnan(x):
        return math.nan
    return (x > 0) - (x < 0)


def _fx_log(args: list[object]) -> object:
    x = _num(args, 0)
    if math.isnan(x) or x < 0:
        return math.nan
    if x == 0:
        return -math.inf
    return normalize(math.log(x))


def _fx_power(args: list[object]) -> object:
    x = _num(args, 0)
    y = _num(args, 1)
    if isinstance(x, int) and isinstance(y, int) and 0 <= y <= 1024:
        return x**y
    if x == 0 and y < 0:
        return math.inf
    try:
        return normalize(math.pow(x, y))
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


def _fx_min(args: list[object]) -> object:
    return _js_min(_num(args, 0), _num(args, 1))


def _fx_max(args: list[object]) -> object:
    return _js_max(_num(args, 0), _num(args, 1))


def _fx_random(args: list[object]) -> object:
    lo = _num(args, 0)
    hi = _num(args, 1)
    if not (math.isfinite(lo) and math.isfinite(hi)):
        return math.nan
    return normalize(math.floor(random.random() * (hi - lo + 1)) + lo)


def _fx_clamp(args: list[object]) -> object:
    return normalize(_js_min(_js_max(_num(args, 0), _num(args, 1)), _num(args, 2)))


def _fx_length(args: list[object]) -> object:
    v = _arg(args, 0)
    if isinstance(v, (list, dict)):
        return len(v)
    if v is None:
        return 0
    return len(to_text(v))


def _fx_join(args: list[object]) -> object:
    a = to_text(_arg(args, 0))
    b = "" if len(args) < 2 or args[1] is None else to_text(args[1])
    if len(args) >= 3:
        return a + to_text(args[2]) + b
    return a + b


def _fx_array_join(args: list[object]) -> object:
    items = _arg(args, 0)
    sep = to_text(_arg(args, 1)) if len(args) > 1 else ","
    if isinstance(items, list):
        return sep.join("" if x is None else to_text(x) for x in items)
    return to_text(items)


def _fx_split(args: list[object]) -> object:
    return _split(to_text(_arg(args, 0)), to_text(_arg(args, 1)))


def _fx_slice(args: list[object]) -> object:
    src = _arg(args, 0)
    start = to_int(_arg(args, 1))
    end = to_int(args[2]) if len(args) > 2 and args[2] is not None else None
    if isinstance(src, list):
        return src[start:end]
    return to_text(src)[start:end]


def _fx_object(args: list[object]) -> object:
    out: dict[str, object] = {}
    for i in range(0, len(args) - 1, 2):
        out[to_text(args[i])] = args[i + 1]
    return out


_FUNC_EXPR: dict[str, Callable[[list[object]], object]] = {
    "round": _fx_round,
    "floor": _fx_floor,
    "ceil": _fx_ceil,
    "abs": _fx_abs,
    "sqrt": _fx_sqrt,
    "sign": _fx_sign,
    "log": _fx_log,
    "power": _fx_power,
    "min": _fx_min,
    "max": _fx_max,
    "random": _fx_random,
    "clamp": _fx_clamp,
    "uppercase": lambda args: to_text(_arg(args, 0)).upper(),
    "lowercase": lambda args: to_text(_arg(args, 0)).lower(),
    "trim": lambda args: to_text(_arg(args, 0)).strip(),
    "length": _fx_length,
    "count": _fx_length,
    "join": _fx_join,
    "arrayJoin": _fx_array_join,
    "split": _fx_split,
    "typeOf": lambda args: type_name(_arg(args, 0)),
    "indexOf": lambda args: _index_of(_arg(args, 1), _arg(args, 0)),
    "slice": _fx_slice,
    "array": lambda args: list(args),
    "object": _fx_object,
}

_MATH_CONSTS: dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
    "infinity": math.inf,
    "ln2": math.log(2),
    "ln10": math.log(10),
    "sqrt2": math.sqrt(2),
}


# ============================================================
# Statement executors
# ============================================================

# Each executor takes the interpreter and its node and returns a Flow or None
# (None means normal completion).

# ---- Variables ---------------------------------------------------------------


def _x_let(it: Interpreter, st: LetStmt | SetStmt) -> None:
    it.env.set(st.name, it.eval(st.value))


def _x_modify(it: Interpreter, st: ModifyStmt) -> None:
    cur = to_number(it.env.get(st.name, 0))
    delta = to_number(it.eval(st.value))
    it.env.set(st.name, normalize(cur + delta if st.op == "increase" else cur - delta))


def _x_set_key(it: Interpreter, st: SetKey) -> None:
    obj = it.env.get(st.obj)
    key = it.eval(st.key)
    value = it.eval(st.value)
    if isinstance(obj, dict):
        obj[to_text(key)] = value
    elif isinstance(obj, list):
        _store_index(it, obj, key, value)
    elif obj is None:
        it.env.set(st.obj, {to_text(key): value})
    else:
        it.warn("cannot set key on " + type_name(obj) + " '" + st.obj + "'")


def _store_index(it: Interpreter, arr: list[object], index: object, value: object) -> None:
    i = to_int(index, -1)
    if i < 0:
        it.warn("invalid index " + to_text(index))
        return
    if i >= len(arr):
        arr.extend([None] * (i - len(arr) + 1))
    arr[i] = value


def _x_set_index(it: Interpreter, st: SetIndex) -> None:
    arr = it.env.get(st.arr)
    if not isinstance(arr, list):
        it.warn("'" + st.arr + "' is not an array")
        return
    _store_index(it, arr, it.eval(st.index), it.eval(st.value))


def _x_set_volume(it: Interpreter, st: SetVolume) -> None:
    world = it.host("entity", "set volume")
    if world is not None:
        world.set_volume(to_number(it.eval(st.value)))


def _x_set_formula(it: Interpreter, st: SetFormula) -> None:
    world = it.host("entity", "set formula")
    if world is not None:
        world.set_formula(st.key, it.eval(st.expr))


def _x_set_autotile(it: Interpreter, st: SetAutotile) -> None:
    world = it.host("entity", "set autotile")
    if world is not None:
        world.set_autotile(it.eval(st.tile), it.eval(st.tile_name))


def _x_set_zone(it: Interpreter, st: SetZone) -> None:
    world = it.host("entity", "set zone")
    if world is not None:
        world.set_zone(it.eval(st.zone))


# ---- Entities and media ------------------------------------------------------


def _x_move(it: Interpreter, st: MoveStmt) -> None:
    world = it.host("entity", "move " + st.entity)
    if world is not None:
        world.move_entity(st.entity, to_number(it.eval(st.x)), to_number(it.eval(st.y)), st.relative)


def _x_teleport(it: Interpreter, st: TeleportStmt) -> None:
    world = it.host("entity", "teleport " + st.entity)
    if world is not None:
        world.move_entity(st.entity, to_number(it.eval(st.x)), to_number(it.eval(st.y)), False)


def _x_spawn(it: Interpreter, st: SpawnStmt) -> None:
    world = it.host("entity", "spawn " + st.entity)
    if world is None:
        return
    scale = world.tile_size if st.use_tile else 1
    x = normalize(to_number(it.eval(st.x)) * scale)
    y = normalize(to_number(it.eval(st.y)) * scale)
    world.spawn_entity(st.entity, x, y)


def _x_entity(it: Interpreter, st: EntityStmt) -> None:
    world = it.host("entity", st.action + " " + st.entity)
    if world is not None:
        getattr(world, st.action + "_entity")(st.entity)


def _x_play(it: Interpreter, st: PlayStmt) -> None:
    world = it.host("entity", "play " + st.kind)
    if world is None:
        return
    name = to_text(it.eval(st.name))
    if st.kind == "sound":
        world.play_sound(name)
    elif st.kind == "music":
        world.play_music(name, st.loop)
    elif st.kind == "animation":
        world.play_animation(st.entity, name)
    else:
        world.emit_event("play:" + st.kind, name)


def _x_stop(it: Interpreter, st: StopStmt) -> None:
    world = it.host("entity", "stop " + st.kind)
    if world is None:
        return
    if st.kind == "all":
        world.stop_all_sounds()
    elif st.kind == "music":
        world.stop_music()
    elif st.kind == "animation":
        world.stop_animation(st.entity)
    else:
        world.stop_sound(to_text(it.eval(st.name)) if st.name is not None else None)


def _x_apply_force(it: Interpreter, st: ApplyForce) -> None:
    world = it.host("entity", "apply " + st.kind)
    if world is None:
        return
    x = to_number(it.eval(st.x))
    y = to_number(it.eval(st.y))
    if st.kind == "impulse":
        world.apply_impulse(st.entity, x, y)
    else:
        world.apply_force(st.entity, x, y)


def _x_apply_status(it: Interpreter, st: ApplyStatus) -> None:
    world = it.host("entity", "apply " + st.effect)
    if world is not None:
        world.apply_status(st.effect, st.target, to_number(it.eval(st.duration)))


def _x_define_sprite(it: Interpreter, st: DefineSprite) -> None:
    world = it.host("entity", "define sprite")
    if world is not None:
        world.define_sprite(
            st.entity,
            to_text(it.eval(st.src)),
            to_number(it.eval(st.frame_w)),
            to_number(it.eval(st.frame_h)),
        )


def _x_define_animation(it: Interpreter, st: DefineAnimation) -> None:
    world = it.host("entity", "define animation")
    if world is not None:
        world.define_animation(
            st.entity,
            to_text(it.eval(st.name)),
            list(st.frames),
            to_number(it.eval(st.fps)),
            to_bool(it.eval(st.loop)),
        )


def _x_shake(it: Interpreter, st: ScreenShake) -> None:
    world = it.host("entity", "shake screen")
    if world is not None:
        world.screen_shake(to_number(it.eval(st.intensity)), to_number(it.eval(st.duration)))


def _x_flash(it: Interpreter, st: ScreenFlash) -> None:
    world = it.host("entity", "flash screen")
    if world is not None:
        world.screen_flash(to_text(it.eval(st.color)), to_number(it.eval(st.duration)))


def _x_tint(it: Interpreter, st: ScreenTint) -> None:
    world = it.host("entity", "tint screen")
    if world is not None:
        world.screen_tint(to_text(it.eval(st.color)), to_number(it.eval(st.alpha)))


def _x_load_tileset(it: Interpreter, st: LoadTileset) -> None:
    world = it.host("entity", "load tileset")
    if world is not None:
        world.load_tileset(st.src)


# ---- Output and events -------------------------------------------------------


def _x_print(it: Interpreter, st: PrintStmt) -> None:
    world = it.host("entity", "print")
    if world is not None:
        world.log(display(it.eval(st.message)))


def _x_log(it: Interpreter, st: LogStmt) -> None:
    world = it.host("entity", "log")
    if world is not None:
        world.log(" ".join(display(it.eval(v)) for v in st.values))


def _x_wait(it: Interpreter, st: WaitStmt) -> None:
    world = it.host("entity", "wait")
    if world is not None:
        world.wait(to_number(it.eval(st.duration)))


def _x_say(it: Interpreter, st: SayStmt) -> None:
    world = it.host("entity", "show dialogue")
    if world is not None:
        world.show_dialogue(to_text(it.eval(st.text)), st.speaker, st.portrait)


def _x_choice(it: Interpreter, st: ChoiceStmt) -> Flow | None:
    world = it.host("entity", "show choice")
    if world is None:
        return None
    labels = [it.interpolate(o.label) for o in st.options]
    index = to_int(world.show_choice(it.interpolate(st.prompt), labels), -1)
    it.last_choice = index
    world.set_property("_vars", "_lastChoice", index)
    if 0 <= index < len(st.options):
        return it.exec_block(st.options[index].body)
    return None


def _x_emit(it: Interpreter, st: EmitStmt) -> None:
    world = it.host("entity", "emit " + st.event)
    if world is not None:
        world.emit_event(st.event, st.entity)


def _x_host_call(it: Interpreter, st: HostCall) -> None:
    world = it.host("entity", "call " + st.fn)
    if world is not None:
        world.call_function(st.fn, [it.eval(a) for a in st.args])


def _x_call_event(it: Interpreter, st: CallEvent) -> Flow | None:
    body = it.defined_events.get(st.event_id)
    if body is not None:
        return it.exec_block(body)
    world = it.host("entity", "call event " + st.event_id)
    if world is not None:
        world.emit_event("event:" + st.event_id, None)
    return None


def _x_define_event(it: Interpreter, st: DefineEvent) -> None:
    it.defined_events[st.event_id] = st.body
    if it.world is not None:
        it.world.define_event(st.event_id, list(st.body))


# ---- Game flow ---------------------------------------------------------------


def _x_game_state(it: Interpreter, st: GameState) -> None:
    world = it.host("entity", st.action + " game")
    if world is None:
        return
    if st.action == "win":
        world.win_game()
    elif st.action == "lose":
        world.lose_game()
    elif st.action == "restart":
        world.restart_game()
    else:
        world.end_game()


def _x_load_scene(it: Interpreter, st: LoadScene) -> None:
    world = it.host("entity", "load scene " + st.scene_id)
    if world is not None:
        world.load_scene(st.scene_id)


def _emit(it: Interpreter, op: str, name: str, data: object) -> None:
    world = it.host("entity", op)
    if world is not None:
        world.emit_event(name, data)


def _x_battle_enemy(it: Interpreter, st: BattleEnemy) -> None:
    world = it.host("entity", "start battle")
    if world is None:
        return
    ids = [it.eval(e) for e in st.enemies]
    if st.music is not None:
        world.play_music(to_text(it.eval(st.music)), True)
    world.emit_event("battle:start", to_json(ids))


def _x_battle(it: Interpreter, st: BattleStmt) -> None:
    _emit(it, "start combat", "combat:start", st.attacker + ":" + st.defender)


def _x_attack(it: Interpreter, st: AttackStmt) -> None:
    _emit(it, "attack", "combat:attack", st.attacker + ":" + st.defender)


def _x_end_battle(it: Interpreter, st: EndBattle) -> None:
    _emit(it, "end battle", "combat:end", "")


def _x_open_menu(it: Interpreter, st: OpenMenu) -> None:
    _emit(it, "open menu", "menu:open", st.tab)


def _x_open_shop(it: Interpreter, st: OpenShop) -> None:
    _emit(it, "open shop", "shop:open", to_text(it.eval(st.name)))


def _x_open_formula_editor(it: Interpreter, st: OpenFormulaEditor) -> None:
    _emit(it, "open formula editor", "formula:editor", "")


def _x_game_over(it: Interpreter, st: GameOver) -> None:
    _emit(it, "open game over", "game:over", "")


def _x_toggle_inventory(it: Interpreter, st: ToggleInventory) -> None:
    _emit(it, "toggle inventory", "inventory:toggle", "")


def _x_toggle(it: Interpreter, st: ToggleStmt) -> None:
    _emit(it, "toggle " + st.target, "toggle:" + st.target, "")


def _x_turn_switch(it: Interpreter, st: TurnSwitch) -> None:
    world = it.host("entity", "turn switch")
    if world is None:
        return
    switch_id = to_text(it.eval(st.switch))
    if st.on:
        world.turn_on_switch(switch_id)
    else:
        world.turn_off_switch(switch_id)


# ---- Inventory and persistence -----------------------------------------------


def _x_add_item(it: Interpreter, st: AddItem) -> None:
    store = it.host("persistence", "add item " + st.item)
    if store is not None:
        store.add_item(st.item, to_number(it.eval(st.quantity)))


def _x_remove_item(it: Interpreter, st: RemoveItem) -> None:
    store = it.host("persistence", "remove item " + st.item)
    if store is not None:
        store.remove_item(st.item, to_number(it.eval(st.quantity)))


def _x_give_exp(it: Interpreter, st: GiveExp) -> None:
    world = it.host("entity", "give exp")
    if world is not None:
        world.give_exp(to_number(it.eval(st.amount)))


def _x_give_gold(it: Interpreter, st: GiveGold) -> None:
    world = it.host("entity", "give gold")
    if world is not None:
        world.give_gold(to_number(it.eval(st.amount)))


def _x_party(it: Interpreter, st: PartyStmt) -> None:
    world = it.host("entity", st.action + " party member")
    if world is None:
        return
    if st.action == "add":
        world.add_to_party(st.member)
    else:
        world.remove_from_party(st.member)


def _x_array_take(it: Interpreter, st: ArrayTake) -> None:
    arr = it.env.get(st.name)
    if not isinstance(arr, list) or not arr:
        return
    if st.end == "last":
        arr.pop()
    else:
        arr.pop(0)


def _x_save_data(it: Interpreter, st: SaveData) -> None:
    store = it.host("persistence", "save data " + st.key)
    if store is not None:
        store.save_data(st.key, plain(it.eval(st.value)))


def _x_load_data(it: Interpreter, st: LoadData) -> None:
    target = st.variable if st.variable is not None else st.key
    store = it.host("persistence", "load data " + st.key)
    if store is None:
        it.env.set(target, None)
        return
    it.env.set(target, _revive(store.load_data(st.key)))


def _x_delete_data(it: Interpreter, st: DeleteData) -> None:
    store = it.host("persistence", "delete data " + st.key)
    if store is not None:
        store.delete_data(st.key)


def _x_save_record(it: Interpreter, st: SaveRecord) -> None:
    store = it.host("persistence", "save record " + st.record_id)
    if store is None:
        return
    data = it.eval(st.data) if st.data is not None else it.env.get(st.record_id)
    store.save_record(st.table, st.record_id, plain(data))


def _x_load_record(it: Interpreter, st: LoadRecord) -> None:
    target = st.variable if st.variable is not None else st.record_id
    store = it.host("persistence", "load record " + st.record_id)
    it.env.set(target, store.load_record(st.table, st.record_id) if store is not None else None)


def _x_delete_record(it: Interpreter, st: DeleteRecord) -> None:
    store = it.host("persistence", "delete record " + st.record_id)
    if store is not None:
        store.delete_record(st.table, st.record_id)


def _x_save_game(it: Interpreter, st: SaveGame) -> None:
    store = it.host("persistence", "save game")
    if store is not None:
        store.save_game(st.slot, plain(dict(it.env.vars)))


def _x_load_game(it: Interpreter, st: LoadGame) -> None:
    store = it.host("persistence", "load game")
    if store is None:
        return
    snapshot = store.load_game(st.slot)
    if snapshot is None:
        it.warn("no saved game in slot '" + st.slot + "'")
        return
    it.env.vars.update(snapshot)


def _x_delete_file(it: Interpreter, st: DeleteFile) -> None:
    proc = it.host("process", "delete file")
    if proc is None:
        return
    try:
        proc.delete_file(to_text(it.eval(st.path)))
    except HostError as e:
        it.warn(e.msg)


def _x_delete_key(it: Interpreter, st: DeleteKey) -> None:
    obj = it.env.get(st.obj)
    if isinstance(obj, dict):
        obj.pop(to_text(it.eval(st.key)), None)


# ---- RPG ---------------------------------------------------------------------


def _x_heal(it: Interpreter, st: HealStmt) -> None:
    world = it.host("entity", "heal " + st.target)
    if world is not None:
        amount = to_number(it.eval(st.amount)) if st.amount is not None else None
        world.heal(st.target, amount)


def _x_recover(it: Interpreter, st: RecoverStmt) -> None:
    world = it.host("entity", "recover " + st.target)
    if world is not None:
        world.recover(st.target)


def _x_change_map(it: Interpreter, st: ChangeMap) -> None:
    world = it.host("entity", "change map")
    if world is None:
        return
    x = to_number(it.eval(st.x)) if st.x is not None else None
    y = to_number(it.eval(st.y)) if st.y is not None else None
    world.change_map(st.map_id, x, y)


def _x_change_class(it: Interpreter, st: ChangeClass) -> None:
    world = it.host("entity", "change class")
    if world is not None:
        world.change_class(st.entity, st.class_id)


def _x_change_level(it: Interpreter, st: ChangeLevel) -> None:
    world = it.host("entity", "change level")
    if world is not None:
        world.change_level(st.entity, to_number(it.eval(st.amount)), st.relative)


def _x_change_exp(it: Interpreter, st: ChangeExp) -> None:
    world = it.host("entity", "change exp")
    if world is not None:
        world.change_exp(st.entity, to_number(it.eval(st.amount)), st.relative)


def _x_change_gold(it: Interpreter, st: ChangeGold) -> None:
    world = it.host("entity", "change gold")
    if world is not None:
        world.change_gold(to_number(it.eval(st.amount)), st.relative)


def _x_change_stat(it: Interpreter, st: ChangeStat) -> None:
    world = it.host("entity", "change " + st.stat)
    if world is not None:
        world.change_stat(st.stat, st.entity, to_number(it.eval(st.amount)), st.relative)


def _x_change_encounter_rate(it: Interpreter, st: ChangeEncounterRate) -> None:
    world = it.host("entity", "change encounter rate")
    if world is not None:
        world.change_encounter_rate(to_number(it.eval(st.value)))


def _x_skill(it: Interpreter, st: SkillStmt) -> None:
    world = it.host("entity", st.action + " skill " + st.skill)
    if world is None:
        return
    if st.action == "learn":
        world.learn_skill(st.skill, st.target)
    else:
        world.forget_skill(st.skill, st.target)


def _x_equip(it: Interpreter, st: EquipItem) -> None:
    world = it.host("entity", "equip item")
    if world is not None:
        world.equip_item(to_text(it.eval(st.item)), st.slot)


def _x_define_data(it: Interpreter, st: DefineData) -> None:
    world = it.host("entity", "define " + st.kind)
    if world is not None:
        world.define_data(st.kind, st.data_id, dict(st.props))


def _x_define_zone(it: Interpreter, st: DefineZone) -> None:
    world = it.host("entity", "define zone")
    if world is not None:
        entries = [{"enemy": e.enemy, "weight": e.weight} for e in st.entries]
        world.define_zone(st.zone_id, entries)


def _x_define_status(it: Interpreter, st: DefineStatus) -> None:
    world = it.host("entity", "define status")
    if world is not None:
        ops = [{"op": t.op, "amount": t.amount, "text": t.text} for t in st.turn_ops]
        world.define_status(st.status_id, dict(st.props), ops)


# ---- Data formats ------------------------------------------------------------


def _x_fetch(it: Interpreter, st: FetchUrl) -> None:
    net = it.host("network", "fetch")
    if net is None:
        it.set_out(st.variable, None)
        return
    body = it.eval(st.body) if st.body is not None else None
    try:
        result = net.request(st.method, to_text(it.eval(st.url)), body)
    except HostError as e:
        it.host_failure(e, st.variable, None)
        return
    it.set_out(st.variable, result)


def _x_parse_json(it: Interpreter, st: ParseJson) -> None:
    text = to_text(it.eval(st.text))
    try:
        value = json.loads(text)
    except ValueError as e:
        it.host_failure(HostError("invalid JSON: " + str(e)), st.variable, None)
        return
    it.set_out(st.variable, value)


def _x_stringify(it: Interpreter, st: Stringify) -> None:
    it.set_out(st.variable, to_json(it.eval(st.value)))


def _x_read_file(it: Interpreter, st: ReadFile) -> None:
    proc = it.host("process", "read file")
    if proc is None:
        it.set_out(st.variable, None)
        return
    try:
        it.set_out(st.variable, proc.read_file(to_text(it.eval(st.path))))
    except HostError as e:
        it.set_out(st.variable, None)
        it.warn(e.msg)


def _x_write_file(it: Interpreter, st: WriteFile) -> None:
    proc = it.host("process", "write file")
    if proc is None:
        return
    try:
        proc.write_file(to_text(it.eval(st.path)), to_text(it.eval(st.contents)), st.append)
    except HostError as e:
        it.warn(e.msg)


def _x_split(it: Interpreter, st: SplitStr) -> None:
    it.set_out(st.variable, _split(to_text(it.eval(st.text)), to_text(it.eval(st.sep))))


def _x_replace(it: Interpreter, st: ReplaceStr) -> None:
    src = it.bag_text(st.in_var) if st.in_var is not None else ""
    old = to_text(it.eval(st.old))
    new = to_text(it.eval(st.new))
    result = new.join(src) if old == "" else src.replace(old, new)
    target = st.variable if st.variable is not None else st.in_var
    it.set_out(target, result)


def _x_convert(it: Interpreter, st: Convert) -> None:
    value = it.eval(st.value)
    if st.to_type == "number":
        result: object = to_number(value)
    elif st.to_type == "integer":
        n = to_number(value)
        result = int(n) if math.isfinite(n) else n
    elif st.to_type == "boolean":
        result = to_bool(value)
    elif st.to_type == "array":
        result = _as_list(value)
    else:
        result = to_text(value)
    target = st.variable
    if target is None and isinstance(st.value, Ident):
        target = st.value.name
    it.set_out(target, result)


# ---- Control flow ------------------------------------------------------------


def _x_if(it: Interpreter, st: IfStmt) -> Flow:
    if it.test(st.cond):
        return it.exec_block(st.then_body)
    return it.exec_block(st.else_body)


def _x_repeat(it: Interpreter, st: RepeatStmt) -> Flow | None:
    for _ in range(to_int(it.eval(st.count))):
        stop = it.run_loop_body(st.body)
        if stop is not None:
            return stop
    return None


def _x_while(it: Interpreter, st: WhileStmt) -> Flow | None:
    limit = it.options.while_limit
    count = 0
    while it.test(st.cond):
        if count >= limit:
            it.warn("while loop stopped after " + str(limit) + " iterations")
            break
        count += 1
        stop = it.run_loop_body(st.body)
        if stop is not None:
            return stop
    return None


def _x_for_each(it: Interpreter, st: ForEach) -> Flow | None:
    for item in list(_as_list(it.env.get(st.iterable))):
        it.env.set(st.var, item)
        stop = it.run_loop_body(st.body)
        if stop is not None:
            return stop
    return None


def _x_break(it: Interpreter, st: BreakStmt) -> Flow:
    return FLOW_BREAK


def _x_skip(it: Interpreter, st: SkipStmt) -> Flow:
    return FLOW_SKIP


def _x_return(it: Interpreter, st: ReturnStmt) -> Flow:
    return _return(it.eval(st.value))


def _x_try(it: Interpreter, st: TryStmt) -> Flow:
    flow = FLOW_NORMAL
    try:
        try:
            flow = it.exec_block(st.body)
        except HyperianError as e:
            logger.debug("caught: %s", e)
            it.env.set(st.error_var, e.msg)
            flow = it.exec_block(st.catch_body)
    finally:
        if st.finally_body is not None:
            fin = it.exec_block(st.finally_body)
            if fin.kind != "normal":
                flow = fin
    return flow


def _x_match(it: Interpreter, st: MatchStmt) -> Flow | None:
    subject = it.resolve_name(st.subject)
    for case in st.cases:
        if case.comparison is not None:
            hit = it.compare_with(subject, case.comparison)
        else:
            hit = case.value is not None and loose_equal(subject, it.eval(case.value))
        if hit:
            return it.exec_block(case.body)
    if st.default:
        return it.exec_block(st.default)
    return None


def _x_define_function(it: Interpreter, st: DefineFunction) -> None:
    it.functions[st.name] = FunctionDef(st.name, list(st.params), st.body)


def _x_call_function(it: Interpreter, st: CallFunction) -> None:
    value = it.call_function(st.name, [it.eval(a) for a in st.args])
    it.set_out(st.out, value)


# ---- Collections -------------------------------------------------------------


def _x_append(it: Interpreter, st: AppendStmt) -> None:
    value = it.eval(st.value)
    existing = it.env.get(st.name)
    if isinstance(existing, list):
        existing.append(value)
    elif existing is None:
        it.env.set(st.name, [value])
    else:
        it.env.set(st.name, [existing, value])


def _x_sort(it: Interpreter, st: SortStmt) -> None:
    arr = it.env.get(st.name)
    if isinstance(arr, list):
        arr.sort(key=functools.cmp_to_key(_sort_cmp), reverse=st.descending)


def _x_reverse(it: Interpreter, st: ReverseStmt) -> None:
    value = it.env.get(st.name)
    if isinstance(value, list):
        value.reverse()
    elif isinstance(value, str):
        it.env.set(st.name, value[::-1])


def _x_filter(it: Interpreter, st: FilterStmt) -> None:
    out: list[object] = []
    arr = it.env.get(st.arr)
    if isinstance(arr, list):
        for item in list(arr):
            it.env.set(st.item_var, item)
            if it.test(st.cond):
                out.append(item)
    it.env.set(st.out, out)


def _x_merge(it: Interpreter, st: MergeStmt) -> None:
    it.env.set(st.out, list(_as_list(it.env.get(st.a))) + list(_as_list(it.env.get(st.b))))


def _x_flatten(it: Interpreter, st: FlattenStmt) -> None:
    it.env.set(st.out, _flatten(_as_list(it.env.get(st.arr))))


def _x_find(it: Interpreter, st: FindStmt) -> None:
    arr = it.env.get(st.arr)
    needle = it.eval(st.needle)
    it.env.set(st.out, _index_of(arr, needle) if isinstance(arr, list) else -1)


def _x_get_key(it: Interpreter, st: GetKeyStmt) -> None:
    it.env.set(st.out, it.read_key(st.obj, it.eval(st.key)))


def _x_get_index(it: Interpreter, st: GetIndex) -> None:
    arr = it.env.get(st.arr)
    i = to_int(it.eval(st.index), -1)
    value = None
    if isinstance(arr, (list, str)) and 0 <= i < len(arr):
        value = arr[i]
    it.env.set(st.out, value)


def _x_get_env(it: Interpreter, st: GetEnv) -> None:
    proc = it.host("process", "read environment")
    it.env.set(st.out, proc.get_env(to_text(it.eval(st.key))) if proc is not None else None)


def _x_get_clock(it: Interpreter, st: GetClock) -> None:
    if st.what == "time":
        value: object = time.strftime("%H:%M:%S")
    elif st.what == "date":
        value = time.strftime("%Y-%m-%d")
    else:
        value = int(time.time() * 1000)
    it.env.set(st.out, value)


def _x_slice(it: Interpreter, st: SliceStmt) -> None:
    src = it.env.get(st.src) if it.env.has(st.src) else st.src
    it.env.set(st.out, _fx_slice([src, it.eval(st.start), it.eval(st.end)]))


def _x_char_at(it: Interpreter, st: CharAt) -> None:
    text = it.bag_text(st.src)
    i = to_int(it.eval(st.index), -1)
    it.env.set(st.out, text[i] if 0 <= i < len(text) else "")


def _x_repeat_str(it: Interpreter, st: RepeatStr) -> None:
    count = to_number(it.eval(st.count))
    n = max(0, math.floor(count)) if math.isfinite(count) else 0
    it.env.set(st.out, to_text(it.eval(st.text)) * n)


def _x_pad(it: Interpreter, st: PadStmt) -> None:
    src = it.eval(st.src)
    fill = it.eval(st.fill)
    it.env.set(
        st.out,
        _pad(
            "" if src is None else to_text(src),
            to_int(it.eval(st.length)),
            " " if fill is None else to_text(fill),
            st.direction == "left",
        ),
    )


def _x_clamp(it: Interpreter, st: ClampStmt) -> None:
    value = to_number(it.env.get(st.src, 0))
    lo = to_number(it.eval(st.low))
    hi = to_number(it.eval(st.high))
    it.env.set(st.out, normalize(_js_min(_js_max(value, lo), hi)))


def _x_keys_values(it: Interpreter, st: KeysValues) -> None:
    obj = it.env.get(st.obj)
    result: list[object] = []
    if isinstance(obj, dict):
        result = list(obj.keys()) if st.which == "keys" else list(obj.values())
    it.env.set(st.out, result)


def _x_type_of(it: Interpreter, st: TypeOfStmt) -> None:
    it.env.set(st.out, type_name(it.env.get(st.src)))


def _x_index_of(it: Interpreter, st: IndexOfStmt) -> None:
    src = it.env.get(st.src) if it.env.has(st.src) else st.src
    it.env.set(st.out, _index_of(src, it.eval(st.needle)))


def _x_transform(it: Interpreter, st: TransformStmt) -> None:
    out: list[object] = []
    arr = it.env.get(st.arr)
    if isinstance(arr, list):
        for item in list(arr):
            it.env.set(st.item_var, item)
            out.append(it.eval(st.expr))
    it.env.set(st.out, out)


def _x_reduce(it: Interpreter, st: ReduceStmt) -> Flow | None:
    it.env.set(st.acc_var, it.eval(st.initial))
    arr = it.env.get(st.arr)
    if isinstance(arr, list):
        for item in list(arr):
            it.env.set(st.item_var, item)
            stop = it.run_loop_body(st.body)
            if stop is not None and stop.kind == "return":
                return stop
            if stop is not None:
                break
    it.env.set(st.out, it.env.get(st.acc_var))
    return None


def _x_every_any(it: Interpreter, st: EveryAny) -> None:
    items = list(_as_list(it.env.get(st.arr)))
    results = []
    for item in items:
        it.env.set(st.item_var, item)
        results.append(it.compare_with(item, st.comparison))
    it.env.set(st.out, all(results) if st.which == "every" else any(results))


def _x_copy(it: Interpreter, st: CopyStmt) -> None:
    src = it.env.get(st.src)
    if isinstance(src, list):
        value: object = list(src)
    elif isinstance(src, dict):
        value = dict(src)
    elif src is None:
        value = {}
    else:
        value = src
    it.env.set(st.out, value)


def _x_assign(it: Interpreter, st: AssignStmt) -> None:
    result: dict[str, object] = {}
    for name in st.sources:
        src = it.env.get(name)
        if isinstance(src, dict):
            result.update(src)
    it.env.set(st.out, result)


def _x_path(it: Interpreter, st: PathOp) -> None:
    parts = [to_text(it.eval(p)) for p in st.parts]
    first = parts[0] if parts else ""
    if st.op == "join":
        value = posixpath.normpath(posixpath.join(*parts)) if parts else "."
    elif st.op == "basename":
        value = posixpath.basename(first.rstrip("/"))
        if len(parts) > 1 and value.endswith(parts[1]) and value != parts[1]:
            value = value[: -len(parts[1])]
    elif st.op == "dirname":
        value = posixpath.dirname(first.rstrip("/")) or "."
    else:
        value = posixpath.splitext(first)[1]
    it.env.set(st.out, value)


# ---- Process -----------------------------------------------------------------


def _x_exit(it: Interpreter, st: ExitStmt) -> None:
    code = to_int(it.eval(st.code))
    proc = it.host("process", "exit")
    if proc is not None:
        logger.debug("exit %d", code)
        proc.exit(code)


def _run_command(it: Interpreter, command: object, out: str | None, keep_error: bool) -> None:
    proc = it.host("process", "run command")
    if proc is None:
        it.set_out(out, None)
        return
    cmd = to_text(command)
    result = proc.execute(cmd)
    if isinstance(result, dict) and "error" in result:
        fallback = result if keep_error else result["error"]
        it.host_failure(HostError(to_text(result["error"])), out, fallback)
        return
    it.set_out(out, result)


def _x_run_command(it: Interpreter, st: RunCommand) -> None:
    _run_command(it, it.eval(st.cmd), st.out, False)


def _x_exec_command(it: Interpreter, st: ExecCommand) -> None:
    _run_command(it, it.eval(st.command), st.variable, True)


def _x_list_files(it: Interpreter, st: ListFiles) -> None:
    proc = it.host("process", "list files")
    if proc is None:
        it.env.set(st.out, [])
        return
    try:
        it.env.set(st.out, proc.list_files(to_text(it.eval(st.path))))
    except HostError as e:
        it.env.set(st.out, [])
        it.warn(e.msg)


def _x_file_exists(it: Interpreter, st: FileExists) -> None:
    proc = it.host("process", "check file")
    it.env.set(st.out, bool(proc.file_exists(to_text(it.eval(st.path)))) if proc is not None else False)


def _x_create_folder(it: Interpreter, st: CreateFolder) -> None:
    proc = it.host("process", "create folder")
    if proc is None:
        return
    try:
        proc.create_folder(to_text(it.eval(st.path)))
    except HostError as e:
        it.warn(e.msg)


# ---- Server ------------------------------------------------------------------


def _x_serve(it: Interpreter, st: ServeStmt) -> None:
    port = to_int(it.eval(st.port))
    net = it.host("network", "listen on port " + str(port))
    if net is None:
        return
    try:
        net.listen(port, it.handle_request)
    except OSError as e:
        raise HostError("cannot listen on port " + str(port) + ": " + str(e)) from e


def _x_route(it: Interpreter, st: RouteStmt) -> None:
    method = to_text(it.eval(st.method)).upper()
    path = to_text(it.eval(st.path))
    it.routes.append(Route(method, path, st.req_var, st.body))
    logger.debug("route %s %s", method, path)


def _x_respond(it: Interpreter, st: RespondStmt) -> None:
    if not it._in_request:
        it.warn("respond outside of a request")
        return
    if it._response is not None:
        return
    status = to_int(it.eval(st.status), 200)
    content_type = to_text(it.eval(st.content_type)) if st.content_type is not None else None
    it._response = build_response(status, it.eval(st.body), content_type)


def _x_serve_file(it: Interpreter, st: ServeFile) -> None:
    if not it._in_request:
        it.warn("serve file outside of a request")
        return
    if it._response is not None:
        return
    proc = it.host("process", "serve file")
    if proc is None:
        return
    path = to_text(it.eval(st.path))
    try:
        it._response = HttpResponse(200, mime_type(path), proc.read_bytes(path))
    except HostError:
        it._response = HttpResponse(404, "text/plain", b"File not found")


# ---- Classes and modules -----------------------------------------------------


def _x_define_class(it: Interpreter, st: DefineClass) -> None:
    it.define_class(st)


def _x_new_instance(it: Interpreter, st: NewInstance) -> None:
    inst = it.instantiate(st.class_name, [it.eval(a) for a in st.args])
    it.set_out(st.variable, inst)


def _x_call_method(it: Interpreter, st: CallMethod) -> None:
    obj = it.env.get(st.obj)
    method = obj.get(st.method) if isinstance(obj, dict) else None
    if not isinstance(method, BoundMethod):
        it.warn("no method '" + st.method + "' on '" + st.obj + "'")
        it.set_out(st.out, None)
        return
    it.set_out(st.out, method([it.eval(a) for a in st.args]))


def _x_import(it: Interpreter, st: ImportStmt) -> None:
    loaded = it.import_module(st.file, isolated=st.alias is not None)
    if loaded is None or st.alias is None:
        return
    module_vars, module_fns = loaded
    it.modules[st.alias] = module_fns
    it.env.set(st.alias, dict(module_vars))


def _x_import_from(it: Interpreter, st: ImportFrom) -> None:
    loaded = it.import_module(st.file, isolated=True)
    if loaded is None:
        return
    module_vars, module_fns = loaded
    for name in st.names:
        if name in module_vars:
            it.env.set(name, module_vars[name])
        elif name not in module_fns:
            it.warn("module " + st.file + " has no name '" + name + "'")


def _x_export(it: Interpreter, st: ExportStmt) -> None:
    if it._exports is not None:
        it._exports.add(st.name)


def _x_throw(it: Interpreter, st: ThrowStmt) -> None:
    raise ScriptError(display(it.eval(st.message)), st.pos)


# ---- Regex -------------------------------------------------------------------


def _x_regex(it: Interpreter, st: RegexStmt) -> None:
    try:
        _compile(st.pattern, st.flags)
    except HostError as e:
        it.host_failure(e, st.variable, None)
        return
    it.set_out(st.variable, {"pattern": st.pattern, "flags": st.flags})


def _x_regex_test(it: Interpreter, st: RegexTest) -> None:
    try:
        rx, _ = _compile(it.eval(st.pattern), st.flags)
    except HostError as e:
        it.host_failure(e, st.variable, False)
        return
    it.set_out(st.variable, rx.search(to_text(it.eval(st.text))) is not None)


def _x_regex_extract(it: Interpreter, st: RegexExtract) -> None:
    try:
        rx, global_ = _compile(it.eval(st.pattern), st.flags)
    except HostError as e:
        it.host_failure(e, st.variable, [])
        return
    text = to_text(it.eval(st.text))
    if global_:
        result: list[object] = [m.group(0) for m in rx.finditer(text)]
    else:
        m = rx.search(text)
        result = [m.group(0), *m.groups()] if m is not None else []
    it.set_out(st.variable, result)


# ---- Sockets, database, await ------------------------------------------------


def _x_connect(it: Interpreter, st: ConnectSocket) -> None:
    sockets = it.host("socket", "connect")
    if sockets is None:
        it.set_out(st.variable, None)
        return
    it.set_out(st.variable, sockets.connect(to_text(it.eval(st.url))))


def _x_broadcast(it: Interpreter, st: Broadcast) -> None:
    sockets = it.host("socket", "broadcast")
    if sockets is None:
        return
    message = it.eval(st.message)
    text = message if isinstance(message, str) else to_json(message)
    sockets.broadcast(text, st.target, st.room)


def _x_db_query(it: Interpreter, st: DbQuery) -> None:
    db = it.host("database", "query")
    if db is None:
        it.set_out(st.variable, None)
        return
    params = _as_list(it.eval(st.params)) if st.params is not None else []
    try:
        result = db.query(to_text(it.eval(st.sql)), list(params))
    except HostError as e:
        it.host_failure(e, st.variable, {"error": e.msg})
        return
    it.set_out(st.variable, result)


def _x_db_insert(it: Interpreter, st: DbInsert) -> None:
    db = it.host("database", "insert")
    if db is None:
        return
    if st.table is None:
        it.warn("insert needs a table")
        return
    data = it.eval(st.data) if st.data is not None else None
    if not isinstance(data, dict):
        it.warn("insert into " + st.table + " needs an object")
        return
    db.insert(st.table, data)


def _x_db_select(it: Interpreter, st: DbSelect) -> None:
    db = it.host("database", "select")
    if db is None:
        it.set_out(st.variable, [])
        return
    where = to_text(it.eval(st.where)) if st.where is not None else None
    limit = to_int(it.eval(st.limit)) if st.limit is not None else None
    offset = to_int(it.eval(st.offset)) if st.offset is not None else None
    try:
        rows = db.select(st.table, st.columns, where, limit, offset)
    except HostError as e:
        it.host_failure(e, st.variable, [])
        return
    it.set_out(st.variable, rows)


def _x_await(it: Interpreter, st: AwaitStmt) -> Flow | None:
    if st.inner is not None:
        return it.exec_stmt(st.inner)
    if st.value is not None:
        it.set_out(st.variable, it.eval(st.value))
    return None


_STMT_EXEC: dict[type, Callable[[Interpreter, Stmt], Flow | None]] = {
    LetStmt: _x_let,
    SetStmt: _x_let,
    ModifyStmt: _x_modify,
    SetKey: _x_set_key,
    SetIndex: _x_set_index,
    SetVolume: _x_set_volume,
    SetFormula: _x_set_formula,
    SetAutotile: _x_set_autotile,
    SetZone: _x_set_zone,
    MoveStmt: _x_move,
    TeleportStmt: _x_teleport,
    SpawnStmt: _x_spawn,
    EntityStmt: _x_entity,
    PlayStmt: _x_play,
    StopStmt: _x_stop,
    ApplyForce: _x_apply_force,
    ApplyStatus: _x_apply_status,
    DefineSprite: _x_define_sprite,
    DefineAnimation: _x_define_animation,
    ScreenShake: _x_shake,
    ScreenFlash: _x_flash,
    ScreenTint: _x_tint,
    LoadTileset: _x_load_tileset,
    PrintStmt: _x_print,
    LogStmt: _x_log,
    WaitStmt: _x_wait,
    SayStmt: _x_say,
    ChoiceStmt: _x_choice,
    EmitStmt: _x_emit,
    HostCall: _x_host_call,
    CallEvent: _x_call_event,
    DefineEvent: _x_define_event,
    GameState: _x_game_state,
    LoadScene: _x_load_scene,
    BattleEnemy: _x_battle_enemy,
    BattleStmt: _x_battle,
    AttackStmt: _x_attack,
    EndBattle: _x_end_battle,
    OpenMenu: _x_open_menu,
    OpenShop: _x_open_shop,
    OpenFormulaEditor: _x_open_formula_editor,
    GameOver: _x_game_over,
    TurnSwitch: _x_turn_switch,
    ToggleInventory: _x_toggle_inventory,
    ToggleStmt: _x_toggle,
    AddItem: _x_add_item,
    RemoveItem: _x_remove_item,
    GiveExp: _x_give_exp,
    GiveGold: _x_give_gold,
    PartyStmt: _x_party,
    ArrayTake: _x_array_take,
    SaveData: _x_save_data,
    LoadData: _x_load_data,
    DeleteData: _x_delete_data,
    SaveRecord: _x_save_record,
    LoadRecord: _x_load_record,
    DeleteRecord: _x_delete_record,
    SaveGame: _x_save_game,
    LoadGame: _x_load_game,
    DeleteFile: _x_delete_file,
    DeleteKey: _x_delete_key,
    HealStmt: _x_heal,
    RecoverStmt: _x_recover,
    ChangeMap: _x_change_map,
    ChangeClass: _x_change_class,
    ChangeLevel: _x_change_level,
    ChangeExp: _x_change_exp,
    ChangeGold: _x_change_gold,
    ChangeStat: _x_change_stat,
    ChangeEncounterRate: _x_change_encounter_rate,
    SkillStmt: _x_skill,
    EquipItem: _x_equip,
    DefineData: _x_define_data,
    DefineZone: _x_define_zone,
    DefineStatus: _x_define_status,
    FetchUrl: _x_fetch,
    ParseJson: _x_parse_json,
    Stringify: _x_stringify,
    ReadFile: _x_read_file,
    WriteFile: _x_write_file,
    SplitStr: _x_split,
    ReplaceStr: _x_replace,
    Convert: _x_convert,
    IfStmt: _x_if,
    RepeatStmt: _x_repeat,
    WhileStmt: _x_while,
    ForEach: _x_for_each,
    BreakStmt: _x_break,
    SkipStmt: _x_skip,
    ReturnStmt: _x_return,
    TryStmt: _x_try,
    MatchStmt: _x_match,
    DefineFunction: _x_define_function,
    CallFunction: _x_call_function,
    AppendStmt: _x_append,
    SortStmt: _x_sort,
    ReverseStmt: _x_reverse,
    FilterStmt: _x_filter,
    MergeStmt: _x_merge,
    FlattenStmt: _x_flatten,
    FindStmt: _x_find,
    GetKeyStmt: _x_get_key,
    GetIndex: _x_get_index,
    GetEnv: _x_get_env,
    GetClock: _x_get_clock,
    SliceStmt: _x_slice,
    CharAt: _x_char_at,
    RepeatStr: _x_repeat_str,
    PadStmt: _x_pad,
    ClampStmt: _x_clamp,
    KeysValues: _x_keys_values,
    TypeOfStmt: _x_type_of,
    IndexOfStmt: _x_index_of,
    TransformStmt: _x_transform,
    ReduceStmt: _x_reduce,
    EveryAny: _x_every_any,
    CopyStmt: _x_copy,
    AssignStmt: _x_assign,
    PathOp: _x_path,
    ExitStmt: _x_exit,
    RunCommand: _x_run_command,
    ExecCommand: _x_exec_command,
    ListFiles: _x_list_files,
    FileExists: _x_file_exists,
    CreateFolder: _x_create_folder,
    ServeStmt: _x_serve,
    RouteStmt: _x_route,
    RespondStmt: _x_respond,
    ServeFile: _x_serve_file,
    DefineClass: _x_define_class,
    NewInstance: _x_new_instance,
    CallMethod: _x_call_method,
    ImportStmt: _x_import,
    ImportFrom: _x_import_from,
    ExportStmt: _x_export,
    ThrowStmt: _x_throw,
    RegexStmt: _x_regex,
    RegexTest: _x_regex_test,
    RegexExtract: _x_regex_extract,
    ConnectSocket: _x_connect,
    Broadcast: _x_broadcast,
    DbQuery: _x_db_query,
    DbInsert: _x_db_insert,
    DbSelect: _x_db_select,
    AwaitStmt: _x_await,
}


# ============================================================
# Facade
# ============================================================


class HyperianLang:
    """Parse-and-run wrapper around one Interpreter, with scene swapping."""

    def __init__(
        self,
        world: EntityHost | None = None,
        *,
        persistence: PersistenceHost | None = None,
        process: ProcessHost | None = None,
        network: NetworkHost | None = None,
        database: DatabaseHost | None = None,
        sockets: SocketHost | None = None,
        options: Options | None = None,
    ):
        self.interp = Interpreter(
            world,
            persistence=persistence,
            process=process,
            network=network,
            database=database,
            sockets=sockets,
            options=options,
        )
        self.parse_diagnostics: list[Diagnostic] = []

    def _parse(self, source: str) -> Program:
        program, diags = parse_source(source)
        self.parse_diagnostics.extend(diags)
        return program

    def load(self, source: str) -> list[HyperianError]:
        """Register the script's rules and run its top-level statements."""
        self.interp.load(self._parse(source))
        return self.interp.run()

    def trigger(self, key: str) -> list[HyperianError]:
        return self.interp.trigger(key)

    def tick(self) -> list[HyperianError]:
        return self.interp.tick()

    def load_scene(self, source: str) -> list[HyperianError]:
        """Swap in a scene: its rules replace the previous scene's rules."""
        program = self._parse(source)
        self.unload_scene()
        for rule in program.rules:
            self.interp.add_rule(dataclasses.replace(rule, tag="scene"))
        err = self.interp.run_body(program.init)
        return [err] if err is not None else []

    def unload_scene(self) -> int:
        return self.interp.remove_rules("scene")

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return self.parse_diagnostics + self.interp.diagnostics

    @property
    def vars(self) -> dict[str, object]:
        return self.interp.env.vars


# ============================================================
# Run helper
# ============================================================


@dataclass
class RunResult:
    vars: dict[str, object]
    output: list[str]
    events: list[list[object]]
    errors: list[str]
    diagnostics: list[str]
    exit_code: int


def run(
    source: str,
    *,
    event: str | None = "starts:game",
    world: EntityHost | None = None,
    options: Options | None = None,
    process: ProcessHost | None = None,
    network: NetworkHost | None = None,
    database: DatabaseHost | None = None,
    sockets: SocketHost | None = None,
) -> RunResult:
    """Parse a script, run its top level, then trigger ``event``."""
    opts = options if options is not None else Options()
    if world is None:
        world = World(tile_size=opts.tile_size, echo=False, sleep=False)
    if process is None:
        process = LocalProcess(opts)
    lang = HyperianLang(
        world,
        process=process,
        network=network,
        database=database,
        sockets=sockets,
        options=opts,
    )
    failures: list[HyperianError] = []
    exit_code = 0
    try:
        failures.extend(lang.load(source))
        if event:
            failures.extend(lang.trigger(event))
    except ExitProgram as e:
        exit_code = e.code
    else:
        if failures:
            exit_code = 1
    output = list(world.lines) if isinstance(world, World) else []
    events = [list(e) for e in world.events] if isinstance(world, World) else []
    return RunResult(
        vars=cast(dict[str, object], plain(dict(lang.vars))),
        output=output,
        events=events,
        errors=[e.msg for e in failures],
        diagnostics=[str(d) for d in lang.diagnostics],
        exit_code=exit_code,
    )
