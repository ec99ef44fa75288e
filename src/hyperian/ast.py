"""HyperianLang AST: parse-time node definitions.

The parser's output is the interpreter's input; there is no separate IR.
Statement fields that name a variable hold the already-coalesced bag key
(``"player_score"``), never an expression.
"""

from __future__ import annotations

from dataclasses import dataclass, field


# ============================================================
# POSITION
# ============================================================


@dataclass
class Pos:
    """Source position, 1-indexed."""

    line: int
    col: int


@dataclass
class Node:
    """Base for all positioned nodes."""

    pos: Pos


# ============================================================
# EXPRESSIONS
# ============================================================


@dataclass
class Expr(Node):
    """Base for value expressions."""


@dataclass
class NumberLit(Expr):
    value: int | float


@dataclass
class StringLit(Expr):
    """String literal; ``{name}`` and ``{entity.prop}`` interpolate at runtime."""

    value: str


@dataclass
class BoolLit(Expr):
    value: bool


@dataclass
class NullLit(Expr):
    pass


@dataclass
class ArrayLit(Expr):
    elements: list[Expr]


@dataclass
class ObjectPair:
    key: str
    value: Expr


@dataclass
class ObjectLit(Expr):
    pairs: list[ObjectPair]


@dataclass
class Ident(Expr):
    """Reference to a bag variable; unresolved names evaluate to themselves."""

    name: str


@dataclass
class BinaryOp(Expr):
    """Left-to-right arithmetic: + - * / %."""

    op: str
    left: Expr
    right: Expr


@dataclass
class FuncExpr(Expr):
    """Built-in function expression: round, join, slice, typeOf, ..."""

    fn: str
    args: list[Expr]


@dataclass
class GetKey(Expr):
    """``get X from Y`` used as a value."""

    obj: str
    key: Expr


@dataclass
class CallExpr(Expr):
    """User function call used as a value."""

    name: str
    args: list[Expr]


@dataclass
class MathConst(Expr):
    name: str


# ============================================================
# CONDITIONS
# ============================================================


@dataclass
class Comparison:
    """Comparison operator with its operand(s)."""

    op: str
    value: Expr | None = None
    low: Expr | None = None
    high: Expr | None = None


@dataclass
class Cond(Node):
    """Base for boolean conditions."""


@dataclass
class Logical(Cond):
    op: str
    left: Cond
    right: Cond


@dataclass
class Not(Cond):
    cond: Cond


@dataclass
class BoolCond(Cond):
    value: bool


@dataclass
class ValueCompare(Cond):
    left: Expr
    comparison: Comparison


@dataclass
class PropCondition(Cond):
    """Entity property test: ``player health is less than 10``."""

    subject: str
    prop: str
    comparison: Comparison


@dataclass
class VarCondition(Cond):
    name: str
    comparison: Comparison


@dataclass
class SwitchCond(Cond):
    switch: Expr
    on: bool


@dataclass
class ChoiceIs(Cond):
    value: Expr


@dataclass
class HasItem(Cond):
    item: str


@dataclass
class HasStatus(Cond):
    entity: str
    effect: str


@dataclass
class Contains(Cond):
    subject: str
    value: Expr


@dataclass
class StartsWith(Cond):
    subject: str
    value: Expr


@dataclass
class EndsWith(Cond):
    subject: str
    value: Expr


@dataclass
class HasKey(Cond):
    subject: str
    key: Expr


@dataclass
class TypeCheck(Cond):
    subject: str
    type_name: str


# ============================================================
# EVENT PATTERNS
# ============================================================


@dataclass
class Event(Node):
    """Base for rule event patterns."""


@dataclass
class Starts(Event):
    subject: str = "game"


@dataclass
class Touches(Event):
    subject: str
    object: str


@dataclass
class Presses(Event):
    subject: str
    key: str


@dataclass
class Clicks(Event):
    subject: str


@dataclass
class Enters(Event):
    subject: str
    zone: str


@dataclass
class Leaves(Event):
    subject: str
    zone: str


@dataclass
class Becomes(Event):
    subject: str
    value: Expr


@dataclass
class CombatStart(Event):
    attacker: str
    defender: str


@dataclass
class CombatHit(Event):
    attacker: str
    defender: str


@dataclass
class CombatDefeat(Event):
    entity: str


@dataclass
class Uses(Event):
    subject: str
    item: str


@dataclass
class ConditionEvent(Event):
    """Live predicate, polled on every tick instead of dispatched by key."""

    subject: str
    prop: str
    comparison: Comparison


@dataclass
class CustomEvent(Event):
    name: str


# ============================================================
# STATEMENTS
# ============================================================


@dataclass
class Stmt(Node):
    """Base for statements."""


# ---- Variables ----


@dataclass
class LetStmt(Stmt):
    name: str
    value: Expr


@dataclass
class SetStmt(Stmt):
    name: str
    value: Expr


@dataclass
class ModifyStmt(Stmt):
    """increase / decrease NAME by VALUE."""

    op: str
    name: str
    value: Expr


@dataclass
class SetKey(Stmt):
    obj: str
    key: Expr
    value: Expr


@dataclass
class SetIndex(Stmt):
    arr: str
    index: Expr
    value: Expr


@dataclass
class SetVolume(Stmt):
    value: Expr


@dataclass
class SetFormula(Stmt):
    key: str
    expr: Expr


@dataclass
class SetAutotile(Stmt):
    tile: Expr
    tile_name: Expr


@dataclass
class SetZone(Stmt):
    zone: Expr


# ---- Entities, media, screen ----


@dataclass
class MoveStmt(Stmt):
    entity: str
    x: Expr
    y: Expr
    relative: bool


@dataclass
class TeleportStmt(Stmt):
    entity: str
    x: Expr
    y: Expr


@dataclass
class SpawnStmt(Stmt):
    entity: str
    x: Expr
    y: Expr
    use_tile: bool


@dataclass
class EntityStmt(Stmt):
    """destroy / show / hide / freeze / unfreeze ENTITY."""

    action: str
    entity: str


@dataclass
class PlayStmt(Stmt):
    kind: str
    name: Expr
    entity: str | None = None
    loop: bool = False


@dataclass
class StopStmt(Stmt):
    kind: str
    name: Expr | None = None
    entity: str | None = None


@dataclass
class ApplyForce(Stmt):
    kind: str
    entity: str
    x: Expr
    y: Expr


@dataclass
class ApplyStatus(Stmt):
    effect: str
    target: str
    duration: Expr


@dataclass
class DefineSprite(Stmt):
    entity: str
    src: Expr
    frame_w: Expr
    frame_h: Expr


@dataclass
class DefineAnimation(Stmt):
    entity: str
    name: Expr
    frames: list[int | float]
    fps: Expr
    loop: Expr


@dataclass
class ScreenShake(Stmt):
    intensity: Expr
    duration: Expr


@dataclass
class ScreenFlash(Stmt):
    color: Expr
    duration: Expr


@dataclass
class ScreenTint(Stmt):
    color: Expr
    alpha: Expr


@dataclass
class LoadTileset(Stmt):
    src: str


# ---- Output and events ----


@dataclass
class PrintStmt(Stmt):
    message: Expr


@dataclass
class LogStmt(Stmt):
    values: list[Expr]


@dataclass
class WaitStmt(Stmt):
    duration: Expr


@dataclass
class SayStmt(Stmt):
    text: Expr
    speaker: str = ""
    portrait: str = ""


@dataclass
class ChoiceOption:
    label: str
    body: list[Stmt]


@dataclass
class ChoiceStmt(Stmt):
    prompt: str
    options: list[ChoiceOption]


@dataclass
class EmitStmt(Stmt):
    event: str
    entity: str | None = None


@dataclass
class HostCall(Stmt):
    """``call NAME with ...``: a function supplied by the host."""

    fn: str
    args: list[Expr]


@dataclass
class CallEvent(Stmt):
    event_id: str


@dataclass
class DefineEvent(Stmt):
    event_id: str
    body: list[Stmt]


# ---- Game flow ----


@dataclass
class GameState(Stmt):
    """win / lose / restart / end game."""

    action: str


@dataclass
class LoadScene(Stmt):
    scene_id: str


@dataclass
class BattleEnemy(Stmt):
    enemies: list[Expr]
    music: Expr | None = None


@dataclass
class BattleStmt(Stmt):
    attacker: str
    defender: str


@dataclass
class AttackStmt(Stmt):
    attacker: str
    defender: str


@dataclass
class EndBattle(Stmt):
    pass


@dataclass
class OpenMenu(Stmt):
    tab: str


@dataclass
class OpenShop(Stmt):
    name: Expr


@dataclass
class OpenFormulaEditor(Stmt):
    pass


@dataclass
class GameOver(Stmt):
    pass


@dataclass
class TurnSwitch(Stmt):
    on: bool
    switch: Expr


@dataclass
class ToggleInventory(Stmt):
    pass


@dataclass
class ToggleStmt(Stmt):
    target: str


# ---- Inventory, party, persistence ----


@dataclass
class AddItem(Stmt):
    item: str
    quantity: Expr


@dataclass
class RemoveItem(Stmt):
    item: str
    quantity: Expr


@dataclass
class GiveExp(Stmt):
    amount: Expr


@dataclass
class GiveGold(Stmt):
    amount: Expr


@dataclass
class PartyStmt(Stmt):
    """add / remove MEMBER to / from party."""

    action: str
    member: str


@dataclass
class ArrayTake(Stmt):
    """remove first / last from ARRAY."""

    end: str
    name: str


@dataclass
class SaveData(Stmt):
    key: str
    value: Expr


@dataclass
class LoadData(Stmt):
    key: str
    variable: str | None = None


@dataclass
class DeleteData(Stmt):
    key: str


@dataclass
class SaveRecord(Stmt):
    record_id: str
    table: str
    data: Expr | None = None


@dataclass
class LoadRecord(Stmt):
    record_id: str
    table: str
    variable: str | None = None


@dataclass
class DeleteRecord(Stmt):
    record_id: str
    table: str


@dataclass
class SaveGame(Stmt):
    slot: str = "slot1"


@dataclass
class LoadGame(Stmt):
    slot: str = "slot1"


@dataclass
class DeleteFile(Stmt):
    path: Expr


@dataclass
class DeleteKey(Stmt):
    obj: str
    key: Expr


# ---- RPG ----


@dataclass
class HealStmt(Stmt):
    target: str
    amount: Expr | None = None


@dataclass
class RecoverStmt(Stmt):
    target: str = "all"


@dataclass
class ChangeMap(Stmt):
    map_id: str
    x: Expr | None = None
    y: Expr | None = None


@dataclass
class ChangeClass(Stmt):
    entity: str
    class_id: str


@dataclass
class ChangeLevel(Stmt):
    entity: str
    amount: Expr
    relative: bool


@dataclass
class ChangeExp(Stmt):
    entity: str
    amount: Expr
    relative: bool


@dataclass
class ChangeGold(Stmt):
    amount: Expr
    relative: bool


@dataclass
class ChangeStat(Stmt):
    stat: str
    entity: str
    amount: Expr
    relative: bool


@dataclass
class ChangeEncounterRate(Stmt):
    value: Expr


@dataclass
class SkillStmt(Stmt):
    """learn / forget SKILL for TARGET."""

    action: str
    skill: str
    target: str = "player"


@dataclass
class EquipItem(Stmt):
    item: Expr
    slot: str | None = None


@dataclass
class DefineData(Stmt):
    """define enemy|item|skill|actor|map ID <props> end."""

    kind: str
    data_id: str
    props: dict[str, object]


@dataclass
class ZoneEntry:
    enemy: str
    weight: float


@dataclass
class DefineZone(Stmt):
    zone_id: str
    entries: list[ZoneEntry]


@dataclass
class TurnOp:
    op: str
    amount: object = None
    text: object = None


@dataclass
class DefineStatus(Stmt):
    status_id: str
    props: dict[str, object]
    turn_ops: list[TurnOp]


# ---- Data formats, strings, files ----


@dataclass
class FetchUrl(Stmt):
    url: Expr
    method: str = "GET"
    body: Expr | None = None
    variable: str | None = None


@dataclass
class ParseJson(Stmt):
    text: Expr
    variable: str | None = None


@dataclass
class Stringify(Stmt):
    value: Expr
    variable: str | None = None


@dataclass
class ReadFile(Stmt):
    path: Expr
    variable: str | None = None


@dataclass
class WriteFile(Stmt):
    path: Expr
    contents: Expr
    append: bool = False


@dataclass
class SplitStr(Stmt):
    text: Expr
    sep: Expr
    variable: str | None = None


@dataclass
class ReplaceStr(Stmt):
    old: Expr
    new: Expr
    in_var: str | None = None
    variable: str | None = None


@dataclass
class Convert(Stmt):
    value: Expr
    to_type: str
    variable: str | None = None


# ---- Control flow ----


@dataclass
class IfStmt(Stmt):
    cond: Cond
    then_body: list[Stmt]
    else_body: list[Stmt]


@dataclass
class RepeatStmt(Stmt):
    count: Expr
    body: list[Stmt]


@dataclass
class WhileStmt(Stmt):
    cond: Cond
    body: list[Stmt]


@dataclass
class ForEach(Stmt):
    var: str
    iterable: str
    body: list[Stmt]


@dataclass
class BreakStmt(Stmt):
    pass


@dataclass
class SkipStmt(Stmt):
    pass


@dataclass
class ReturnStmt(Stmt):
    value: Expr


@dataclass
class TryStmt(Stmt):
    body: list[Stmt]
    error_var: str
    catch_body: list[Stmt]
    finally_body: list[Stmt] | None = None


@dataclass
class MatchCase:
    """One arm: exactly one of ``value`` / ``comparison`` is set."""

    body: list[Stmt]
    value: Expr | None = None
    comparison: Comparison | None = None


@dataclass
class MatchStmt(Stmt):
    subject: str
    cases: list[MatchCase]
    default: list[Stmt] = field(default_factory=list)


@dataclass
class DefineFunction(Stmt):
    name: str
    params: list[str]
    body: list[Stmt]


@dataclass
class CallFunction(Stmt):
    name: str
    args: list[Expr]
    out: str | None = None


# ---- Collections and objects ----


@dataclass
class AppendStmt(Stmt):
    value: Expr
    name: str


@dataclass
class SortStmt(Stmt):
    name: str
    descending: bool = False


@dataclass
class ReverseStmt(Stmt):
    name: str


@dataclass
class FilterStmt(Stmt):
    arr: str
    item_var: str
    cond: Cond
    out: str


@dataclass
class MergeStmt(Stmt):
    a: str
    b: str
    out: str


@dataclass
class FlattenStmt(Stmt):
    arr: str
    out: str


@dataclass
class FindStmt(Stmt):
    needle: Expr
    arr: str
    out: str


@dataclass
class GetKeyStmt(Stmt):
    obj: str
    key: Expr
    out: str


@dataclass
class GetIndex(Stmt):
    arr: str
    index: Expr
    out: str


@dataclass
class GetEnv(Stmt):
    key: Expr
    out: str


@dataclass
class GetClock(Stmt):
    """get time / date / timestamp into OUT."""

    what: str
    out: str


@dataclass
class SliceStmt(Stmt):
    src: str
    start: Expr
    end: Expr
    out: str


@dataclass
class CharAt(Stmt):
    src: str
    index: Expr
    out: str


@dataclass
class RepeatStr(Stmt):
    text: Expr
    count: Expr
    out: str


@dataclass
class PadStmt(Stmt):
    direction: str
    src: Expr
    length: Expr
    fill: Expr
    out: str


@dataclass
class ClampStmt(Stmt):
    src: str
    low: Expr
    high: Expr
    out: str


@dataclass
class KeysValues(Stmt):
    which: str
    obj: str
    out: str


@dataclass
class TypeOfStmt(Stmt):
    src: str
    out: str


@dataclass
class IndexOfStmt(Stmt):
    needle: Expr
    src: str
    out: str


@dataclass
class TransformStmt(Stmt):
    arr: str
    item_var: str
    expr: Expr
    out: str


@dataclass
class ReduceStmt(Stmt):
    arr: str
    acc_var: str
    item_var: str
    initial: Expr
    body: list[Stmt]
    out: str


@dataclass
class EveryAny(Stmt):
    which: str
    item_var: str
    arr: str
    comparison: Comparison
    out: str


@dataclass
class CopyStmt(Stmt):
    src: str
    out: str


@dataclass
class AssignStmt(Stmt):
    """Shallow-merge objects: ``assign a and b into c``."""

    sources: list[str]
    out: str


@dataclass
class PathOp(Stmt):
    op: str
    parts: list[Expr]
    out: str


# ---- Process ----


@dataclass
class ExitStmt(Stmt):
    code: Expr


@dataclass
class RunCommand(Stmt):
    cmd: Expr
    out: str | None = None


@dataclass
class ExecCommand(Stmt):
    """execute / shell COMMAND into VAR."""

    verb: str
    command: Expr
    variable: str | None = None


@dataclass
class ListFiles(Stmt):
    path: Expr
    out: str


@dataclass
class FileExists(Stmt):
    path: Expr
    out: str


@dataclass
class CreateFolder(Stmt):
    path: Expr


# ---- HTTP server ----


@dataclass
class ServeStmt(Stmt):
    port: Expr


@dataclass
class RouteStmt(Stmt):
    method: Expr
    path: Expr
    req_var: str
    body: list[Stmt]


@dataclass
class RespondStmt(Stmt):
    status: Expr
    body: Expr
    content_type: Expr | None = None


@dataclass
class ServeFile(Stmt):
    path: Expr


# ---- Classes and modules ----


@dataclass
class MethodDef:
    name: str
    params: list[str]
    body: list[Stmt]
    is_constructor: bool = False


@dataclass
class DefineClass(Stmt):
    name: str
    parent: str | None
    properties: list[str]
    methods: list[MethodDef]


@dataclass
class NewInstance(Stmt):
    class_name: str
    args: list[Expr]
    variable: str | None = None


@dataclass
class CallMethod(Stmt):
    method: str
    obj: str
    args: list[Expr]
    out: str | None = None


@dataclass
class ImportStmt(Stmt):
    file: str
    alias: str | None = None


@dataclass
class ImportFrom(Stmt):
    names: list[str]
    file: str


@dataclass
class ExportStmt(Stmt):
    name: str


# ---- Errors, regex ----


@dataclass
class ThrowStmt(Stmt):
    message: Expr


@dataclass
class RegexStmt(Stmt):
    pattern: str
    flags: str = ""
    variable: str | None = None


@dataclass
class RegexTest(Stmt):
    text: Expr
    pattern: Expr
    flags: str = ""
    variable: str | None = None


@dataclass
class RegexExtract(Stmt):
    pattern: Expr
    text: Expr
    flags: str = "g"
    variable: str | None = None


# ---- Sockets, database, async ----


@dataclass
class ConnectSocket(Stmt):
    url: Expr
    variable: str | None = None


@dataclass
class Broadcast(Stmt):
    message: Expr
    target: str = "all"
    room: str | None = None


@dataclass
class DbQuery(Stmt):
    sql: Expr
    params: Expr | None = None
    variable: str | None = None


@dataclass
class DbInsert(Stmt):
    table: str | None
    data: Expr | None


@dataclass
class DbSelect(Stmt):
    columns: list[str] | None
    table: str
    where: Expr | None = None
    limit: Expr | None = None
    offset: Expr | None = None
    variable: str | None = None


@dataclass
class AwaitStmt(Stmt):
    """await fetch / call / value; ``inner`` holds the awaited statement."""

    inner: Stmt | None = None
    value: Expr | None = None
    variable: str | None = None


# ============================================================
# PROGRAM
# ============================================================


@dataclass
class Rule(Node):
    """Event pattern paired with a body; ``tag`` marks provenance (``"scene"``)."""

    event: Event
    body: list[Stmt]
    tag: str | None = None


@dataclass
class Program:
    rules: list[Rule]
    init: list[Stmt]
