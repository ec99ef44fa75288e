"""HyperianLang parser: heuristic recursive descent over sentence-like tokens.

Every statement is introduced by its leading word, looked up in
``_STATEMENT_PARSERS``. Sub-parsers consume their optional connectives
permissively, so the grammar tolerates filler words. A ParseError inside a
rule or statement is recorded as a Diagnostic and parsing resumes one token
later.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

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
    ChoiceOption,
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
    MatchCase,
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
    ObjectPair,
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
    TurnOp,
    TurnSwitch,
    TypeCheck,
    TypeOfStmt,
    Uses,
    ValueCompare,
    VarCondition,
    Becomes,
    WaitStmt,
    WhileStmt,
    WriteFile,
    ZoneEntry,
)
from .tokens import (
    TK_ACTION,
    TK_ASSIGN,
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
    WORD_TYPES,
    Token,
    tokenize,
)
from .values import normalize, to_number

logger = logging.getLogger("hyperian.parse")

# Leading determiners dropped from multi-word names
NAME_ARTICLES: set[str] = {
    "the", "a", "an", "this", "that", "these", "those", "my", "your", "our", "their",
}  # fmt: skip

# Actions that begin a statement; a name never runs into one
STMT_ACTIONS: set[str] = {
    "let", "set", "increase", "decrease", "move", "play", "stop", "spawn",
    "destroy", "show", "hide", "print", "wait", "call", "emit", "teleport",
    "freeze", "unfreeze", "apply", "define", "say", "choice", "battle",
    "attack", "add", "remove", "toggle", "load", "win", "lose", "restart",
    "save", "give", "take", "turn", "open", "shake", "flash", "tint", "equip",
    "heal", "grant", "recover", "change", "learn", "forget", "delete", "deal",
    "restore", "drain", "append", "fetch", "post", "parse", "stringify",
    "read", "write", "split", "replace", "convert", "sort", "reverse", "filter",
    "merge", "flatten", "get", "find", "clamp", "log", "exit", "run", "create",
    "transform", "reduce", "copy", "assign", "match", "return",
    "any", "throw", "raise", "regex", "extract", "execute", "shell", "send",
    "respond", "serve", "connect", "broadcast", "query", "insert", "select",
}  # fmt: skip

STMT_KEYWORDS: set[str] = {
    "if", "while", "repeat", "for", "return", "end", "else", "when", "then",
    "do", "function", "every", "break", "skip", "try", "class", "import",
    "export", "await",
}  # fmt: skip

# Words that end an identifier reference in value position
PRIM_STOP: set[str] = {
    "then", "end", "else", "do", "into", "and", "or", "is", "has", "be",
    "to", "by", "at", "from", "with", "on", "of", "in", "as", "times",
    "seconds", "while", "for", "if", "repeat",
}  # fmt: skip

SKIP_ARTICLES: set[str] = {"the", "a", "an", "this", "that"}

FUNC_OPS: set[str] = {
    "round", "floor", "ceil", "abs", "sqrt", "power", "min", "max", "random",
    "sign", "log", "clamp", "uppercase", "lowercase", "trim", "length",
    "count", "join", "split", "array", "object", "index", "slice", "type",
}  # fmt: skip

# Actions that may appear as elements of an ``array`` / ``object`` expression
VALUE_ACTIONS: set[str] = {
    "round", "floor", "ceil", "abs", "sqrt", "power", "min", "max", "random",
    "sign", "log", "clamp", "uppercase", "lowercase", "trim", "length",
    "count", "join", "split",
}  # fmt: skip

ARRAY_PREP_STOP: set[str] = {
    "into", "to", "by", "at", "from", "with", "on", "of", "in", "as", "then",
    "end", "do", "times", "else", "any", "every", "each",
}  # fmt: skip

OBJECT_PREP_STOP: set[str] = {
    "into", "to", "then", "end", "do", "else", "any", "every", "each",
}  # fmt: skip

COND_STOP: set[str] = {
    "is", "has", "contains", "starts", "ends", "equals", "equal", "and", "or",
}  # fmt: skip

TYPE_WORDS: set[str] = {"a", "an", "number", "text", "array", "object", "boolean", "integer"}

DATA_STOP: set[str] = {"end", "when", "define"}

DATA_KINDS: set[str] = {"enemy", "item", "skill", "actor", "map"}

KNOWN_STATS: dict[str, str] = {
    "atk": "atk", "matk": "matk", "def": "def", "mdef": "mdef", "spd": "spd",
    "luk": "luk", "maxhp": "maxHp", "maxmp": "maxMp", "maxtp": "maxTp",
    "hp": "hp", "mp": "mp",
}  # fmt: skip

OUT_STOP: set[str] = {"then", "end", "else"}


class ParseError(Exception):
    """Parse error with location info."""

    def __init__(self, msg: str, line: int, col: int):
        self.msg: str = msg
        self.line: int = line
        self.col: int = col
        super().__init__(msg + " at line " + str(line) + " col " + str(col))


@dataclass
class Diagnostic:
    """A recoverable problem found while parsing or running a script."""

    severity: str
    message: str
    line: int = 0
    col: int = 0

    def __str__(self) -> str:
        if self.line:
            return self.severity + ": " + self.message + " at line " + str(self.line)
        return self.severity + ": " + self.message


def _describe(tok: Token) -> str:
    if tok.type == TK_EOF:
        return "end of input"
    return "'" + str(tok.value) + "' (" + tok.type + ")"


def _starts_statement(tok: Token) -> bool:
    if tok.type == TK_ACTION:
        return tok.value in STMT_ACTIONS
    if tok.type == TK_KEYWORD:
        return tok.value in STMT_KEYWORDS
    return False


class Parser:
    """Recursive descent parser for HyperianLang."""

    def __init__(self, tokens: list[Token]):
        if len(tokens) == 0 or tokens[-1].type != TK_EOF:
            line = tokens[-1].line if tokens else 1
            col = tokens[-1].col if tokens else 1
            tokens = tokens + [Token(TK_EOF, None, line, col)]
        self.tokens: list[Token] = tokens
        self.pos: int = 0
        self.diagnostics: list[Diagnostic] = []

    # ── Helpers ──────────────────────────────────────────────

    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[len(self.tokens) - 1]
        return self.tokens[idx]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.type != TK_EOF:
            self.pos += 1
        return tok

    def at(self, value: str) -> bool:
        """Match a word or symbol; string literals never match."""
        tok = self.current()
        return tok.type != TK_STRING and tok.value == value

    def at_any(self, values: set[str]) -> bool:
        tok = self.current()
        return tok.type != TK_STRING and isinstance(tok.value, str) and tok.value in values

    def at_type(self, type_: str) -> bool:
        return self.current().type == type_

    def at_eof(self) -> bool:
        return self.current().type == TK_EOF

    def peek_is(self, offset: int, value: str) -> bool:
        tok = self.peek(offset)
        return tok.type != TK_STRING and tok.value == value

    def accept(self, *values: str) -> bool:
        """Consume the current token if it is one of ``values``."""
        tok = self.current()
        if tok.type != TK_STRING and tok.value in values:
            self.advance()
            return True
        return False

    def expect(self, value: str) -> Token:
        if not self.at(value):
            raise self.error("expected '" + value + "', got " + _describe(self.current()))
        return self.advance()

    def expect_ident(self) -> str:
        """A word of any class; string and number literals give their text."""
        tok = self.current()
        if tok.type in WORD_TYPES:
            self.advance()
            return str(tok.value)
        if tok.type == TK_STRING or tok.type == TK_NUMBER:
            self.advance()
            return str(tok.value)
        raise self.error("expected identifier, got " + _describe(tok))

    def expect_ident_or_string(self) -> str:
        tok = self.current()
        if tok.type == TK_STRING or tok.type in WORD_TYPES:
            self.advance()
            return str(tok.value)
        raise self.error("expected identifier or string, got " + _describe(tok))

    def error(self, msg: str) -> ParseError:
        tok = self.current()
        return ParseError(msg, tok.line, tok.col)

    def _pos(self) -> Pos:
        tok = self.current()
        return Pos(tok.line, tok.col)

    def _at_statement_start(self) -> bool:
        return _starts_statement(self.current()) or self._at_line_statement()

    def _at_line_statement(self) -> bool:
        """A dispatch word opening a later line than the token before it."""
        tok = self.current()
        if self.pos == 0 or tok.type not in WORD_TYPES:
            return False
        return tok.line > self.tokens[self.pos - 1].line and str(tok.value) in _STATEMENT_PARSERS

    def _at_server_route(self) -> bool:
        if not self.at("when"):
            return False
        if self.peek_is(1, "receiving") or self.peek_is(1, "server"):
            return True
        return self.peek_is(1, "the") and self.peek_is(2, "server")

    def _at_block_end(self, stop: set[str]) -> bool:
        if not self.at_any(stop):
            return False
        # "end battle" / "end game" on one line is a statement, not a terminator
        if self.at("end") and (self.peek_is(1, "battle") or self.peek_is(1, "game")):
            return self.peek(1).line != self.current().line
        return True

    def _recover(self, e: ParseError) -> None:
        self.diagnostics.append(Diagnostic("error", e.msg, e.line, e.col))
        logger.warning("%s", e)
        self.advance()

    # ── Names ────────────────────────────────────────────────

    def parse_name(self, stop: set[str]) -> str:
        """Coalesce a run of words into one underscore-joined name.

        Words stop at ``stop``. After the first word they also stop at a word
        that begins a statement. A leading article is dropped when a name word
        follows it.
        """
        words: list[str] = []
        while True:
            tok = self.current()
            if tok.type not in WORD_TYPES or tok.value in stop:
                break
            if len(words) > 0:
                if self._at_statement_start():
                    break
            elif tok.value in NAME_ARTICLES and self._name_word_follows(stop):
                self.advance()
                continue
            words.append(str(tok.value))
            self.advance()
        if len(words) == 0:
            raise self.error("expected variable name, got " + _describe(self.current()))
        return "_".join(words)

    def _name_word_follows(self, stop: set[str]) -> bool:
        nxt = self.peek(1)
        if nxt.type not in WORD_TYPES:
            return False
        if nxt.line > self.current().line and str(nxt.value) in _STATEMENT_PARSERS:
            return False
        return nxt.value not in stop and not _starts_statement(nxt)

    def _parse_out(self) -> str:
        return self.parse_name(OUT_STOP)

    # ── Top Level ────────────────────────────────────────────

    def parse_program(self) -> Program:
        rules: list[Rule] = []
        init: list[Stmt] = []
        while not self.at_eof():
            try:
                if self.at("when") and not self._at_server_route():
                    rules.append(self.parse_rule())
                else:
                    stmt = self.parse_statement()
                    if stmt is not None:
                        init.append(stmt)
            except ParseError as e:
                self._recover(e)
        return Program(rules, init)

    def parse_rule(self) -> Rule:
        pos = self._pos()
        self.expect("when")
        event = self.parse_event()
        self.expect("then")
        body = self.parse_body({"end"})
        self.accept("end")
        return Rule(pos, event, body)

    def parse_body(self, stop: set[str]) -> list[Stmt]:
        body: list[Stmt] = []
        while not self.at_eof() and not self._at_block_end(stop):
            try:
                stmt = self.parse_statement()
                if stmt is not None:
                    body.append(stmt)
            except ParseError as e:
                self._recover(e)
        return body

    def parse_statement(self) -> Stmt | None:
        """Dispatch on the leading word. Unknown words are skipped."""
        tok = self.current()
        if tok.type not in WORD_TYPES:
            self.advance()
            return None
        handler = _STATEMENT_PARSERS.get(str(tok.value))
        if handler is None:
            self.advance()
            return None
        start = self.pos
        stmt = handler(self)
        if stmt is None and self.pos == start:
            self.advance()
        return stmt

    # ── Events ───────────────────────────────────────────────

    def parse_event(self) -> Event:
        pos = self._pos()
        if self.at("starts") or self.at("game"):
            self.accept("game")
            self.accept("starts")
            return Starts(pos)
        if self.at("combat"):
            self.advance()
            tok = self.current()
            sub = str(tok.value) if tok.type in WORD_TYPES else ""
            if self.accept("starts"):
                attacker = self.expect_ident()
                return CombatStart(pos, attacker, self.expect_ident())
            if self.accept("hit", "hits"):
                attacker = self.expect_ident()
                return CombatHit(pos, attacker, self.expect_ident())
            if self.accept("defeat", "defeats"):
                return CombatDefeat(pos, self.expect_ident_or_string())
            return CustomEvent(pos, "combat:" + sub)
        self.accept("the")
        subject = self.expect_ident()
        if self.accept("touches"):
            return Touches(pos, subject, self.expect_ident())
        if self.accept("presses"):
            return Presses(pos, subject, self.expect_ident_or_string().lower())
        if self.accept("clicks"):
            return Clicks(pos, subject)
        if self.accept("enters"):
            return Enters(pos, subject, self.expect_ident())
        if self.accept("leaves"):
            return Leaves(pos, subject, self.expect_ident())
        if self.accept("becomes"):
            return Becomes(pos, subject, self.parse_value())
        if self.accept("levels"):
            self.accept("up")
            return CustomEvent(pos, subject + ":levelup")
        if self.accept("uses"):
            return Uses(pos, subject, self.expect_ident_or_string())
        if self.at_any({"dies", "spawns", "wins", "loses"}):
            verb = str(self.advance().value)
            return CustomEvent(pos, subject + ":" + verb)
        if self.at_type(TK_IDENT) or self.at_type(TK_PREP):
            prop = self.expect_ident()
            if self.accept("is", "has"):
                return ConditionEvent(pos, subject, prop, self.parse_comparison())
            return CustomEvent(pos, subject + ":" + prop)
        return CustomEvent(pos, subject)

    # ── Conditions ───────────────────────────────────────────

    def parse_comparison(self) -> Comparison:
        if self.accept("less"):
            self.accept("than")
            return Comparison("less", self.parse_value())
        if self.accept("greater"):
            self.accept("than")
            return Comparison("greater", self.parse_value())
        if self.accept("equal", "equals"):
            self.accept("to")
            return Comparison("equal", self.parse_value())
        if self.accept("above"):
            return Comparison("greater", self.parse_value())
        if self.accept("below"):
            return Comparison("less", self.parse_value())
        if self.accept("between"):
            low = self.parse_value()
            self.expect("and")
            return Comparison("between", low=low, high=self.parse_value())
        if self.accept("empty"):
            return Comparison("empty")
        if self.accept("exists"):
            return Comparison("exists")
        if self.at_type(TK_NULL):
            self.advance()
            return Comparison("nothing")
        if self.accept("not"):
            if self.accept("empty"):
                return Comparison("notEmpty")
            if self.accept("exists"):
                return Comparison("notExists")
            if self.at_type(TK_NULL):
                self.advance()
                return Comparison("notNothing")
            if self.accept("equal", "equals"):
                self.accept("to")
            return Comparison("notEqual", self.parse_value())
        return Comparison("equal", self.parse_value())

    def parse_condition(self) -> Cond:
        pos = self._pos()
        left = self.parse_single_condition()
        while self.at("and") or self.at("or"):
            op = str(self.advance().value)
            left = Logical(pos, op, left, self.parse_single_condition())
        return left

    def parse_single_condition(self) -> Cond:
        pos = self._pos()
        if self.accept("not"):
            return Not(pos, self.parse_single_condition())
        if self.at_type(TK_BOOLEAN):
            return BoolCond(pos, self.advance().value is True)
        if self.at_type(TK_NUMBER) or self.at_type(TK_STRING):
            left = self.parse_value()
            self.accept("is")
            return ValueCompare(pos, left, self.parse_comparison())
        if self.accept("switch"):
            switch = self.parse_value()
            self.accept("is")
            return SwitchCond(pos, switch, self.expect_ident().lower() == "on")
        if self.accept("choice"):
            self.accept("is")
            return ChoiceIs(pos, self.parse_value())
        if self.at("has") and self.peek_is(1, "item"):
            self.advance()
            self.advance()
            return HasItem(pos, self.expect_ident_or_string())
        if (
            (self.at("player") or self.at("enemy"))
            and self.peek_is(1, "has")
            and not self.peek_is(2, "key")
            and not self.peek_is(2, "item")
        ):
            entity = str(self.advance().value)
            self.advance()
            return HasStatus(pos, entity, self.expect_ident_or_string())
        subject = self.parse_name(COND_STOP)
        if self.accept("contains"):
            return Contains(pos, subject, self.parse_value())
        if self.accept("starts"):
            self.accept("with")
            return StartsWith(pos, subject, self.parse_value())
        if self.accept("ends"):
            self.accept("with")
            return EndsWith(pos, subject, self.parse_value())
        if self.at("has") and self.peek_is(1, "key"):
            self.advance()
            self.advance()
            return HasKey(pos, subject, self.parse_value())
        if self.at("has") and self.peek_is(1, "item"):
            self.advance()
            self.advance()
            return HasItem(pos, self.expect_ident_or_string())
        nxt = self.peek(1)
        if self.at("is") and nxt.type != TK_STRING and nxt.value in TYPE_WORDS:
            self.advance()
            self.accept("a", "an")
            return TypeCheck(pos, subject, self.expect_ident().lower())
        # Bare subject: truthiness
        tok = self.current()
        if tok.type == TK_EOF or tok.type == TK_PUNCT or self.at_any({"then", "do", "and", "or", "end"}):
            return VarCondition(pos, subject, Comparison("notEmpty"))
        if (
            tok.type == TK_COMPARISON
            or tok.type == TK_NULL
            or self.at_any({"is", "empty", "exists"})
            or self.at("has")
        ):
            self.accept("is", "has", "equals")
            return VarCondition(pos, subject, self.parse_comparison())
        prop = self.expect_ident()
        self.accept("is", "has")
        return PropCondition(pos, subject, prop, self.parse_comparison())

    # ── Expressions ──────────────────────────────────────────

    def parse_value(self) -> Expr:
        """Primaries joined left to right by arithmetic; no precedence."""
        pos = self._pos()
        left = self.parse_primary()
        while True:
            tok = self.current()
            if tok.type == TK_OPERATOR:
                self.advance()
                left = BinaryOp(pos, str(tok.value), left, self.parse_primary())
            elif self.accept("times"):
                left = BinaryOp(pos, "*", left, self.parse_primary())
            elif self.accept("multiplied"):
                self.accept("by")
                left = BinaryOp(pos, "*", left, self.parse_primary())
            elif self.accept("divided"):
                self.accept("by")
                left = BinaryOp(pos, "/", left, self.parse_primary())
            else:
                break
        return left

    def parse_primary(self) -> Expr:
        pos = self._pos()
        tok = self.current()
        if tok.type == TK_EOF:
            raise self.error("expected value but reached end of input")
        if self.at("["):
            return self._parse_array_lit()
        if self.at("{"):
            return self._parse_object_lit()
        if self.at("math"):
            self.advance()
            return MathConst(pos, self.expect_ident().lower())
        if self.at("call") and self.peek_is(1, "function"):
            self.advance()
            call = self.parse_call_function()
            return CallExpr(pos, call.name, call.args)
        if tok.type in WORD_TYPES and tok.value in FUNC_OPS:
            self.advance()
            return self.parse_func_expr(str(tok.value), pos)
        if self.at("get"):
            self.advance()
            self.accept("the")
            prop = self.expect_ident()
            if self.accept("from", "of"):
                obj = self.expect_ident()
                return GetKey(pos, obj, StringLit(pos, prop))
            return Ident(pos, "get_" + prop)
        if tok.type == TK_NULL:
            self.advance()
            return NullLit(pos)
        if tok.type == TK_NUMBER:
            self.advance()
            return NumberLit(pos, tok.value)  # type: ignore[arg-type]
        if tok.type == TK_STRING:
            self.advance()
            return StringLit(pos, str(tok.value))
        if tok.type == TK_BOOLEAN:
            self.advance()
            return BoolLit(pos, tok.value is True)
        if tok.type in WORD_TYPES:
            return self._parse_ref()
        raise self.error("unexpected " + _describe(tok) + " when expecting a value")

    def _parse_ref(self) -> Ident:
        pos = self._pos()
        words: list[str] = []
        while True:
            tok = self.current()
            if tok.type not in WORD_TYPES or tok.type == TK_KEYWORD:
                break
            if tok.value in PRIM_STOP:
                break
            if len(words) > 0:
                if tok.type == TK_ACTION and tok.value in STMT_ACTIONS:
                    break
                if self._at_line_statement():
                    break
            if len(words) == 0 and tok.value in SKIP_ARTICLES and self._ref_word_follows():
                self.advance()
                continue
            words.append(str(tok.value))
            self.advance()
        if len(words) == 0:
            raise self.error("expected value, got " + _describe(self.current()))
        return Ident(pos, "_".join(words))

    def _ref_word_follows(self) -> bool:
        nxt = self.peek(1)
        if nxt.type not in (TK_IDENT, TK_PREP, TK_ACTION):
            return False
        if nxt.line > self.current().line and str(nxt.value) in _STATEMENT_PARSERS:
            return False
        if nxt.value in PRIM_STOP:
            return False
        return not (nxt.type == TK_ACTION and nxt.value in STMT_ACTIONS)

    def _parse_array_lit(self) -> ArrayLit:
        pos = self._pos()
        self.expect("[")
        elements: list[Expr] = []
        while not self.at_eof() and not self.at("]"):
            elements.append(self.parse_value())
            self.accept(",")
        self.accept("]")
        return ArrayLit(pos, elements)

    def _parse_object_lit(self) -> ObjectLit:
        pos = self._pos()
        self.expect("{")
        pairs: list[ObjectPair] = []
        while not self.at_eof() and not self.at("}"):
            if self.at_type(TK_STRING):
                key = str(self.advance().value)
            else:
                key = self.expect_ident()
            self.accept(":")
            pairs.append(ObjectPair(key, self.parse_value()))
            self.accept(",")
        self.accept("}")
        return ObjectLit(pos, pairs)

    def parse_func_expr(self, fn: str, pos: Pos) -> FuncExpr:
        """Built-in function expression; ``fn`` has already been consumed."""
        if fn in ("round", "floor", "ceil", "abs", "sqrt", "sign", "log"):
            return FuncExpr(pos, fn, [self.parse_primary()])
        if fn in ("uppercase", "lowercase", "trim"):
            return FuncExpr(pos, fn, [self.parse_primary()])
        if fn == "length" or fn == "count":
            self.accept("of")
            return FuncExpr(pos, fn, [self.parse_primary()])
        if fn == "power":
            base = self.parse_primary()
            self.accept("to", "by")
            return FuncExpr(pos, fn, [base, self.parse_primary()])
        if fn == "min" or fn == "max":
            a = self.parse_primary()
            self.accept("and", "or", "with")
            return FuncExpr(pos, fn, [a, self.parse_primary()])
        if fn == "random":
            lo = self.parse_primary()
            self.accept("to", "and", "between")
            return FuncExpr(pos, fn, [lo, self.parse_primary()])
        if fn == "clamp":
            val = self.parse_primary()
            self.accept("between", "from")
            lo = self.parse_primary()
            self.accept("and", "to")
            return FuncExpr(pos, fn, [val, lo, self.parse_primary()])
        if fn == "join":
            return self._parse_join(pos)
        if fn == "split":
            src = self.parse_primary()
            sep: Expr = StringLit(pos, " ")
            if self.accept("by", "on", "with"):
                sep = self.parse_primary()
            return FuncExpr(pos, fn, [src, sep])
        if fn == "type":
            self.accept("of")
            return FuncExpr(pos, "typeOf", [self.parse_primary()])
        if fn == "index":
            self.accept("of")
            needle = self.parse_primary()
            self.accept("in")
            return FuncExpr(pos, "indexOf", [needle, self.parse_primary()])
        if fn == "slice":
            src = self.parse_primary()
            self.accept("from")
            start = self.parse_primary()
            self.accept("to", "until")
            return FuncExpr(pos, fn, [src, start, self.parse_primary()])
        if fn == "array":
            return FuncExpr(pos, fn, self._collect_primaries(ARRAY_PREP_STOP, False))
        if fn == "object":
            return FuncExpr(pos, fn, self._collect_primaries(OBJECT_PREP_STOP, True))
        return FuncExpr(pos, fn, [])

    def _parse_join(self, pos: Pos) -> FuncExpr:
        a = self.parse_primary()
        sep: Expr | None = None
        if self.accept("with"):
            sep = self.parse_primary()
        b: Expr | None = None
        if self.current().type in (TK_STRING, TK_IDENT, TK_NUMBER):
            saved = self.pos
            try:
                b = self.parse_primary()
            except ParseError:
                self.pos = saved
        if sep is not None and b is not None:
            return FuncExpr(pos, "join", [a, b, sep])
        if sep is not None:
            return FuncExpr(pos, "arrayJoin", [a, sep])
        if b is not None:
            return FuncExpr(pos, "join", [a, b])
        return FuncExpr(pos, "join", [a])

    def _collect_primaries(self, prep_stop: set[str], skip_and: bool) -> list[Expr]:
        values: list[Expr] = []
        while not self.at_eof():
            tok = self.current()
            if skip_and and self.at("and"):
                self.advance()
                continue
            if tok.type == TK_KEYWORD:
                break
            if tok.type == TK_ACTION and tok.value not in VALUE_ACTIONS:
                break
            if tok.type == TK_PREP and tok.value in prep_stop:
                break
            saved = self.pos
            try:
                values.append(self.parse_primary())
            except ParseError:
                self.pos = saved
                break
        return values

    def _resolve_node_value(self, node: Expr) -> object:
        """Fold a literal expression at parse time for data definitions."""
        if isinstance(node, (NumberLit, BoolLit, StringLit)):
            return node.value
        if isinstance(node, Ident):
            return node.name
        if isinstance(node, BinaryOp) and node.op in ("+", "-", "*", "/"):
            left = to_number(self._resolve_node_value(node.left))
            right = to_number(self._resolve_node_value(node.right))
            if node.op == "+":
                return normalize(left + right)
            if node.op == "-":
                return normalize(left - right)
            if node.op == "*":
                return normalize(left * right)
            if right == 0 or math.isnan(right):
                return 0
            return normalize(left / right)
        return None

    def _parse_args(self) -> list[Expr]:
        """Arguments separated by ``and`` or ``,``."""
        args: list[Expr] = []
        while (
            not self.at_eof()
            and not self.at_type(TK_KEYWORD)
            and not self.at("into")
            and not self._at_statement_start()
        ):
            args.append(self.parse_value())
            if not self.accept("and", ","):
                break
        return args

    def _parse_quantity(self) -> Expr:
        if self.at_any({"quantity", "x"}) or self.at_type(TK_NUMBER):
            self.accept("quantity", "x")
            return self.parse_value()
        return NumberLit(self._pos(), 1)

    def _accept_into(self, *words: str) -> str | None:
        if self.accept(*words):
            return self.expect_ident()
        return None

    # ── Variables ────────────────────────────────────────────

    def parse_let(self) -> Stmt:
        pos = self._pos()
        self.expect("let")
        name = self.parse_name({"be", "to", "equal", "equals"})
        self._accept_assign()
        if self.at("new"):
            return self.parse_new_instance(name)
        return LetStmt(pos, name, self.parse_value())

    def _accept_assign(self) -> None:
        if self.at_type(TK_ASSIGN):
            self.advance()
        elif self.accept("equal", "equals"):
            self.accept("to")
        else:
            self.accept("to", "be")

    def parse_set(self) -> Stmt:
        pos = self._pos()
        self.expect("set")
        if self.accept("volume"):
            self.accept("to")
            return SetVolume(pos, self.parse_value())
        if self.at("music") and self.peek_is(1, "volume"):
            self.advance()
            self.advance()
            self.accept("to")
            return SetVolume(pos, self.parse_value())
        if self.accept("formula"):
            key = self.expect_ident_or_string()
            self.accept("to")
            return SetFormula(pos, key, self.parse_value())
        if self.accept("tile"):
            tile = self.parse_value()
            self.accept("as")
            self.accept("autotile")
            return SetAutotile(pos, tile, self.parse_value())
        if self.accept("zone"):
            self.accept("to")
            return SetZone(pos, self.parse_value())
        if self.accept("key"):
            key = self.parse_value()
            self.accept("in", "of")
            obj = self.expect_ident()
            self.accept("to", "be")
            return SetKey(pos, obj, key, self.parse_value())
        if self.accept("index"):
            index = self.parse_value()
            self.accept("in")
            arr = self.expect_ident()
            self.accept("to", "be")
            return SetIndex(pos, arr, index, self.parse_value())
        name = self.parse_name({"to", "be", "equal", "equals"})
        self._accept_assign()
        if self.at("new"):
            return self.parse_new_instance(name)
        return SetStmt(pos, name, self.parse_value())

    def parse_modify(self, op: str) -> ModifyStmt:
        pos = self._pos()
        self.expect(op)
        name = self.parse_name({"by"})
        self.accept("by")
        return ModifyStmt(pos, op, name, self.parse_value())

    # ── Entities, media, screen ──────────────────────────────

    def _parse_xy(self) -> tuple[Expr, Expr]:
        x = self.parse_value()
        self.accept(",", "and")
        return x, self.parse_value()

    def parse_move(self) -> MoveStmt:
        pos = self._pos()
        self.expect("move")
        entity = self.expect_ident()
        relative = True
        if self.accept("to"):
            relative = False
        else:
            self.accept("by")
        x, y = self._parse_xy()
        return MoveStmt(pos, entity, x, y, relative)

    def parse_teleport(self) -> TeleportStmt:
        pos = self._pos()
        self.expect("teleport")
        entity = self.expect_ident()
        self.accept("to")
        x, y = self._parse_xy()
        return TeleportStmt(pos, entity, x, y)

    def parse_spawn(self) -> SpawnStmt:
        pos = self._pos()
        self.expect("spawn")
        entity = self.expect_ident()
        self.accept("at")
        use_tile = self.accept("tile")
        x, y = self._parse_xy()
        return SpawnStmt(pos, entity, x, y, use_tile)

    def parse_entity_action(self) -> EntityStmt:
        pos = self._pos()
        action = str(self.advance().value)
        return EntityStmt(pos, action, self.expect_ident())

    def parse_play(self) -> PlayStmt:
        pos = self._pos()
        self.expect("play")
        loop = self.accept("looping")
        kind = self.expect_ident()
        if kind == "animation":
            name = self.expect_ident_or_string()
            self.accept("on")
            entity = self.expect_ident()
            return PlayStmt(pos, kind, StringLit(pos, name), entity=entity)
        return PlayStmt(pos, kind, StringLit(pos, self.expect_ident_or_string()), loop=loop)

    def parse_stop(self) -> StopStmt:
        pos = self._pos()
        self.expect("stop")
        if not (self.at_type(TK_IDENT) or self.at_type(TK_PREP)):
            return StopStmt(pos, "sound")
        kind = self.expect_ident()
        if kind == "all":
            self.accept("sounds", "music", "sound")
            return StopStmt(pos, "all")
        if kind == "animation":
            self.accept("on")
            entity = None
            if self.at_type(TK_IDENT) or self.at_type(TK_STRING):
                entity = self.expect_ident()
            return StopStmt(pos, kind, entity=entity)
        name = None
        if self.at_type(TK_IDENT) or self.at_type(TK_STRING):
            name = self.parse_value()
        return StopStmt(pos, kind, name)

    def parse_apply(self) -> Stmt:
        pos = self._pos()
        self.expect("apply")
        kind = self.expect_ident()
        if kind == "impulse" or kind == "force":
            entity = self.expect_ident()
            x, y = self._parse_xy()
            return ApplyForce(pos, kind, entity, x, y)
        self.accept("to")
        target = self.expect_ident()
        duration: Expr = NumberLit(pos, 3)
        if self.accept("for"):
            duration = self.parse_value()
            self.accept("turns", "turn")
        return ApplyStatus(pos, kind, target, duration)

    def parse_screen_fx(self) -> Stmt:
        pos = self._pos()
        kind = str(self.advance().value)
        if kind == "shake":
            intensity: Expr = NumberLit(pos, 6)
            if self.at_type(TK_NUMBER):
                intensity = self.parse_value()
            self.accept("for", "seconds")
            duration: Expr = NumberLit(pos, 0.5)
            if self.at_type(TK_NUMBER):
                duration = self.parse_value()
            return ScreenShake(pos, intensity, duration)
        if kind == "flash":
            color: Expr = StringLit(pos, "#ffffff")
            if self.at_type(TK_STRING):
                color = self.parse_value()
            elif self.at_type(TK_NUMBER):
                channels = [self._color_channel()]
                for _ in range(2):
                    channels.append(self._color_channel() if self.at_type(TK_NUMBER) else 255)
                color = StringLit(pos, "#" + "".join("%02x" % c for c in channels))
            self.accept("for", "seconds")
            duration = NumberLit(pos, 0.3)
            if self.at_type(TK_NUMBER):
                duration = self.parse_value()
            return ScreenFlash(pos, color, duration)
        color = self.parse_value()
        alpha: Expr = NumberLit(pos, 50)
        if self.at_type(TK_NUMBER):
            alpha = self.parse_value()
        return ScreenTint(pos, color, alpha)

    def _color_channel(self) -> int:
        value = to_number(self.advance().value)
        return min(255, max(0, int(math.floor(value + 0.5))))

    # ── Output and events ────────────────────────────────────

    def parse_print(self) -> PrintStmt:
        pos = self._pos()
        self.expect("print")
        return PrintStmt(pos, self.parse_value())

    def parse_log(self) -> LogStmt:
        pos = self._pos()
        line = self.current().line
        self.expect("log")
        values = [self.parse_value()]
        # Further values must stay on the statement's line
        while (
            self.current().line == line
            and self.current().type in (TK_IDENT, TK_STRING, TK_NUMBER, TK_BOOLEAN, TK_PREP)
            and not self.at_any({"end", "then", "else"})
        ):
            values.append(self.parse_value())
        return LogStmt(pos, values)

    def parse_wait(self) -> WaitStmt:
        pos = self._pos()
        self.expect("wait")
        duration = self.parse_value()
        self.accept("seconds")
        return WaitStmt(pos, duration)

    def parse_say(self) -> SayStmt:
        pos = self._pos()
        self.expect("say")
        text = StringLit(pos, self.expect_ident_or_string())
        speaker = ""
        portrait = ""
        if self.accept("as"):
            speaker = self.expect_ident_or_string()
        if self.at("with") and self.peek_is(1, "portrait"):
            self.advance()
            self.advance()
            portrait = self.expect_ident_or_string()
        return SayStmt(pos, text, speaker, portrait)

    def parse_choice(self) -> ChoiceStmt:
        pos = self._pos()
        self.expect("choice")
        prompt = ""
        if self.at_type(TK_STRING):
            prompt = str(self.advance().value)
        options: list[ChoiceOption] = []
        if self.at("option"):
            while self.accept("option"):
                label = self.expect_ident_or_string()
                body = self.parse_body({"end", "option"})
                self.accept("end")
                options.append(ChoiceOption(label, body))
            self.accept("end")
            return ChoiceStmt(pos, prompt, options)
        if not self.at("then") and not self.at("end") and not self.at_eof():
            saved = self.pos
            try:
                options.append(ChoiceOption(self.expect_ident_or_string(), []))
                while self.accept("or"):
                    options.append(ChoiceOption(self.expect_ident_or_string(), []))
            except ParseError:
                self.pos = saved
        return ChoiceStmt(pos, prompt, options)

    def parse_emit(self) -> EmitStmt:
        pos = self._pos()
        self.expect("emit")
        event = self.expect_ident_or_string()
        entity = None
        if self.accept("on", "from"):
            entity = self.expect_ident()
        return EmitStmt(pos, event, entity)

    def parse_call(self) -> Stmt:
        pos = self._pos()
        self.expect("call")
        if self.at("function"):
            return self.parse_call_function()
        if self.accept("event"):
            return CallEvent(pos, self.expect_ident_or_string())
        if self.accept("method"):
            method = self.expect_ident_or_string()
            self.accept("on")
            obj = self.expect_ident()
            args: list[Expr] = []
            if self.accept("with"):
                args = self._parse_args()
            out = None
            if self.accept("into"):
                out = self._parse_out()
            return CallMethod(pos, method, obj, args, out)
        fn = self.expect_ident()
        args = []
        if self.accept("with"):
            args = self._parse_args()
        return HostCall(pos, fn, args)

    def parse_call_function(self) -> CallFunction:
        pos = self._pos()
        self.accept("function")
        name = self.expect_ident_or_string()
        args: list[Expr] = []
        if self.accept("with", "args", "params"):
            args = self._parse_args()
        out = None
        if self.accept("into"):
            out = self._parse_out()
        return CallFunction(pos, name, args, out)

    # ── Definitions ──────────────────────────────────────────

    def parse_define(self) -> Stmt | None:
        pos = self._pos()
        self.expect("define")
        kind = self.expect_ident()
        if kind == "class":
            return self._parse_class_rest(pos)
        if kind in DATA_KINDS:
            return self._parse_define_data(pos, kind)
        if kind == "event":
            event_id = self.expect_ident_or_string()
            body = self.parse_body({"end"})
            self.accept("end")
            return DefineEvent(pos, event_id, body)
        if kind == "zone":
            return self._parse_define_zone(pos)
        if kind == "status":
            return self._parse_define_status(pos)
        if kind == "function":
            return self._parse_define_function(pos)
        if kind == "sprite":
            entity = self.expect_ident()
            src = self.parse_value()
            frame_w = self.parse_value()
            return DefineSprite(pos, entity, src, frame_w, self.parse_value())
        if kind == "animation":
            entity = self.expect_ident()
            name = self.parse_value()
            self.accept("frames")
            frames: list[int | float] = []
            while self.at_type(TK_NUMBER):
                frames.append(self.advance().value)  # type: ignore[arg-type]
            self.accept("fps")
            fps = self.parse_value()
            loop: Expr = BoolLit(pos, True)
            if self.accept("loop"):
                loop = self.parse_value()
            return DefineAnimation(pos, entity, name, frames, fps, loop)
        return None

    def _parse_define_function(self, pos: Pos) -> DefineFunction:
        name = self.expect_ident_or_string()
        params: list[str] = []
        if self.accept("with", "params", "param"):
            while (
                self.current().type in (TK_IDENT, TK_PREP, TK_ACTION)
                and not self._at_statement_start()
            ):
                params.append(self.parse_name({"and", "then", "do"}))
                if not self.accept("and", ","):
                    break
        self.accept("then", "do")
        body = self.parse_body({"end"})
        self.accept("end")
        return DefineFunction(pos, name, params, body)

    def _parse_define_data(self, pos: Pos, kind: str) -> DefineData:
        data_id = self.expect_ident_or_string()
        props: dict[str, object] = {}
        while not self.at_eof() and not self.at_any(DATA_STOP):
            key = self.expect_ident_or_string()
            if key == "drops":
                item = self.expect_ident_or_string()
                rate: object = 0.1
                if self.accept("at", "rate"):
                    rate = to_number(self._resolve_node_value(self.parse_value()))
                drops = props.setdefault("drops", [])
                drops.append({"id": item, "rate": rate})  # type: ignore[attr-defined]
                continue
            if key == "skills":
                skills = props.setdefault("skills", [])
                while self.at_type(TK_STRING) or (self.at_type(TK_IDENT) and not self.at_any(DATA_STOP)):
                    skills.append(self.expect_ident_or_string())  # type: ignore[attr-defined]
                continue
            if key == "initStats" or key == "growth":
                stats: dict[str, object] = {}
                while self.current().type in WORD_TYPES and str(self.current().value).lower() in KNOWN_STATS:
                    stat = KNOWN_STATS[self.expect_ident().lower()]
                    stats[stat] = to_number(self._resolve_node_value(self.parse_value()))
                props[key] = stats
                continue
            props[key] = self._resolve_node_value(self.parse_value())
        self.accept("end")
        return DefineData(pos, kind, data_id, props)

    def _parse_define_zone(self, pos: Pos) -> DefineZone:
        zone_id = self.expect_ident_or_string()
        entries: list[ZoneEntry] = []
        while not self.at_eof() and not self.at_any(DATA_STOP):
            enemy = self.expect_ident_or_string()
            weight: float = 1
            if self.accept("at", "weight"):
                weight = to_number(self._resolve_node_value(self.parse_value()))
            entries.append(ZoneEntry(enemy, weight))
        self.accept("end")
        return DefineZone(pos, zone_id, entries)

    def _parse_define_status(self, pos: Pos) -> DefineStatus:
        status_id = self.expect_ident_or_string()
        props: dict[str, object] = {}
        turn_ops: list[TurnOp] = []
        while not self.at_eof() and not self.at_any(DATA_STOP):
            key = self.expect_ident_or_string()
            if key == "each":
                self.accept("turn")
                while not self.at_eof() and not self.at_any(DATA_STOP):
                    op = self._parse_turn_op()
                    if op is not None:
                        turn_ops.append(op)
                self.accept("end")
                continue
            props[key] = self._resolve_node_value(self.parse_value())
        self.accept("end")
        return DefineStatus(pos, status_id, props, turn_ops)

    def _parse_turn_op(self) -> TurnOp | None:
        action = self.expect_ident()
        if action == "deal":
            amount = self.parse_value()
            percent = self.accept("percent")
            self.accept("damage", "hp")
            return TurnOp("dealPercent" if percent else "dealFlat", self._resolve_node_value(amount))
        if action == "restore":
            amount = self.parse_value()
            percent = self.accept("percent")
            on_mp = self.at("mp")
            self.accept("hp", "mp")
            if on_mp:
                op = "restoreMpPercent" if percent else "restoreMpFlat"
            else:
                op = "healPercent" if percent else "healFlat"
            return TurnOp(op, self._resolve_node_value(amount))
        if action == "drain":
            amount = self.parse_value()
            on_mp = self.at("mp")
            self.accept("hp", "mp")
            return TurnOp("drainMp" if on_mp else "dealFlat", self._resolve_node_value(amount))
        if action in ("message", "print", "say"):
            text = self.parse_value()
            if self.accept("as") and self.at_type(TK_IDENT):
                self.advance()
            return TurnOp("message", text=self._resolve_node_value(text))
        return None

    # ── Game flow and RPG ────────────────────────────────────

    def parse_game_state(self) -> GameState:
        pos = self._pos()
        action = str(self.advance().value)
        self.accept("game")
        return GameState(pos, action)

    def parse_end(self) -> Stmt | None:
        pos = self._pos()
        if self.peek_is(1, "battle"):
            self.advance()
            self.advance()
            return EndBattle(pos)
        if self.peek_is(1, "game"):
            self.advance()
            self.advance()
            return GameState(pos, "end")
        return None

    def parse_battle(self) -> Stmt:
        pos = self._pos()
        self.expect("battle")
        if self.at_type(TK_STRING):
            enemies = [self.parse_value()]
            while self.accept("and", ","):
                if self.at_type(TK_STRING) or self.at_type(TK_IDENT):
                    enemies.append(self.parse_value())
            music = None
            if self.at("with") and self.peek_is(1, "music"):
                self.advance()
                self.advance()
                music = self.parse_value()
            return BattleEnemy(pos, enemies, music)
        attacker = self.expect_ident()
        self.accept("with")
        return BattleStmt(pos, attacker, self.expect_ident())

    def parse_attack(self) -> AttackStmt:
        pos = self._pos()
        self.expect("attack")
        attacker = self.expect_ident()
        return AttackStmt(pos, attacker, self.expect_ident())

    def parse_add(self) -> Stmt:
        pos = self._pos()
        self.expect("add")
        self.accept("member")
        if self.peek_is(1, "to") and self.peek_is(2, "party"):
            member = self.expect_ident_or_string()
            self.advance()
            self.advance()
            return PartyStmt(pos, "add", member)
        return self._parse_add_item(pos)

    def _parse_add_item(self, pos: Pos) -> AddItem:
        self.accept("item")
        item = self.expect_ident_or_string()
        quantity = self._parse_quantity()
        self.accept("to")
        self.accept("inventory")
        return AddItem(pos, item, quantity)

    def parse_give(self) -> Stmt:
        pos = self._pos()
        self.advance()
        if self.at_type(TK_NUMBER):
            if self.peek_is(1, "exp") or self.peek_is(1, "experience"):
                amount = self.parse_value()
                self.advance()
                return GiveExp(pos, amount)
            if self.peek_is(1, "gold"):
                amount = self.parse_value()
                self.advance()
                return GiveGold(pos, amount)
        if self.accept("exp", "experience"):
            return GiveExp(pos, self.parse_value())
        if self.accept("gold"):
            return GiveGold(pos, self.parse_value())
        if self.peek_is(1, "to") and self.peek_is(2, "party"):
            member = self.expect_ident_or_string()
            self.advance()
            self.advance()
            return PartyStmt(pos, "add", member)
        return self._parse_add_item(pos)

    def parse_remove(self) -> Stmt:
        pos = self._pos()
        self.expect("remove")
        if self.at("last") or self.at("first"):
            end = str(self.advance().value)
            self.accept("from", "of")
            return ArrayTake(pos, end, self.expect_ident())
        self.accept("member")
        if self.peek_is(1, "from") and self.peek_is(2, "party"):
            member = self.expect_ident_or_string()
            self.advance()
            self.advance()
            return PartyStmt(pos, "remove", member)
        return self._parse_remove_item(pos)

    def parse_take(self) -> RemoveItem:
        pos = self._pos()
        self.expect("take")
        return self._parse_remove_item(pos)

    def _parse_remove_item(self, pos: Pos) -> RemoveItem:
        self.accept("item")
        item = self.expect_ident_or_string()
        quantity = self._parse_quantity()
        self.accept("from")
        self.accept("inventory")
        return RemoveItem(pos, item, quantity)

    def parse_toggle(self) -> Stmt:
        pos = self._pos()
        self.expect("toggle")
        if self.accept("inventory"):
            return ToggleInventory(pos)
        return ToggleStmt(pos, self.expect_ident())

    def _parse_slot(self) -> str:
        if self.at_type(TK_STRING) or self.at_type(TK_IDENT):
            return self.expect_ident_or_string()
        return "slot1"

    def parse_load(self) -> Stmt | None:
        pos = self._pos()
        self.expect("load")
        if self.accept("data"):
            key = self.expect_ident_or_string()
            variable = None
            if self.accept("into", "to"):
                variable = self.expect_ident_or_string()
            return LoadData(pos, key, variable)
        if self.accept("record"):
            record_id = self.expect_ident_or_string()
            self.accept("from", "in")
            table = self.expect_ident_or_string()
            variable = None
            if self.accept("into", "to"):
                variable = self.expect_ident_or_string()
            return LoadRecord(pos, record_id, table, variable)
        if self.accept("scene"):
            return LoadScene(pos, self.expect_ident_or_string())
        if self.accept("game"):
            self.accept("from")
            return LoadGame(pos, self._parse_slot())
        if self.accept("tileset"):
            return LoadTileset(pos, self.expect_ident_or_string())
        return None

    def parse_save(self) -> Stmt:
        pos = self._pos()
        self.expect("save")
        if self.accept("data"):
            key = self.expect_ident_or_string()
            self.accept("as", "to")
            return SaveData(pos, key, self.parse_value())
        if self.accept("record"):
            record_id = self.expect_ident_or_string()
            self.accept("in", "to")
            table = self.expect_ident_or_string()
            data = None
            if self.accept("with", "as"):
                data = self.parse_value()
            return SaveRecord(pos, record_id, table, data)
        if self.accept("game"):
            self.accept("to")
            return SaveGame(pos, self._parse_slot())
        return SaveGame(pos)

    def parse_delete(self) -> Stmt | None:
        pos = self._pos()
        self.expect("delete")
        if self.accept("data"):
            return DeleteData(pos, self.expect_ident_or_string())
        if self.accept("record"):
            record_id = self.expect_ident_or_string()
            self.accept("from", "in")
            return DeleteRecord(pos, record_id, self.expect_ident_or_string())
        if self.accept("game"):
            return DeleteData(pos, "game:" + self._parse_slot())
        if self.accept("file"):
            return DeleteFile(pos, self.parse_value())
        if self.accept("key"):
            key = self.parse_value()
            self.accept("from", "in")
            return DeleteKey(pos, self.expect_ident(), key)
        return None

    def parse_turn(self) -> TurnSwitch:
        pos = self._pos()
        self.expect("turn")
        on = self.expect_ident().lower() == "on"
        self.accept("switch")
        return TurnSwitch(pos, on, self.parse_value())

    def parse_open(self) -> Stmt:
        pos = self._pos()
        self.expect("open")
        what = self.expect_ident()
        if what == "shop":
            name: Expr = StringLit(pos, "")
            if self.at_type(TK_STRING) or self.at_type(TK_IDENT):
                name = self.parse_value()
            return OpenShop(pos, name)
        if what == "formula":
            self.accept("editor")
            return OpenFormulaEditor(pos)
        if what == "game" and self.accept("over"):
            return GameOver(pos)
        return OpenMenu(pos, what)

    def parse_equip(self) -> EquipItem:
        pos = self._pos()
        self.expect("equip")
        item = self.parse_value()
        slot = None
        self.accept("in")
        if self.at_type(TK_IDENT) or self.at_type(TK_STRING):
            slot = self.expect_ident_or_string()
            self.accept("slot")
        return EquipItem(pos, item, slot)

    def parse_heal(self) -> HealStmt:
        pos = self._pos()
        self.expect("heal")
        if self.accept("all"):
            return HealStmt(pos, "all")
        target = self.expect_ident_or_string()
        amount = None
        if self.accept("by", "for"):
            amount = self.parse_value()
        return HealStmt(pos, target, amount)

    def parse_recover(self) -> RecoverStmt:
        pos = self._pos()
        self.expect("recover")
        target = "all"
        if not self.at_eof() and not self.at_any({"then", "end"}) and not self._at_statement_start():
            target = self.expect_ident_or_string()
        return RecoverStmt(pos, target)

    def _parse_by_to(self) -> bool:
        relative = self.at("by")
        self.accept("by", "to")
        return relative

    def parse_change(self) -> Stmt | None:
        pos = self._pos()
        self.expect("change")
        what = self.expect_ident()
        if what == "map":
            self.accept("to")
            map_id = self.expect_ident_or_string()
            x = None
            y = None
            if self.accept("at"):
                x, y = self._parse_xy()
            return ChangeMap(pos, map_id, x, y)
        if what == "class":
            entity = self.expect_ident_or_string()
            self.accept("to")
            return ChangeClass(pos, entity, self.expect_ident_or_string())
        if what == "level":
            entity = self.expect_ident_or_string()
            relative = self._parse_by_to()
            return ChangeLevel(pos, entity, self.parse_value(), relative)
        if what == "exp" or what == "experience":
            entity = self.expect_ident_or_string()
            relative = self._parse_by_to()
            return ChangeExp(pos, entity, self.parse_value(), relative)
        if what == "gold":
            relative = self._parse_by_to()
            return ChangeGold(pos, self.parse_value(), relative)
        if what in ("hp", "mp", "tp"):
            entity = self.expect_ident_or_string()
            relative = self._parse_by_to()
            return ChangeStat(pos, what, entity, self.parse_value(), relative)
        if what == "encounter":
            self.accept("rate")
            self.accept("to")
            return ChangeEncounterRate(pos, self.parse_value())
        return None

    def parse_skill(self) -> SkillStmt:
        pos = self._pos()
        action = str(self.advance().value)
        self.accept("skill")
        skill = self.expect_ident_or_string()
        target = "player"
        if self.accept("for"):
            target = self.expect_ident_or_string()
        return SkillStmt(pos, action, skill, target)

    # ── Control flow ─────────────────────────────────────────

    def parse_if(self) -> IfStmt:
        pos = self._pos()
        self.expect("if")
        cond = self.parse_condition()
        self.accept("then")
        then_body = self.parse_body({"else", "end"})
        else_body: list[Stmt] = []
        if self.accept("else"):
            if self.at("if"):
                else_body = [self.parse_if()]
            else:
                else_body = self.parse_body({"end"})
                self.accept("end")
        else:
            self.accept("end")
        return IfStmt(pos, cond, then_body, else_body)

    def parse_repeat(self) -> Stmt:
        if self.peek(1).type == TK_STRING:
            return self.parse_repeat_str()
        pos = self._pos()
        self.expect("repeat")
        count = self.parse_primary()
        self.accept("times")
        body = self.parse_body({"end"})
        self.accept("end")
        return RepeatStmt(pos, count, body)

    def parse_while(self) -> WhileStmt:
        pos = self._pos()
        self.expect("while")
        cond = self.parse_condition()
        self.accept("do", "then")
        body = self.parse_body({"end"})
        self.accept("end")
        return WhileStmt(pos, cond, body)

    def parse_for_each(self) -> ForEach:
        pos = self._pos()
        self.expect("for")
        self.accept("each", "every")
        var = self.expect_ident()
        self.accept("in", "of", "from")
        iterable = self.expect_ident()
        self.accept("do", "then")
        body = self.parse_body({"end"})
        self.accept("end")
        return ForEach(pos, var, iterable, body)

    def parse_break(self) -> Stmt:
        pos = self._pos()
        word = self.advance().value
        if word == "skip":
            return SkipStmt(pos)
        return BreakStmt(pos)

    def parse_return(self) -> ReturnStmt:
        pos = self._pos()
        self.expect("return")
        if self.at_eof() or self.at_any({"end", "else"}):
            return ReturnStmt(pos, NullLit(pos))
        if self.current().line > pos.line and self._at_statement_start():
            return ReturnStmt(pos, NullLit(pos))
        return ReturnStmt(pos, self.parse_value())

    def parse_try(self) -> TryStmt:
        pos = self._pos()
        self.expect("try")
        body = self.parse_body({"catch", "finally", "end"})
        error_var = "error"
        catch_body: list[Stmt] = []
        finally_body = None
        if self.accept("catch"):
            tok = self.current()
            if tok.type in (TK_IDENT, TK_PREP) and tok.value not in ("then", "end", "if", "repeat", "while"):
                error_var = self.expect_ident()
            self.accept("then", "do")
            catch_body = self.parse_body({"finally", "end"})
        if self.accept("finally"):
            finally_body = self.parse_body({"end"})
        self.accept("end")
        return TryStmt(pos, body, error_var, catch_body, finally_body)

    def parse_match(self) -> MatchStmt:
        pos = self._pos()
        self.expect("match")
        subject = self.parse_name({"on", "then", "do"})
        self.accept("then", "do")
        cases: list[MatchCase] = []
        default: list[Stmt] = []
        while not self.at_eof() and not self.at("end"):
            if self.accept("on"):
                if self.at_type(TK_COMPARISON) or self.at("not"):
                    comparison = self.parse_comparison()
                    self.accept("then", "do")
                    cases.append(MatchCase(self.parse_body({"on", "else", "end"}), comparison=comparison))
                else:
                    value = self.parse_value()
                    self.accept("then", "do")
                    cases.append(MatchCase(self.parse_body({"on", "else", "end"}), value=value))
            elif self.accept("else"):
                default = self.parse_body({"end"})
            else:
                break
        self.accept("end")
        return MatchStmt(pos, subject, cases, default)

    def _parse_define_params(self, stop: set[str]) -> list[str]:
        params: list[str] = []
        while not self.at_eof() and not self.at_any(stop) and not self._at_statement_start():
            if self.accept("and", ","):
                continue
            if self.accept("arguments", "params"):
                continue
            params.append(self.parse_name({"and", "then", "do", "end"}))
        return params

    # ── Collections and strings ──────────────────────────────

    def parse_append(self) -> Stmt:
        pos = self._pos()
        self.expect("append")
        if self.at("to") and self.peek_is(1, "file"):
            self.advance()
            self.advance()
            path = self.parse_value()
            contents: Expr = StringLit(pos, "")
            if self.accept("with", "content"):
                contents = self.parse_value()
            return WriteFile(pos, path, contents, append=True)
        value = self.parse_value()
        self.accept("to", "into")
        return AppendStmt(pos, value, self.expect_ident())

    def parse_sort(self) -> SortStmt:
        pos = self._pos()
        self.expect("sort")
        name = self.expect_ident()
        self.accept("ascending")
        return SortStmt(pos, name, self.accept("descending", "desc"))

    def parse_reverse(self) -> ReverseStmt:
        pos = self._pos()
        self.expect("reverse")
        return ReverseStmt(pos, self.expect_ident())

    def parse_filter(self) -> FilterStmt:
        pos = self._pos()
        self.expect("filter")
        arr = self.expect_ident()
        self.accept("where")
        item_var = self.expect_ident()
        cond_pos = self._pos()
        tok = self.current()
        cond: Cond
        if (
            tok.type == TK_EOF
            or tok.type == TK_COMPARISON
            or tok.type == TK_NULL
            or self.at_any({"is", "empty", "exists", "not"})
        ):
            self.accept("is", "has", "equals")
            cond = VarCondition(cond_pos, item_var, self.parse_comparison())
        elif self.accept("contains"):
            cond = Contains(cond_pos, item_var, self.parse_value())
        elif self.accept("starts"):
            self.accept("with")
            cond = StartsWith(cond_pos, item_var, self.parse_value())
        elif self.accept("ends"):
            self.accept("with")
            cond = EndsWith(cond_pos, item_var, self.parse_value())
        else:
            cond = self.parse_single_condition()
        self.accept("into")
        return FilterStmt(pos, arr, item_var, cond, self.expect_ident())

    def parse_merge(self) -> MergeStmt:
        pos = self._pos()
        self.expect("merge")
        a = self.expect_ident()
        self.accept("with")
        b = self.expect_ident()
        self.accept("into")
        return MergeStmt(pos, a, b, self.expect_ident())

    def parse_flatten(self) -> FlattenStmt:
        pos = self._pos()
        self.expect("flatten")
        arr = self.expect_ident()
        out = self._accept_into("into")
        return FlattenStmt(pos, arr, out if out is not None else arr)

    def parse_find(self) -> FindStmt:
        pos = self._pos()
        self.expect("find")
        needle = self.parse_value()
        self.accept("in")
        arr = self.expect_ident()
        self.accept("into")
        return FindStmt(pos, needle, arr, self.expect_ident())

    def parse_get(self) -> Stmt | None:
        pos = self._pos()
        self.expect("get")
        if self.accept("env"):
            key = self.parse_value()
            self.accept("into")
            return GetEnv(pos, key, self.expect_ident())
        if self.at_any({"time", "date", "timestamp"}):
            what = str(self.advance().value)
            self.accept("into")
            return GetClock(pos, what, self.expect_ident())
        if self.accept("key"):
            key = self.parse_value()
            self.accept("from", "in")
            obj = self.expect_ident()
            self.accept("into")
            return GetKeyStmt(pos, obj, key, self.expect_ident())
        if self.accept("index"):
            index = self.parse_value()
            self.accept("from", "in")
            arr = self.expect_ident()
            self.accept("into")
            return GetIndex(pos, arr, index, self.expect_ident())
        return None

    def parse_slice(self) -> SliceStmt:
        pos = self._pos()
        self.expect("slice")
        src = self.expect_ident()
        self.accept("from")
        start = self.parse_value()
        self.accept("to")
        end = self.parse_value()
        self.accept("into")
        return SliceStmt(pos, src, start, end, self.expect_ident())

    def parse_char_at(self) -> CharAt:
        pos = self._pos()
        self.expect("char")
        self.accept("at")
        index = self.parse_value()
        self.accept("in")
        src = self.expect_ident()
        self.accept("into")
        return CharAt(pos, src, index, self.expect_ident())

    def parse_repeat_str(self) -> RepeatStr:
        pos = self._pos()
        self.expect("repeat")
        text = self.parse_value()
        count: Expr = NumberLit(pos, 1)
        if self.at_type(TK_NUMBER) or self.at_type(TK_IDENT):
            count = self.parse_primary()
        self.accept("times")
        self.accept("into")
        return RepeatStr(pos, text, count, self.expect_ident())

    def parse_pad(self) -> PadStmt:
        pos = self._pos()
        self.expect("pad")
        direction = "left"
        if self.at("left") or self.at("right"):
            direction = str(self.advance().value)
        src = self.parse_value()
        self.accept("to")
        length = self.parse_value()
        fill: Expr = StringLit(pos, " ")
        if self.accept("with"):
            fill = self.parse_value()
        self.accept("into")
        return PadStmt(pos, direction, src, length, fill, self.expect_ident())

    def parse_clamp(self) -> ClampStmt:
        pos = self._pos()
        self.expect("clamp")
        src = self.expect_ident()
        self.accept("between")
        low = self.parse_value()
        self.accept("and")
        high = self.parse_value()
        out = self._accept_into("into")
        return ClampStmt(pos, src, low, high, out if out is not None else src)

    def parse_keys_values(self) -> KeysValues:
        pos = self._pos()
        which = str(self.advance().value)
        self.accept("of")
        obj = self.expect_ident()
        self.accept("into")
        return KeysValues(pos, which, obj, self.expect_ident())

    def parse_type_of(self) -> TypeOfStmt:
        pos = self._pos()
        self.expect("type")
        self.accept("of")
        src = self.expect_ident()
        self.accept("into")
        return TypeOfStmt(pos, src, self.expect_ident())

    def parse_index_of(self) -> IndexOfStmt:
        pos = self._pos()
        self.expect("index")
        self.accept("of")
        needle = self.parse_value()
        self.accept("in")
        src = self.expect_ident()
        self.accept("into")
        return IndexOfStmt(pos, needle, src, self.expect_ident())

    def parse_transform(self) -> TransformStmt:
        pos = self._pos()
        self.expect("transform")
        arr = self.parse_name({"with", "where", "using", "into", "as"})
        self.accept("with", "where", "using")
        self.accept("each")
        item_var = self.parse_name({"into", "to", "as", "then", "do"})
        self.accept("into", "to", "as")
        saved = self.pos
        saved_diags = len(self.diagnostics)
        try:
            expr = self.parse_value()
            if self.accept("into"):
                out = self.parse_name({"then", "do", "end", "else"})
                return TransformStmt(pos, arr, item_var, expr, out)
        except ParseError:
            pass
        self.pos = saved
        del self.diagnostics[saved_diags:]
        # Body form: OUT then EXPR end
        out = self.parse_name({"then", "do", "end"})
        self.accept("then", "do")
        expr = self.parse_value()
        self.accept("end")
        return TransformStmt(pos, arr, item_var, expr, out)

    def parse_reduce(self) -> ReduceStmt:
        pos = self._pos()
        self.expect("reduce")
        arr = self.parse_name({"with", "using", "into"})
        acc_var = "acc"
        item_var = "item"
        initial: Expr = NumberLit(pos, 0)
        out = "acc"
        if self.accept("with", "using"):
            acc_var = self.expect_ident()
            self.accept("and", ",")
            item_var = self.expect_ident()
        if self.accept("starting", "from", "at"):
            self.accept("from", "at")
            initial = self.parse_primary()
        if self.accept("into"):
            out = self.parse_name({"then", "do"})
        self.accept("then", "do")
        body = self.parse_body({"end"})
        self.accept("end")
        if self.accept("into"):
            out = self._parse_out()
        return ReduceStmt(pos, arr, acc_var, item_var, initial, body, out)

    def parse_every_any(self) -> EveryAny:
        pos = self._pos()
        which = str(self.advance().value)
        item_var = "item"
        if self.current().type != TK_PREP or self.at("item"):
            item_var = self.expect_ident()
        self.accept("in")
        arr = self.parse_name({"is", "has"})
        self.accept("is", "has")
        comparison = self.parse_comparison()
        self.accept("into")
        return EveryAny(pos, which, item_var, arr, comparison, self._parse_out())

    def parse_copy(self) -> CopyStmt:
        pos = self._pos()
        self.expect("copy")
        src = self.parse_name({"into", "to"})
        self.accept("into", "to")
        return CopyStmt(pos, src, self._parse_out())

    def parse_assign(self) -> AssignStmt:
        pos = self._pos()
        self.expect("assign")
        stop = {"and", "into", "to"}
        sources = [self.parse_name(stop)]
        while self.accept("and", ","):
            sources.append(self.parse_name(stop))
        self.accept("into", "to")
        return AssignStmt(pos, sources, self._parse_out())

    def parse_path_op(self) -> PathOp:
        pos = self._pos()
        op = str(self.advance().value)
        self.accept("path")
        self.accept("of")
        parts = [self.parse_value()]
        while self.accept("and", ","):
            parts.append(self.parse_value())
        self.accept("into")
        return PathOp(pos, op, parts, self._parse_out())

    # ── Data formats and files ───────────────────────────────

    def parse_fetch(self) -> FetchUrl:
        pos = self._pos()
        self.expect("fetch")
        self.accept("from", "url")
        url = self.parse_value()
        return FetchUrl(pos, url, "GET", None, self._accept_into("into", "to"))

    def parse_post(self) -> FetchUrl:
        pos = self._pos()
        self.expect("post")
        self.accept("to", "url")
        url = self.parse_value()
        body = None
        if self.accept("with", "body"):
            body = self.parse_value()
        return FetchUrl(pos, url, "POST", body, self._accept_into("into", "to"))

    def parse_parse_json(self) -> ParseJson:
        pos = self._pos()
        self.expect("parse")
        self.accept("json")
        text = self.parse_value()
        return ParseJson(pos, text, self._accept_into("into", "to"))

    def parse_stringify(self) -> Stringify:
        pos = self._pos()
        self.expect("stringify")
        value = self.parse_value()
        return Stringify(pos, value, self._accept_into("into", "to", "as"))

    def parse_read(self) -> ReadFile:
        pos = self._pos()
        self.expect("read")
        self.accept("file")
        path = self.parse_value()
        return ReadFile(pos, path, self._accept_into("into", "to"))

    def parse_write(self) -> WriteFile:
        pos = self._pos()
        self.expect("write")
        append = self.accept("append")
        self.accept("file")
        path = self.parse_value()
        contents: Expr = StringLit(pos, "")
        if self.accept("with", "as", "content"):
            contents = self.parse_value()
        return WriteFile(pos, path, contents, append)

    def parse_split(self) -> SplitStr:
        pos = self._pos()
        self.expect("split")
        text = self.parse_value()
        sep: Expr = StringLit(pos, " ")
        if self.accept("by", "on", "with"):
            sep = self.parse_value()
        return SplitStr(pos, text, sep, self._accept_into("into", "to"))

    def parse_replace(self) -> ReplaceStr:
        pos = self._pos()
        self.expect("replace")
        old = self.parse_value()
        self.accept("with")
        new = self.parse_value()
        in_var = self._accept_into("in")
        return ReplaceStr(pos, old, new, in_var, self._accept_into("into", "to"))

    def parse_convert(self) -> Convert:
        pos = self._pos()
        self.expect("convert")
        value = self.parse_value()
        self.accept("to", "as", "into")
        to_type = "text"
        if self.at_type(TK_IDENT) or self.at_type(TK_PREP):
            to_type = str(self.advance().value).lower()
        return Convert(pos, value, to_type, self._accept_into("into", "to", "as"))

    # ── Process ──────────────────────────────────────────────

    def parse_exit(self) -> ExitStmt:
        pos = self._pos()
        self.expect("exit")
        code: Expr = NumberLit(pos, 0)
        if self.accept("with"):
            self.accept("code")
            code = self.parse_value()
        return ExitStmt(pos, code)

    def parse_run(self) -> RunCommand:
        pos = self._pos()
        self.expect("run")
        cmd = self.parse_value()
        return RunCommand(pos, cmd, self._accept_into("into"))

    def parse_list_files(self) -> ListFiles:
        pos = self._pos()
        self.expect("list")
        self.accept("files")
        self.accept("in")
        path = self.parse_value()
        self.accept("into")
        return ListFiles(pos, path, self.expect_ident())

    def parse_file_exists(self) -> FileExists:
        pos = self._pos()
        self.expect("file")
        self.accept("exists")
        path = self.parse_value()
        self.accept("into")
        return FileExists(pos, path, self.expect_ident())

    def parse_create(self) -> Stmt:
        pos = self._pos()
        if self.peek_is(1, "server") or self.peek_is(1, "a") or self.peek_is(1, "the"):
            return self._parse_server_start()
        self.expect("create")
        self.accept("folder", "directory")
        return CreateFolder(pos, self.parse_value())

    def parse_exec(self) -> ExecCommand:
        pos = self._pos()
        verb = str(self.advance().value)
        if verb == "execute":
            self.accept("command")
        command = self.parse_value()
        variable = None
        if self.accept("into"):
            variable = self._parse_out()
        return ExecCommand(pos, verb, command, variable)

    # ── HTTP server ──────────────────────────────────────────

    def parse_start(self) -> Stmt | None:
        if self.peek_is(1, "server") or self.peek_is(1, "a") or self.peek_is(1, "the"):
            return self._parse_server_start()
        return None

    def _parse_server_start(self) -> ServeStmt:
        pos = self._pos()
        self.advance()
        self.accept("a", "the")
        self.accept("server")
        self.accept("on")
        self.accept("port")
        return ServeStmt(pos, self.parse_value())

    def parse_send(self) -> Stmt | None:
        pos = self._pos()
        if self.peek(1).value not in ("response", "a", "the", "file", "html", "css"):
            return None
        self.expect("send")
        self.accept("a", "the")
        if self.accept("file"):
            return ServeFile(pos, self.parse_value())
        if self.at("html") or self.at("css"):
            kind = str(self.advance().value)
            body = self.parse_value()
            status: Expr = NumberLit(pos, 200)
            if self.accept("with"):
                self.accept("status")
                status = self.parse_value()
            return RespondStmt(pos, status, body, StringLit(pos, kind))
        self.accept("response")
        self.accept("with")
        self.accept("status")
        if self.at("{"):
            status = NumberLit(pos, 200)
            body = self.parse_value()
        else:
            status = self.parse_value()
            body = ObjectLit(pos, [])
            if self.accept("and", "with"):
                self.accept("body")
                body = self.parse_value()
        content_type = None
        if self.accept("as"):
            content_type = self.parse_value()
        return RespondStmt(pos, status, body, content_type)

    def parse_when_route(self) -> Stmt | None:
        if not self._at_server_route():
            return None
        pos = self._pos()
        self.expect("when")
        self.accept("the")
        self.accept("server")
        self.accept("receives", "receiving")
        self.accept("a", "an")
        method = self.parse_value()
        self.accept("request")
        self.accept("to", "at", "on")
        path = self.parse_value()
        req_var = "request"
        if self.accept("with"):
            req_var = self.expect_ident()
        self.accept("then")
        body = self.parse_body({"end"})
        self.accept("end")
        return RouteStmt(pos, method, path, req_var, body)

    def parse_serve(self) -> Stmt:
        pos = self._pos()
        self.expect("serve")
        if self.at("file") or self.at("the"):
            self.accept("the")
            self.accept("file")
            return ServeFile(pos, self.parse_value())
        self.accept("on")
        self.accept("port")
        return ServeStmt(pos, self.parse_value())

    def parse_route(self) -> RouteStmt:
        pos = self._pos()
        self.expect("route")
        method = self.parse_value()
        path = self.parse_value()
        req_var = "request"
        if self.accept("with"):
            req_var = self.expect_ident()
        self.accept("then", "do")
        body = self.parse_body({"end"})
        self.accept("end")
        return RouteStmt(pos, method, path, req_var, body)

    def parse_respond(self) -> RespondStmt:
        pos = self._pos()
        self.expect("respond")
        self.accept("with")
        if self.at("{"):
            return RespondStmt(pos, NumberLit(pos, 200), self.parse_value())
        status = self.parse_value()
        body: Expr = ObjectLit(pos, [])
        if self.accept("and", "with"):
            body = self.parse_value()
        return RespondStmt(pos, status, body)

    # ── Classes and modules ──────────────────────────────────

    def parse_class(self) -> DefineClass:
        pos = self._pos()
        self.expect("class")
        return self._parse_class_rest(pos)

    def _parse_class_rest(self, pos: Pos) -> DefineClass:
        name = self.expect_ident_or_string()
        parent = None
        if self.accept("extends", "inherits"):
            parent = self.expect_ident_or_string()
        properties: list[str] = []
        if self.accept("with"):
            stop = {"and", "then", "do", "end", "define", "method"}
            while not self.at_eof() and not self.at_any({"then", "do", "end", "define", "method"}):
                if self.accept("and", ","):
                    continue
                if self._at_statement_start():
                    break
                properties.append(self.parse_name(stop))
        self.accept("then", "do")
        methods: list[MethodDef] = []
        while not self.at_eof() and not self.at("end"):
            if not self.accept("define"):
                self.advance()
                continue
            if self.accept("method"):
                methods.append(self._parse_method(self.expect_ident_or_string(), False))
            elif self.accept("constructor"):
                methods.append(self._parse_method("constructor", True))
            else:
                self.advance()
        self.accept("end")
        return DefineClass(pos, name, parent, properties, methods)

    def _parse_method(self, name: str, is_constructor: bool) -> MethodDef:
        params: list[str] = []
        if self.accept("with"):
            if self.accept("no"):
                self.accept("arguments", "params")
            else:
                params = self._parse_define_params({"then", "do", "end"})
        self.accept("then", "do")
        body = self.parse_body({"end"})
        self.accept("end")
        return MethodDef(name, params, body, is_constructor)

    def parse_new_instance(self, variable: str | None = None) -> NewInstance:
        pos = self._pos()
        self.expect("new")
        class_name = self.expect_ident_or_string()
        args: list[Expr] = []
        if self.accept("with"):
            while not self.at_eof() and not self.at_any({"into", "then", "end"}) and not self._at_statement_start():
                if self.accept("and", ","):
                    continue
                args.append(self.parse_value())
        if self.accept("into"):
            variable = self.parse_name({"then", "end"})
        return NewInstance(pos, class_name, args, variable)

    def parse_import(self) -> Stmt:
        pos = self._pos()
        self.expect("import")
        if self.at_type(TK_IDENT) or self.at_type(TK_ACTION):
            saved = self.pos
            names = [self.expect_ident_or_string()]
            while self.accept("and", ","):
                names.append(self.expect_ident_or_string())
            if self.accept("from"):
                return ImportFrom(pos, names, self.expect_ident_or_string())
            self.pos = saved
        file = self.expect_ident_or_string()
        alias = None
        if self.accept("as"):
            alias = self.expect_ident_or_string()
        return ImportStmt(pos, file, alias)

    def parse_export(self) -> ExportStmt:
        pos = self._pos()
        self.expect("export")
        return ExportStmt(pos, self.parse_name({"then", "end"}))

    # ── Errors, regex, process ───────────────────────────────

    def parse_throw(self) -> ThrowStmt:
        pos = self._pos()
        self.advance()
        self.accept("error", "exception")
        return ThrowStmt(pos, self.parse_value())

    def _parse_flags(self, default: str) -> str:
        if self.accept("with", "flags"):
            self.accept("flags")
            return self.expect_ident_or_string()
        return default

    def _parse_into_name(self) -> str | None:
        if self.accept("into"):
            return self.parse_name({"then", "end"})
        return None

    def parse_regex(self) -> RegexStmt:
        pos = self._pos()
        self.expect("regex")
        pattern = self.expect_ident_or_string()
        flags = self._parse_flags("")
        return RegexStmt(pos, pattern, flags, self._parse_into_name())

    def parse_regex_test(self) -> RegexTest:
        pos = self._pos()
        self.expect("test")
        text = self.parse_value()
        self.accept("against", "matches", "with")
        self.accept("pattern")
        pattern = self.parse_value()
        flags = self._parse_flags("")
        return RegexTest(pos, text, pattern, flags, self._parse_into_name())

    def parse_regex_extract(self) -> RegexExtract:
        pos = self._pos()
        self.expect("extract")
        pattern = self.parse_value()
        self.accept("from")
        text = self.parse_value()
        flags = self._parse_flags("g")
        return RegexExtract(pos, pattern, text, flags, self._parse_into_name())

    # ── Sockets, database, async ─────────────────────────────

    def parse_connect(self) -> ConnectSocket:
        pos = self._pos()
        self.expect("connect")
        self.accept("to")
        self.accept("websocket", "socket")
        url = self.parse_value()
        variable = None
        if self.accept("into", "as"):
            variable = self.parse_name({"then", "end"})
        return ConnectSocket(pos, url, variable)

    def parse_broadcast(self) -> Broadcast:
        pos = self._pos()
        self.expect("broadcast")
        message = self.parse_value()
        if not self.accept("to"):
            return Broadcast(pos, message)
        if self.accept("all"):
            self.accept("clients")
            return Broadcast(pos, message)
        if self.accept("room", "channel"):
            return Broadcast(pos, message, "room", self.expect_ident_or_string())
        return Broadcast(pos, message, self.expect_ident_or_string())

    def parse_query(self) -> DbQuery:
        pos = self._pos()
        self.expect("query")
        self.accept("database", "db")
        self.accept("with")
        sql = self.parse_value()
        params = None
        if self.accept("with", "params", "parameters"):
            self.accept("params", "parameters")
            if self.at("["):
                params = self.parse_value()
        return DbQuery(pos, sql, params, self._parse_into_name())

    def parse_insert(self) -> DbInsert:
        pos = self._pos()
        self.expect("insert")
        table = None
        data = None
        if self.accept("into"):
            self.accept("table")
            table = self.expect_ident_or_string()
            if self.accept("with", "values", "data"):
                data = self.parse_value()
        else:
            data = self.parse_value()
            if self.accept("into"):
                self.accept("table")
                table = self.expect_ident_or_string()
        return DbInsert(pos, table, data)

    def parse_select(self) -> DbSelect:
        pos = self._pos()
        self.expect("select")
        columns: list[str] | None = None
        if self.accept("*"):
            pass
        elif not self.at("from"):
            columns = []
            while not self.at_eof() and not self.at("from"):
                if self.accept("and", ","):
                    continue
                columns.append(self.expect_ident_or_string())
        self.accept("from")
        self.accept("table")
        table = self.expect_ident_or_string()
        where = None
        limit = None
        offset = None
        if self.accept("where"):
            where = self.parse_value()
        if self.accept("limit"):
            limit = self.parse_value()
        if self.accept("offset"):
            offset = self.parse_value()
        return DbSelect(pos, columns, table, where, limit, offset, self._parse_into_name())

    def parse_await(self) -> AwaitStmt:
        pos = self._pos()
        self.expect("await")
        if self.at("fetch"):
            return AwaitStmt(pos, inner=self.parse_fetch())
        if self.at("call"):
            return AwaitStmt(pos, inner=self.parse_call())
        value = self.parse_value()
        return AwaitStmt(pos, value=value, variable=self._parse_into_name())


_STATEMENT_PARSERS: dict[str, Callable[[Parser], Stmt | None]] = {
    # variables
    "let": Parser.parse_let,
    "set": Parser.parse_set,
    "increase": lambda p: p.parse_modify("increase"),
    "decrease": lambda p: p.parse_modify("decrease"),
    # entities, media, screen
    "move": Parser.parse_move,
    "teleport": Parser.parse_teleport,
    "spawn": Parser.parse_spawn,
    "destroy": Parser.parse_entity_action,
    "show": Parser.parse_entity_action,
    "hide": Parser.parse_entity_action,
    "freeze": Parser.parse_entity_action,
    "unfreeze": Parser.parse_entity_action,
    "play": Parser.parse_play,
    "stop": Parser.parse_stop,
    "apply": Parser.parse_apply,
    "shake": Parser.parse_screen_fx,
    "flash": Parser.parse_screen_fx,
    "tint": Parser.parse_screen_fx,
    # output and events
    "print": Parser.parse_print,
    "log": Parser.parse_log,
    "wait": Parser.parse_wait,
    "say": Parser.parse_say,
    "choice": Parser.parse_choice,
    "emit": Parser.parse_emit,
    "call": Parser.parse_call,
    "define": Parser.parse_define,
    # game flow
    "win": Parser.parse_game_state,
    "lose": Parser.parse_game_state,
    "restart": Parser.parse_game_state,
    "end": Parser.parse_end,
    "battle": Parser.parse_battle,
    "attack": Parser.parse_attack,
    "open": Parser.parse_open,
    "turn": Parser.parse_turn,
    "toggle": Parser.parse_toggle,
    # inventory, party, persistence
    "add": Parser.parse_add,
    "give": Parser.parse_give,
    "grant": Parser.parse_give,
    "remove": Parser.parse_remove,
    "take": Parser.parse_take,
    "load": Parser.parse_load,
    "save": Parser.parse_save,
    "delete": Parser.parse_delete,
    # RPG
    "equip": Parser.parse_equip,
    "heal": Parser.parse_heal,
    "recover": Parser.parse_recover,
    "change": Parser.parse_change,
    "learn": Parser.parse_skill,
    "forget": Parser.parse_skill,
    # control flow
    "if": Parser.parse_if,
    "repeat": Parser.parse_repeat,
    "while": Parser.parse_while,
    "for": Parser.parse_for_each,
    "break": Parser.parse_break,
    "skip": Parser.parse_break,
    "return": Parser.parse_return,
    "try": Parser.parse_try,
    "match": Parser.parse_match,
    # collections and strings
    "append": Parser.parse_append,
    "sort": Parser.parse_sort,
    "reverse": Parser.parse_reverse,
    "filter": Parser.parse_filter,
    "merge": Parser.parse_merge,
    "flatten": Parser.parse_flatten,
    "find": Parser.parse_find,
    "get": Parser.parse_get,
    "slice": Parser.parse_slice,
    "char": Parser.parse_char_at,
    "pad": Parser.parse_pad,
    "clamp": Parser.parse_clamp,
    "keys": Parser.parse_keys_values,
    "values": Parser.parse_keys_values,
    "type": Parser.parse_type_of,
    "index": Parser.parse_index_of,
    "transform": Parser.parse_transform,
    "reduce": Parser.parse_reduce,
    "every": Parser.parse_every_any,
    "any": Parser.parse_every_any,
    "copy": Parser.parse_copy,
    "assign": Parser.parse_assign,
    "join": Parser.parse_path_op,
    "basename": Parser.parse_path_op,
    "dirname": Parser.parse_path_op,
    "extension": Parser.parse_path_op,
    "extname": Parser.parse_path_op,
    # data formats and files
    "fetch": Parser.parse_fetch,
    "post": Parser.parse_post,
    "parse": Parser.parse_parse_json,
    "stringify": Parser.parse_stringify,
    "read": Parser.parse_read,
    "write": Parser.parse_write,
    "split": Parser.parse_split,
    "replace": Parser.parse_replace,
    "convert": Parser.parse_convert,
    # process
    "exit": Parser.parse_exit,
    "run": Parser.parse_run,
    "list": Parser.parse_list_files,
    "file": Parser.parse_file_exists,
    "create": Parser.parse_create,
    "execute": Parser.parse_exec,
    "shell": Parser.parse_exec,
    # server
    "start": Parser.parse_start,
    "send": Parser.parse_send,
    "when": Parser.parse_when_route,
    "serve": Parser.parse_serve,
    "route": Parser.parse_route,
    "respond": Parser.parse_respond,
    # classes and modules
    "class": Parser.parse_class,
    "new": Parser.parse_new_instance,
    "import": Parser.parse_import,
    "export": Parser.parse_export,
    # errors, regex
    "throw": Parser.parse_throw,
    "raise": Parser.parse_throw,
    "regex": Parser.parse_regex,
    "test": Parser.parse_regex_test,
    "extract": Parser.parse_regex_extract,
    # sockets, database, async
    "connect": Parser.parse_connect,
    "broadcast": Parser.parse_broadcast,
    "query": Parser.parse_query,
    "insert": Parser.parse_insert,
    "select": Parser.parse_select,
    "await": Parser.parse_await,
}


def parse_source(source: str) -> tuple[Program, list[Diagnostic]]:
    """Tokenize and parse, returning the program and its parse diagnostics."""
    parser = Parser(tokenize(source))
    program = parser.parse_program()
    return program, parser.diagnostics
