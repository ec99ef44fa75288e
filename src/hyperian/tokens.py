"""HyperianLang tokenizer: lexes sentence-like source into a flat token list."""

from __future__ import annotations


# Token type constants
TK_KEYWORD = "KEYWORD"
TK_ACTION = "ACTION"
TK_PREP = "PREP"
TK_COMPARISON = "COMPARISON"
TK_IDENT = "IDENT"
TK_NUMBER = "NUMBER"
TK_STRING = "STRING"
TK_BOOLEAN = "BOOLEAN"
TK_NULL = "NULL"
TK_OPERATOR = "OPERATOR"
TK_ASSIGN = "ASSIGN"
TK_PUNCT = "PUNCT"
TK_EOF = "EOF"

# Word types that can take part in a multi-word name
WORD_TYPES: set[str] = {TK_IDENT, TK_PREP, TK_ACTION, TK_KEYWORD}

KEYWORDS: set[str] = {
    "when", "then", "end", "if", "else", "repeat", "times", "every",
    "seconds", "while", "do", "and", "or", "not",
    "for", "try", "catch", "break", "skip", "where", "finally",
    "function", "return",
    "class", "extends", "method", "constructor", "property", "static",
    "private", "public",
    "import", "export", "from", "as",
    "await", "async",
}  # fmt: skip

ACTIONS: set[str] = {
    "set", "increase", "decrease", "move", "play", "stop", "spawn",
    "destroy", "show", "hide", "print", "wait", "call", "emit",
    "teleport", "freeze", "unfreeze", "apply", "define",
    "say", "choice", "battle", "attack", "add", "remove", "toggle",
    "load", "win", "lose", "restart", "save", "give", "take", "let",
    "turn", "open", "shake", "flash", "tint", "equip",
    "heal", "grant", "recover", "change", "learn", "forget",
    "delete", "deal", "restore", "drain",
    "append", "fetch", "post", "parse", "stringify",
    "read", "write", "split", "replace", "convert", "count",
    "round", "floor", "ceil", "abs", "sqrt", "min", "max", "random",
    "join", "trim", "uppercase", "lowercase",
    "sort", "reverse", "filter", "merge", "flatten",
    "get", "index", "slice", "find", "clamp", "log",
    "exit", "run", "create", "pad", "sign", "type",
    "transform", "reduce", "copy", "assign", "serve",
    "match", "respond", "listen", "any",
    "start", "send",
    "new", "inherit", "super",
    "regex", "pattern", "test", "matches", "capture", "extract",
    "throw", "raise", "error",
    "connect", "disconnect", "broadcast",
    "execute", "shell",
    "query", "insert", "update", "select",
    "promise", "resolve", "reject",
}  # fmt: skip

PREPS: set[str] = {
    "to", "by", "at", "with", "on", "of", "in", "is", "has",
    "touches", "presses", "clicks", "enters", "leaves", "becomes",
    "impulse", "force", "frames", "fps", "loop", "portrait",
    "item", "inventory", "scene", "game", "quantity", "starts",
    "switch", "off", "menu", "shop", "over", "event",
    "formula", "editor", "autotile", "zone", "slot", "effect",
    "party", "exp", "experience", "gold", "member", "wins", "loses",
    "levels", "up", "all", "level", "map", "encounter",
    "rate", "skill", "actor", "enemy", "name", "desc", "drops",
    "weight", "costs", "cost", "price", "scope", "element",
    "power", "physical", "revive", "inflict", "turns",
    "heals", "hp", "mp", "atk", "def", "matk", "mdef", "spd", "luk",
    "ai", "color",
    "growth", "stats", "skills", "looping", "beneficial",
    "into", "data", "record",
    "each", "percent", "damage", "flat", "message",
    "json", "exists", "empty", "last", "first", "text", "number",
    "file", "array", "url", "body", "contains",
    "uses", "defeats", "hits", "dies", "spawns",
    "object", "key", "keys",
    "ascending", "descending", "folder", "directory", "env",
    "command", "code", "timestamp", "date", "time",
    "ends", "right", "left", "char", "length",
    "boolean", "integer",
    "param", "params", "arg", "args",
    "against", "starting", "accumulator",
    "path", "basename", "dirname", "extension", "extname",
    "port", "route", "request", "response", "server", "receiving",
    "receives", "status",
    "html", "css", "javascript",
    "infinity", "pi", "nan", "math",
    "an", "a",
    "be", "the", "this", "that", "these", "those", "which", "who",
    "instance", "methods", "properties", "inherits", "parent", "child",
    "flags", "global", "ignorecase", "multiline", "groups",
    "websocket", "socket", "channel", "room",
    "database", "table", "column", "row", "rows", "values", "limit",
    "offset", "order",
    "callback", "handler", "listener",
    "stream", "pipe", "chunk", "encoding",
    "module", "exports", "require",
}  # fmt: skip

COMPARISONS: set[str] = {
    "less", "greater", "than", "equal", "equals", "above", "below", "between",
}  # fmt: skip

# Words that lex as operators or as arithmetic keywords
OPERATOR_WORDS: dict[str, str] = {"plus": "+", "minus": "-", "modulo": "%"}
ARITH_KEYWORDS: set[str] = {"times", "multiplied", "divided"}

OPERATOR_CHARS: str = "+-*/%"
PUNCT_CHARS: str = "[]{}(),:;"


class Token:
    """A token with type, value, and position."""

    def __init__(self, type_: str, value: object, line: int, col: int):
        self.type: str = type_
        self.value: object = value
        self.line: int = line
        self.col: int = col

    def __repr__(self) -> str:
        return (
            "Token("
            + self.type
            + ", "
            + repr(self.value)
            + ", "
            + str(self.line)
            + ", "
            + str(self.col)
            + ")"
        )


def _is_digit(c: str) -> bool:
    return c >= "0" and c <= "9"


def _is_alpha(c: str) -> bool:
    return (c >= "a" and c <= "z") or (c >= "A" and c <= "Z") or c == "_"


def _is_alnum(c: str) -> bool:
    return _is_alpha(c) or _is_digit(c)


def classify_word(word: str) -> tuple[str, object]:
    """Classify a word run. Returns (token type, value)."""
    lw = word.lower()
    if lw == "true" or lw == "false":
        return TK_BOOLEAN, lw == "true"
    if lw == "null" or lw == "nothing":
        return TK_NULL, None
    if lw in OPERATOR_WORDS:
        return TK_OPERATOR, OPERATOR_WORDS[lw]
    if lw in ARITH_KEYWORDS:
        return TK_KEYWORD, lw
    if lw in KEYWORDS:
        return TK_KEYWORD, lw
    if lw in ACTIONS:
        return TK_ACTION, lw
    if lw in PREPS:
        return TK_PREP, lw
    if lw in COMPARISONS:
        return TK_COMPARISON, lw
    return TK_IDENT, word


def _number_value(raw: str) -> int | float:
    value = float(raw)
    if value.is_integer():
        return int(value)
    return value


def tokenize(source: str) -> list[Token]:
    """Tokenize HyperianLang source into a flat list ending with TK_EOF.

    Never raises: characters that start no token are skipped.
    """
    tokens: list[Token] = []
    pos = 0
    line = 1
    col = 1
    length = len(source)

    while pos < length:
        c = source[pos]

        # Newlines
        if c == "\n":
            pos += 1
            line += 1
            col = 1
            continue

        # Whitespace
        if c.isspace():
            pos += 1
            col += 1
            continue

        # Line comments: // and #
        if c == "#" or (c == "/" and pos + 1 < length and source[pos + 1] == "/"):
            while pos < length and source[pos] != "\n":
                pos += 1
                col += 1
            continue

        start_line = line
        start_col = col

        # String literal, kept verbatim
        if c == '"':
            pos += 1
            col += 1
            chars: list[str] = []
            while pos < length and source[pos] != '"':
                if source[pos] == "\\" and pos + 1 < length and source[pos + 1] == '"':
                    chars.append(source[pos])
                    chars.append(source[pos + 1])
                    pos += 2
                    col += 2
                    continue
                if source[pos] == "\n":
                    line += 1
                    col = 0
                chars.append(source[pos])
                pos += 1
                col += 1
            pos += 1  # skip closing "
            col += 1
            tokens.append(Token(TK_STRING, "".join(chars), start_line, start_col))
            continue

        # Number, with an optional leading minus and at most one dot
        if _is_digit(c) or (c == "-" and pos + 1 < length and _is_digit(source[pos + 1])):
            start = pos
            pos += 1
            col += 1
            seen_dot = False
            while pos < length:
                ch = source[pos]
                if _is_digit(ch):
                    pass
                elif ch == "." and not seen_dot:
                    seen_dot = True
                else:
                    break
                pos += 1
                col += 1
            raw = source[start:pos]
            if raw.endswith("."):
                raw = raw + "0"
            tokens.append(Token(TK_NUMBER, _number_value(raw), start_line, start_col))
            continue

        if c in OPERATOR_CHARS:
            pos += 1
            col += 1
            tokens.append(Token(TK_OPERATOR, c, start_line, start_col))
            continue

        if c == "=":
            pos += 1
            col += 1
            tokens.append(Token(TK_ASSIGN, "=", start_line, start_col))
            continue

        # Word: keyword, action, preposition, comparison or identifier
        if _is_alpha(c):
            start = pos
            while pos < length and _is_alnum(source[pos]):
                pos += 1
                col += 1
            type_, value = classify_word(source[start:pos])
            tokens.append(Token(type_, value, start_line, start_col))
            continue

        if c in PUNCT_CHARS:
            pos += 1
            col += 1
            tokens.append(Token(TK_PUNCT, c, start_line, start_col))
            continue

        # Unknown character
        pos += 1
        col += 1

    tokens.append(Token(TK_EOF, None, line, col))
    return tokens
