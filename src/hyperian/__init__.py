"""HyperianLang: a sentence-like scripting language for games and small servers."""

from __future__ import annotations

import logging

from .ast import Program as Program
from .config import Options as Options
from .host import World as World
from .parse import Diagnostic as Diagnostic
from .parse import ParseError as ParseError
from .parse import parse_source
from .runtime import ExitProgram as ExitProgram
from .runtime import HostError as HostError
from .runtime import HyperianError as HyperianError
from .runtime import HyperianLang as HyperianLang
from .runtime import Interpreter as Interpreter
from .runtime import RunResult as RunResult
from .runtime import ScriptError as ScriptError
from .runtime import run as run

__version__ = "0.1.0"

logging.getLogger("hyperian").addHandler(logging.NullHandler())


def parse(source: str) -> Program:
    """Parse a script, dropping its diagnostics."""
    program, _ = parse_source(source)
    return program
