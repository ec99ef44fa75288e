"""Command-line entry point: ``hyperian FILE [--event KEY] [--parse]``."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import NoReturn

from . import __version__
from .config import ConfigError, Options
from .host import ExitProgram, World
from .parse import parse_source
from .platform import HttpNetwork, LocalProcess, SqliteDatabase
from .runtime import HyperianLang
from .serialize import program_to_dict

USAGE: str = """\
hyperian [OPTIONS] FILE

Options:
  --event KEY         Event to trigger after the top level runs (default starts:game)
  --parse             Print the parsed program as JSON and exit
  --while-limit N     Stop while loops after N iterations
  --db PATH           SQLite database file for query/insert/select
  --verbose           Log debug output to stderr
  --version           Show the version and exit
  --help              Show this help message
"""


@dataclass
class CliArgs:
    input_file: str
    event: str = "starts:game"
    parse_only: bool = False
    while_limit: int | None = None
    db: str | None = None
    verbose: bool = False


def _usage_error(message: str) -> NoReturn:
    print("error: " + message, file=sys.stderr)
    sys.exit(2)


def parse_args(argv: list[str]) -> CliArgs:
    """Parse command-line arguments; usage errors exit with status 2."""
    input_file: str | None = None
    event = "starts:game"
    parse_only = False
    while_limit: int | None = None
    db: str | None = None
    verbose = False
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--help" or arg == "-h":
            print(USAGE, end="")
            sys.exit(0)
        elif arg == "--version":
            print("hyperian " + __version__)
            sys.exit(0)
        elif arg in ("--event", "--while-limit", "--db"):
            if i + 1 >= len(argv):
                _usage_error(arg + " requires an argument")
            value = argv[i + 1]
            if arg == "--event":
                event = value
            elif arg == "--db":
                db = value
            else:
                try:
                    while_limit = int(value)
                except ValueError:
                    _usage_error("--while-limit expects an integer, got '" + value + "'")
                if while_limit is not None and while_limit <= 0:
                    _usage_error("--while-limit must be positive")
            i += 2
        elif arg == "--parse":
            parse_only = True
            i += 1
        elif arg == "--verbose" or arg == "-v":
            verbose = True
            i += 1
        elif arg.startswith("-"):
            _usage_error("unknown flag '" + arg + "'")
        else:
            if input_file is not None:
                _usage_error("unexpected argument '" + arg + "'")
            input_file = arg
            i += 1
    if input_file is None:
        _usage_error("no input file")
    return CliArgs(input_file, event, parse_only, while_limit, db, verbose)


def read_source(path: str) -> tuple[str, int]:
    """Read a script. Returns (source, exit_code) where exit_code 0 means OK."""
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError:
        print("error: cannot open '" + path + "'", file=sys.stderr)
        return ("", 1)
    try:
        return (raw.decode("utf-8"), 0)
    except ValueError:
        print("error: invalid utf-8 in '" + path + "'", file=sys.stderr)
        return ("", 1)


def build_options(args: CliArgs) -> Options:
    opts = Options.from_env()
    if args.while_limit is not None:
        opts.while_limit = args.while_limit
    if args.db is not None:
        opts.database_path = args.db
    opts.module_dir = os.path.dirname(os.path.abspath(args.input_file))
    return opts


def run_script(source: str, args: CliArgs, opts: Options) -> int:
    """Run the top level, trigger the start event and serve if a listener started."""
    world = World(tile_size=opts.tile_size)
    network = HttpNetwork(opts)
    database = SqliteDatabase(opts.database_path)
    lang = HyperianLang(
        world,
        process=LocalProcess(opts),
        network=network,
        database=database,
        options=opts,
    )
    try:
        failures = lang.load(source)
        failures.extend(lang.trigger(args.event))
        if network.server is not None:
            try:
                network.wait()
            except KeyboardInterrupt:
                network.stop()
    except ExitProgram as e:
        return e.code
    finally:
        database.close()
    if failures:
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="hyperian: %(message)s",
        stream=sys.stderr,
    )
    source, err = read_source(args.input_file)
    if err != 0:
        return err
    if args.parse_only:
        program, _ = parse_source(source)
        print(json.dumps(program_to_dict(program), indent=2))
        return 0
    try:
        opts = build_options(args)
    except ConfigError as e:
        print("error: " + str(e), file=sys.stderr)
        return 2
    return run_script(source, args, opts)


if __name__ == "__main__":
    sys.exit(main())
