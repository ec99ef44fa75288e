"""Data-driven test runner for HyperianLang.

Test cases live in ``*.tests`` files. Each case is::

    === test name
    source
    ---
    expected
    ---

Expected is ``ok``, ``error: <message>``, ``warning: <message>``, or one
dotpath assertion per line (``init.0.name = x``). CLI cases start their input
with an ``args:`` line; the rest of the input becomes the script file.
"""

import os
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from hyperian import run as hyperian_run
from hyperian.config import Options
from hyperian.parse import parse_source
from hyperian.serialize import program_to_dict

PARSE_TIMEOUT = 5
TESTS_DIR = Path(__file__).parent
SRC_DIR = TESTS_DIR.parent / "src"

TESTS = {
    "hyperian_parse": {"dir": "parser", "run": "phase"},
    "hyperian_app": {"dir": "apps", "run": "phase"},
    "hyperian_cli": {"dir": "cli", "run": "cli"},
}


# ---------------------------------------------------------------------------
# Timeout
# ---------------------------------------------------------------------------


def _timeout_handler(signum, frame):
    raise TimeoutError("parse() timed out")


signal.signal(signal.SIGALRM, _timeout_handler)


# ---------------------------------------------------------------------------
# Case file parsing
# ---------------------------------------------------------------------------


def parse_case_file(path: Path) -> list[tuple[str, str, str]]:
    """Parse a .tests file into (name, input, expected) tuples."""
    lines = path.read_text().split("\n")
    result: list[tuple[str, str, str]] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("=== "):
            test_name = line[4:].strip()
            i += 1
            input_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                input_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            expected_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                expected_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            test_input = "\n".join(input_lines)
            expected = "\n".join(expected_lines).strip()
            result.append((test_name, test_input, expected))
        else:
            i += 1
    return result


def discover_cases(test_dir: Path) -> list[tuple[str, str, str]]:
    """Glob *.tests in test_dir, return (test_id, input, expected) tuples."""
    results = []
    for test_file in sorted(test_dir.glob("*.tests")):
        for name, input_code, expected in parse_case_file(test_file):
            results.append((f"{test_file.stem}/{name}", input_code, expected))
    return results


# ---------------------------------------------------------------------------
# Phase result + assertion checker
# ---------------------------------------------------------------------------


@dataclass
class PhaseResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    data: dict | None = None


def resolve_dotpath(obj: object, path: str) -> object:
    """Resolve a dot-separated path against a nested dict/list structure."""
    parts = path.split(".")
    current = obj
    i = 0
    while i < len(parts):
        part = parts[i]
        if part == "length":
            return len(current)
        if isinstance(current, list):
            current = current[int(part)]
            i += 1
        elif isinstance(current, dict):
            if part in current:
                current = current[part]
                i += 1
            else:
                found = False
                for j in range(i + 1, len(parts)):
                    composite = ".".join(parts[i : j + 1])
                    if composite in current:
                        current = current[composite]
                        i = j + 1
                        found = True
                        break
                if not found:
                    raise KeyError(part)
        else:
            raise KeyError(
                f"cannot traverse {type(current).__name__} with key {part!r}"
            )
    return current


def to_comparable(value: object) -> str:
    """Convert a value to its string form for comparison."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    return str(value)


def check_expected(
    expected: str, result: PhaseResult, phase: str, *, lenient_errors: bool = False
) -> None:
    if expected == "ok":
        if result.errors:
            pytest.fail(f"Expected ok, got error: {result.errors[0]}")
        return
    if expected.startswith("error:"):
        expected_msg = expected[6:].strip()
        if not result.errors:
            pytest.fail(f"Expected error containing '{expected_msg}', got ok")
        if not lenient_errors and expected_msg:
            found = any(expected_msg.lower() in e.lower() for e in result.errors)
            if not found:
                pytest.fail(
                    f"Expected error containing '{expected_msg}', got: {result.errors}"
                )
        return
    if expected.startswith("warning:"):
        expected_msg = expected[8:].strip()
        if not result.warnings:
            pytest.fail(f"Expected warning containing '{expected_msg}', got none")
        found = any(expected_msg.lower() in w.lower() for w in result.warnings)
        if not found:
            pytest.fail(
                f"Expected warning containing '{expected_msg}', got: {result.warnings}"
            )
        return
    # Dotpath assertions
    if result.errors:
        pytest.fail(f"{phase} failed: {result.errors[0]}")
    assert result.data is not None, f"No data returned from {phase}"
    for line in expected.split("\n"):
        line = line.strip()
        if not line:
            continue
        if "=" not in line:
            pytest.fail(f"Bad assertion (no '='): {line}")
        path, expected_val = line.split("=", 1)
        path = path.strip()
        expected_val = expected_val.strip()
        try:
            actual = resolve_dotpath(result.data, path)
        except (KeyError, IndexError, TypeError) as e:
            pytest.fail(f"Path '{path}' not found in result: {e}")
        actual_str = to_comparable(actual)
        if actual_str != expected_val:
            pytest.fail(
                f"Assertion failed: {path}\n"
                f"  expected: {expected_val!r}\n"
                f"  actual:   {actual_str!r}"
            )


# ---------------------------------------------------------------------------
# Phase runners
# ---------------------------------------------------------------------------


def run_hyperian_parse(source: str) -> PhaseResult:
    try:
        signal.alarm(PARSE_TIMEOUT)
        program, diagnostics = parse_source(source)
        return PhaseResult(
            errors=[str(d) for d in diagnostics if d.severity == "error"],
            warnings=[str(d) for d in diagnostics if d.severity == "warning"],
            data=program_to_dict(program),
        )
    except Exception as e:
        return PhaseResult(errors=[str(e)])
    finally:
        signal.alarm(0)


def run_hyperian_app(source: str) -> PhaseResult:
    """Run a script in-process against a quiet World and the local process."""
    try:
        signal.alarm(PARSE_TIMEOUT)
        result = hyperian_run(source, options=Options())
    finally:
        signal.alarm(0)
    return PhaseResult(
        errors=result.errors,
        warnings=result.diagnostics,
        data={
            "vars": result.vars,
            "output": result.output,
            "events": result.events,
            "exit_code": result.exit_code,
        },
    )


RUNNERS = {
    "hyperian_parse": run_hyperian_parse,
    "hyperian_app": run_hyperian_app,
}


# ---------------------------------------------------------------------------
# CLI cases
# ---------------------------------------------------------------------------


def parse_cli_case(source: str, expected: str) -> dict:
    """Split a CLI case into args, script body and assertions."""
    case: dict = {"args": [], "script": "", "assertions": []}
    input_lines = source.split("\n")
    body_start = 0
    if input_lines and input_lines[0].startswith("args:"):
        args_str = input_lines[0][5:].strip()
        case["args"] = args_str.split() if args_str else []
        body_start = 1
    case["script"] = "\n".join(input_lines[body_start:]).strip()
    for line in expected.split("\n"):
        line = line.strip()
        if not line:
            continue
        if line.startswith("exit:"):
            case["assertions"].append(("exit", int(line[5:].strip())))
        elif line.startswith("stderr-contains:"):
            case["assertions"].append(("stderr-contains", line[16:].strip()))
        elif line.startswith("stdout-contains:"):
            case["assertions"].append(("stdout-contains", line[16:].strip()))
        elif line.startswith("stdout-empty:"):
            case["assertions"].append(("stdout-empty", None))
    return case


def run_cli(case: dict, workdir: Path) -> subprocess.CompletedProcess[bytes]:
    """Run the hyperian CLI; a non-empty script body is passed as main.hl."""
    args = list(case["args"])
    if case["script"]:
        (workdir / "main.hl").write_text(case["script"] + "\n")
        args.append("main.hl")
    env = dict(os.environ)
    env["PYTHONPATH"] = str(SRC_DIR)
    env.pop("HYPERIAN_WHILE_LIMIT", None)
    return subprocess.run(
        [sys.executable, "-m", "hyperian.cli", *args],
        capture_output=True,
        cwd=workdir,
        env=env,
        timeout=30,
    )


def check_assertions(
    result: subprocess.CompletedProcess[bytes], assertions: list[tuple]
) -> None:
    for kind, value in assertions:
        if kind == "exit":
            assert result.returncode == value, (
                f"expected exit {value}, got {result.returncode}"
                f"\nstderr: {result.stderr.decode(errors='replace')}"
            )
        elif kind == "stderr-contains":
            actual = result.stderr.decode(errors="replace")
            assert value in actual, (
                f"expected stderr to contain {value!r}, got {actual!r}"
            )
        elif kind == "stdout-contains":
            actual = result.stdout.decode(errors="replace")
            assert value in actual, (
                f"expected stdout to contain {value!r}, got {actual!r}"
            )
        elif kind == "stdout-empty":
            assert result.stdout == b"", (
                f"expected empty stdout, got {result.stdout[:200]!r}"
            )


# ---------------------------------------------------------------------------
# Parametrization
# ---------------------------------------------------------------------------


def pytest_generate_tests(metafunc):
    for name, cfg in TESTS.items():
        test_dir = TESTS_DIR / cfg["dir"]
        fixture = f"{name}_input"
        if fixture in metafunc.fixturenames:
            cases = discover_cases(test_dir)
            params = [pytest.param(inp, exp, id=tid) for tid, inp, exp in cases]
            metafunc.parametrize(f"{fixture},{name}_expected", params)


# ---------------------------------------------------------------------------
# Test functions
# ---------------------------------------------------------------------------


def test_hyperian_parse(hyperian_parse_input, hyperian_parse_expected):
    check_expected(
        hyperian_parse_expected,
        run_hyperian_parse(hyperian_parse_input),
        "hyperian_parse",
    )


def test_hyperian_app(hyperian_app_input, hyperian_app_expected):
    check_expected(
        hyperian_app_expected,
        run_hyperian_app(hyperian_app_input),
        "hyperian_app",
    )


def test_hyperian_cli(hyperian_cli_input, hyperian_cli_expected, tmp_path: Path):
    case = parse_cli_case(hyperian_cli_input, hyperian_cli_expected)
    check_assertions(run_cli(case, tmp_path), case["assertions"])
