"""Function calls, bag snapshots, classes and module imports."""

from pathlib import Path

import pytest

from hyperian import HyperianLang, Options
from hyperian.platform import LocalProcess
from hyperian.runtime import Environment


def run_script(world, source: str, **kwargs) -> tuple[HyperianLang, list]:
    lang = HyperianLang(world, **kwargs)
    return lang, lang.load(source)


def warnings_of(lang: HyperianLang) -> list[str]:
    return [d.message for d in lang.diagnostics if d.severity == "warning"]


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def test_snapshot_restores_same_dict():
    env = Environment()
    env.set("x", 1)
    bag = env.vars
    env.push_snapshot()
    env.set("x", 2)
    env.set("temp", True)
    assert env.depth == 1
    env.pop_snapshot()
    assert env.vars is bag
    assert bag == {"x": 1}
    assert env.depth == 0


def test_nested_snapshots():
    env = Environment()
    env.set("a", 1)
    env.push_snapshot()
    env.set("a", 2)
    env.push_snapshot()
    env.set("a", 3)
    env.pop_snapshot()
    assert env.get("a") == 2
    env.pop_snapshot()
    assert env.get("a") == 1


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


def test_function_reads_caller_variables(world):
    lang, errors = run_script(
        world,
        "let base be 10\n"
        "define function add_base with n\n"
        "  return n + base\n"
        "end\n"
        "let r be call function add_base with 5\n",
    )
    assert errors == []
    assert lang.vars["r"] == 15


def test_function_writes_are_discarded(world):
    lang, _ = run_script(
        world,
        "let counter be 0\n"
        "define function bump\n"
        "  increase counter by 1\n"
        "end\n"
        "call function bump\n",
    )
    assert lang.vars["counter"] == 0


def test_missing_arguments_are_null(world):
    lang, _ = run_script(
        world,
        "define function pair with a and b\n"
        "  return b\n"
        "end\n"
        "let r be call function pair with 1\n",
    )
    assert lang.vars["r"] is None


def test_bag_restored_when_body_fails(world):
    lang, errors = run_script(
        world,
        "let x be 1\n"
        "define function broken with x\n"
        "  let leaked be true\n"
        '  throw "nope"\n'
        "end\n"
        "try\n"
        "  call function broken with 99\n"
        "catch problem\n"
        "  let message be problem\n"
        "end\n",
    )
    assert errors == []
    assert lang.vars["x"] == 1
    assert lang.vars["message"] == "nope"
    assert "leaked" not in lang.vars
    assert lang.interp.env.depth == 0


def test_depth_limit_unwinds_snapshots(world):
    lang, errors = run_script(
        world,
        "define function spin with n\n"
        "  return call function spin with n\n"
        "end\n"
        "let r be call function spin with 1\n",
    )
    assert [e.msg for e in errors] == ["maximum call depth exceeded"]
    assert lang.interp.env.depth == 0
    assert "n" not in lang.vars


# ---------------------------------------------------------------------------
# Classes
# ---------------------------------------------------------------------------


ANIMALS = """
define class Animal with name
  define method speak
    return "..."
  end
  define method intro
    return "I am {this.name}"
  end
end
define class Dog extends Animal
  define method speak
    return "Woof"
  end
end
let d be new Dog with "Rex"
call method speak on d into said
call method intro on d into intro_text
"""


def test_child_overrides_and_inherits(world):
    lang, errors = run_script(world, ANIMALS)
    assert errors == []
    assert lang.vars["said"] == "Woof"
    assert lang.vars["intro_text"] == "I am Rex"
    assert lang.vars["d"]["__class__"] == "Dog"
    assert lang.vars["d"]["name"] == "Rex"


def test_class_registry(world):
    lang, _ = run_script(world, ANIMALS)
    dog = lang.interp.classes["Dog"]
    assert dog.parent == "Animal"
    assert dog.properties == ["name"]
    assert sorted(dog.methods) == ["intro", "speak"]


def test_class_cannot_extend_itself(world):
    lang, _ = run_script(world, "define class Knot extends Knot\nend\n")
    assert "class 'Knot' cannot extend itself" in warnings_of(lang)
    assert lang.interp.classes["Knot"].parent is None


def test_method_call_does_not_leak_this(world):
    lang, _ = run_script(world, ANIMALS)
    assert "this" not in lang.vars


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------


HELPERS = """
define function double with n
  return n * 2
end
let greeting be "hi"
"""


@pytest.fixture
def module_dir(tmp_path: Path) -> Path:
    (tmp_path / "helpers.hl").write_text(HELPERS)
    (tmp_path / "partial.hl").write_text("let secret be 1\nlet shown be 2\nexport shown\n")
    (tmp_path / "loop.hl").write_text('import "loop"\nlet looped be true\n')
    return tmp_path


def load_with_modules(world, module_dir: Path, source: str) -> HyperianLang:
    opts = Options(module_dir=str(module_dir))
    lang = HyperianLang(world, process=LocalProcess(opts), options=opts)
    assert lang.load(source) == []
    return lang


def test_import_with_alias(world, module_dir):
    lang = load_with_modules(
        world, module_dir, 'import "helpers" as h\nlet r be call function "h.double" with 4\n'
    )
    assert lang.vars["r"] == 8
    assert lang.vars["h"] == {"greeting": "hi"}
    assert "greeting" not in lang.vars


def test_import_without_alias_shares_the_bag(world, module_dir):
    lang = load_with_modules(world, module_dir, 'import "helpers"\nlet r be call function double with 3\n')
    assert lang.vars["greeting"] == "hi"
    assert lang.vars["r"] == 6


def test_import_names_from_module(world, module_dir):
    lang = load_with_modules(
        world, module_dir, "import double and greeting from helpers\nlet r be call function double with 5\n"
    )
    assert lang.vars["greeting"] == "hi"
    assert lang.vars["r"] == 10
    assert warnings_of(lang) == []


def test_import_missing_name_warns(world, module_dir):
    lang = load_with_modules(world, module_dir, "import nope from helpers\n")
    assert warnings_of(lang) == ["module helpers has no name 'nope'"]


def test_exports_limit_what_is_imported(world, module_dir):
    lang = load_with_modules(world, module_dir, 'import "partial" as p\n')
    assert lang.vars["p"] == {"shown": 2}


def test_module_not_found_warns(world, module_dir):
    lang = load_with_modules(world, module_dir, 'import "ghost"\nlet after be 1\n')
    assert warnings_of(lang) == ["module not found: ghost"]
    assert lang.vars["after"] == 1


def test_circular_import_warns(world, module_dir):
    lang = load_with_modules(world, module_dir, 'import "loop"\n')
    assert warnings_of(lang) == ["circular import of loop"]
    assert lang.vars["looped"] is True


def test_import_without_process_capability(world):
    lang, errors = run_script(world, 'import "helpers"\n')
    assert errors == []
    assert warnings_of(lang) == ["no process capability: cannot import helpers"]
