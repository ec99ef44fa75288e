"""Rule registration, event dispatch, condition polling and scenes."""

import pytest

from hyperian import HyperianLang, World
from hyperian.ast import Event, Pos, Rule
from hyperian.parse import parse_source
from hyperian.runtime import event_key


def load(world, source: str) -> HyperianLang:
    lang = HyperianLang(world)
    assert lang.load(source) == []
    return lang


GAME = """
let touched be 0
let alarms be 0
when game starts then
  let started be true
end
when player touches coin then
  increase touched by 1
end
when player health is less than 10 then
  increase alarms by 1
end
"""


def test_rules_registered_by_key(world):
    lang = load(world, GAME)
    assert sorted(lang.interp.event_rules) == ["starts:game", "touches:player:coin"]
    assert len(lang.interp.condition_rules) == 1


def test_load_runs_top_level_only(world):
    lang = load(world, GAME)
    assert lang.vars["touched"] == 0
    assert "started" not in lang.vars


def test_trigger_runs_matching_rules(world):
    lang = load(world, GAME)
    assert lang.trigger("touches:player:coin") == []
    assert lang.trigger("touches:player:coin") == []
    assert lang.vars["touched"] == 2
    assert "started" not in lang.vars


def test_trigger_unknown_key_is_a_no_op(world):
    lang = load(world, GAME)
    assert lang.trigger("touches:player:lava") == []
    assert lang.vars["touched"] == 0


def test_rules_on_one_key_run_in_registration_order(world):
    lang = load(
        world,
        "let seen be 0\n"
        "when doorbell then\n  let ring_a be seen\n  let seen be 1\nend\n"
        "when doorbell then\n  let ring_b be seen\n  let seen be 2\nend\n",
    )
    lang.trigger("doorbell")
    assert (lang.vars["ring_a"], lang.vars["ring_b"], lang.vars["seen"]) == (0, 1, 2)


def test_same_source_gives_same_bag():
    bags = []
    for _ in range(2):
        lang = load(World(echo=False, sleep=False), GAME)
        lang.trigger("starts:game")
        lang.trigger("touches:player:coin")
        bags.append(dict(lang.vars))
    assert bags[0] == bags[1]


def test_event_keys():
    program, _ = parse_source(
        "when player presses Space then\nend\n"
        "when hero enters cave then\nend\n"
        "when boss dies then\nend\n"
        "when player health is less than 10 then\nend\n"
    )
    keys = [event_key(r.event) for r in program.rules]
    assert keys[0] == "presses:player:space"
    assert keys[1] == "enters:hero:cave"
    assert keys[2] == "boss:dies"
    assert keys[3] is None


def test_tick_fires_condition_rules(world):
    lang = load(world, GAME)
    world.set_property("player", "health", 50)
    assert lang.tick() == []
    assert lang.vars["alarms"] == 0
    world.set_property("player", "health", 5)
    lang.tick()
    lang.tick()
    assert lang.vars["alarms"] == 2


def test_condition_reads_object_in_bag(world):
    lang = load(world, GAME + 'let player be {health: 3}\n')
    lang.tick()
    assert lang.vars["alarms"] == 1


def test_failing_rule_does_not_stop_others(world):
    lang = load(
        world,
        'when doorbell then\n  throw "broken"\nend\n'
        "when doorbell then\n  let rang be true\nend\n",
    )
    failures = lang.trigger("doorbell")
    assert [e.msg for e in failures] == ["broken"]
    assert lang.vars["rang"] is True
    assert any(d.severity == "error" and d.message == "broken" for d in lang.diagnostics)


def test_failure_keeps_earlier_effects(world):
    lang = load(world, 'when doorbell then\n  let before be 1\n  throw "x"\n  let after be 1\nend\n')
    lang.trigger("doorbell")
    assert lang.vars["before"] == 1
    assert "after" not in lang.vars


def test_scene_rules_replace_previous_scene(world):
    lang = load(world, 'when player clicks then\n  print "base"\nend\n')
    assert lang.load_scene('let scene be "menu"\nwhen player clicks then\n  print "menu"\nend\n') == []
    assert lang.vars["scene"] == "menu"
    lang.trigger("clicks:player")
    assert world.lines == ["base", "menu"]

    lang.load_scene('when player clicks then\n  print "shop"\nend\n')
    world.lines.clear()
    lang.trigger("clicks:player")
    assert world.lines == ["base", "shop"]


def test_unload_scene_keeps_base_rules(world):
    lang = load(world, 'when player clicks then\n  print "base"\nend\n')
    lang.load_scene(
        'when player clicks then\n  print "menu"\nend\n'
        "when player health is less than 10 then\n  print \"low\"\nend\n"
    )
    assert lang.unload_scene() == 2
    assert lang.unload_scene() == 0
    lang.trigger("clicks:player")
    assert world.lines == ["base"]
    assert lang.interp.condition_rules == []


def test_rule_without_dispatch_key_is_rejected(world):
    lang = HyperianLang(world)
    with pytest.raises(ValueError, match="no dispatch key for Event"):
        lang.interp.add_rule(Rule(Pos(1, 1), Event(Pos(1, 1)), []))
    assert lang.interp.event_rules == {}
    assert lang.interp.condition_rules == []
