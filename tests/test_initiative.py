"""Initiative rolls, ordering and stepping, without the database."""
from types import SimpleNamespace

import pytest

from tabletop.game import initiative
from tabletop.game.errors import InvalidRequestError
from tabletop.game.initiative import EndEncounter, EndTurn, NextTurn
from tabletop.models.turn_order import TurnOrder
from conftest import ScriptedRoller


def _character(name, cool=None, char_id=None, user_id=None):
    stats = {} if cool is None else {"cool": cool}
    return SimpleNamespace(
        id=char_id or name.lower(), name=name, stats=stats, user_id=user_id, is_npc=False
    )


def _turn_order(names, current_turn=0, round_number=1):
    return TurnOrder(
        entries=[
            initiative.make_entry(name, user_id=i + 1, character_id=name.lower())
            for i, name in enumerate(names)
        ],
        current_turn=current_turn,
        round_number=round_number,
    )


# -- rolls ---------------------------------------------------------------------


@pytest.mark.parametrize("cool", [-2, -1, 0, 1, 2, None])
def test_initiative_is_two_dice_plus_cool(cool):
    modifier = cool or 0
    for first, second in [(1, 1), (1, 6), (3, 4), (6, 6)]:
        value = initiative.roll_initiative(cool, ScriptedRoller([first, second]))
        assert value == first + second + modifier
        assert 2 + modifier <= value <= 12 + modifier


def test_cool_modifier_tolerates_missing_or_bad_values():
    assert initiative.cool_modifier(None) == 0
    assert initiative.cool_modifier({}) == 0
    assert initiative.cool_modifier({"cool": "2"}) == 2
    assert initiative.cool_modifier({"cool": "sharp"}) == 0


# -- ordering ------------------------------------------------------------------


def test_build_order_sorts_highest_first():
    characters = [_character("A", cool=2), _character("B", cool=0), _character("C", cool=-1)]
    # A=3+4+2=9, B=5+5=10, C=1+2-1=2
    entries = initiative.build_order(characters, ScriptedRoller([3, 4, 5, 5, 1, 2]))
    assert [e["character_name"] for e in entries] == ["B", "A", "C"]
    values = [e["initiative"] for e in entries]
    assert values == sorted(values, reverse=True)
    assert all(e["has_acted"] is False for e in entries)


def test_build_order_keeps_input_order_on_ties():
    characters = [_character("Alpha"), _character("Beta"), _character("Gamma")]
    rolls = [3, 3, 2, 4, 1, 5]  # all 6
    first = initiative.build_order(characters, ScriptedRoller(rolls))
    second = initiative.build_order(characters, ScriptedRoller(rolls))
    assert [e["character_name"] for e in first] == ["Alpha", "Beta", "Gamma"]
    assert first == second


# -- stepping ------------------------------------------------------------------


def test_full_cycle_returns_to_start_of_next_round():
    turn_order = _turn_order(["A", "B", "C", "D"])
    wraps = [initiative.step(turn_order) for _ in range(4)]
    assert wraps == [False, False, False, True]
    assert turn_order.current_turn == 0
    assert turn_order.round_number == 2
    assert all(e["has_acted"] is False for e in turn_order.entries)


def test_step_marks_current_as_acted():
    turn_order = _turn_order(["A", "B", "C"])
    initiative.step(turn_order)
    assert turn_order.current_turn == 1
    assert [e["has_acted"] for e in turn_order.entries] == [True, False, False]


def test_step_replaces_entries_list():
    turn_order = _turn_order(["A", "B"])
    before = turn_order.entries
    initiative.step(turn_order)
    assert turn_order.entries is not before
    assert before[0]["has_acted"] is False


def test_mark_acted_for_unknown_character_changes_nothing():
    turn_order = _turn_order(["A", "B"], current_turn=1, round_number=3)
    before = [dict(e) for e in turn_order.entries]
    assert initiative.mark_acted(turn_order, "nobody") is False
    assert turn_order.entries == before
    assert turn_order.current_turn == 1
    assert turn_order.round_number == 3


def test_mark_acted_does_not_advance():
    turn_order = _turn_order(["A", "B"])
    assert initiative.mark_acted(turn_order, "b") is True
    assert turn_order.current_turn == 0
    assert turn_order.entries[1]["has_acted"] is True


def test_two_character_encounter():
    characters = [_character("A", cool=2), _character("B", cool=0)]
    entries = initiative.build_order(characters, ScriptedRoller([3, 4, 5, 5]))
    assert [(e["character_name"], e["initiative"]) for e in entries] == [("B", 10), ("A", 9)]

    turn_order = TurnOrder(entries=entries, current_turn=0, round_number=1)
    initiative.step(turn_order)
    assert turn_order.current_turn == 1
    assert turn_order.entries[0]["has_acted"] is True

    initiative.step(turn_order)
    assert turn_order.current_turn == 0
    assert turn_order.round_number == 2
    assert [e["has_acted"] for e in turn_order.entries] == [False, False]


# -- commands ------------------------------------------------------------------


def test_parse_command():
    assert initiative.parse_command("next") == NextTurn()
    assert initiative.parse_command("endTurn", "c1") == EndTurn("c1")
    assert initiative.parse_command("end") == EndEncounter()


@pytest.mark.parametrize("action,character_id", [("jump", None), (None, None), ("endTurn", None)])
def test_parse_command_rejects_bad_input(action, character_id):
    with pytest.raises(InvalidRequestError):
        initiative.parse_command(action, character_id)
