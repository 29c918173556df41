"""Initiative rolls and turn-order stepping.

These helpers work on plain entry dicts and on a ``TurnOrder`` row without
touching the database, so the sequencing rules can be tested on their own.

An entry looks like::

    {"character_id": "c1", "character_name": "Vex", "user_id": 3,
     "initiative": 9, "has_acted": False, "is_npc": False}
"""
import random
from dataclasses import dataclass
from typing import Iterable, Protocol, Union

from tabletop.game.errors import InvalidRequestError
from tabletop.models.turn_order import TurnOrder

DICE_SIDES = 6


class Roller(Protocol):
    def randint(self, a: int, b: int) -> int: ...


def roll_initiative(cool: int | None, rng: Roller = random) -> int:
    """2d6 plus the character's cool modifier (missing modifier counts as 0)."""
    return rng.randint(1, DICE_SIDES) + rng.randint(1, DICE_SIDES) + (cool or 0)


def cool_modifier(stats: dict | None) -> int:
    if not stats:
        return 0
    value = stats.get("cool")
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def make_entry(
    name: str,
    user_id: int | None = None,
    character_id: str | None = None,
    initiative: int = 0,
    is_npc: bool = False,
) -> dict:
    return {
        "character_id": character_id,
        "character_name": name,
        "user_id": user_id,
        "initiative": initiative,
        "has_acted": False,
        "is_npc": is_npc,
    }


def build_order(characters: Iterable, rng: Roller = random) -> list[dict]:
    """Roll initiative for each character and sort highest first.

    Characters need ``id``, ``name``, ``stats``, ``user_id`` and ``is_npc``.
    The sort is stable, so equal initiatives keep their input order.
    """
    entries = [
        make_entry(
            name=char.name,
            user_id=char.user_id,
            character_id=char.id,
            initiative=roll_initiative(cool_modifier(char.stats), rng),
            is_npc=bool(char.is_npc),
        )
        for char in characters
    ]
    entries.sort(key=lambda e: e["initiative"], reverse=True)
    return entries


def current_entry(turn_order: TurnOrder) -> dict | None:
    entries = turn_order.entries or []
    if 0 <= turn_order.current_turn < len(entries):
        return entries[turn_order.current_turn]
    return None


def step(turn_order: TurnOrder) -> bool:
    """Mark the current entry as acted and move to the next one.

    Passing the end of the order wraps to 0, starts a new round and clears
    every ``has_acted`` flag.  Returns True when a new round started.
    """
    entries = [dict(e) for e in turn_order.entries or []]
    current = turn_order.current_turn
    if 0 <= current < len(entries):
        entries[current]["has_acted"] = True

    current += 1
    wrapped = current >= len(entries)
    if wrapped:
        current = 0
        turn_order.round_number += 1
        for entry in entries:
            entry["has_acted"] = False

    turn_order.entries = entries
    turn_order.current_turn = current
    return wrapped


def mark_acted(turn_order: TurnOrder, character_id: str) -> bool:
    """Mark *character_id* as acted without advancing; False if absent."""
    entries = [dict(e) for e in turn_order.entries or []]
    for entry in entries:
        if entry.get("character_id") == character_id:
            entry["has_acted"] = True
            turn_order.entries = entries
            return True
    return False


# ---------------------------------------------------------------------------
# Commands accepted by the turn-order PATCH endpoint
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NextTurn:
    pass


@dataclass(frozen=True)
class EndTurn:
    character_id: str


@dataclass(frozen=True)
class EndEncounter:
    pass


TurnCommand = Union[NextTurn, EndTurn, EndEncounter]


def parse_command(action: str | None, character_id: str | None = None) -> TurnCommand:
    if action == "next":
        return NextTurn()
    if action == "endTurn":
        if not character_id:
            raise InvalidRequestError("character_id is required for endTurn")
        return EndTurn(character_id)
    if action == "end":
        return EndEncounter()
    raise InvalidRequestError(f"Unknown action: {action!r}")
