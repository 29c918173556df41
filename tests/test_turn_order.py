"""Initiative turn order: service and API."""
import pytest
from sqlalchemy import select

from tabletop.game import initiative, turn_order
from tabletop.game.errors import NotFoundError
from tabletop.models.character import Character
from tabletop.models.notification import Notification
from tabletop.models.scene import Scene
from tabletop.models.scheduled_event import ScheduledEvent
from tabletop.ws import protocol as P
from conftest import ScriptedRoller, auth_headers


async def _add_characters(db, world):
    db.add_all([
        Character(campaign_id=world.campaign_id, user_id=world.alice_id, name="A",
                  stats={"cool": 2}, is_alive=True, is_npc=False),
        Character(campaign_id=world.campaign_id, user_id=world.bob_id, name="B",
                  stats={"cool": 0}, is_alive=True, is_npc=False),
        Character(campaign_id=world.campaign_id, user_id=None, name="Corpse",
                  stats={"cool": 3}, is_alive=False, is_npc=True),
    ])
    await db.commit()


async def _initialize(db, dispatcher, world):
    await _add_characters(db, world)
    # Characters are rolled in name order: A=(3,4)+2, B=(5,5)+0
    record = await turn_order.initialize(
        db, dispatcher, world.campaign_id, world.scene_id,
        rng=ScriptedRoller([3, 4, 5, 5]),
    )
    await db.commit()
    return record


# -- service -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_initialize_rolls_living_characters(db_session, dispatcher, live, world):
    record = await _initialize(db_session, dispatcher, world)

    assert [(e["character_name"], e["initiative"]) for e in record.entries] == [
        ("B", 10), ("A", 9),
    ]
    assert record.current_turn == 0
    assert record.round_number == 1
    assert record.is_active is True

    initialized = live.named(P.TURN_ORDER_INITIALIZED)
    assert len(initialized) == 1
    channel, _, data = initialized[0]
    assert channel == P.campaign_channel(world.campaign_id)
    assert data["scene_id"] == world.scene_id


@pytest.mark.asyncio
async def test_initialize_starts_first_turn(db_session, dispatcher, world):
    record = await _initialize(db_session, dispatcher, world)

    assert record.turn_deadline is not None
    scene = await db_session.get(Scene, world.scene_id)
    assert scene.waiting_on_users == [world.bob_id]

    notes = (await db_session.execute(
        select(Notification).where(Notification.user_id == world.bob_id)
    )).scalars().all()
    assert [n.title for n in notes] == ["Your Turn!"]


@pytest.mark.asyncio
async def test_next_twice_wraps_into_round_two(db_session, dispatcher, live, world):
    await _initialize(db_session, dispatcher, world)

    record = await turn_order.apply_action(
        db_session, dispatcher, world.campaign_id, world.scene_id, initiative.NextTurn()
    )
    assert record.current_turn == 1
    assert record.entries[0]["has_acted"] is True

    record = await turn_order.apply_action(
        db_session, dispatcher, world.campaign_id, world.scene_id, initiative.NextTurn()
    )
    assert record.current_turn == 0
    assert record.round_number == 2
    assert [e["has_acted"] for e in record.entries] == [False, False]

    updates = live.named(P.TURN_ORDER_UPDATED)
    assert len(updates) == 2
    assert updates[-1][2]["current_character"]["character_name"] == "B"


@pytest.mark.asyncio
async def test_end_turn_for_unknown_character_is_silent(db_session, dispatcher, world):
    await _initialize(db_session, dispatcher, world)

    record = await turn_order.apply_action(
        db_session, dispatcher, world.campaign_id, world.scene_id,
        initiative.EndTurn("no-such-character"),
    )
    assert record.current_turn == 0
    assert record.round_number == 1
    assert [e["has_acted"] for e in record.entries] == [False, False]


@pytest.mark.asyncio
async def test_end_deactivates_and_blocks_further_actions(db_session, dispatcher, live, world):
    record = await _initialize(db_session, dispatcher, world)

    await turn_order.apply_action(
        db_session, dispatcher, world.campaign_id, world.scene_id, initiative.EndEncounter()
    )
    assert record.is_active is False
    assert len(live.named(P.TURN_ORDER_ENDED)) == 1

    pending = (await db_session.execute(
        select(ScheduledEvent).where(ScheduledEvent.is_processed == False)  # noqa: E712
    )).scalars().all()
    assert pending == []

    for command in (initiative.NextTurn(), initiative.EndTurn("b")):
        with pytest.raises(NotFoundError, match="No active turn order"):
            await turn_order.apply_action(
                db_session, dispatcher, world.campaign_id, world.scene_id, command
            )


@pytest.mark.asyncio
async def test_reinitialize_reuses_the_scene_row(db_session, dispatcher, world):
    first = await _initialize(db_session, dispatcher, world)
    await turn_order.apply_action(
        db_session, dispatcher, world.campaign_id, world.scene_id, initiative.NextTurn()
    )

    second = await turn_order.initialize(
        db_session, dispatcher, world.campaign_id, world.scene_id,
        rng=ScriptedRoller([1, 1, 6, 6]),
    )
    assert second.id == first.id
    assert second.current_turn == 0
    assert second.round_number == 1
    assert [e["character_name"] for e in second.entries] == ["B", "A"]


# -- API -----------------------------------------------------------------------


def _url(world, scene_id=None):
    return (
        f"/api/campaigns/{world.campaign_id}/scenes/"
        f"{scene_id or world.scene_id}/turn-order"
    )


@pytest.mark.asyncio
async def test_api_requires_authentication(client, world):
    resp = await client.post(_url(world))
    assert resp.status_code == 401
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_api_initialize_requires_admin(client, world):
    resp = await client.post(_url(world), headers=auth_headers(world.alice_id))
    assert resp.status_code == 403
    assert resp.json() == {"error": "Only admins can manage turn order"}


@pytest.mark.asyncio
async def test_api_initialize_unknown_scene(client, world):
    resp = await client.post(
        _url(world, scene_id="missing"), headers=auth_headers(world.gm_id)
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_api_initialize_and_read(client, db_session, world):
    await _add_characters(db_session, world)

    resp = await client.post(_url(world), headers=auth_headers(world.gm_id))
    assert resp.status_code == 200
    order = resp.json()["turnOrder"]["order"]
    assert {e["character_name"] for e in order} == {"A", "B"}
    assert order[0]["initiative"] >= order[1]["initiative"]

    resp = await client.get(_url(world), headers=auth_headers(world.bob_id))
    assert resp.status_code == 200
    assert resp.json()["turnOrder"]["order"] == order


@pytest.mark.asyncio
async def test_api_player_cannot_reset_order_through_turns(client, db_session, world):
    await _add_characters(db_session, world)
    resp = await client.post(_url(world), headers=auth_headers(world.gm_id))
    order = resp.json()["turnOrder"]["order"]

    resp = await client.post(
        f"/api/campaigns/{world.campaign_id}/turns",
        json={
            "action": "initialize",
            "scene_id": world.scene_id,
            "participants": [{"name": "Bob only", "user_id": world.bob_id}],
        },
        headers=auth_headers(world.bob_id),
    )
    assert resp.status_code == 403
    assert resp.json() == {"error": "Only admins can manage turn order"}

    resp = await client.get(_url(world), headers=auth_headers(world.bob_id))
    assert resp.json()["turnOrder"]["order"] == order


@pytest.mark.asyncio
async def test_api_read_without_turn_order(client, world):
    resp = await client.get(_url(world), headers=auth_headers(world.alice_id))
    assert resp.status_code == 200
    assert resp.json() == {"turnOrder": None}


@pytest.mark.asyncio
async def test_api_rejects_non_members(client, world):
    reg = await client.post("/api/auth/register", json={
        "username": "stranger", "password": "pass123",
    })
    headers = {"Authorization": f"Bearer {reg.json()['access_token']}"}

    resp = await client.get(_url(world), headers=headers)
    assert resp.status_code == 403
    resp = await client.patch(_url(world), json={"action": "next"}, headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_api_player_can_advance(client, db_session, world):
    await _add_characters(db_session, world)
    await client.post(_url(world), headers=auth_headers(world.gm_id))

    resp = await client.patch(
        _url(world), json={"action": "next"}, headers=auth_headers(world.alice_id)
    )
    assert resp.status_code == 200
    assert resp.json()["turnOrder"]["current_turn"] == 1


@pytest.mark.asyncio
async def test_api_end_then_next_is_not_found(client, db_session, world):
    await _add_characters(db_session, world)
    await client.post(_url(world), headers=auth_headers(world.gm_id))
    headers = auth_headers(world.gm_id)

    resp = await client.patch(_url(world), json={"action": "end"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["turnOrder"]["is_active"] is False

    resp = await client.patch(_url(world), json={"action": "next"}, headers=headers)
    assert resp.status_code == 404
    assert resp.json() == {"error": "No active turn order"}

    resp = await client.patch(
        _url(world), json={"action": "endTurn", "characterId": "x"}, headers=headers
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_api_rejects_unknown_action(client, db_session, world):
    await _add_characters(db_session, world)
    await client.post(_url(world), headers=auth_headers(world.gm_id))

    resp = await client.patch(
        _url(world), json={"action": "rewind"}, headers=auth_headers(world.gm_id)
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_api_next_without_turn_order(client, world):
    resp = await client.patch(
        _url(world), json={"action": "next"}, headers=auth_headers(world.gm_id)
    )
    assert resp.status_code == 404
