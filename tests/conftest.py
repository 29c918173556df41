from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tabletop.auth.jwt import create_access_token
from tabletop.config import Settings
from tabletop.database import Database, get_db
from tabletop.game.notifications import NotificationDispatcher
from tabletop.main import create_app
from tabletop.models.campaign import Campaign, CampaignMembership, ROLE_ADMIN, ROLE_PLAYER
from tabletop.models.scene import Scene
from tabletop.models.user_account import UserAccount
from tabletop.ws.manager import ConnectionManager

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeLive(ConnectionManager):
    """Records every channel event instead of writing to sockets."""

    def __init__(self):
        super().__init__()
        self.events: list[tuple[str, str, dict]] = []
        self.fail = False

    async def trigger(self, channel: str, event: str, data: dict) -> int:
        if self.fail:
            raise RuntimeError("live channel down")
        self.events.append((channel, event, data))
        return 1

    def named(self, event: str) -> list[tuple[str, str, dict]]:
        return [e for e in self.events if e[1] == event]


class FakeEmail:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    @property
    def enabled(self) -> bool:
        return True

    async def send(self, to, subject, html, notification_id) -> bool:
        if self.fail:
            raise RuntimeError("mail API down")
        self.sent.append({"to": to, "subject": subject, "html": html, "id": notification_id})
        return True


class FakePush:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    @property
    def enabled(self) -> bool:
        return True

    async def send(self, user_id, title, message, action_url=None, data=None) -> bool:
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append({"user_id": user_id, "title": title, "message": message})
        return True


@pytest_asyncio.fixture
async def database():
    db = Database(TEST_DATABASE_URL)
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def live():
    return FakeLive()


@pytest.fixture
def email():
    return FakeEmail()


@pytest.fixture
def push():
    return FakePush()


@pytest.fixture
def dispatcher(live, email, push):
    return NotificationDispatcher(live, email=email, push=push)


@pytest_asyncio.fixture
async def client(database, dispatcher):
    async def override_get_db():
        async with database.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app(Settings(ALLOW_TEST_NOTIFICATIONS=True))
    app.state.db = database
    app.state.dispatcher = dispatcher
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def world(db_session):
    """A campaign with one admin, two players (with email) and an open scene."""
    gm = UserAccount(username="gm", email="gm@example.com", password_hash="x")
    alice = UserAccount(username="alice", email="alice@example.com", password_hash="x")
    bob = UserAccount(username="bob", email="bob@example.com", password_hash="x")
    db_session.add_all([gm, alice, bob])
    await db_session.flush()

    campaign = Campaign(title="Apocalypse Road")
    db_session.add(campaign)
    await db_session.flush()
    db_session.add_all([
        CampaignMembership(user_id=gm.id, campaign_id=campaign.id, role=ROLE_ADMIN),
        CampaignMembership(user_id=alice.id, campaign_id=campaign.id, role=ROLE_PLAYER),
        CampaignMembership(user_id=bob.id, campaign_id=campaign.id, role=ROLE_PLAYER),
    ])
    scene = Scene(
        campaign_id=campaign.id, title="The Bridge", is_active=True,
        turn_deadline=None, waiting_on_users=None,
    )
    db_session.add(scene)
    await db_session.commit()

    return SimpleNamespace(
        gm_id=gm.id,
        alice_id=alice.id,
        bob_id=bob.id,
        campaign_id=campaign.id,
        scene_id=scene.id,
    )


class ScriptedRoller:
    """Deterministic stand-in for ``random``: returns queued die results."""

    def __init__(self, rolls):
        self.rolls = list(rolls)

    def randint(self, a: int, b: int) -> int:
        value = self.rolls.pop(0)
        assert a <= value <= b
        return value


def auth_headers(user_id: int) -> dict:
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}
