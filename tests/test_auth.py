import pytest

from tabletop.auth.jwt import create_access_token, user_id_from_token


@pytest.mark.asyncio
async def test_register(client):
    resp = await client.post("/api/auth/register", json={
        "username": "testuser",
        "password": "testpass123",
        "email": "test@example.com",
    })
    assert resp.status_code == 200
    data = resp.json()
    assert "access_token" in data
    assert data["username"] == "testuser"
    assert data["token_type"] == "bearer"
    assert user_id_from_token(data["access_token"]) == data["user_id"]


@pytest.mark.asyncio
async def test_register_duplicate(client):
    await client.post("/api/auth/register", json={
        "username": "testuser",
        "password": "testpass123",
    })
    resp = await client.post("/api/auth/register", json={
        "username": "testuser",
        "password": "testpass456",
    })
    assert resp.status_code == 400
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_login(client):
    await client.post("/api/auth/register", json={
        "username": "testuser",
        "password": "testpass123",
    })
    resp = await client.post("/api/auth/login", json={
        "username": "testuser",
        "password": "testpass123",
    })
    assert resp.status_code == 200
    data = resp.json()
    assert "access_token" in data


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    await client.post("/api/auth/register", json={
        "username": "testuser",
        "password": "testpass123",
    })
    resp = await client.post("/api/auth/login", json={
        "username": "testuser",
        "password": "wrongpass",
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_bad_tokens_are_rejected(client):
    for headers in (
        {},
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": f"Bearer {create_access_token({'sub': '4242'})}"},
    ):
        resp = await client.get("/api/campaigns", headers=headers)
        assert resp.status_code == 401


def test_user_id_from_token_rejects_garbage():
    assert user_id_from_token(None) is None
    assert user_id_from_token("garbage") is None
    assert user_id_from_token(create_access_token({"sub": "abc"})) is None
    assert user_id_from_token(create_access_token({"sub": "7"})) == 7


@pytest.mark.asyncio
async def test_root(client):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "tabletop"}
