import pytest
from conftest import PASSWORD


@pytest.mark.asyncio
async def test_register_then_me(client):
    response = await client.post("/api/auth/register", json={
        "email": "ash@example.com",
        "username": "ash",
        "password": "longenough",
        "display_name": "Ash",
    })
    assert response.status_code == 201
    token = response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    body = me.json()
    assert body["username"] == "ash"
    assert body["email"] == "ash@example.com"
    assert body["is_admin"] is False
    assert "hashed_password" not in body


@pytest.mark.asyncio
async def test_register_duplicates(client, make_user):
    await make_user("ash")

    response = await client.post("/api/auth/register", json={
        "email": "ash@example.com", "username": "other", "password": "longenough",
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"

    response = await client.post("/api/auth/register", json={
        "email": "new@example.com", "username": "ash", "password": "longenough",
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Username already taken"


@pytest.mark.asyncio
async def test_register_validation(client):
    response = await client.post("/api/auth/register", json={
        "email": "not-an-email", "username": "a b", "password": "short",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("identifier", ["ash", "ash@example.com"])
async def test_login_with_username_or_email(client, make_user, identifier):
    await make_user("ash")

    response = await client.post("/api/auth/login", data={"username": identifier, "password": PASSWORD})

    assert response.status_code == 200
    assert response.json()["access_token"]


@pytest.mark.asyncio
async def test_login_wrong_password(client, make_user):
    await make_user("ash")

    response = await client.post("/api/auth/login", data={"username": "ash", "password": "nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Incorrect username or password"


@pytest.mark.asyncio
async def test_protected_route_requires_token(client):
    assert (await client.get("/api/auth/me")).status_code == 401
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Could not validate credentials"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
