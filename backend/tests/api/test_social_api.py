import pytest


def _as(user_id):
    return {"X-User-Id": user_id}


@pytest.mark.asyncio
async def test_block_lifecycle(api_client):
    resp = await api_client.post("/social/blocks/bob", headers=_as("alice"))
    assert resp.status_code == 200
    assert resp.json()["blocked_id"] == "bob"
    resp = await api_client.get("/social/blocks", headers=_as("alice"))
    assert [item["blocked_id"] for item in resp.json()["items"]] == ["bob"]
    resp = await api_client.delete("/social/blocks/bob", headers=_as("alice"))
    assert resp.json() == {"target_id": "bob", "active": False, "changed": True}
    resp = await api_client.delete("/social/blocks/bob", headers=_as("alice"))
    assert resp.json()["changed"] is False


@pytest.mark.asyncio
async def test_cannot_block_self(api_client):
    resp = await api_client.post("/social/blocks/alice", headers=_as("alice"))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "self_action"


@pytest.mark.asyncio
async def test_follow_lists(api_client):
    resp = await api_client.post("/social/follows/carol", headers=_as("alice"))
    assert resp.json() == {"target_id": "carol", "active": True, "changed": True}
    await api_client.post("/social/follows/carol", headers=_as("bob"))
    resp = await api_client.get("/social/users/carol/followers", headers=_as("alice"))
    assert resp.json()["items"] == ["alice", "bob"]
    resp = await api_client.get("/social/users/alice/following", headers=_as("alice"))
    assert resp.json()["items"] == ["carol"]
    resp = await api_client.delete("/social/follows/carol", headers=_as("alice"))
    assert resp.json()["changed"] is True


@pytest.mark.asyncio
async def test_privacy_roundtrip(api_client):
    resp = await api_client.get("/social/privacy", headers=_as("alice"))
    assert resp.json()["visibility"] == "everyone"
    resp = await api_client.put("/social/privacy", json={"visibility": "followers_only"}, headers=_as("alice"))
    assert resp.json()["visibility"] == "followers_only"
    resp = await api_client.get("/social/privacy", headers=_as("alice"))
    assert resp.json()["visibility"] == "followers_only"
    resp = await api_client.put("/social/privacy", json={"visibility": "nobody"}, headers=_as("alice"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_report_spam_blocks(api_client):
    resp = await api_client.post(
        "/social/reports",
        json={"user_id": "mallory", "reason": "spam"},
        headers=_as("alice"),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["reported_user_id"] == "mallory"
    assert body["status"] == "pending"
    assert body["blocked"] is True
    resp = await api_client.get("/social/blocks", headers=_as("alice"))
    assert [item["blocked_id"] for item in resp.json()["items"]] == ["mallory"]
    resp = await api_client.get("/social/reports", headers=_as("alice"))
    assert [item["id"] for item in resp.json()["items"]] == [body["id"]]


@pytest.mark.asyncio
async def test_follow_state(api_client):
    resp = await api_client.get("/social/follows/carol", headers=_as("alice"))
    assert resp.json() == {"target_id": "carol", "following": False, "pending": False}
    await api_client.post("/social/follows/carol", headers=_as("alice"))
    resp = await api_client.get("/social/follows/carol", headers=_as("alice"))
    assert resp.json() == {"target_id": "carol", "following": True, "pending": False}
