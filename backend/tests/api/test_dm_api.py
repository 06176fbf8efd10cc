import pytest

from dmengine.infra.jwt import encode_access


def _as(user_id):
    return {"X-User-Id": user_id}


async def _followers_only(api_client, *users):
    for user in users:
        resp = await api_client.put("/social/privacy", json={"visibility": "followers_only"}, headers=_as(user))
        assert resp.status_code == 200


@pytest.mark.asyncio
async def test_requires_authentication(api_client):
    resp = await api_client.get("/dm/conversations")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_bearer_token_authenticates(api_client):
    token = encode_access({"sub": "alice"})
    resp = await api_client.get("/dm/conversations", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json() == {"items": []}


@pytest.mark.asyncio
async def test_bad_token_rejected(api_client):
    resp = await api_client.get("/dm/conversations", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_access_check(api_client):
    resp = await api_client.get("/dm/access/bob", headers=_as("alice"))
    assert resp.json() == {"outcome": "allowed", "reason": None}
    await _followers_only(api_client, "bob")
    resp = await api_client.get("/dm/access/bob", headers=_as("alice"))
    assert resp.json()["outcome"] == "allowed_as_request"
    resp = await api_client.get("/dm/access/alice", headers=_as("alice"))
    assert resp.json() == {"outcome": "denied", "reason": "self_conversation"}


@pytest.mark.asyncio
async def test_request_flow_over_http(api_client):
    await _followers_only(api_client, "alice", "bob")
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "hi"}, headers=_as("alice"))
    assert resp.status_code == 200
    body = resp.json()
    conversation_id = body["conversation"]["id"]
    assert body["conversation"]["status"] == "pending"
    assert body["conversation"]["message_counts"] == {"alice": 1, "bob": 0}

    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "hi again"}, headers=_as("alice"))
    assert resp.status_code == 429
    assert resp.json()["detail"] == "pending_message_limit_reached"
    assert resp.json()["retryable"] is False

    resp = await api_client.get("/dm/requests", headers=_as("bob"))
    assert [item["id"] for item in resp.json()["items"]] == [conversation_id]
    assert resp.json()["items"][0]["unread_count"] == 1

    resp = await api_client.post(f"/dm/conversations/{conversation_id}/accept", headers=_as("bob"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"

    resp = await api_client.post(
        f"/dm/conversations/{conversation_id}/messages",
        json={"text": "now we talk"},
        headers=_as("alice"),
    )
    assert resp.status_code == 200
    resp = await api_client.get(f"/dm/conversations/{conversation_id}/messages", headers=_as("bob"))
    assert [m["text"] for m in resp.json()["items"]] == ["hi", "now we talk"]


@pytest.mark.asyncio
async def test_blocked_send_is_forbidden(api_client):
    resp = await api_client.post("/social/blocks/alice", headers=_as("bob"))
    assert resp.status_code == 200
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "hey"}, headers=_as("alice"))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "blocked"
    assert resp.json()["error"] == "PermissionDenied"


@pytest.mark.asyncio
async def test_declined_conversation(api_client):
    await _followers_only(api_client, "bob")
    resp = await api_client.post("/dm/conversations", json={"target_id": "bob"}, headers=_as("alice"))
    assert resp.json()["created"] is True
    conversation_id = resp.json()["conversation"]["id"]
    resp = await api_client.post(f"/dm/conversations/{conversation_id}/decline", headers=_as("bob"))
    assert resp.json()["status"] == "declined"
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "why"}, headers=_as("alice"))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "declined_previously"


@pytest.mark.asyncio
async def test_outsider_and_missing_conversation(api_client):
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "hey"}, headers=_as("alice"))
    conversation_id = resp.json()["conversation"]["id"]
    resp = await api_client.get(f"/dm/conversations/{conversation_id}", headers=_as("mallory"))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "not_participant"
    resp = await api_client.get("/dm/conversations/dm:nobody:none", headers=_as("alice"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_invalid_text_is_unprocessable(api_client):
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "   "}, headers=_as("alice"))
    assert resp.status_code == 422
    assert resp.json()["detail"] == "empty"
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob"}, headers=_as("alice"))
    assert resp.status_code == 422
    assert resp.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_flags_reactions_and_read(api_client):
    resp = await api_client.post("/dm/messages", json={"to_user_id": "bob", "text": "hey"}, headers=_as("alice"))
    conversation_id = resp.json()["conversation"]["id"]
    message_id = resp.json()["message"]["id"]

    resp = await api_client.put(
        f"/dm/conversations/{conversation_id}/flags/muted", json={"enabled": True}, headers=_as("bob")
    )
    assert resp.json()["muted"] is True
    resp = await api_client.put(
        f"/dm/conversations/{conversation_id}/flags/loud", json={"enabled": True}, headers=_as("bob")
    )
    assert resp.status_code == 422

    resp = await api_client.post(
        f"/dm/conversations/{conversation_id}/messages/{message_id}/reactions",
        json={"emoji": "🔥"},
        headers=_as("bob"),
    )
    assert resp.json()["reactions"] == [{"user_id": "bob", "emoji": "🔥"}]

    resp = await api_client.post(f"/dm/conversations/{conversation_id}/read", headers=_as("bob"))
    assert resp.json()["unread_count"] == 0

    resp = await api_client.post(
        f"/dm/conversations/{conversation_id}/typing", json={"typing": True}, headers=_as("bob")
    )
    assert resp.json() == {"ok": True}
