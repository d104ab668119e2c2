"""
HTTP and WebSocket surface, wired to the coordinator through the app factory.
"""
import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chatcore.config import get_settings
from chatcore.main import create_app
from chatcore.services.presence_service import REPLACED_CLOSE_CODE


def token_for(user_id: str) -> str:
    settings = get_settings()
    return jwt.encode({"sub": user_id}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {token_for(user_id)}"}


def ws_url(user_id: str) -> str:
    return f"/messages/ws/chat/{user_id}?token={token_for(user_id)}"


def sync(ws, user_id: str) -> None:
    """Round-trip one frame so the server has finished registering the socket."""
    ws.send_json({"type": "get_user_status", "userId": user_id})
    assert ws.receive_json()["isOnline"] is True


@pytest.fixture
def client(coordinator):
    app = create_app(coordinator=coordinator)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "connections": 0}


def test_send_message_requires_token(client, bob):
    response = client.post("/messages", json={"receiverId": bob, "content": "hi"})
    assert response.status_code == 401


def test_send_message_rejects_invalid_token(client, bob):
    response = client.post(
        "/messages",
        json={"receiverId": bob, "content": "hi"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401


def test_send_and_open_conversation(client, alice, bob, conversations):
    response = client.post("/messages", json={"receiverId": bob, "content": "hello"}, headers=auth(alice))
    assert response.status_code == 201
    body = response.json()
    assert body["messageStatus"] == "sent"
    assert body["senderId"] == alice
    conversation_id = body["conversationId"]
    assert conversations.unread(conversation_id, bob) == 1

    response = client.get(f"/conversations/{conversation_id}/messages", headers=auth(bob))
    assert response.status_code == 200
    items = response.json()["items"]
    assert [m["messageStatus"] for m in items] == ["read"]
    assert conversations.unread(conversation_id, bob) == 0


def test_open_conversation_forbidden_for_outsider(client, users, alice, bob):
    conversation_id = client.post("/messages", json={"receiverId": bob, "content": "x"}, headers=auth(alice)).json()["conversationId"]
    outsider = users.add_user("eve")

    response = client.get(f"/conversations/{conversation_id}/messages", headers=auth(outsider))
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_mark_read_errors_are_mapped(client, alice, bob):
    message_id = client.post("/messages", json={"receiverId": bob, "content": "x"}, headers=auth(alice)).json()["id"]

    response = client.put("/messages/read", json={"messageIds": [message_id]}, headers=auth(alice))
    assert response.status_code == 403

    response = client.put("/messages/read", json={"messageIds": ["bogus"]}, headers=auth(bob))
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"

    response = client.put("/messages/read", json={"messageIds": [message_id]}, headers=auth(bob))
    assert response.status_code == 200
    assert response.json()["items"][0]["messageStatus"] == "read"


def test_react_and_delete(client, alice, bob):
    message_id = client.post("/messages", json={"receiverId": bob, "content": "x"}, headers=auth(alice)).json()["id"]

    response = client.post(f"/messages/{message_id}/reactions", json={"emoji": "👍"}, headers=auth(bob))
    assert response.status_code == 200
    assert response.json()["reactions"] == [{"userId": bob, "emoji": "👍"}]

    assert client.delete(f"/messages/{message_id}", headers=auth(bob)).status_code == 403
    assert client.delete(f"/messages/{message_id}", headers=auth(alice)).status_code == 200
    assert client.delete(f"/messages/{message_id}", headers=auth(alice)).status_code == 404


def test_presence_endpoint(client, alice, bob):
    response = client.get(f"/presence/{bob}", headers=auth(alice))
    assert response.status_code == 200
    assert response.json()["isOnline"] is False

    with client.websocket_connect(ws_url(bob)) as bob_ws:
        sync(bob_ws, bob)
        response = client.get(f"/presence/{bob}", headers=auth(alice))
        assert response.json()["isOnline"] is True


def test_websocket_rejects_bad_token(client, alice, bob):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/messages/ws/chat/{alice}?token=garbage") as ws:
            ws.receive_json()
    assert exc_info.value.code == 4401

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/messages/ws/chat/{alice}?token={token_for(bob)}") as ws:
            ws.receive_json()
    assert exc_info.value.code == 4403


def test_websocket_realtime_flow(client, users, alice, bob):
    with client.websocket_connect(ws_url(alice)) as alice_ws:
        sync(alice_ws, alice)
        with client.websocket_connect(ws_url(bob)) as bob_ws:
            assert alice_ws.receive_json() == {"type": "user_status", "userId": bob, "isOnline": True, "lastSeen": None}

            sent = client.post("/messages", json={"receiverId": bob, "content": "ping"}, headers=auth(alice)).json()
            event = bob_ws.receive_json()
            assert event["type"] == "receive_message"
            assert event["message"]["id"] == sent["id"]
            conversation_id = sent["conversationId"]

            bob_ws.send_json({"type": "typing_start", "conversationId": conversation_id, "receiverId": alice})
            assert alice_ws.receive_json() == {"type": "user_typing", "userId": bob, "conversationId": conversation_id, "isTyping": True}
            bob_ws.send_json({"type": "typing_stop", "conversationId": conversation_id, "receiverId": alice})
            assert alice_ws.receive_json()["isTyping"] is False

            bob_ws.send_json({"type": "message_read", "messageIds": [sent["id"]]})
            assert alice_ws.receive_json() == {"type": "message_status_update", "messageId": sent["id"], "messageStatus": "read"}

            bob_ws.send_json({"type": "add_reaction", "messageId": sent["id"], "emoji": "🔥"})
            assert alice_ws.receive_json()["reactions"] == [{"userId": bob, "emoji": "🔥"}]
            assert bob_ws.receive_json()["type"] == "reaction_update"

            bob_ws.send_json({"type": "get_user_status", "userId": alice})
            assert bob_ws.receive_json() == {"type": "user_status", "userId": alice, "isOnline": True, "lastSeen": None}

        offline = alice_ws.receive_json()
        assert offline["type"] == "user_status"
        assert offline["userId"] == bob
        assert offline["isOnline"] is False
        assert users.users[bob]["is_online"] is False


def test_websocket_typing_to_stranger_is_refused(client, users, alice, bob):
    eve = users.add_user("eve")
    conversation_id = client.post("/messages", json={"receiverId": bob, "content": "x"}, headers=auth(alice)).json()["conversationId"]

    with client.websocket_connect(ws_url(eve)) as ws:
        ws.send_json({"type": "typing_start", "conversationId": conversation_id, "receiverId": bob})
        error = ws.receive_json()
        assert error["type"] == "error"

        ws.send_json({"type": "typing_start", "conversationId": "c1", "receiverId": "whoever"})
        assert ws.receive_json()["type"] == "error"


def test_websocket_invalid_frames_report_errors(client, alice, bob):
    with client.websocket_connect(ws_url(alice)) as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid message payload"}

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "message_read", "messageIds": ["bogus"]})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert "Invalid message ids" in error["message"]


def test_websocket_reconnect_closes_previous_socket(client, alice):
    with client.websocket_connect(ws_url(alice)) as first:
        sync(first, alice)
        with client.websocket_connect(ws_url(alice)):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                first.receive_json()
            assert exc_info.value.code == REPLACED_CLOSE_CODE
