from uuid import uuid4

from techconnect.api.messages import direct_conversation_id
from techconnect.db.models import Message, Notification

from conftest import auth_headers, make_user


def send(client, sender, receiver_id, content="Hello there", **extra):
    return client.post("/messages/", headers=auth_headers(sender),
                       json={"receiver_id": str(receiver_id), "content": content, **extra})


def test_direct_conversation_id_is_symmetric():
    a, b = uuid4(), uuid4()
    assert direct_conversation_id(a, b) == direct_conversation_id(b, a)


def test_send_and_fetch_conversation(client, db):
    alice = make_user(db)
    bob = make_user(db, role="company")

    resp = send(client, alice, bob.id, "  Can you start next week?  ")
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    sent = body["message"]
    assert sent["content"] == "Can you start next week?"
    assert sent["sender_name"] == alice.name
    assert sent["conversation_id"] == direct_conversation_id(alice.id, bob.id)

    reply = send(client, bob, alice.id, "Yes, Monday works")
    assert reply.json()["message"]["conversation_id"] == sent["conversation_id"]

    thread = client.get(f"/messages/{sent['conversation_id']}", headers=auth_headers(bob)).json()
    assert [m["content"] for m in thread] == ["Can you start next week?", "Yes, Monday works"]

    outsider = make_user(db)
    assert client.get(f"/messages/{sent['conversation_id']}", headers=auth_headers(outsider)).json() == []


def test_poll_since_returns_only_newer_messages(client, db):
    alice = make_user(db)
    bob = make_user(db)
    first = send(client, alice, bob.id, "First").json()["message"]
    send(client, alice, bob.id, "Second")

    newer = client.get(f"/messages/{first['conversation_id']}", headers=auth_headers(bob),
                       params={"since": first["created_at"]}).json()
    assert [m["content"] for m in newer] == ["Second"]


def test_conversations_and_mark_read(client, db):
    alice = make_user(db)
    bob = make_user(db)
    send(client, alice, bob.id, "One")
    send(client, alice, bob.id, "Two")
    send(client, bob, alice.id, "Reply")

    conversations = client.get("/messages/user/conversations", headers=auth_headers(bob)).json()
    assert len(conversations) == 1
    assert conversations[0]["unread_count"] == 2
    assert conversations[0]["last_message"]["content"] == "Reply"

    cid = conversations[0]["conversation_id"]
    marked = client.put(f"/messages/{cid}/read", headers=auth_headers(bob))
    assert marked.json()["count"] == 2

    conversations = client.get("/messages/user/conversations", headers=auth_headers(bob)).json()
    assert conversations[0]["unread_count"] == 0
    assert client.get("/messages/user/conversations", headers=auth_headers(alice)).json()[0]["unread_count"] == 1


def test_receiver_is_notified(client, db):
    alice = make_user(db)
    bob = make_user(db)
    message_id = send(client, alice, bob.id, "Quote attached").json()["message"]["id"]

    note = db.query(Notification).filter_by(user_id=bob.id).one()
    assert note.type == "message_received"
    assert note.data["message_id"] == message_id


def test_invalid_messages_are_refused(client, db):
    alice = make_user(db)
    bob = make_user(db)

    assert send(client, alice, alice.id).status_code == 422
    assert send(client, alice, uuid4()).status_code == 404
    assert send(client, alice, bob.id, "   ").status_code == 422
    assert db.query(Message).count() == 0


def test_cannot_join_someone_elses_conversation(client, db):
    alice = make_user(db)
    bob = make_user(db)
    mallory = make_user(db)
    send(client, alice, bob.id, "Private", conversation_id="project-42")

    resp = send(client, mallory, alice.id, "Let me in", conversation_id="project-42")
    assert resp.status_code == 403
    assert db.query(Message).filter_by(conversation_id="project-42").count() == 1
