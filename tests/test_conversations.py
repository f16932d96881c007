from sqlmodel import select

from khojpayo.models.conversation import ConversationMessage
from khojpayo.models.notification import Notification


def start(client, auth, user, item, recipient):
    return client.post("/conversations", headers=auth(user), json={
        "item_id": str(item.id),
        "recipient_id": str(recipient.id),
    })


def test_start_conversation_and_reuse(client, make_user, make_item, auth):
    finder = make_user()
    seeker = make_user()
    item = make_item(finder)

    created = start(client, auth, seeker, item, finder)
    assert created.status_code == 201
    assert created.json()["is_new"] is True
    conversation_id = created.json()["conversation"]["id"]

    # found in the other participant order too
    reused = start(client, auth, finder, item, seeker)
    assert reused.status_code == 200
    assert reused.json()["is_new"] is False
    assert reused.json()["conversation"]["id"] == conversation_id


def test_start_conversation_errors(client, make_user, make_item, auth):
    user = make_user()
    item = make_item(make_user())

    assert start(client, auth, user, item, user).status_code == 400
    assert client.post("/conversations", headers=auth(user), json={"item_id": str(item.id)}).status_code == 400
    assert client.post("/conversations", headers=auth(user), json={
        "item_id": str(item.id),
        "recipient_id": "00000000-0000-0000-0000-000000000000",
    }).status_code == 404


def test_messages_flow(client, session, make_user, make_item, auth):
    finder = make_user(name="Finder")
    seeker = make_user(name="Seeker")
    item = make_item(finder)
    conversation_id = start(client, auth, seeker, item, finder).json()["conversation"]["id"]

    sent = client.post(f"/conversations/{conversation_id}/messages", headers=auth(seeker), json={
        "content": "Hi! I think this is my wallet. " + "x" * 200,
    })
    assert sent.status_code == 201
    assert sent.json()["message"]["sender"]["name"] == "Seeker"

    [notification] = session.exec(
        select(Notification).where(Notification.user_id == finder.id).where(Notification.type == "new_message")
    ).all()
    assert len(notification.body) == 100

    listing = client.get("/conversations", headers=auth(finder)).json()["conversations"]
    assert len(listing) == 1
    assert listing[0]["unread_count"] == 1
    assert listing[0]["other_user"]["name"] == "Seeker"
    assert listing[0]["last_message"]["content"].startswith("Hi!")

    messages = client.get(f"/conversations/{conversation_id}/messages", headers=auth(finder)).json()["messages"]
    assert len(messages) == 1

    stored = session.exec(select(ConversationMessage)).one()
    assert stored.read_at is not None

    after = client.get("/conversations", headers=auth(finder)).json()["conversations"]
    assert after[0]["unread_count"] == 0


def test_own_messages_stay_unread_for_sender(client, session, make_user, make_item, auth):
    finder = make_user()
    seeker = make_user()
    conversation_id = start(client, auth, seeker, make_item(finder), finder).json()["conversation"]["id"]
    client.post(f"/conversations/{conversation_id}/messages", headers=auth(seeker), json={"content": "Hello"})

    client.get(f"/conversations/{conversation_id}/messages", headers=auth(seeker))

    assert session.exec(select(ConversationMessage)).one().read_at is None


def test_blank_message_rejected(client, make_user, make_item, auth):
    finder = make_user()
    seeker = make_user()
    conversation_id = start(client, auth, seeker, make_item(finder), finder).json()["conversation"]["id"]

    response = client.post(f"/conversations/{conversation_id}/messages", headers=auth(seeker), json={"content": "   "})

    assert response.status_code == 400


def test_non_participant_cannot_read_or_send(client, make_user, make_item, auth):
    finder = make_user()
    seeker = make_user()
    outsider = make_user()
    conversation_id = start(client, auth, seeker, make_item(finder), finder).json()["conversation"]["id"]

    assert client.get(f"/conversations/{conversation_id}/messages", headers=auth(outsider)).status_code == 403
    assert client.post(
        f"/conversations/{conversation_id}/messages",
        headers=auth(outsider),
        json={"content": "let me in"},
    ).status_code == 403


def test_notification_failure_does_not_fail_send(client, session, monkeypatch, make_user, make_item, auth):
    from sqlalchemy.exc import SQLAlchemyError

    from khojpayo.routers import conversations

    finder = make_user()
    seeker = make_user()
    conversation_id = start(client, auth, seeker, make_item(finder), finder).json()["conversation"]["id"]

    def broken_notify(*args, **kwargs):
        raise SQLAlchemyError("notifications table is gone")

    monkeypatch.setattr(conversations, "notify", broken_notify)

    response = client.post(f"/conversations/{conversation_id}/messages", headers=auth(seeker), json={"content": "Still there?"})

    assert response.status_code == 201
    assert session.exec(select(ConversationMessage)).one().content == "Still there?"
