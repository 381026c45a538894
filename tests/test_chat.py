import pytest
from fastapi.testclient import TestClient

from condoportal.api.dependencies import get_db
from condoportal.auth.jwt import get_current_user
from condoportal.main import app
from condoportal.models.models import Message
from condoportal.services.change_feed import DELETE, INSERT, UPDATE, ChangeEvent, change_feed
from condoportal.services.chat import (
    ConversationTimeline,
    delete_message,
    find_super_admin,
    list_conversation,
    list_conversations,
    mark_conversation_read,
    mark_message_read,
    send_message,
    unread_count,
)


def _override_get_db(session):
    def _inner():
        try:
            yield session
        finally:
            pass

    return _inner


def _override_user(user):
    def _inner():
        return user

    return _inner


def _row(message_id, sender_id=1, recipient_id=2, content="Olá", client_message_id=None):
    return {
        "id": message_id,
        "sender_id": sender_id,
        "recipient_id": recipient_id,
        "content": content,
        "client_message_id": client_message_id,
        "created_at": None,
        "read_at": None,
    }


def _timeline():
    ids = iter(["corr-1", "corr-2", "corr-3"])
    return ConversationTimeline(user_id=1, peer_id=2, correlation_id_factory=lambda: next(ids))


def test_send_message_validates_content_and_recipient(db_session, create_user):
    sender = create_user(role="resident")

    with pytest.raises(ValueError):
        send_message(db_session, sender.id, sender.id, "   ")
    with pytest.raises(LookupError):
        send_message(db_session, sender.id, 999, "Olá")


def test_conversations_summarize_latest_message_and_unread(db_session, create_user):
    ana = create_user(role="resident")
    rui = create_user(role="resident")
    coordinator = create_user(role="coordinator")

    send_message(db_session, rui.id, ana.id, "Bom dia")
    send_message(db_session, rui.id, ana.id, "Tem a chave do salão?")
    send_message(db_session, ana.id, coordinator.id, "A lâmpada da escada fundiu")
    reply = send_message(db_session, coordinator.id, ana.id, "Vamos trocar hoje")

    summaries = list_conversations(db_session, ana.id)

    assert [summary["peer_id"] for summary in summaries] == [coordinator.id, rui.id]
    assert summaries[0]["last_message"].id == reply.id
    assert summaries[0]["unread_count"] == 1
    assert summaries[1]["unread_count"] == 2
    assert unread_count(db_session, ana.id) == 3
    assert [message.content for message in list_conversation(db_session, ana.id, coordinator.id)] == [
        "A lâmpada da escada fundiu",
        "Vamos trocar hoje",
    ]

    assert mark_conversation_read(db_session, ana.id, rui.id) == 2
    assert unread_count(db_session, ana.id, peer_id=rui.id) == 0
    assert mark_message_read(db_session, reply.id, rui.id) is None
    assert mark_message_read(db_session, reply.id, ana.id).read_at is not None
    assert unread_count(db_session, ana.id) == 0


def test_only_sender_can_delete(db_session, create_user):
    ana = create_user(role="resident")
    rui = create_user(role="resident")
    message = send_message(db_session, ana.id, rui.id, "Apagar isto")
    message_id = message.id

    assert delete_message(db_session, message_id, rui.id) is False
    assert delete_message(db_session, message_id, ana.id) is True
    assert db_session.get(Message, message_id) is None
    with pytest.raises(LookupError):
        delete_message(db_session, message_id, ana.id)


def test_support_contact_is_first_super_admin(db_session, create_user):
    assert find_super_admin(db_session) is None
    admin = create_user(role="super_admin")
    create_user(role="super_admin")

    assert find_super_admin(db_session).user_id == admin.id


def test_confirm_then_echo_keeps_one_copy():
    timeline = _timeline()
    temp = timeline.begin_send("  Olá vizinho ")
    assert temp.is_temporary
    assert temp.content == "Olá vizinho"

    timeline.confirm(temp, _row(10, content="Olá vizinho", client_message_id="corr-1"))
    timeline.apply(ChangeEvent("messages", INSERT, new=_row(10, content="Olá vizinho", client_message_id="corr-1")))

    assert [entry.id for entry in timeline.messages] == [10]


def test_echo_then_confirm_keeps_one_copy():
    timeline = _timeline()
    temp = timeline.begin_send("Olá vizinho")

    timeline.apply(ChangeEvent("messages", INSERT, new=_row(10, content="Olá vizinho", client_message_id="corr-1")))
    assert [entry.id for entry in timeline.messages] == [10]
    timeline.confirm(temp, _row(10, content="Olá vizinho", client_message_id="corr-1"))

    assert [entry.id for entry in timeline.messages] == [10]


def test_echo_without_correlation_id_matches_sender_and_content():
    timeline = _timeline()
    first = timeline.begin_send("Primeira")
    timeline.begin_send("Segunda")

    timeline.apply(ChangeEvent("messages", INSERT, new=_row(11, content="Segunda")))
    assert [entry.id for entry in timeline.messages] == [first.id, 11]

    timeline.confirm(first, _row(10, content="Primeira"))
    assert [entry.id for entry in timeline.messages] == [10, 11]
    assert timeline.messages[0].client_message_id == "corr-1"


def test_failed_send_is_removed_and_content_returned():
    timeline = _timeline()
    temp = timeline.begin_send("Não chegou")

    assert timeline.fail(temp) == "Não chegou"
    assert timeline.messages == []
    with pytest.raises(ValueError):
        timeline.begin_send("  ")


def test_timeline_ignores_other_conversations_and_applies_updates():
    timeline = _timeline()
    timeline.load([_row(5, sender_id=2, recipient_id=1, content="Olá")])
    assert timeline.unread_count == 1

    timeline.apply(ChangeEvent("messages", INSERT, new=_row(6, sender_id=3, recipient_id=1)))
    timeline.apply(ChangeEvent("payments", INSERT, new=_row(7)))
    assert [entry.id for entry in timeline.messages] == [5]

    read = dict(_row(5, sender_id=2, recipient_id=1, content="Olá"), read_at="2025-03-01T10:00:00")
    timeline.apply(ChangeEvent("messages", UPDATE, new=read, old=_row(5, sender_id=2, recipient_id=1)))
    assert timeline.unread_count == 0

    timeline.apply(ChangeEvent("messages", DELETE, old=read))
    assert timeline.messages == []


def test_timeline_reconciles_committed_messages(db_session, create_user):
    ana = create_user(role="resident")
    rui = create_user(role="resident")
    timeline = ConversationTimeline(user_id=ana.id, peer_id=rui.id)
    subscription = change_feed.subscribe("messages", timeline.apply, event_type=INSERT)

    temp = timeline.begin_send("Chego às oito")
    persisted = send_message(db_session, ana.id, rui.id, temp.content, client_message_id=temp.client_message_id)
    timeline.confirm(temp, persisted)
    subscription.unsubscribe()

    assert [entry.id for entry in timeline.messages] == [persisted.id]
    assert change_feed.subscription_count() == 0


def test_messages_api_enforces_condominium_boundaries(db_session, create_condominium, create_user):
    condominium = create_condominium()
    other = create_condominium()
    ana = create_user(role="resident", condominium=condominium)
    rui = create_user(role="resident", condominium=condominium)
    stranger = create_user(role="resident", condominium=other)
    admin = create_user(role="super_admin")

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(ana)
    try:
        resp = client.post("/messages/", json={"recipient_id": rui.id, "content": "Olá Rui", "client_message_id": "c1"})
        assert resp.status_code == 201
        message_id = resp.json()["id"]
        assert resp.json()["client_message_id"] == "c1"

        assert client.post("/messages/", json={"recipient_id": stranger.id, "content": "Olá"}).status_code == 403
        assert client.post("/messages/", json={"recipient_id": 999, "content": "Olá"}).status_code == 404
        assert client.post("/messages/", json={"recipient_id": admin.id, "content": "Ajuda"}).status_code == 201
        assert client.post("/messages/", json={"recipient_id": rui.id, "content": ""}).status_code == 422

        resp = client.get("/messages/support-contact")
        assert resp.status_code == 200
        assert resp.json()["user_id"] == admin.id

        app.dependency_overrides[get_current_user] = _override_user(admin)
        assert client.post("/messages/", json={"recipient_id": stranger.id, "content": "Aviso"}).status_code == 201

        app.dependency_overrides[get_current_user] = _override_user(rui)
        assert client.get("/messages/unread-count").json() == {"unread": 1}
        conversations = client.get("/messages/conversations").json()
        assert conversations[0]["peer_id"] == ana.id
        assert conversations[0]["last_message"]["content"] == "Olá Rui"
        assert client.post(f"/messages/conversations/{ana.id}/read").json() == {"updated": 1}
        assert client.delete(f"/messages/{message_id}").status_code == 403

        app.dependency_overrides[get_current_user] = _override_user(ana)
        assert client.delete(f"/messages/{message_id}").status_code == 204
        assert client.delete(f"/messages/{message_id}").status_code == 404
    finally:
        app.dependency_overrides.clear()
        client.close()
