import asyncio
import threading
from decimal import Decimal

import pytest
from starlette.websockets import WebSocketState

from condoportal.models.models import Condominium, Expense
from condoportal.services.change_feed import (
    DELETE,
    INSERT,
    UPDATE,
    ChangeEvent,
    ChangeFeed,
    RealtimeClient,
    RealtimeHub,
    change_feed,
)


class _FakeSocket:
    application_state = WebSocketState.CONNECTED

    def __init__(self):
        self.sent = []

    async def accept(self):
        return None

    async def send_json(self, payload):
        self.sent.append(payload)


def test_committed_changes_reach_matching_subscribers(db_session, create_condominium):
    condominium = create_condominium(name="Edifício Atlântico")
    received = []
    all_events = []
    change_feed.subscribe("condominiums", received.append, event_type=UPDATE, column_filter=("id", condominium.id))
    change_feed.subscribe("*", all_events.append)

    condominium.apartment_count = 24
    db_session.commit()
    other = create_condominium()
    other.apartment_count = 8
    db_session.commit()

    assert len(received) == 1
    change = received[0]
    assert change.new["apartment_count"] == 24
    assert change.new["id"] == change.old["id"] == condominium.id
    # Columns untouched by the update still travel with the event.
    assert change.new["name"].startswith("Edifício Atlântico")
    assert change.new["resident_linking_code"] == condominium.resident_linking_code
    assert [(event.table, event.event_type) for event in all_events] == [
        ("condominiums", UPDATE),
        ("condominiums", INSERT),
        ("condominiums", UPDATE),
    ]


def test_deletes_publish_the_removed_row(db_session, create_condominium):
    condominium = create_condominium()
    expense = Expense(
        condominium_id=condominium.id,
        category="limpeza",
        description="Produtos de limpeza",
        amount=Decimal("4500.00"),
        expense_date=condominium.created_at.date(),
    )
    db_session.add(expense)
    db_session.commit()
    deleted = []
    change_feed.subscribe("expenses", deleted.append, event_type=DELETE, column_filter=("condominium_id", condominium.id))

    db_session.delete(expense)
    db_session.commit()

    assert len(deleted) == 1
    assert deleted[0].row["description"] == "Produtos de limpeza"
    assert deleted[0].new == {}


def test_rolled_back_changes_are_discarded(db_session):
    received = []
    change_feed.subscribe("condominiums", received.append)

    db_session.add(Condominium(name="Fantasma", address="Nenhures", resident_linking_code="GHOST001"))
    db_session.flush()
    db_session.rollback()
    db_session.commit()

    assert received == []


def test_failing_subscriber_does_not_block_others(db_session, create_condominium):
    received = []

    def broken(change):
        raise RuntimeError("boom")

    change_feed.subscribe("condominiums", broken)
    change_feed.subscribe("condominiums", received.append)

    create_condominium()

    assert len(received) == 1


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValueError):
        change_feed.subscribe("payments", lambda change: None, event_type="UPSERT")


def test_inline_triggers_receive_the_engine(db_session, create_condominium):
    calls = []

    def on_insert(bind, change):
        calls.append((bind, change.table, change.new["name"]))

    change_feed.register_trigger("condominiums", INSERT, on_insert)
    change_feed.register_trigger("condominiums", INSERT, on_insert)
    try:
        create_condominium(name="Torre Sul")
    finally:
        change_feed.remove_trigger("condominiums", INSERT, on_insert)

    assert len(calls) == 1
    bind, table, name = calls[0]
    assert bind is db_session.bind
    assert table == "condominiums"
    assert name.startswith("Torre Sul")


def test_thread_dispatch_runs_triggers_off_the_committing_thread(db_session, create_condominium):
    done = threading.Event()
    seen = {}

    def on_insert(bind, change):
        seen["thread"] = threading.current_thread().name
        done.set()

    change_feed.dispatch = "thread"
    change_feed.register_trigger("condominiums", INSERT, on_insert)
    try:
        create_condominium()
        assert done.wait(timeout=5)
    finally:
        change_feed.remove_trigger("condominiums", INSERT, on_insert)

    assert seen["thread"].startswith("change-trigger")


def test_clear_drops_subscriptions_but_keeps_triggers():
    feed = ChangeFeed(dispatch="inline")
    triggered = []
    received = []
    subscription = feed.subscribe("payments", received.append)
    feed.register_trigger("payments", "*", lambda bind, change: triggered.append(change.event_type))

    feed.clear()
    feed.publish([ChangeEvent("payments", UPDATE, new={"id": 1})])

    assert feed.subscription_count() == 0
    assert received == []
    assert triggered == [UPDATE]
    subscription.unsubscribe()
    assert feed.subscription_count() == 0


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


def test_realtime_hub_routes_changes_by_condominium_and_participant():
    hub = RealtimeHub()
    first = RealtimeClient(user_id=10, role="coordinator", websocket=_FakeSocket())
    second = RealtimeClient(user_id=20, role="resident", websocket=_FakeSocket(), resident_id=7)

    async def scenario():
        hub.dispatch(ChangeEvent("payments", INSERT, new={"id": 1, "condominium_id": 1}))
        hub.configure_loop(asyncio.get_running_loop())
        await hub.connect(1, first)
        await hub.connect(2, second)

        hub.dispatch(ChangeEvent("payments", INSERT, new={"id": 2, "condominium_id": 1, "amount": Decimal("10.50")}))
        hub.dispatch(ChangeEvent("messages", INSERT, new={"id": 3, "sender_id": 10, "recipient_id": 20}))
        hub.dispatch(ChangeEvent("users", UPDATE, new={"id": 10, "condominium_id": 1}))
        hub.dispatch(ChangeEvent("audit_logs", INSERT, new={"id": 4, "condominium_id": 1}))
        await _settle()

        await hub.disconnect(1, first)
        hub.dispatch(ChangeEvent("payments", INSERT, new={"id": 5, "condominium_id": 1}))
        await _settle()

    asyncio.run(scenario())

    assert [payload["new"]["id"] for payload in first.websocket.sent] == [2, 3]
    assert first.websocket.sent[0] == {
        "type": "change",
        "table": "payments",
        "eventType": INSERT,
        "new": {"id": 2, "condominium_id": 1, "amount": "10.50"},
        "old": {},
    }
    assert [payload["new"]["id"] for payload in second.websocket.sent] == [3]


def test_realtime_hub_sends_residents_only_rows_they_may_see():
    hub = RealtimeHub()
    resident = RealtimeClient(user_id=20, role="resident", websocket=_FakeSocket(), resident_id=7)
    coordinator = RealtimeClient(user_id=10, role="coordinator", websocket=_FakeSocket())

    async def scenario():
        hub.configure_loop(asyncio.get_running_loop())
        await hub.connect(1, resident)
        await hub.connect(1, coordinator)

        hub.dispatch(ChangeEvent("visitor_passes", INSERT, new={"id": 1, "condominium_id": 1, "token": "SECRET"}))
        hub.dispatch(ChangeEvent("documents", INSERT, new={"id": 2, "condominium_id": 1, "is_public": False}))
        hub.dispatch(ChangeEvent("payments", INSERT, new={"id": 3, "condominium_id": 1, "resident_id": 99}))
        hub.dispatch(ChangeEvent("profiles", UPDATE, new={"id": 4, "condominium_id": 1, "phone": "923000000"}))
        hub.dispatch(ChangeEvent("announcements", INSERT, new={"id": 5, "condominium_id": 1, "published": False}))
        await _settle()
        hub.dispatch(ChangeEvent("payments", UPDATE, new={"id": 6, "condominium_id": 1, "resident_id": 7}))
        hub.dispatch(ChangeEvent("visitors", DELETE, old={"id": 7, "condominium_id": 1, "resident_id": 7}))
        hub.dispatch(ChangeEvent("documents", INSERT, new={"id": 8, "condominium_id": 1, "is_public": True}))
        hub.dispatch(ChangeEvent("announcements", UPDATE, new={"id": 9, "condominium_id": 1, "published": True}))
        hub.dispatch(ChangeEvent("occurrences", INSERT, new={"id": 10, "condominium_id": 1, "reported_by_user_id": 20}))
        hub.dispatch(ChangeEvent("occurrences", INSERT, new={"id": 11, "condominium_id": 1, "reported_by_user_id": 21}))
        await _settle()

    asyncio.run(scenario())

    received = [(payload["table"], (payload["new"] or payload["old"])["id"]) for payload in resident.websocket.sent]
    assert received == [
        ("payments", 6),
        ("visitors", 7),
        ("documents", 8),
        ("announcements", 9),
        ("occurrences", 10),
    ]
    coordinator_sent = coordinator.websocket.sent
    assert len(coordinator_sent) == 11
    assert coordinator_sent[0]["table"] == "visitor_passes"
    assert "token" not in coordinator_sent[0]["new"]
