from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..config import settings
from ..constants import MANAGER_ROLES

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ANY_EVENT = "*"
EVENT_TYPES = (INSERT, UPDATE, DELETE)

_PENDING_KEY = "condoportal.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)

    @property
    def row(self) -> Dict[str, Any]:
        """The row as it looks after the change (before it, for deletes)."""
        return self.old if self.event_type == DELETE else self.new

    def to_payload(self) -> dict:
        # Decimals go out as strings.
        return jsonable_encoder(
            {
                "type": "change",
                "table": self.table,
                "eventType": self.event_type,
                "new": self.new,
                "old": self.old,
            },
            custom_encoder={Decimal: str},
        )


ChangeCallback = Callable[[ChangeEvent], None]
TriggerHandler = Callable[[Any, ChangeEvent], None]


@dataclass
class Subscription:
    table: str
    event_type: str
    callback: ChangeCallback
    column_filter: Optional[Tuple[str, Any]] = None
    feed: Optional["ChangeFeed"] = None

    def matches(self, change: ChangeEvent) -> bool:
        if self.table not in (ANY_EVENT, change.table):
            return False
        if self.event_type not in (ANY_EVENT, change.event_type):
            return False
        if self.column_filter is None:
            return True
        column, expected = self.column_filter
        return change.row.get(column) == expected

    def unsubscribe(self) -> None:
        if self.feed is not None:
            self.feed.unsubscribe(self)
            self.feed = None


class ChangeFeed:
    """Publishes committed row changes to in-process subscribers and triggers.

    Subscribers run synchronously on the committing thread. Triggers receive
    the engine the change was committed on and run on a worker pool unless
    ``dispatch`` is ``"inline"``.
    """

    def __init__(self, dispatch: str = "thread", max_workers: int = 4) -> None:
        self.dispatch = dispatch
        self._subscriptions: List[Subscription] = []
        self._triggers: Dict[Tuple[str, str], List[TriggerHandler]] = defaultdict(list)
        self._listeners: List[ChangeCallback] = []
        self._lock = threading.RLock()
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        event_type: str = ANY_EVENT,
        column_filter: Optional[Tuple[str, Any]] = None,
    ) -> Subscription:
        if event_type != ANY_EVENT and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        subscription = Subscription(
            table=table,
            event_type=event_type,
            callback=callback,
            column_filter=column_filter,
            feed=self,
        )
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def add_listener(self, callback: ChangeCallback) -> None:
        """Receive every change; listeners survive ``clear()``."""
        with self._lock:
            self._listeners.append(callback)

    def register_trigger(self, table: str, event_type: str, handler: TriggerHandler) -> None:
        with self._lock:
            if handler not in self._triggers[(table, event_type)]:
                self._triggers[(table, event_type)].append(handler)

    def remove_trigger(self, table: str, event_type: str, handler: TriggerHandler) -> None:
        with self._lock:
            handlers = self._triggers.get((table, event_type), [])
            if handler in handlers:
                handlers.remove(handler)

    def clear(self) -> None:
        """Drop all subscriptions. Triggers and listeners stay registered."""
        with self._lock:
            for subscription in self._subscriptions:
                subscription.feed = None
            self._subscriptions.clear()

    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, changes: Iterable[ChangeEvent], bind: Any = None) -> None:
        for change in changes:
            with self._lock:
                subscriptions = [sub for sub in self._subscriptions if sub.matches(change)]
                listeners = list(self._listeners)
                triggers = list(self._triggers.get((change.table, change.event_type), []))
                triggers += self._triggers.get((change.table, ANY_EVENT), [])
            for subscription in subscriptions:
                try:
                    subscription.callback(change)
                except Exception:
                    logger.exception("Change subscriber failed for %s %s", change.table, change.event_type)
            for listener in listeners:
                try:
                    listener(change)
                except Exception:
                    logger.exception("Change listener failed for %s %s", change.table, change.event_type)
            for handler in triggers:
                self._run_trigger(handler, bind, change)

    def _run_trigger(self, handler: TriggerHandler, bind: Any, change: ChangeEvent) -> None:
        if self.dispatch == "inline":
            try:
                handler(bind, change)
            except Exception:
                logger.exception("Trigger %s failed for %s", getattr(handler, "__name__", handler), change.table)
            return
        future = self._get_executor().submit(handler, bind, change)
        future.add_done_callback(lambda done: self._log_trigger_failure(done, handler, change))

    @staticmethod
    def _log_trigger_failure(future: Future, handler: TriggerHandler, change: ChangeEvent) -> None:
        error = future.exception()
        if error is not None:
            logger.error(
                "Trigger %s failed for %s",
                getattr(handler, "__name__", handler),
                change.table,
                exc_info=(type(error), error, error.__traceback__),
            )

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="change-trigger")
            return self._executor

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


def _table_name(obj: Any) -> Optional[str]:
    table = getattr(obj, "__table__", None)
    return table.name if table is not None else None


def serialize_row(obj: Any) -> Dict[str, Any]:
    """Column values of a mapped instance, read without triggering loads."""
    state = inspect(obj)
    return {attr.key: state.dict.get(attr.key) for attr in state.mapper.column_attrs}


def _previous_values(obj: Any) -> Dict[str, Any]:
    state = inspect(obj)
    previous: Dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            previous[attr.key] = history.deleted[0]
        else:
            previous[attr.key] = state.dict.get(attr.key)
    return previous


def _load_expired_columns(session: Session, flush_context: Any, instances: Any) -> None:
    # Rows expired by an earlier commit are reloaded so their events carry every column.
    for obj in list(session.dirty) + list(session.deleted):
        if not _table_name(obj):
            continue
        state = inspect(obj)
        if state.key is None or not state.expired_attributes:
            continue
        unloaded = state.unloaded.intersection(attr.key for attr in state.mapper.column_attrs)
        if unloaded:
            getattr(obj, next(iter(unloaded)))


def _collect_changes(session: Session, flush_context: Any) -> None:
    pending: List[ChangeEvent] = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        table = _table_name(obj)
        if table:
            pending.append(ChangeEvent(table=table, event_type=INSERT, new=serialize_row(obj)))
    for obj in session.dirty:
        table = _table_name(obj)
        if not table or not session.is_modified(obj, include_collections=False):
            continue
        pending.append(
            ChangeEvent(table=table, event_type=UPDATE, new=serialize_row(obj), old=_previous_values(obj))
        )
    for obj in session.deleted:
        table = _table_name(obj)
        if table:
            pending.append(ChangeEvent(table=table, event_type=DELETE, old=serialize_row(obj)))


def _publish_changes(session: Session) -> None:
    changes = session.info.pop(_PENDING_KEY, [])
    if not changes:
        return
    change_feed.publish(changes, bind=session.bind)


def _discard_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


_hooks_installed = False


def install_session_hooks(target: Any = Session) -> None:
    """Attach the flush/commit/rollback listeners that feed ``change_feed``."""
    global _hooks_installed
    if _hooks_installed:
        return
    event.listen(target, "before_flush", _load_expired_columns)
    event.listen(target, "after_flush", _collect_changes)
    event.listen(target, "after_commit", _publish_changes)
    event.listen(target, "after_rollback", _discard_changes)
    _hooks_installed = True


# Tables a resident sees in full.
RESIDENT_SHARED_TABLES = {"specific_campaigns", "service_providers"}
# Tables where only the resident's own rows reach them, keyed by the owning column.
RESIDENT_OWNED_TABLES = {
    "payments": "resident_id",
    "visitors": "resident_id",
    "space_reservations": "resident_id",
    "specific_contributions": "resident_id",
    "occurrences": "reported_by_user_id",
}
# Row flags that must be set before a resident may see the row.
RESIDENT_FLAGGED_TABLES = {"announcements": "published", "documents": "is_public"}
# Columns never sent over the socket.
REDACTED_COLUMNS = {"visitor_passes": ("token",)}


@dataclass(frozen=True, eq=False)
class RealtimeClient:
    user_id: int
    role: Optional[str]
    websocket: WebSocket
    resident_id: Optional[int] = None

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    def can_see(self, change: ChangeEvent) -> bool:
        """Apply the same visibility the REST routes give this user's role."""
        if self.is_manager:
            return True
        row = change.row
        if change.table in RESIDENT_SHARED_TABLES:
            return True
        owner_column = RESIDENT_OWNED_TABLES.get(change.table)
        if owner_column is not None:
            owner = self.user_id if owner_column == "reported_by_user_id" else self.resident_id
            return owner is not None and row.get(owner_column) == owner
        flag = RESIDENT_FLAGGED_TABLES.get(change.table)
        return flag is not None and bool(row.get(flag))


def redact(change: ChangeEvent) -> ChangeEvent:
    columns = REDACTED_COLUMNS.get(change.table)
    if not columns:
        return change
    return replace(
        change,
        new={key: value for key, value in change.new.items() if key not in columns},
        old={key: value for key, value in change.old.items() if key not in columns},
    )


class RealtimeHub:
    """Fans committed changes out to WebSocket clients of a condominium."""

    def __init__(self) -> None:
        self._connections: Dict[int, Set[RealtimeClient]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def configure_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        logger.debug("RealtimeHub bound to event loop %s", loop)

    async def connect(self, condominium_id: int, client: RealtimeClient) -> None:
        await client.websocket.accept()
        async with self._lock:
            self._connections[condominium_id].add(client)
        logger.debug(
            "Realtime client connected to condominium %s (user=%s role=%s)",
            condominium_id,
            client.user_id,
            client.role,
        )

    async def disconnect(self, condominium_id: int, client: RealtimeClient) -> None:
        async with self._lock:
            connections = self._connections.get(condominium_id)
            if connections:
                connections.discard(client)
                if not connections:
                    self._connections.pop(condominium_id, None)
        logger.debug("Realtime client disconnected from condominium %s", condominium_id)

    async def _broadcast(self, change: ChangeEvent) -> None:
        row = change.row
        condominium_id = row.get("condominium_id")
        recipients = {row.get("sender_id"), row.get("recipient_id")} - {None}
        async with self._lock:
            if condominium_id is not None:
                targets = [client for client in self._connections.get(condominium_id, set()) if client.can_see(change)]
            elif recipients:
                targets = [
                    client
                    for connections in self._connections.values()
                    for client in connections
                    if client.user_id in recipients
                ]
            else:
                targets = []
        if not targets:
            return
        payload = redact(change).to_payload()
        for client in targets:
            websocket = client.websocket
            if websocket.application_state != WebSocketState.CONNECTED:
                continue
            try:
                await websocket.send_json(payload)
            except RuntimeError:
                continue

    def dispatch(self, change: ChangeEvent) -> None:
        if not self._loop or change.table in ("users", "audit_logs"):
            return
        asyncio.run_coroutine_threadsafe(self._broadcast(change), self._loop)

    async def shutdown(self) -> None:
        async with self._lock:
            connections = [client.websocket for group in self._connections.values() for client in group]
            self._connections.clear()
        for websocket in connections:
            if websocket.application_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close()
                except RuntimeError:
                    continue


async def realtime_websocket_handler(condominium_id: int, client: RealtimeClient) -> None:
    websocket = client.websocket
    await realtime_hub.connect(condominium_id, client)
    try:
        await websocket.send_json({"type": "realtime.connected", "condominium_id": condominium_id})
        while True:
            try:
                await websocket.receive_text()
            except WebSocketDisconnect:
                break
    finally:
        await realtime_hub.disconnect(condominium_id, client)


change_feed = ChangeFeed(dispatch=settings.trigger_dispatch)
realtime_hub = RealtimeHub()
change_feed.add_listener(realtime_hub.dispatch)
