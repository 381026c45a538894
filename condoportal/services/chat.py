from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..constants import ROLE_SUPER_ADMIN
from ..models.models import Message, Profile, User, utcnow
from .change_feed import DELETE, INSERT, UPDATE, ChangeEvent

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"


def send_message(
    session: Session,
    sender_id: int,
    recipient_id: int,
    content: str,
    client_message_id: Optional[str] = None,
    message_type: str = "text",
) -> Message:
    content = (content or "").strip()
    if not content:
        raise ValueError("Message content cannot be empty")
    if session.get(User, recipient_id) is None:
        raise LookupError("Recipient not found")
    message = Message(
        sender_id=sender_id,
        recipient_id=recipient_id,
        content=content,
        message_type=message_type,
        client_message_id=client_message_id,
    )
    session.add(message)
    session.commit()
    session.refresh(message)
    return message


def _between(user_id: int, peer_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.recipient_id == peer_id),
        and_(Message.sender_id == peer_id, Message.recipient_id == user_id),
    )


def list_conversation(session: Session, user_id: int, peer_id: int) -> List[Message]:
    return (
        session.query(Message)
        .filter(_between(user_id, peer_id))
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def list_conversations(session: Session, user_id: int) -> List[Dict[str, Any]]:
    """One summary per peer, most recent conversation first."""
    messages = (
        session.query(Message)
        .filter(or_(Message.sender_id == user_id, Message.recipient_id == user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .all()
    )
    summaries: Dict[int, Dict[str, Any]] = {}
    for message in messages:
        peer_id = message.recipient_id if message.sender_id == user_id else message.sender_id
        summary = summaries.setdefault(peer_id, {"peer_id": peer_id, "last_message": message, "unread_count": 0})
        if message.recipient_id == user_id and message.read_at is None:
            summary["unread_count"] += 1
    return list(summaries.values())


def mark_message_read(session: Session, message_id: int, reader_id: int) -> Optional[Message]:
    message = session.get(Message, message_id)
    if message is None or message.recipient_id != reader_id:
        return None
    if message.read_at is None:
        message.read_at = utcnow()
        session.commit()
    return message


def mark_conversation_read(session: Session, reader_id: int, peer_id: int) -> int:
    unread = (
        session.query(Message)
        .filter(
            Message.sender_id == peer_id,
            Message.recipient_id == reader_id,
            Message.read_at.is_(None),
        )
        .all()
    )
    now = utcnow()
    for message in unread:
        message.read_at = now
    session.commit()
    return len(unread)


def delete_message(session: Session, message_id: int, user_id: int) -> bool:
    message = session.get(Message, message_id)
    if message is None:
        raise LookupError("Message not found")
    if message.sender_id != user_id:
        return False
    session.delete(message)
    session.commit()
    return True


def unread_count(session: Session, user_id: int, peer_id: Optional[int] = None) -> int:
    query = session.query(Message).filter(Message.recipient_id == user_id, Message.read_at.is_(None))
    if peer_id is not None:
        query = query.filter(Message.sender_id == peer_id)
    return query.count()


def find_super_admin(session: Session) -> Optional[Profile]:
    return (
        session.query(Profile)
        .filter(Profile.role == ROLE_SUPER_ADMIN)
        .order_by(Profile.id.asc())
        .first()
    )


@dataclass(frozen=True)
class TimelineEntry:
    id: Union[int, str]
    sender_id: int
    recipient_id: int
    content: str
    client_message_id: Optional[str] = None
    created_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    @property
    def is_temporary(self) -> bool:
        return isinstance(self.id, str) and self.id.startswith(TEMP_ID_PREFIX)

    @classmethod
    def from_row(cls, row: Union[Mapping[str, Any], Message]) -> "TimelineEntry":
        if isinstance(row, Message):
            row = {
                "id": row.id,
                "sender_id": row.sender_id,
                "recipient_id": row.recipient_id,
                "content": row.content,
                "client_message_id": row.client_message_id,
                "created_at": row.created_at,
                "read_at": row.read_at,
            }
        return cls(
            id=row["id"],
            sender_id=row["sender_id"],
            recipient_id=row["recipient_id"],
            content=row["content"],
            client_message_id=row.get("client_message_id"),
            created_at=row.get("created_at"),
            read_at=row.get("read_at"),
        )


class ConversationTimeline:
    """Client-side view of one conversation with optimistic sends.

    A persisted message id appears at most once, whichever of the insert
    result or the realtime echo arrives first.
    """

    def __init__(
        self,
        user_id: int,
        peer_id: int,
        correlation_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.user_id = user_id
        self.peer_id = peer_id
        self.correlation_id_factory = correlation_id_factory
        self.messages: List[TimelineEntry] = []
        self._lock = threading.RLock()

    def load(self, rows) -> None:
        with self._lock:
            self.messages = [TimelineEntry.from_row(row) for row in rows]

    def is_relevant(self, row: Mapping[str, Any]) -> bool:
        participants = {row.get("sender_id"), row.get("recipient_id")}
        return participants == {self.user_id, self.peer_id}

    @property
    def unread_count(self) -> int:
        return sum(
            1
            for entry in self.messages
            if entry.sender_id == self.peer_id and entry.recipient_id == self.user_id and entry.read_at is None
        )

    def begin_send(self, content: str) -> TimelineEntry:
        content = (content or "").strip()
        if not content:
            raise ValueError("Message content cannot be empty")
        correlation_id = self.correlation_id_factory()
        entry = TimelineEntry(
            id=f"{TEMP_ID_PREFIX}{correlation_id}",
            sender_id=self.user_id,
            recipient_id=self.peer_id,
            content=content,
            client_message_id=correlation_id,
            created_at=utcnow(),
        )
        with self._lock:
            self.messages.append(entry)
        return entry

    def confirm(self, temp_entry: TimelineEntry, persisted: Union[Mapping[str, Any], Message]) -> TimelineEntry:
        entry = TimelineEntry.from_row(persisted)
        if entry.client_message_id is None:
            entry = replace(entry, client_message_id=temp_entry.client_message_id)
        with self._lock:
            return self._place(entry)

    def fail(self, temp_entry: TimelineEntry) -> str:
        """Roll back an optimistic send; returns the content to restore."""
        with self._lock:
            self.messages = [entry for entry in self.messages if entry.id != temp_entry.id]
        return temp_entry.content

    def apply(self, change: ChangeEvent) -> None:
        if change.table != "messages":
            return
        with self._lock:
            if change.event_type == INSERT and self.is_relevant(change.new):
                self._place(TimelineEntry.from_row(change.new))
            elif change.event_type == UPDATE and self.is_relevant(change.new):
                updated = TimelineEntry.from_row(change.new)
                self.messages = [updated if entry.id == updated.id else entry for entry in self.messages]
            elif change.event_type == DELETE:
                deleted_id = change.old.get("id")
                self.messages = [entry for entry in self.messages if entry.id != deleted_id]

    def _find_temporary(self, entry: TimelineEntry) -> Optional[int]:
        if entry.client_message_id:
            for index, candidate in enumerate(self.messages):
                if candidate.is_temporary and candidate.client_message_id == entry.client_message_id:
                    return index
            return None
        # Echoes without a correlation id fall back to sender and content.
        for index, candidate in enumerate(self.messages):
            if candidate.is_temporary and candidate.sender_id == entry.sender_id and candidate.content == entry.content:
                logger.debug("Reconciled message %s by content match", entry.id)
                return index
        return None

    def _place(self, entry: TimelineEntry) -> TimelineEntry:
        existing = next((index for index, item in enumerate(self.messages) if item.id == entry.id), None)
        temporary = self._find_temporary(entry)
        if existing is not None:
            self.messages[existing] = entry
            if temporary is not None:
                del self.messages[temporary]
        elif temporary is not None:
            self.messages[temporary] = entry
        else:
            self.messages.append(entry)
        return entry
