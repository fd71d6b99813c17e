import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sms_inbox.models import InsertMessage, InsertUser, Message, User

logger = logging.getLogger(__name__)


class StoreFailure(Exception):
    """Unexpected failure while reading or mutating the message store."""


# =============================================================================
# Storage Interface
# =============================================================================

class MessageStore(ABC):
    """
    Capability set every message store backend provides.

    Uniqueness of twilio_sid is not enforced here; callers that need it run
    find_by_external_id and insert together inside locked().

    Backends raise StoreFailure when an operation cannot complete. The
    in-memory backend has no such path short of the process running out of
    memory.
    """

    @abstractmethod
    def insert(self, record: InsertMessage) -> Message:
        """Assign an id and receive time to the record and store it."""

    @abstractmethod
    def list_all(self) -> list[Message]:
        """Snapshot of all messages, most recently received first."""

    @abstractmethod
    def find_by_external_id(self, twilio_sid: str) -> Optional[Message]:
        """First message carrying the given provider id, or None."""

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every message."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored messages."""

    @abstractmethod
    def locked(self):
        """Context manager that holds the store exclusively for a multi-step sequence."""

    # Users are part of the storage interface but unused by the SMS pipeline

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    def create_user(self, record: InsertUser) -> User:
        ...


# =============================================================================
# In-memory Backend
# =============================================================================

class MemStorage(MessageStore):
    """
    Message store kept in process memory.

    A single re-entrant lock serializes every operation. Everything is lost
    when the process exits.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._messages: dict[str, Message] = {}
        # Insertion sequence per message id, used to order equal timestamps
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        self._last_received_at: Optional[datetime] = None
        self._users: dict[str, User] = {}

    @contextmanager
    def locked(self) -> Iterator["MemStorage"]:
        with self._lock:
            yield self

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        # Never hand out a time earlier than the previous insert, even if the wall clock moved back
        if self._last_received_at is not None and now < self._last_received_at:
            now = self._last_received_at
        self._last_received_at = now
        return now

    def insert(self, record: InsertMessage) -> Message:
        with self._lock:
            message = Message(
                id=str(uuid.uuid4()),
                received_at=self._now(),
                **record.model_dump(),
            )
            self._messages[message.id] = message
            self._sequence[message.id] = self._next_sequence
            self._next_sequence += 1
        logger.debug(f"Stored message {message.id} (twilio_sid={message.twilio_sid})")
        return message

    def list_all(self) -> list[Message]:
        with self._lock:
            snapshot = [(m, self._sequence[m.id]) for m in self._messages.values()]
        snapshot.sort(key=lambda item: (item[0].received_at, item[1]), reverse=True)
        return [message for message, _ in snapshot]

    def find_by_external_id(self, twilio_sid: str) -> Optional[Message]:
        with self._lock:
            for message in self._messages.values():
                if message.twilio_sid == twilio_sid:
                    return message
        return None

    def clear_all(self) -> None:
        with self._lock:
            cleared = len(self._messages)
            self._messages.clear()
            self._sequence.clear()
        logger.info(f"Cleared {cleared} messages")

    def count(self) -> int:
        with self._lock:
            return len(self._messages)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user
        return None

    def create_user(self, record: InsertUser) -> User:
        with self._lock:
            user = User(id=str(uuid.uuid4()), **record.model_dump())
            self._users[user.id] = user
        return user
