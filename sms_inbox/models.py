"""
Records held by the message store.

These are internal, immutable records. For the wire format of the API
(camelCase keys, 'from' instead of from_number), see schemas.py.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class InsertMessage(BaseModel):
    """Fields supplied by the caller when storing a message."""
    model_config = ConfigDict(frozen=True)

    from_number: str
    to_number: str
    body: str
    # Provider delivery id (Twilio MessageSid); None for records not sourced from the webhook
    twilio_sid: Optional[str] = None


class Message(InsertMessage):
    """
    A stored SMS.

    id and received_at are assigned by the store on insert and the record
    is never mutated afterwards.
    """
    id: str
    received_at: datetime


class InsertUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str


class User(InsertUser):
    id: str
