"""
Webhook ingestion: turns a validated Twilio payload into at most one stored
message per MessageSid.

Twilio retries deliveries it did not see acknowledged, and may deliver the
same message more than once concurrently. The lookup and the insert run
together under the store lock, so a MessageSid is stored once no matter how
many times, or how concurrently, it arrives.
"""

import logging
from typing import NamedTuple

from sms_inbox.models import InsertMessage, Message
from sms_inbox.schemas import TwilioWebhookRequest
from sms_inbox.storage import MessageStore, StoreFailure

logger = logging.getLogger(__name__)


class IngestResult(NamedTuple):
    message: Message
    duplicate: bool


def ingest_message(store: MessageStore, payload: TwilioWebhookRequest) -> IngestResult:
    """
    Store an inbound SMS unless its MessageSid was already stored.

    Args:
        store: Message store shared by all handlers
        payload: Validated webhook payload

    Returns:
        IngestResult with the stored (or previously stored) message and
        whether this delivery was a duplicate

    Raises:
        StoreFailure: if the store lookup or insert fails
    """
    try:
        with store.locked():
            existing = store.find_by_external_id(payload.message_sid)
            if existing is not None:
                logger.info(f"Duplicate delivery for {payload.message_sid}, already stored as {existing.id}")
                return IngestResult(message=existing, duplicate=True)

            message = store.insert(
                InsertMessage(
                    from_number=payload.from_number,
                    to_number=payload.to_number,
                    body=payload.body,
                    twilio_sid=payload.message_sid,
                )
            )
    except StoreFailure:
        raise
    except Exception as e:
        raise StoreFailure(f"Failed to store message {payload.message_sid}: {e}") from e

    logger.info(f"New SMS received from {message.from_number}: {message.id} ({message.twilio_sid})")
    return IngestResult(message=message, duplicate=False)
