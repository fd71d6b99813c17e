"""
Pydantic schemas for request/response validation.

This module contains:
- The inbound Twilio webhook payload
- Response models for the inbox API
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sms_inbox.models import Message


# =============================================================================
# Pydantic Request Models
# =============================================================================

class TwilioWebhookRequest(BaseModel):
    """
    Inbound SMS as posted by Twilio.

    Validates:
    - MessageSid: non-empty string (deduplication key)
    - From/To/Body: strings, passed through untouched

    Twilio sends many more parameters (AccountSid, NumMedia, FromCity, ...);
    they are ignored.
    """
    message_sid: str = Field(
        ...,
        alias="MessageSid",
        min_length=1,
        description="Twilio delivery identifier"
    )
    from_number: str = Field(
        ...,
        alias="From",
        description="Sender address in provider format"
    )
    to_number: str = Field(
        ...,
        alias="To",
        description="Recipient address in provider format"
    )
    body: str = Field(
        ...,
        alias="Body",
        description="Message text"
    )

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "MessageSid": "SM1",
                    "From": "+15550001111",
                    "To": "+15559998888",
                    "Body": "hello"
                }
            ]
        }
    )


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """
    A stored message as returned by GET /api/messages.
    Maps store fields to the camelCase API format.
    """
    id: str = Field(..., description="Process-local message identifier")
    from_number: str = Field(..., alias="from", description="Sender")
    to_number: str = Field(..., alias="to", description="Recipient")
    body: str = Field(..., description="Message text")
    received_at: datetime = Field(
        ...,
        alias="receivedAt",
        description="Server time the message was stored (ISO-8601 UTC)"
    )
    twilio_sid: Optional[str] = Field(
        None,
        alias="twilioSid",
        description="Twilio MessageSid, null for records not received via webhook"
    )

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            from_number=message.from_number,
            to_number=message.to_number,
            body=message.body,
            received_at=message.received_at,
            twilio_sid=message.twilio_sid,
        )


class ClearResponse(BaseModel):
    """Response model for DELETE /api/messages."""
    message: str = Field(..., description="Confirmation message")


class PhoneNumberResponse(BaseModel):
    phone_number: str = Field(..., alias="phoneNumber", description="Inbox phone number")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
