"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming webhook form data
- Response models for API responses
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class InboundSms(BaseModel):
    """
    Form fields posted by the SMS provider for an inbound message.

    Field names follow the provider's casing (From, To, Body, MessageSid).
    From and Body are required; numbers are kept exactly as received.
    """
    from_number: str = Field(..., alias="From", min_length=1, description="Sender phone number")
    to_number: Optional[str] = Field(None, alias="To", description="Recipient phone number")
    body: str = Field(..., alias="Body", description="Message text")
    message_sid: Optional[str] = Field(None, alias="MessageSid", description="Provider message id")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "From": "+15551234567",
                    "To": "+15559876543",
                    "Body": "See you Sunday!",
                    "MessageSid": "SM0123456789abcdef0123456789abcdef",
                }
            ]
        },
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for webhook error responses."""
    error: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """A single stored SMS message."""
    id: int
    twilio_sid: Optional[str] = None
    direction: str
    from_number: Optional[str] = Field(None, serialization_alias="from")
    to_number: Optional[str] = Field(None, serialization_alias="to")
    body: Optional[str] = None
    status: str
    member_id: Optional[int] = None
    conversation_id: Optional[int] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,  # Allow creating from ORM objects
    }


class MessagesListResponse(BaseModel):
    """
    Response model for GET /messages endpoint with pagination.

    total counts every message matching the filters, ignoring limit/offset.
    """
    data: list[MessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class ConversationResponse(BaseModel):
    id: int
    title: str
    conversation_type: str
    group_id: Optional[int] = None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ConversationsListResponse(BaseModel):
    data: list[ConversationResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class ConversationCount(BaseModel):
    """Message count for one conversation in stats."""
    conversation_id: int
    title: str
    count: int = Field(..., ge=0)


class StatsResponse(BaseModel):
    """
    Response model for GET /stats endpoint.

    - total_messages: count of all messages
    - inbound_messages: count of inbound messages
    - unmatched_messages: messages not linked to a member
    - conversations_count: count of all conversations
    - messages_per_conversation: top 10 conversations by message count
    - first_message_ts / last_message_ts: null when there are no messages
    """
    total_messages: int = Field(..., ge=0)
    inbound_messages: int = Field(..., ge=0)
    unmatched_messages: int = Field(..., ge=0)
    conversations_count: int = Field(..., ge=0)
    messages_per_conversation: list[ConversationCount] = Field(default_factory=list)
    first_message_ts: Optional[datetime] = None
    last_message_ts: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
