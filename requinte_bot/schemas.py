"""
Pydantic schemas for request/response validation.

This module contains:
- Transport webhook models (Evolution API / Baileys event payloads)
- Response models for API responses
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError


# =============================================================================
# Transport Webhook Models
# =============================================================================

class MessageKey(BaseModel):
    """Baileys message key: who the message belongs to and who sent it."""
    remote_jid: str = Field(..., alias="remoteJid", description="Contact JID")
    from_me: bool = Field(False, alias="fromMe", description="Sent by this session")
    id: Optional[str] = Field(None, description="Transport message id")

    model_config = {"populate_by_name": True}


class ExtendedTextMessage(BaseModel):
    text: Optional[str] = None


class MessageContent(BaseModel):
    """
    Baileys message content. Only the text-bearing variants are modeled;
    media and other variants are kept as extra fields and ignored.
    """
    conversation: Optional[str] = None
    extended_text_message: Optional[ExtendedTextMessage] = Field(
        None, alias="extendedTextMessage"
    )

    model_config = {"populate_by_name": True, "extra": "allow"}


class UpsertMessage(BaseModel):
    """One message from a messages.upsert batch."""
    key: MessageKey
    message: Optional[MessageContent] = None
    push_name: Optional[str] = Field(None, alias="pushName")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def text(self) -> Optional[str]:
        """Plain text of the message, or None for non-text messages."""
        if self.message is None:
            return None
        if self.message.conversation is not None:
            return self.message.conversation
        if self.message.extended_text_message is not None:
            return self.message.extended_text_message.text
        return None


class WebhookEvent(BaseModel):
    """
    Envelope posted by the transport for every event.

    The shape of data depends on the event; it is parsed per event by the
    inbound handler.
    """
    event: str = Field(..., min_length=1, description="Event name, e.g. messages.upsert")
    instance: Optional[str] = Field(None, description="Transport instance name")
    data: Any = Field(None, description="Event payload")

    model_config = {
        "extra": "ignore",
        "json_schema_extra": {
            "examples": [
                {
                    "event": "messages.upsert",
                    "instance": "requinte",
                    "data": {
                        "key": {"remoteJid": "5511999999999@s.whatsapp.net", "fromMe": False},
                        "message": {"conversation": "Oi"},
                    },
                }
            ]
        },
    }

    @property
    def event_name(self) -> str:
        """Event name in Baileys form (MESSAGES_UPSERT -> messages.upsert)."""
        return self.event.lower().replace("_", ".")

    def upsert_batch(self) -> tuple[Optional[UpsertMessage], int]:
        """
        First message of a messages.upsert batch and how many were dropped.

        Only the first message is ever processed; the rest of the batch is
        discarded. Returns (None, n) when the first entry cannot be parsed.
        """
        batch = self.data
        if isinstance(batch, dict) and isinstance(batch.get("messages"), list):
            batch = batch["messages"]
        if not isinstance(batch, list):
            batch = [batch] if batch else []
        if not batch:
            return None, 0
        try:
            first = UpsertMessage.model_validate(batch[0])
        except ValidationError:
            return None, len(batch) - 1
        return first, len(batch) - 1


class ConnectionUpdate(BaseModel):
    state: Optional[str] = None
    status_reason: Optional[int] = Field(None, alias="statusReason")

    model_config = {"populate_by_name": True, "extra": "ignore"}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for acknowledged transport events."""
    status: str = Field(default="ok", description="Operation status")


class ReportEntry(BaseModel):
    """Latest answers of one contact in GET /relatorio."""
    contact: str = Field(..., serialization_alias="_id", description="Contact JID")
    tipo: Optional[str] = Field(None, description="Mattress type (1 molas, 2 espumas)")
    peso: Optional[str] = Field(None, description="Weight range (1, 2, 3)")
    local: Optional[str] = Field(None, description="Neighbourhood and city")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
