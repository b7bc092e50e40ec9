"""Shared Pydantic data models for lark-flowise-relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"


# --- Inbound webhook envelope ---


class EventHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: str = ""
    event_type: str = ""
    app_id: str | None = None
    tenant_key: str | None = None


class WebhookEnvelope(BaseModel):
    """Top-level shape of a Lark event callback.

    Only the discriminating fields are typed; the event body stays a dict
    until the event type is known.
    """

    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    challenge: str | None = None
    encrypt: str | None = None
    header: EventHeader | None = None
    event: dict[str, Any] | None = None


class SenderId(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = ""
    open_id: str | None = None
    union_id: str | None = None


class Sender(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sender_id: SenderId


class ReceivedMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: str
    chat_id: str
    message_type: str
    content: str = ""


class OverrideConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: str | None = None  # noqa: N815 - wire name


class MessageReceiveEvent(BaseModel):
    """Body of an ``im.message.receive_v1`` event."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sender: Sender
    message: ReceivedMessage
    override_config: OverrideConfig | None = Field(default=None, alias="overrideConfig")

    @property
    def session_id(self) -> str:
        """Conversation key for the AI backend: override, else chat id + user id."""
        if self.override_config and self.override_config.sessionId:
            return self.override_config.sessionId
        return f"{self.message.chat_id}{self.sender.sender_id.user_id}"


# --- Outbound envelopes ---


class ImageKeyData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    image_key: str | None = None


class ImageUploadEnvelope(BaseModel):
    """``{code, data: {image_key}}`` returned by image retrieval/upload endpoints."""

    model_config = ConfigDict(extra="ignore")

    code: int | None = None
    msg: str | None = None
    data: ImageKeyData | None = None


# --- Audit Models ---


class AuditEventType(str, Enum):
    URL_VERIFICATION = "url_verification"
    CONFIG_CHECK = "config_check"
    ENCRYPTED_REJECTED = "encrypted_rejected"
    MESSAGE_RECEIVED = "message_received"
    DUPLICATE_EVENT = "duplicate_event"
    REPLY_FAILED = "reply_failed"
    BACKEND_FAILED = "backend_failed"
    IMAGE_FAILED = "image_failed"
    UNSUPPORTED_EVENT = "unsupported_event"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    event_id: str | None = None
    message_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "ignored"
    details: dict[str, object] | None = None
