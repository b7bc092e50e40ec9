"""Lark event callback handling.

Classifies each callback in a fixed order (first match wins):

1. ``type == "url_verification"``: echo the challenge.
2. ``encrypt`` present: refuse, payload decryption is not supported.
3. no ``header``: configuration self-check.
4. ``im.message.receive_v1``: deduplicate, then reply via commands or Flowise.
5. anything else: ``{"code": 2}``.

Downstream failures never surface to Lark as errors; the callback is
always acknowledged so the platform does not redeliver.
"""

from __future__ import annotations

import json
import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.lark.client import BOT_NOT_IN_CHAT, LarkAPIError
from src.models import (
    MESSAGE_RECEIVE_EVENT,
    AuditEvent,
    AuditEventType,
    EventHeader,
    MessageReceiveEvent,
    WebhookEnvelope,
)
from src.relay.commands import CommandDispatcher
from src.relay.flowise import FlowiseError
from src.relay.images import ImageUploadError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.config import RelayConfig
    from src.lark.client import LarkClient
    from src.relay.flowise import FlowiseClient
    from src.relay.images import ImageUploader
    from src.webhook.dedup import EventStore

logger = logging.getLogger(__name__)

MENTION_MARKER = "@_user_1"

APOLOGY_TEXT = "⚠️ An error occurred while processing your request."
TEXT_ONLY_TEXT = "Only text messages are supported."
ENCRYPTION_MESSAGE = "Encryption is enabled, please disable it."
INVALID_PAYLOAD_MESSAGE = "Invalid event payload"


def extract_question(content: str) -> str:
    """Recover the user text from a message content string.

    Strips the first bot mention marker and surrounding whitespace.
    Raises ValueError when the content is not a JSON object with ``text``.
    """
    parsed = json.loads(content)
    if not isinstance(parsed, dict) or not isinstance(parsed.get("text"), str):
        raise ValueError("Message content has no text field")
    return parsed["text"].replace(MENTION_MARKER, "", 1).strip()


class LarkWebhookHandler:
    """Turns Lark event callbacks into replies."""

    def __init__(
        self,
        config: RelayConfig,
        lark_client: LarkClient,
        flowise: FlowiseClient,
        event_store: EventStore,
        image_uploader: ImageUploader | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._config = config
        self._lark = lark_client
        self._flowise = flowise
        self._events = event_store
        self._images = image_uploader
        self._audit = audit_logger

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Classify a callback payload and return the JSON acknowledgement."""
        # States 1 and 2 read the raw body; envelope validation only gates 3-5
        if payload.get("type") == "url_verification":
            self._record(AuditEventType.URL_VERIFICATION, "challenge", "success")
            return {"challenge": payload.get("challenge")}

        if payload.get("encrypt"):
            self._record(AuditEventType.ENCRYPTED_REJECTED, "decrypt", "failure")
            return {"code": 1, "message": ENCRYPTION_MESSAGE}

        try:
            envelope = WebhookEnvelope.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Rejected malformed callback: %s", exc)
            return {"code": 1, "message": INVALID_PAYLOAD_MESSAGE}

        if envelope.header is None:
            check = self._config.check_app_credentials()
            self._record(
                AuditEventType.CONFIG_CHECK,
                "validate_app_config",
                "success" if check.code == 0 else "failure",
            )
            return check.as_dict()

        if envelope.header.event_type == MESSAGE_RECEIVE_EVENT:
            return await self._handle_message(envelope.header, envelope.event or {})

        self._record(
            AuditEventType.UNSUPPORTED_EVENT,
            envelope.header.event_type or "unknown",
            "ignored",
            event_id=envelope.header.event_id,
        )
        return {"code": 2}

    async def _handle_message(
        self, header: EventHeader, raw_event: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            event = MessageReceiveEvent.model_validate(raw_event)
        except ValidationError as exc:
            logger.warning("Malformed message event %s: %s", header.event_id, exc)
            return {"code": 1, "message": INVALID_PAYLOAD_MESSAGE}

        message = event.message
        if not header.event_id:
            logger.warning(
                "Message event without event_id, not deduplicated: message %s chat %s",
                message.message_id, message.chat_id,
            )
        elif not self._events.check_and_mark(header.event_id):
            logger.info("Duplicate event %s for message %s", header.event_id, message.message_id)
            self._record(
                AuditEventType.DUPLICATE_EVENT, "dedup", "ignored",
                event_id=header.event_id, message_id=message.message_id,
            )
            return {"code": 0, "message": "Duplicate event"}

        self._record(
            AuditEventType.MESSAGE_RECEIVED, message.message_type, "success",
            event_id=header.event_id, message_id=message.message_id,
            details={"chat_id": message.chat_id},
        )

        if message.message_type != "text":
            await self.reply_text(message.message_id, TEXT_ONLY_TEXT, chat_id=message.chat_id)
            return {"code": 0}

        if self._images is not None and self._images.before_answer:
            await self._send_image(message.message_id, message.chat_id)

        await self._handle_text(event)
        return {"code": 0}

    async def _handle_text(self, event: MessageReceiveEvent) -> None:
        message_id = event.message.message_id
        chat_id = event.message.chat_id
        session_id = event.session_id
        try:
            question = extract_question(event.message.content)
            logger.info("Received question for message %s: %s", message_id, question)

            if question.startswith("/"):
                commands = CommandDispatcher(partial(self.reply_text, chat_id=chat_id))
                await commands.dispatch(question, session_id, message_id)
                return

            answer = await self._flowise.query(question, session_id)
        except (FlowiseError, ValueError) as exc:
            logger.error(
                "Failed to answer message %s in chat %s: %s", message_id, chat_id, exc,
            )
            self._record(
                AuditEventType.BACKEND_FAILED, "query", "failure",
                message_id=message_id, details={"chat_id": chat_id, "error": str(exc)},
            )
            await self.reply_text(message_id, APOLOGY_TEXT, chat_id=chat_id)
            return
        except Exception:
            logger.exception(
                "Unexpected error handling message %s in chat %s", message_id, chat_id,
            )
            await self.reply_text(message_id, APOLOGY_TEXT, chat_id=chat_id)
            return

        await self.reply_text(message_id, answer, chat_id=chat_id)
        if self._images is not None and not self._images.before_answer:
            await self._send_image(message_id, chat_id)

    async def _send_image(self, message_id: str, chat_id: str) -> None:
        try:
            image_key = await self._images.upload()  # type: ignore[union-attr]
        except ImageUploadError as exc:
            logger.warning(
                "Error uploading image for message %s in chat %s: %s",
                message_id, chat_id, exc,
            )
            self._record(
                AuditEventType.IMAGE_FAILED, "upload", "failure",
                message_id=message_id, details={"chat_id": chat_id, "error": str(exc)},
            )
            return

        try:
            await self._lark.reply_image(message_id, image_key)
        except LarkAPIError as exc:
            self._log_reply_failure(message_id, chat_id, "image", exc)

    async def reply_text(
        self, message_id: str, text: str, chat_id: str | None = None,
    ) -> None:
        """Send a text reply; failures are logged and dropped."""
        try:
            await self._lark.reply_text(message_id, text)
        except LarkAPIError as exc:
            self._log_reply_failure(message_id, chat_id, "text", exc)

    def _log_reply_failure(
        self, message_id: str, chat_id: str | None, kind: str, exc: LarkAPIError,
    ) -> None:
        if exc.code == BOT_NOT_IN_CHAT:
            logger.warning(
                "Bot/User is not in the chat anymore, message %s chat %s",
                message_id, chat_id,
            )
        else:
            logger.error(
                "Error sending %s reply to Lark for message %s in chat %s: %s",
                kind, message_id, chat_id, exc,
            )
        self._record(
            AuditEventType.REPLY_FAILED, f"reply_{kind}", "failure",
            message_id=message_id, details={"chat_id": chat_id, "code": exc.code},
        )

    def _record(
        self,
        event_type: AuditEventType,
        action: str,
        result: str,
        *,
        event_id: str | None = None,
        message_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=event_type,
                event_id=event_id,
                message_id=message_id,
                action=action,
                result=result,
                details=details,
            ))
