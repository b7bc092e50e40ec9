"""Shared test fixtures for lark-flowise-relay."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.config import RelayConfig
from src.lark.client import LarkClient
from src.relay.flowise import FlowiseClient
from src.webhook.dedup import InMemoryEventStore
from src.webhook.handler import LarkWebhookHandler


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(
        app_id="cli_123",
        app_secret="secret",
        flowise_api_url="http://flowise:3000/api/v1/prediction/flow",
    )


@pytest.fixture
def mock_lark() -> AsyncMock:
    return AsyncMock(spec=LarkClient)


@pytest.fixture
def mock_flowise() -> AsyncMock:
    flowise = AsyncMock(spec=FlowiseClient)
    flowise.query.return_value = "the answer"
    return flowise


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def make_handler(relay_config, mock_lark, mock_flowise):
    """Build a handler around the mocked collaborators."""

    def _make(**kwargs: Any) -> LarkWebhookHandler:
        defaults: dict[str, Any] = {
            "config": relay_config,
            "lark_client": mock_lark,
            "flowise": mock_flowise,
            "event_store": InMemoryEventStore(),
            "image_uploader": None,
            "audit_logger": None,
        }
        defaults.update(kwargs)
        return LarkWebhookHandler(**defaults)

    return _make


# --- Factory functions for test data ---


def make_message_event(
    text: str = "@_user_1 hello",
    event_id: str = "evt-1",
    message_id: str = "om_1",
    chat_id: str = "oc_chat",
    user_id: str = "u_sender",
    message_type: str = "text",
    **event_extra: Any,
) -> dict[str, Any]:
    """Factory for an im.message.receive_v1 callback body."""
    event: dict[str, Any] = {
        "sender": {"sender_id": {"user_id": user_id, "open_id": "ou_x"}},
        "message": {
            "message_id": message_id,
            "chat_id": chat_id,
            "message_type": message_type,
            "content": json.dumps({"text": text}),
        },
    }
    event.update(event_extra)
    return {
        "schema": "2.0",
        "header": {
            "event_id": event_id,
            "event_type": "im.message.receive_v1",
            "app_id": "cli_123",
        },
        "event": event,
    }
