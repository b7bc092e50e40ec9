"""Integration tests for the relay HTTP endpoints."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.config import RelayConfig
from src.lark.client import LarkClient
from src.relay.commands import HELP_TEXT
from src.relay.flowise import FlowiseClient, FlowiseError
from src.server.app import create_app, create_app_from_env
from src.webhook.handler import APOLOGY_TEXT
from tests.conftest import make_message_event


def _make_app(relay_config: RelayConfig, **kwargs: Any) -> Any:
    defaults: dict[str, Any] = {
        "config": relay_config,
        "lark_client": AsyncMock(spec=LarkClient),
        "flowise": AsyncMock(spec=FlowiseClient),
    }
    defaults.update(kwargs)
    return create_app(**defaults)


class TestStatusEndpoints:
    @pytest.mark.asyncio
    async def test_hello(self, relay_config: RelayConfig) -> None:
        transport = ASGITransport(app=_make_app(relay_config))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/hello")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Hello, World!"}

    @pytest.mark.asyncio
    async def test_health(self, relay_config: RelayConfig) -> None:
        transport = ASGITransport(app=_make_app(relay_config))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/health")
        assert resp.json() == {"status": "ok"}


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_url_verification(self, relay_config: RelayConfig) -> None:
        transport = ASGITransport(app=_make_app(relay_config))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/webhook", json={"type": "url_verification", "challenge": "abc"},
            )
        assert resp.status_code == 200
        assert resp.json() == {"challenge": "abc"}

    @pytest.mark.asyncio
    async def test_help_command_end_to_end(self, relay_config: RelayConfig) -> None:
        lark = AsyncMock(spec=LarkClient)
        flowise = AsyncMock(spec=FlowiseClient)
        app = _make_app(relay_config, lark_client=lark, flowise=flowise)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/webhook", json=make_message_event(text="@_user_1 /help"),
            )
        assert resp.status_code == 200
        assert resp.json() == {"code": 0}
        flowise.query.assert_not_called()
        lark.reply_text.assert_awaited_once_with("om_1", HELP_TEXT)

    @pytest.mark.asyncio
    async def test_backend_failure_still_acknowledged(
        self, relay_config: RelayConfig,
    ) -> None:
        lark = AsyncMock(spec=LarkClient)
        flowise = AsyncMock(spec=FlowiseClient)
        flowise.query.side_effect = FlowiseError("Invalid response from Flowise API")
        app = _make_app(relay_config, lark_client=lark, flowise=flowise)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post("/webhook", json=make_message_event())
        assert resp.status_code == 200
        assert resp.json() == {"code": 0}
        lark.reply_text.assert_awaited_once_with("om_1", APOLOGY_TEXT)

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, relay_config: RelayConfig) -> None:
        lark = AsyncMock(spec=LarkClient)
        flowise = AsyncMock(spec=FlowiseClient)
        flowise.query.return_value = "answer"
        app = _make_app(relay_config, lark_client=lark, flowise=flowise)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            first = await client.post("/webhook", json=make_message_event(event_id="e"))
            second = await client.post("/webhook", json=make_message_event(event_id="e"))
        assert first.json() == {"code": 0}
        assert second.json() == {"code": 0, "message": "Duplicate event"}
        assert flowise.query.await_count == 1
        assert lark.reply_text.await_count == 1

    @pytest.mark.asyncio
    async def test_config_check_request(self) -> None:
        app = _make_app(RelayConfig(app_id="", app_secret=""))
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post("/webhook", json={})
        assert resp.json() == {"code": 1, "message": "Missing Lark App ID or Secret"}

    @pytest.mark.asyncio
    async def test_non_json_body_acknowledged(self, relay_config: RelayConfig) -> None:
        transport = ASGITransport(app=_make_app(relay_config))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/webhook",
                content=b"not json",
                headers={"content-type": "application/json"},
            )
        assert resp.status_code == 200
        assert resp.json()["code"] == 1

    @pytest.mark.asyncio
    async def test_audit_trail_written(
        self, relay_config: RelayConfig, tmp_path: Path,
    ) -> None:
        audit_path = tmp_path / "audit.jsonl"
        config = RelayConfig(
            app_id=relay_config.app_id,
            app_secret=relay_config.app_secret,
            audit_log_path=str(audit_path),
        )
        transport = ASGITransport(app=_make_app(config))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            await client.post("/webhook", json={"type": "url_verification", "challenge": "x"})
        entry = json.loads(audit_path.read_text().strip())
        assert entry["event_type"] == "url_verification"


class TestAppFromEnv:
    def test_loads_dotenv_from_working_directory(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        (tmp_path / ".env").write_text(
            "LARK_APP_ID=cli_env\nLARK_APP_SECRET=env-secret\n",
        )
        monkeypatch.chdir(tmp_path)
        # Registered with monkeypatch so teardown drops what load_dotenv sets
        for key in ("LARK_APP_ID", "LARK_APP_SECRET"):
            monkeypatch.setenv(key, "")
            monkeypatch.delenv(key)
        monkeypatch.delenv("IMAGE_MODE", raising=False)

        app = create_app_from_env()

        assert app.state.handler._config.app_id == "cli_env"
        assert app.state.handler._config.app_secret == "env-secret"
