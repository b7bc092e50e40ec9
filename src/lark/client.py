"""Lark Open API messaging client.

Covers the calls the relay needs: tenant access token, reply with text,
reply with an image key. Text replies go through the Markdown formatter.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from src.relay.formatter import format_markdown

logger = logging.getLogger(__name__)

BOT_NOT_IN_CHAT = 230002

_TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
_REPLY_PATH = "/open-apis/im/v1/messages/{message_id}/reply"
_TOKEN_REFRESH_MARGIN_SECONDS = 60
_TIMEOUT_SECONDS = 10.0


class LarkAPIError(Exception):
    """Raised when the Lark API rejects a call or cannot be reached."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class LarkClient:
    """Authenticated calls to the Lark messaging API."""

    def __init__(self, app_id: str, app_secret: str, api_base: str) -> None:
        self._app_id = app_id
        self._app_secret = app_secret
        self._api_base = api_base.rstrip("/")
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def reply_text(self, message_id: str, text: str) -> dict[str, Any]:
        content = {"text": format_markdown(text)}
        return await self._reply(message_id, "text", content)

    async def reply_image(self, message_id: str, image_key: str) -> dict[str, Any]:
        return await self._reply(message_id, "image", {"image_key": image_key})

    async def _reply(
        self, message_id: str, msg_type: str, content: dict[str, str],
    ) -> dict[str, Any]:
        token = await self._tenant_access_token()
        url = self._api_base + _REPLY_PATH.format(message_id=message_id)
        body = {"msg_type": msg_type, "content": json.dumps(content)}
        headers = {"Authorization": f"Bearer {token}"}
        return await self._post(url, body, headers)

    async def _tenant_access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at:
            return self._token

        data = await self._post(
            self._api_base + _TOKEN_PATH,
            {"app_id": self._app_id, "app_secret": self._app_secret},
        )
        token = data.get("tenant_access_token")
        if not token:
            raise LarkAPIError("Token response missing tenant_access_token")
        try:
            expire = int(data.get("expire", 0))
        except (TypeError, ValueError) as exc:
            raise LarkAPIError(
                f"Token response has invalid expire: {data.get('expire')!r}",
            ) from exc
        self._token = token
        self._token_expires_at = time.time() + max(
            expire - _TOKEN_REFRESH_MARGIN_SECONDS, 0,
        )
        return token

    async def _post(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(verify=True) as client:
                resp = await client.post(
                    url, json=body, headers=headers, timeout=_TIMEOUT_SECONDS,
                )
        except httpx.HTTPError as exc:
            raise LarkAPIError(f"Lark API unreachable: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise LarkAPIError(
                f"Lark API returned non-JSON body (HTTP {resp.status_code})",
            ) from exc

        code = data.get("code", 0) if isinstance(data, dict) else None
        if code != 0:
            msg = data.get("msg", "") if isinstance(data, dict) else ""
            raise LarkAPIError(f"Lark API error {code}: {msg}", code=code)
        return data
