"""Flowise prediction endpoint client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class FlowiseError(Exception):
    """Raised when Flowise is unreachable or returns no usable answer."""


class FlowiseClient:
    """Posts a question with a session id and returns the answer text.

    No retry and no timeout override: one attempt with httpx defaults.
    """

    def __init__(self, api_url: str) -> None:
        self._api_url = api_url

    def build_request(self, question: str, session_id: str) -> dict[str, Any]:
        return {
            "question": question,
            "overrideConfig": {"sessionId": session_id},
        }

    async def query(self, question: str, session_id: str) -> str:
        body = self.build_request(question, session_id)
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self._api_url, json=body)
        except httpx.HTTPError as exc:
            logger.error("Error querying Flowise API: %s", exc)
            raise FlowiseError(f"Flowise unreachable: {exc}") from exc

        try:
            result = resp.json()
        except ValueError as exc:
            logger.error(
                "Flowise returned non-JSON body (HTTP %s)", resp.status_code,
            )
            raise FlowiseError("Invalid response from Flowise API") from exc

        text = result.get("text") if isinstance(result, dict) else None
        if not isinstance(text, str) or not text:
            logger.error("Flowise response has no text field: %s", result)
            raise FlowiseError("Invalid response from Flowise API")
        return text
