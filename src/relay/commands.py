"""Slash-command handling for chat messages."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

HELP_TEXT = """
  Lark GPT Commands

  Usage:
  - /clear : Remove conversation history to start a new session.
  - /help : Get more help messages.
  """

CLEAR_TEXT = "✅ Conversation history cleared."

ReplyFn = Callable[[str, str], Awaitable[None]]


class CommandDispatcher:
    """Maps ``/help`` and ``/clear``; anything else shows help."""

    def __init__(self, reply: ReplyFn) -> None:
        self._reply = reply

    async def dispatch(self, action: str, session_id: str, message_id: str) -> str:
        """Send the reply for ``action`` and return the text that was sent."""
        if action == "/clear":
            return await self._clear(session_id, message_id)
        if action != "/help":
            logger.debug("Unknown command %r, showing help", action)
        return await self._help(message_id)

    async def _help(self, message_id: str) -> str:
        await self._reply(message_id, HELP_TEXT)
        return HELP_TEXT

    async def _clear(self, session_id: str, message_id: str) -> str:
        # Conversation memory lives in the Flowise backend; nothing is cleared here.
        logger.info("Clear requested for session %s", session_id)
        await self._reply(message_id, CLEAR_TEXT)
        return CLEAR_TEXT
