"""Markdown-subset to Lark text markup conversion."""

from __future__ import annotations

import re

_BOLD = re.compile(r"\*\*(.*?)\*\*")
_ITALIC = re.compile(r"\*(.*?)\*")


def format_markdown(text: str) -> str:
    """Turn ``**bold**`` into ``<b>bold</b>`` and then ``*italic*`` into ``<i>italic</i>``.

    Matching is non-greedy and line-local. Nested or unbalanced asterisks
    are left to the regexes; no escaping is supported.
    """
    text = _BOLD.sub(r"<b>\1</b>", text)
    return _ITALIC.sub(r"<i>\1</i>", text)
