"""Lightweight markdown-ish rendering for outgoing rich bodies."""

from __future__ import annotations

import html
import re

from .models import FORMAT_HTML, MSG_NOTICE, MessageContent

_CODE = re.compile(r"`([^`\n]+)`")
_BOLD = re.compile(r"\*\*([^*\n]+)\*\*")
_ITALIC = re.compile(r"(?<![\w])_([^_\n]+)_(?![\w])")
_LINK = re.compile(r"\[([^\]\n]+)\]\((https?://[^)\s]+)\)")


def render_markdown(text: str) -> str:
    """Render the small markdown subset used in notices into HTML.

    Supports inline code, bold, italics, links and line breaks. Anything else
    is escaped verbatim.
    """

    rendered = html.escape(text, quote=False)
    rendered = _CODE.sub(r"<code>\1</code>", rendered)
    rendered = _BOLD.sub(r"<strong>\1</strong>", rendered)
    rendered = _ITALIC.sub(r"<em>\1</em>", rendered)
    rendered = _LINK.sub(r'<a href="\2">\1</a>', rendered)
    return rendered.replace("\n", "<br>")


def markdown_content(text: str, *, msgtype: str = MSG_NOTICE) -> MessageContent:
    return MessageContent(
        body=text,
        msgtype=msgtype,
        formatted_body=render_markdown(text),
        format=FORMAT_HTML,
    )
