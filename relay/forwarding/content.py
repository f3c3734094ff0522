"""Content transformations applied when a message crosses sides."""

from __future__ import annotations

from ..transport.formatting import render_markdown
from ..transport.models import FORMAT_HTML, MessageContent

QUOTE_MARKER = "> <"
REPLY_END = "</mx-reply>"


def clear_reply(content: MessageContent) -> MessageContent:
    """Drop the quoted preamble of a reply; it may carry text from the other side."""

    body = content.body
    start = body.find(QUOTE_MARKER)
    if start >= 0:
        end = body.find("\n\n", start)
        if end >= 0:
            body = body[end + 2 :]
        else:
            body = "\n".join(
                line for line in body.split("\n") if not line.startswith(">")
            ).strip()
    content.body = body

    index = content.formatted_body.find(REPLY_END)
    if index >= 0:
        content.formatted_body = content.formatted_body[index + len(REPLY_END) :]
    return content


def prefix_sender(content: MessageContent, plain: str, rich: str) -> MessageContent:
    """Attribute ``content`` to its sender in both the plain and the rich body."""

    original = content.body
    if content.body:
        content.body = f"{plain}:\n{content.body}"
    content.format = FORMAT_HTML
    if content.formatted_body:
        content.formatted_body = f"{rich}:<br>{content.formatted_body}"
    else:
        content.formatted_body = f"{rich}:<br>{render_markdown(original) or original}"
    return content


def content_body(content: MessageContent | None) -> tuple[str, str]:
    """Return the effective ``(body, formatted_body)``, preferring the latest edit."""

    if content is None:
        return "", ""
    body, formatted = content.body, content.formatted_body
    if content.new_content is not None:
        body, formatted = content.new_content.body, content.new_content.formatted_body
    return body, formatted or body


def file_name_and_url(content: MessageContent) -> tuple[str, str]:
    if not content.url:
        return "", ""
    return content.file_name or content.body, content.url
