"""Forwarding of messages and reactions between both sides."""

from .content import clear_reply, content_body, prefix_sender
from .pipeline import ForwardingPipeline

__all__ = ["ForwardingPipeline", "clear_reply", "content_body", "prefix_sender"]
