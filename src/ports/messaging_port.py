"""Messaging port: abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific chat transport.
A reply answers an inbound event; a direct message is pushed unprompted.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import OutboundMessage


class MessagingPort(Protocol):
    """Abstract messaging interface used by core modules."""

    async def send_direct(self, user_id: str, content: OutboundMessage) -> None: ...

    async def send_reply(self, reply_token: str, content: OutboundMessage) -> None: ...
