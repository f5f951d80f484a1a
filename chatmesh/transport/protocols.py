"""
Transport Protocol: Outbound Delivery Abstraction

The engine never talks to a chat network directly. Everything it sends,
replies, partner relays, room fan-out and notices, goes through a
Transport that accepts an OutboundMessage for one recipient.

Delivery is best-effort: send() reports failure by returning False and
callers count failures instead of rolling state back.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from chatmesh.core.types import SessionId

logger = logging.getLogger(__name__)


class MessageKind(Enum):
    """Payload kinds the relay understands."""
    TEXT = "text"
    PHOTO = "photo"
    STICKER = "sticker"
    VOICE = "voice"


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """
    One message for one recipient.

    `text` is the body for TEXT and the caption for PHOTO/VOICE;
    `file_id` is the transport's handle for media.
    """
    kind: MessageKind
    text: str = ""
    file_id: Optional[str] = None

    @classmethod
    def plain(cls, text: str) -> OutboundMessage:
        return cls(MessageKind.TEXT, text)

    @classmethod
    def photo(cls, file_id: str, caption: str = "") -> OutboundMessage:
        return cls(MessageKind.PHOTO, caption, file_id)

    @classmethod
    def sticker(cls, file_id: str) -> OutboundMessage:
        return cls(MessageKind.STICKER, "", file_id)

    @classmethod
    def voice(cls, file_id: str, caption: str = "") -> OutboundMessage:
        return cls(MessageKind.VOICE, caption, file_id)

    @property
    def caption(self) -> str:
        return self.text if self.kind is not MessageKind.TEXT else ""


@runtime_checkable
class Transport(Protocol):
    """Delivers messages to users."""

    @abstractmethod
    async def send(self, recipient: SessionId, message: OutboundMessage) -> bool:
        """Deliver one message. Returns False when delivery failed."""
        ...


async def deliver(
    transport: Transport,
    recipient: SessionId,
    message: OutboundMessage,
) -> bool:
    """
    Send and never raise.

    A transport bug must not abort the state change that triggered the
    send, so unexpected exceptions are logged and reported as a failed
    delivery.
    """
    try:
        delivered = await transport.send(recipient, message)
    except Exception:
        logger.exception("Transport raised while delivering to %s", recipient)
        return False
    if not delivered:
        logger.warning("Delivery of %s to %s failed", message.kind.value, recipient)
    return delivered
