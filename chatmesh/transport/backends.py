"""
In-Process Transports

- RecordingTransport: keeps every delivery in memory (tests, demo)
- LoggingTransport: writes deliveries to a stream and the log (console)
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Iterable, Optional, TextIO

from chatmesh.core.types import SessionId
from chatmesh.transport.protocols import MessageKind, OutboundMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Delivery:
    """A message as it reached (or failed to reach) one recipient."""
    recipient: SessionId
    message: OutboundMessage
    delivered: bool


class RecordingTransport:
    """
    Records deliveries per recipient.

    Recipients listed in `failing` get send() == False, which exercises the
    best-effort paths (partner notices, room fan-out, admin broadcast).

    Usage:
        transport = RecordingTransport(failing={13})
        await transport.send(42, OutboundMessage.plain("hi"))
        assert transport.texts_for(42) == ["hi"]
    """

    __slots__ = ("_log", "_failing")

    def __init__(self, failing: Optional[Iterable[SessionId]] = None) -> None:
        self._log: list[Delivery] = []
        self._failing: set[SessionId] = set(failing or ())

    async def send(self, recipient: SessionId, message: OutboundMessage) -> bool:
        delivered = recipient not in self._failing
        self._log.append(Delivery(recipient, message, delivered))
        return delivered

    def fail_for(self, *recipients: SessionId) -> None:
        self._failing.update(recipients)

    @property
    def deliveries(self) -> list[Delivery]:
        return list(self._log)

    def messages_for(self, recipient: SessionId) -> list[OutboundMessage]:
        return [d.message for d in self._log if d.recipient == recipient and d.delivered]

    def texts_for(self, recipient: SessionId) -> list[str]:
        return [m.text for m in self.messages_for(recipient)]

    def last_text(self, recipient: SessionId) -> Optional[str]:
        texts = self.texts_for(recipient)
        return texts[-1] if texts else None

    def clear(self) -> None:
        self._log.clear()


class LoggingTransport:
    """Prints deliveries, for the console demo and local runs."""

    __slots__ = ("_stream",)

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdout

    async def send(self, recipient: SessionId, message: OutboundMessage) -> bool:
        if message.kind is MessageKind.TEXT:
            body = message.text
        else:
            body = f"[{message.kind.value} {message.file_id}] {message.text}".rstrip()
        print(f"-> {recipient}: {body}", file=self._stream)
        logger.debug("Delivered %s to %s", message.kind.value, recipient)
        return True
