"""
Transport module: outbound delivery protocol and in-process transports.
"""

from chatmesh.transport.protocols import (
    MessageKind,
    OutboundMessage,
    Transport,
    deliver,
)
from chatmesh.transport.backends import Delivery, LoggingTransport, RecordingTransport

__all__ = [
    "MessageKind",
    "OutboundMessage",
    "Transport",
    "deliver",
    "Delivery",
    "LoggingTransport",
    "RecordingTransport",
]
