"""
ZeroMQ PUB/SUB bus for sync events.

The sync service publishes; the display UI subscribes and refreshes from
the cache when it sees resource_synced. Wire frames are
"<topic> <json>" so subscribers can filter by event type.
"""

import json
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import zmq

from masjid_display.common.logger import setup_logger

logger = setup_logger(__name__)

# Time for late-joining subscribers to connect before the first publish
PUBLISHER_WARMUP = 0.1


class MessageType(Enum):
    """Sync events published to other processes."""
    RESOURCE_SYNCED = "resource_synced"   # A resource was refreshed in the cache
    SYNC_ERROR = "sync_error"             # A resource sync failed
    HEARTBEAT_SENT = "heartbeat_sent"     # Heartbeat accepted by the portal
    COMMAND = "command"                   # Remote command returned by a heartbeat
    SYNC_SUMMARY = "sync_summary"         # Per-resource outcome of an aggregate sync


@dataclass
class Message:
    """One event on the bus."""
    msg_type: MessageType
    data: Dict[str, Any]
    sender: str
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps({
            "type": self.msg_type.value,
            "data": self.data,
            "sender": self.sender,
            "timestamp": self.timestamp,
        }, default=str)

    @classmethod
    def from_json(cls, payload: str) -> "Message":
        decoded = json.loads(payload)
        return cls(
            msg_type=MessageType(decoded["type"]),
            data=decoded["data"],
            sender=decoded["sender"],
            timestamp=decoded["timestamp"],
        )

    def encode(self) -> str:
        """Wire frame: topic, a space, then the JSON body."""
        return f"{self.msg_type.value} {self.to_json()}"

    @classmethod
    def decode(cls, frame: str) -> Optional["Message"]:
        """Parse a wire frame. Returns None for anything malformed."""
        _, sep, body = frame.partition(" ")
        if not sep:
            return None
        try:
            return cls.from_json(body)
        except (ValueError, KeyError, TypeError):
            return None


class _Endpoint:
    """Owns a ZeroMQ context and a single socket."""

    def __init__(self, socket_type: int, service_name: str):
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(socket_type)

    def close(self) -> None:
        self.socket.close()
        self.context.term()
        logger.info("%s closed (%s)", type(self).__name__, self.service_name)


class MessagePublisher(_Endpoint):
    """PUB side. Safe to call publish() from several threads."""

    def __init__(self, port: int, service_name: str, host: str = "127.0.0.1"):
        """
        Args:
            port: TCP port to bind
            service_name: Sender name stamped on every message
            host: Interface to bind (loopback by default)
        """
        super().__init__(zmq.PUB, service_name)
        self.port = port
        self.socket.bind(f"tcp://{host}:{port}")
        self._send_lock = threading.Lock()

        time.sleep(PUBLISHER_WARMUP)
        logger.info("Publishing sync events on %s:%d", host, port)

    def publish(self, msg_type: MessageType, data: Dict[str, Any]) -> None:
        message = Message(msg_type, data, self.service_name)
        with self._send_lock:
            self.socket.send_string(message.encode())
        logger.debug("Published %s", msg_type.value)

    def close(self) -> None:
        with self._send_lock:
            super().close()


class MessageSubscriber(_Endpoint):
    """SUB side, used by the display UI and by diagnostics tools."""

    def __init__(self, host: str, port: int, service_name: str):
        super().__init__(zmq.SUB, service_name)
        self.host = host
        self.port = port
        self.socket.connect(f"tcp://{host}:{port}")
        self.socket.setsockopt_string(zmq.SUBSCRIBE, "")

    def subscribe_to(self, msg_type: MessageType) -> None:
        """Only deliver `msg_type` from now on."""
        self.socket.setsockopt_string(zmq.UNSUBSCRIBE, "")
        self.socket.setsockopt_string(zmq.SUBSCRIBE, msg_type.value)

    def receive(self, timeout_ms: int = 1000) -> Optional[Message]:
        """
        Wait up to `timeout_ms` for the next message.

        Returns:
            The message, or None on timeout or a malformed frame
        """
        self.socket.setsockopt(zmq.RCVTIMEO, timeout_ms)
        try:
            frame = self.socket.recv_string()
        except zmq.Again:
            return None

        message = Message.decode(frame)
        if message is None:
            logger.warning("Dropping malformed frame: %r", frame[:80])
        return message
