"""Unit tests for the ZeroMQ message bus and the sync event bus."""

import json
from unittest import mock

import pytest
import zmq

from masjid_display.common.ipc import Message, MessagePublisher, MessageSubscriber, MessageType
from masjid_display.sync.events import EventBus


class TestMessage:
    """Tests for message serialization."""

    def test_json_round_trip(self):
        message = Message(MessageType.RESOURCE_SYNCED, {"kind": "content"}, "sync_service", timestamp=123.0)

        restored = Message.from_json(message.to_json())

        assert restored.msg_type == MessageType.RESOURCE_SYNCED
        assert restored.data == {"kind": "content"}
        assert restored.sender == "sync_service"
        assert restored.timestamp == 123.0

    def test_timestamp_defaults_to_now(self):
        assert Message(MessageType.COMMAND, {}, "x").timestamp > 0


@pytest.fixture
def zmq_context():
    with mock.patch('masjid_display.common.ipc.zmq.Context') as context_cls, \
            mock.patch('masjid_display.common.ipc.time.sleep'):
        yield context_cls.return_value


class TestPublisher:
    """Tests for MessagePublisher with a mocked socket."""

    def test_binds_loopback(self, zmq_context):
        MessagePublisher(5560, "sync_service")
        zmq_context.socket.return_value.bind.assert_called_once_with("tcp://127.0.0.1:5560")

    def test_publish_prefixes_topic(self, zmq_context):
        publisher = MessagePublisher(5560, "sync_service")

        publisher.publish(MessageType.SYNC_ERROR, {"kind": "events", "error": "boom"})

        sent = zmq_context.socket.return_value.send_string.call_args[0][0]
        topic, payload = sent.split(" ", 1)
        assert topic == "sync_error"
        assert json.loads(payload)["data"] == {"kind": "events", "error": "boom"}

    def test_close(self, zmq_context):
        MessagePublisher(5560, "sync_service").close()
        zmq_context.socket.return_value.close.assert_called_once()
        zmq_context.term.assert_called_once()


class TestSubscriber:
    """Tests for MessageSubscriber with a mocked socket."""

    def test_receive_message(self, zmq_context):
        message = Message(MessageType.COMMAND, {"type": "RELOAD_CONTENT"}, "sync_service")
        zmq_context.socket.return_value.recv_string.return_value = f"command {message.to_json()}"

        received = MessageSubscriber("127.0.0.1", 5560, "display_ui").receive()

        assert received.msg_type == MessageType.COMMAND
        assert received.data == {"type": "RELOAD_CONTENT"}

    def test_receive_timeout(self, zmq_context):
        zmq_context.socket.return_value.recv_string.side_effect = zmq.Again()

        assert MessageSubscriber("127.0.0.1", 5560, "display_ui").receive(timeout_ms=10) is None

    def test_receive_malformed(self, zmq_context):
        zmq_context.socket.return_value.recv_string.return_value = "garbage"

        assert MessageSubscriber("127.0.0.1", 5560, "display_ui").receive() is None


class TestEventBus:
    """Tests for in-process sync event delivery."""

    def test_listeners_receive_events(self):
        bus = EventBus()
        received = []
        bus.on(MessageType.RESOURCE_SYNCED, received.append)

        bus.emit(MessageType.RESOURCE_SYNCED, {"kind": "content"})
        bus.emit(MessageType.SYNC_ERROR, {"kind": "events"})

        assert received == [{"kind": "content"}]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.on(MessageType.COMMAND, received.append)

        unsubscribe()
        unsubscribe()
        bus.emit(MessageType.COMMAND, {})

        assert received == []
        assert bus.listener_count(MessageType.COMMAND) == 0

    def test_failing_listener_does_not_stop_others(self):
        bus = EventBus()
        received = []

        def broken(data):
            raise RuntimeError("listener bug")

        bus.on(MessageType.COMMAND, broken)
        bus.on(MessageType.COMMAND, received.append)

        bus.emit(MessageType.COMMAND, {"type": "RESTART_APP"})

        assert received == [{"type": "RESTART_APP"}]

    def test_mirrors_to_publisher(self):
        publisher = mock.MagicMock()
        bus = EventBus(publisher)

        bus.emit(MessageType.HEARTBEAT_SENT, {"ok": True})

        publisher.publish.assert_called_once_with(MessageType.HEARTBEAT_SENT, {"ok": True})

    def test_publisher_failure_swallowed(self):
        publisher = mock.MagicMock()
        publisher.publish.side_effect = zmq.ZMQError()

        EventBus(publisher).emit(MessageType.SYNC_SUMMARY, {})
