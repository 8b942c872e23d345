"""Tests for togomq.client.Client using the in-memory mock transport."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import grpc
import pytest

from togomq.adapters import get_transport_class
from togomq.adapters.mock import MockResponseStream, MockRpcError, MockTransport
from togomq.client import Client
from togomq.config import ConfigValidationError, new_config, with_log_level, with_port, with_token
from togomq.errors import ErrorCode, TogoMQError
from togomq.log import LEVEL_NONE
from togomq.message import Message, new_message, new_subscribe_options
from togomq.serialization import SubMessageResponse

TOKEN = "test-token"


def _make_client(transport=None, *options) -> tuple:
    transport = transport or MockTransport()
    client = Client(new_config(with_token(TOKEN), *options), transport=transport)
    return client, transport


def _example_batch() -> list:
    return [
        new_message("orders", b"order-1-data"),
        new_message("orders", b"order-2-data").with_variables({"priority": "high"}),
        new_message("orders", b"order-3-data").with_postpone(60).with_retention(3600),
    ]


class _FailingTransport(MockTransport):
    def connect(self) -> None:
        raise OSError("cannot resolve host")


class _BlockingCountTransport(MockTransport):
    """Holds count calls open until the transport is closed, like a real channel."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self._released = threading.Event()

    def count_messages(self, request, metadata, timeout=None):
        self._check("CountMessages", metadata)
        self.entered.set()
        self._released.wait(5)
        raise MockRpcError(grpc.StatusCode.CANCELLED, "Channel closed!")

    def close(self) -> None:
        super().close()
        self._released.set()


class TestConstruction:
    def test_none_config(self):
        with pytest.raises(TogoMQError) as excinfo:
            Client(None, transport=MockTransport())
        assert excinfo.value.code is ErrorCode.CONFIGURATION
        assert str(excinfo.value) == "[CONFIG_ERROR] config cannot be nil"

    def test_invalid_config(self):
        with pytest.raises(TogoMQError) as excinfo:
            Client(new_config(), transport=MockTransport())
        err = excinfo.value
        assert err.code is ErrorCode.VALIDATION
        assert isinstance(err.unwrap(), ConfigValidationError)
        assert str(err) == "[VALIDATION_ERROR] invalid configuration: token is required"

    def test_invalid_port(self):
        with pytest.raises(TogoMQError) as excinfo:
            Client(new_config(with_token(TOKEN), with_port(70000)), transport=MockTransport())
        assert "port must be between 1 and 65535" in str(excinfo.value)

    def test_connect_failure(self):
        with pytest.raises(TogoMQError) as excinfo:
            Client(new_config(with_token(TOKEN)), transport=_FailingTransport())
        assert excinfo.value.code is ErrorCode.CONNECTION
        assert isinstance(excinfo.value.unwrap(), OSError)

    def test_transport_by_name(self):
        client = Client(new_config(with_token(TOKEN)), transport="mock")
        assert isinstance(client._transport, MockTransport)
        assert client.count_messages("orders") == 0
        client.close()

    def test_registry_builds_mock_from_config(self):
        transport = get_transport_class("MOCK")(new_config(with_token(TOKEN)))
        with transport:
            assert transport.published == []

    def test_unknown_transport(self):
        with pytest.raises(ValueError, match="Unknown transport 'amqp'. Supported: grpc, mock"):
            get_transport_class("amqp")

    def test_log_level_applied(self):
        _make_client(None, with_log_level("error"))
        assert logging.getLogger("togomq").level == logging.ERROR

    def test_latest_client_sets_package_log_level(self):
        quiet, _ = _make_client(None, with_log_level("none"))
        assert logging.getLogger("togomq").level == LEVEL_NONE
        _make_client(None, with_log_level("debug"))
        assert logging.getLogger("togomq").level == logging.DEBUG
        assert quiet.config.log_level == "none"


class TestPublish:
    def test_batch_example(self):
        client, transport = _make_client()
        resp = client.publish_batch(_example_batch())
        assert resp.messages_received == 3
        assert [r.body for r in transport.published] == [
            b"order-1-data",
            b"order-2-data",
            b"order-3-data",
        ]
        assert dict(transport.published[1].variables) == {"priority": "high"}
        assert transport.published[2].postpone == 60
        assert transport.published[2].retention == 3600

    def test_token_sent_as_metadata(self):
        client, transport = _make_client()
        client.publish_batch([new_message("orders", b"x")])
        assert transport.calls == [("PubMessage", (("authorization", TOKEN),))]

    def test_streaming_from_generator_preserves_order(self):
        client, transport = _make_client()

        def _produce():
            for i in range(5):
                yield new_message("events", str(i).encode())

        resp = client.publish(_produce())
        assert resp.messages_received == 5
        assert [r.body for r in transport.published] == [b"0", b"1", b"2", b"3", b"4"]

    def test_empty_batch(self):
        client, _ = _make_client()
        assert client.publish_batch([]).messages_received == 0

    def test_empty_topic_aborts(self):
        client, transport = _make_client()
        with pytest.raises(TogoMQError) as excinfo:
            client.publish_batch([new_message("", b"x")])
        assert excinfo.value.code is ErrorCode.VALIDATION
        assert excinfo.value.message == "message topic is required"
        assert transport.published == []

    def test_messages_before_invalid_one_are_sent(self):
        client, transport = _make_client()
        batch = [new_message("orders", b"1"), Message(topic=""), new_message("orders", b"3")]
        with pytest.raises(TogoMQError) as excinfo:
            client.publish_batch(batch)
        assert excinfo.value.code is ErrorCode.VALIDATION
        assert [r.body for r in transport.published] == [b"1"]

    def test_transport_failure(self):
        transport = MockTransport(error=MockRpcError(grpc.StatusCode.UNAVAILABLE, "connection refused"))
        client, _ = _make_client(transport)
        with pytest.raises(TogoMQError) as excinfo:
            client.publish_batch(_example_batch())
        assert excinfo.value.code is ErrorCode.CONNECTION
        assert excinfo.value.message == "failed to send message: connection refused"
        assert isinstance(excinfo.value.__cause__, MockRpcError)

    def test_auth_failure(self):
        transport = MockTransport(error=MockRpcError(grpc.StatusCode.UNAUTHENTICATED, "invalid token"))
        client, _ = _make_client(transport)
        with pytest.raises(TogoMQError) as excinfo:
            client.publish_batch(_example_batch())
        assert excinfo.value.code is ErrorCode.AUTH


class TestSubscribe:
    def test_empty_topic_rejected_before_transport(self):
        client, transport = _make_client()
        with pytest.raises(TogoMQError) as excinfo:
            client.subscribe(new_subscribe_options(""))
        assert excinfo.value.code is ErrorCode.VALIDATION
        assert excinfo.value.message == "topic is required for subscription"
        assert transport.calls == []

    def test_missing_options_rejected(self):
        client, transport = _make_client()
        with pytest.raises(TogoMQError) as excinfo:
            client.subscribe(None)
        assert excinfo.value.code is ErrorCode.VALIDATION
        assert transport.calls == []

    def test_request_fields_and_delivery(self):
        frames = [
            SubMessageResponse(topic="orders.eu", uuid="a", body=b"1", variables={"k": "v"}),
            SubMessageResponse(topic="orders.us", uuid="b", body=b"2"),
        ]
        transport = MockTransport(streams=[MockResponseStream(frames)])
        client, _ = _make_client(transport)

        opts = new_subscribe_options("orders.*").with_batch(10).with_speed_per_sec(100)
        sub = client.subscribe(opts)
        received = list(sub)

        req = transport.sub_requests[0]
        assert (req.topic, req.batch, req.speed_per_sec) == ("orders.*", 10, 100)
        assert transport.calls == [("SubMessage", (("authorization", TOKEN),))]
        assert [(m.topic, m.uuid) for m in received] == [("orders.eu", "a"), ("orders.us", "b")]
        assert received[0].variables == {"k": "v"}
        assert sub.error is None

    def test_wildcard_passed_through(self):
        client, transport = _make_client()
        list(client.subscribe(new_subscribe_options("*")))
        assert transport.sub_requests[0].topic == "*"

    def test_stream_creation_failure(self):
        transport = MockTransport(error=MockRpcError(grpc.StatusCode.UNAVAILABLE, "down"))
        client, _ = _make_client(transport)
        with pytest.raises(TogoMQError) as excinfo:
            client.subscribe(new_subscribe_options("orders"))
        assert excinfo.value.code is ErrorCode.CONNECTION
        assert excinfo.value.message == "failed to create subscribe stream: down"


class TestCount:
    def test_empty_topic_rejected_without_rpc(self):
        client, transport = _make_client()
        with pytest.raises(TogoMQError) as excinfo:
            client.count_messages("")
        assert excinfo.value.code is ErrorCode.VALIDATION
        assert excinfo.value.message == "topic is required for counting messages"
        assert transport.calls == []

    def test_returns_count(self):
        client, transport = _make_client(MockTransport(counts={"orders.*": 42}))
        assert client.count_messages("orders.*") == 42
        assert transport.calls == [("CountMessages", (("authorization", TOKEN),))]

    def test_failure_translated(self):
        transport = MockTransport(error=MockRpcError(grpc.StatusCode.INVALID_ARGUMENT, "bad pattern"))
        client, _ = _make_client(transport)
        with pytest.raises(TogoMQError) as excinfo:
            client.count_messages("orders.**")
        assert excinfo.value.code is ErrorCode.VALIDATION
        assert excinfo.value.message == "failed to count messages: bad pattern"


class TestClose:
    def test_context_manager_closes_transport(self):
        transport = MockTransport()
        with Client(new_config(with_token(TOKEN)), transport=transport):
            assert transport._connected
        assert not transport._connected

    def test_operations_after_close(self):
        client, transport = _make_client()
        client.close()
        client.close()
        with pytest.raises(TogoMQError) as excinfo:
            client.count_messages("orders")
        assert excinfo.value.code is ErrorCode.CONNECTION
        assert excinfo.value.message == "client is closed"
        with pytest.raises(TogoMQError):
            client.publish_batch([new_message("orders")])

    def test_close_aborts_live_subscription(self):
        stream = MockResponseStream(hold_open=True)
        client, _ = _make_client(MockTransport(streams=[stream]))
        sub = client.subscribe(new_subscribe_options("orders"))
        client.close()
        assert sub.join(2)
        assert list(sub) == []
        assert sub.error.code is ErrorCode.CONNECTION
        assert sub.error.message == "client closed"
        assert stream.cancelled

    def test_subscription_cancel_is_not_an_error(self):
        stream = MockResponseStream(hold_open=True)
        client, _ = _make_client(MockTransport(streams=[stream]))
        sub = client.subscribe(new_subscribe_options("orders"))
        sub.cancel()
        assert sub.join(2)
        client.close()
        assert sub.error is None

    def test_close_interrupts_inflight_count(self):
        transport = _BlockingCountTransport()
        client, _ = _make_client(transport)
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(client.count_messages, "orders")
            assert transport.entered.wait(2)
            client.close()
            with pytest.raises(TogoMQError) as excinfo:
                future.result(timeout=2)
        assert excinfo.value.code is ErrorCode.CONNECTION
        assert excinfo.value.message == "client closed"
        assert isinstance(excinfo.value.unwrap(), MockRpcError)
