"""gRPC transport for the TogoMQ service.

One long-lived channel is opened per client and shared by every call; each
publish, subscribe or count call opens its own RPC on it.  The channel is
tuned from :class:`~togomq.config.Config`:

================================  =========================================
Config field                      Channel argument
================================  =========================================
``max_message_size``              ``grpc.max_send_message_length`` and
                                  ``grpc.max_receive_message_length``
``initial_window_size``           ``grpc.http2.lookahead_bytes``
``write_buffer_size``             ``grpc.http2.write_buffer_size``
``read_buffer_size``              ``grpc.experimental.tcp_read_chunk_size``
``keepalive_time``                ``grpc.keepalive_time_ms``
``keepalive_timeout``             ``grpc.keepalive_timeout_ms``
================================  =========================================

gRPC core sizes the connection-level window itself, so
``initial_conn_window_size`` is validated but has no channel argument.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Iterator, List, Optional, Tuple

import grpc

from togomq import serialization
from togomq.adapters.base import Metadata, ResponseStream, Transport
from togomq.config import Config

logger = logging.getLogger(__name__)


def channel_options(config: Config) -> List[Tuple[str, int]]:
    """Build the gRPC channel arguments for *config*."""
    return [
        ("grpc.max_send_message_length", config.max_message_size),
        ("grpc.max_receive_message_length", config.max_message_size),
        ("grpc.http2.lookahead_bytes", config.initial_window_size),
        ("grpc.http2.write_buffer_size", config.write_buffer_size),
        ("grpc.experimental.tcp_read_chunk_size", config.read_buffer_size),
        ("grpc.keepalive_time_ms", int(config.keepalive_time * 1000)),
        ("grpc.keepalive_timeout_ms", int(config.keepalive_timeout * 1000)),
        ("grpc.keepalive_permit_without_calls", 0),
    ]


class GrpcResponseStream(ResponseStream):
    """Adapts a server-streaming gRPC call to :class:`ResponseStream`."""

    def __init__(self, call) -> None:
        self._call = call

    def __iter__(self) -> Iterator[object]:
        return iter(self._call)

    def cancel(self) -> None:
        self._call.cancel()


class GrpcTransport(Transport):
    """Transport over a single ``grpc`` channel.

    Args:
        config: Validated client configuration.
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._channel: Optional[grpc.Channel] = None

    def connect(self) -> None:
        address = self._config.address()
        options = channel_options(self._config)
        if self._config.use_tls:
            self._channel = grpc.secure_channel(
                address, grpc.ssl_channel_credentials(), options=options
            )
        else:
            logger.warning("TLS disabled, connecting to %s in plaintext", address)
            self._channel = grpc.insecure_channel(address, options=options)

        self._pub = self._channel.stream_unary(
            serialization.PUB_MESSAGE_METHOD,
            request_serializer=serialization.PubMessageRequest.SerializeToString,
            response_deserializer=serialization.PubMessageResponse.FromString,
        )
        self._sub = self._channel.unary_stream(
            serialization.SUB_MESSAGE_METHOD,
            request_serializer=serialization.SubMessageRequest.SerializeToString,
            response_deserializer=serialization.SubMessageResponse.FromString,
        )
        self._count = self._channel.unary_unary(
            serialization.COUNT_MESSAGES_METHOD,
            request_serializer=serialization.CountMessagesRequest.SerializeToString,
            response_deserializer=serialization.CountMessagesResponse.FromString,
        )

    def pub_message(
        self,
        requests: Iterable[object],
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> object:
        """Run a client-streaming publish call.

        An exception raised by *requests* cancels the call and is re-raised
        here unchanged.  grpc would otherwise log it with a traceback from
        its request-consumer thread.
        """
        aborted: List[BaseException] = []
        started = threading.Event()
        call = None

        def _guarded() -> Iterator[object]:
            try:
                for request in requests:
                    yield request
            except Exception as exc:
                aborted.append(exc)
                started.wait()
                call.cancel()

        call = self._pub.future(_guarded(), metadata=metadata, timeout=timeout)
        started.set()
        try:
            response = call.result()
        except (grpc.RpcError, grpc.FutureCancelledError):
            if aborted:
                raise aborted[0] from None
            raise
        if aborted:
            raise aborted[0]
        return response

    def sub_message(
        self,
        request: object,
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> ResponseStream:
        return GrpcResponseStream(self._sub(request, metadata=metadata, timeout=timeout))

    def count_messages(
        self,
        request: object,
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> object:
        return self._count(request, metadata=metadata, timeout=timeout)

    def close(self) -> None:
        if self._channel:
            self._channel.close()
            self._channel = None
