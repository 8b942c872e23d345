"""In-memory mock transport used for testing and local development."""

from __future__ import annotations

import threading
from collections import deque
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import grpc

from togomq import serialization
from togomq.adapters.base import Metadata, ResponseStream, Transport
from togomq.config import Config


class MockRpcError(grpc.RpcError):
    """A ``grpc.RpcError`` carrying a status code, as raised by real calls."""

    def __init__(self, code: grpc.StatusCode, details: str = "") -> None:
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class MockResponseStream(ResponseStream):
    """Scripted subscribe stream.

    Frames are served in order.  Once they run out the stream raises *error*
    if one was given, ends cleanly if *hold_open* is false, or otherwise
    waits for more frames via :meth:`push` until :meth:`cancel` or
    :meth:`finish` is called.
    """

    def __init__(
        self,
        frames: Iterable[object] = (),
        error: Optional[BaseException] = None,
        hold_open: bool = False,
    ) -> None:
        self._frames: deque = deque(frames)
        self._error = error
        self._hold_open = hold_open
        self._cond = threading.Condition()
        self._cancelled = False
        self._finished = False

    def push(self, frame: object) -> None:
        with self._cond:
            self._frames.append(frame)
            self._cond.notify_all()

    def finish(self) -> None:
        """End the stream cleanly once buffered frames are consumed."""
        with self._cond:
            self._finished = True
            self._cond.notify_all()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[object]:
        while True:
            with self._cond:
                while self._hold_open and not (
                    self._frames or self._cancelled or self._finished
                ):
                    self._cond.wait()
                if self._cancelled:
                    raise MockRpcError(grpc.StatusCode.CANCELLED, "Locally cancelled by application!")
                if self._frames:
                    frame = self._frames.popleft()
                elif self._error is not None:
                    raise self._error
                else:
                    return
            yield frame


class MockTransport(Transport):
    """Transport backed by in-memory state instead of a server.

    Use :attr:`published` and :attr:`calls` to inspect what the client sent.

    Args:
        config: Client configuration.  Accepted so the transport can be
                built by name like :class:`~togomq.adapters.grpc.GrpcTransport`;
                not otherwise used.
        streams: Subscribe streams handed out, in order, by :meth:`sub_message`.
                 When exhausted, an empty stream that ends immediately is used.
        counts: Topic -> count answers for :meth:`count_messages`.
        error: When set, every RPC raises it instead of succeeding.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        streams: Optional[List[MockResponseStream]] = None,
        counts: Optional[Dict[str, int]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.published: List[object] = []
        self.calls: List[Tuple[str, Metadata]] = []
        self.sub_requests: List[object] = []
        self._streams: deque = deque(streams or [])
        self._counts = dict(counts or {})
        self._error = error
        self._connected = False

    def _check(self, method: str, metadata: Metadata) -> None:
        if not self._connected:
            raise MockRpcError(grpc.StatusCode.UNAVAILABLE, "channel closed")
        self.calls.append((method, tuple(metadata)))
        if self._error is not None:
            raise self._error

    def connect(self) -> None:
        self._connected = True

    def pub_message(
        self,
        requests: Iterable[object],
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> object:
        self._check("PubMessage", metadata)
        received = 0
        for request in requests:
            self.published.append(request)
            received += 1
        return serialization.PubMessageResponse(messages_received=received)

    def sub_message(
        self,
        request: object,
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> ResponseStream:
        self._check("SubMessage", metadata)
        self.sub_requests.append(request)
        if self._streams:
            return self._streams.popleft()
        return MockResponseStream()

    def count_messages(
        self,
        request: object,
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> object:
        self._check("CountMessages", metadata)
        return serialization.CountMessagesResponse(
            messages_count=self._counts.get(request.topic, 0)
        )

    def close(self) -> None:
        self._connected = False
