"""Subscription streaming.

A :class:`Subscription` owns one background pump thread that:
  1. Receives the next frame from the server-push stream.
  2. Projects it into a :class:`~togomq.message.ReceivedMessage`.
  3. Hands it to the consumer through an unbuffered rendezvous, giving up
     if the subscription is cancelled first.

The pump stops on a clean end-of-stream (no error), on the first receive
failure (exactly one error, available as :attr:`Subscription.error`), or on
cancellation (no error).  Cancellation comes from :meth:`Subscription.cancel`,
a caller-supplied :class:`threading.Event`, or a timeout; all three behave the
same way.  Because the rendezvous is unbuffered, a slow consumer stalls the
pump, which stops reading from the stream.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Iterator, Optional

from togomq.adapters.base import ResponseStream
from togomq.errors import TogoMQError, wrap_grpc_error
from togomq.message import ReceivedMessage
from togomq.serialization import from_sub_response

logger = logging.getLogger(__name__)

_EMPTY = object()

# How often a subscription checks a caller-supplied cancel event.
WATCH_INTERVAL = 0.05


class _Handoff:
    """Unbuffered exchange between the pump (producer) and one consumer."""

    def __init__(self, cancelled: threading.Event) -> None:
        self._cond = threading.Condition()
        self._cancelled = cancelled
        self._slot = _EMPTY
        self._closed = False

    def put(self, item: object) -> bool:
        """Block until the consumer takes *item*.

        Returns:
            *True* if the consumer took it, *False* if cancellation won.
        """
        with self._cond:
            self._slot = item
            self._cond.notify_all()
            while self._slot is item and not self._cancelled.is_set():
                self._cond.wait()
            if self._slot is item:
                self._slot = _EMPTY
                return False
            return True

    def get(self, timeout: Optional[float] = None) -> object:
        """Take the next item.

        Returns:
            The item, or :data:`_EMPTY` on timeout, close, or cancellation.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._slot is _EMPTY and not self._closed and not self._cancelled.is_set():
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return _EMPTY
                self._cond.wait(remaining)
            if self._cancelled.is_set() or self._slot is _EMPTY:
                return _EMPTY
            item, self._slot = self._slot, _EMPTY
            self._cond.notify_all()
            return item

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def wake(self) -> None:
        with self._cond:
            self._cond.notify_all()


class Subscription:
    """Consumer-facing handle on a running subscribe stream.

    Iterate over it to receive messages until the stream is over, then check
    :attr:`error`::

        with client.subscribe(new_subscribe_options("orders.*")) as sub:
            for msg in sub:
                handle(msg)
        if sub.error is not None:
            raise sub.error

    Args:
        stream: Open server-push stream.
        topic: Subscribed topic pattern (for logging).
        cancel_event: Optional caller event; setting it cancels the subscription.
        timeout: Optional lifetime in seconds after which the subscription is
                 cancelled.
    """

    def __init__(
        self,
        stream: ResponseStream,
        topic: str,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._stream = stream
        self._topic = topic
        self._cancelled = threading.Event()
        self._handoff = _Handoff(self._cancelled)
        self._error: Optional[TogoMQError] = None
        self._abort_error: Optional[TogoMQError] = None
        self._done = threading.Event()

        self._thread = threading.Thread(
            target=self._pump, name=f"togomq-sub-{topic}", daemon=True
        )
        self._thread.start()

        if cancel_event is not None or timeout is not None:
            threading.Thread(
                target=self._watch,
                args=(cancel_event, timeout),
                name=f"togomq-sub-{topic}-watch",
                daemon=True,
            ).start()

    def _watch(self, cancel_event: Optional[threading.Event], timeout: Optional[float]) -> None:
        if cancel_event is None:
            if not self._done.wait(timeout):
                logger.debug("Subscription to %s timed out", self._topic)
                self.cancel()
            return

        # A caller event cannot be waited on together with _done, so poll both.
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._done.wait(WATCH_INTERVAL):
            if cancel_event.is_set():
                logger.debug("Cancel event set for subscription to %s", self._topic)
                break
            if deadline is not None and time.monotonic() >= deadline:
                logger.debug("Subscription to %s timed out", self._topic)
                break
        else:
            return
        self.cancel()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the subscription.  No message is delivered afterwards."""
        if self._cancelled.is_set():
            return
        logger.debug("Cancelling subscription to %s", self._topic)
        self._cancelled.set()
        self._handoff.wake()
        self._stream.cancel()

    def abort(self, error: TogoMQError) -> None:
        """Stop the subscription and report *error* as its terminal error."""
        if not self._handoff.closed:
            self._abort_error = error
        self.cancel()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the pump to finish.  Returns *True* once it has."""
        return self._done.wait(timeout)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def closed(self) -> bool:
        """*True* once the pump has stopped and nothing more will be delivered."""
        return self._handoff.closed

    @property
    def error(self) -> Optional[TogoMQError]:
        """The terminal error, or *None* for a clean end or a cancellation."""
        return self._error

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *args: object) -> None:
        self.cancel()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def receive(self, timeout: Optional[float] = None) -> Optional[ReceivedMessage]:
        """Return the next message, or *None* on timeout or once the stream is over."""
        item = self._handoff.get(timeout)
        return None if item is _EMPTY else item

    def __iter__(self) -> Iterator[ReceivedMessage]:
        while True:
            item = self._handoff.get()
            if item is _EMPTY:
                return
            yield item

    # ------------------------------------------------------------------
    # Pump
    # ------------------------------------------------------------------

    def _pump(self) -> None:
        received = 0
        try:
            frames = iter(self._stream)
            while True:
                try:
                    frame = next(frames)
                except StopIteration:
                    logger.info("Subscribe stream ended, received %d messages", received)
                    return
                except Exception as exc:
                    self._fail(exc)
                    return

                received += 1
                message = from_sub_response(frame)
                logger.debug(
                    "Received message from topic: %s, UUID: %s", message.topic, message.uuid
                )

                if not self._handoff.put(message) or self._cancelled.is_set():
                    self._stop()
                    return
        finally:
            self._handoff.close()
            self._stream.cancel()
            self._done.set()

    def _stop(self) -> None:
        if self._abort_error is not None:
            logger.error("Subscription to %s aborted: %s", self._topic, self._abort_error)
            self._error = self._abort_error
        else:
            logger.info("Subscription cancelled, stopping subscription")

    def _fail(self, exc: Exception) -> None:
        if self._cancelled.is_set():
            self._stop()
        else:
            logger.error("Failed to receive message: %s", exc)
            self._error = wrap_grpc_error(exc, "failed to receive message")
