"""TogoMQ client.

:class:`Client` owns one transport connection and exposes the four service
operations on top of it:

  * :meth:`Client.publish` streams messages from any iterable and returns the
    server's acknowledgement once the iterable is exhausted.
  * :meth:`Client.publish_batch` publishes a fixed sequence.
  * :meth:`Client.subscribe` returns a :class:`~togomq.subscription.Subscription`
    fed by a background pump thread.
  * :meth:`Client.count_messages` counts the messages matching a topic.

Every call attaches the configured token as ``authorization`` metadata.  Empty
topics are rejected before anything is sent.  Transport failures are
translated by :func:`~togomq.errors.wrap_grpc_error`; there are no retries.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from togomq.adapters import get_transport_class
from togomq.adapters.base import Transport
from togomq.config import Config, ConfigValidationError
from togomq.errors import ErrorCode, TogoMQError, new_error, wrap_grpc_error
from togomq.log import configure_logging
from togomq.message import Message, PubResponse, SubscribeOptions
from togomq.serialization import to_count_request, to_pub_request, to_sub_request
from togomq.subscription import Subscription

logger = logging.getLogger(__name__)

AUTH_METADATA_KEY = "authorization"


class Client:
    """Client for a TogoMQ server.

    The client is safe to share between threads; each call opens its own
    RPC on the shared connection.

    ``config.log_level`` is applied to the process-wide ``togomq`` logger, so
    when several clients exist the most recently created one decides the
    package verbosity.  Applications that need finer control can configure
    the ``togomq`` logger themselves after creating their clients.

    Args:
        config: Client configuration.  Validated here and not modified
                afterwards.
        transport: Transport name from :func:`~togomq.adapters.get_transport_class`
                   (``"grpc"`` by default) or a ready :class:`~togomq.adapters.base.Transport`.

    Raises:
        TogoMQError: ``CONFIG_ERROR`` when *config* is missing,
            ``VALIDATION_ERROR`` when it is invalid and ``CONNECTION_ERROR``
            when the connection cannot be set up.
    """

    def __init__(
        self,
        config: Optional[Config],
        transport: Union[str, Transport] = "grpc",
    ) -> None:
        if config is None:
            raise new_error(ErrorCode.CONFIGURATION, "config cannot be nil")
        try:
            config.validate()
        except ConfigValidationError as exc:
            raise new_error(ErrorCode.VALIDATION, "invalid configuration", exc) from exc

        self._config = config
        self._closed = False
        self._subscriptions: "weakref.WeakSet[Subscription]" = weakref.WeakSet()
        self._lock = threading.Lock()

        configure_logging(config.log_level)
        logger.info("Creating TogoMQ client for %s", config.address())

        try:
            if isinstance(transport, str):
                transport = get_transport_class(transport)(config)
            transport.connect()
        except Exception as exc:
            logger.error("Failed to connect to TogoMQ: %s", exc)
            raise new_error(
                ErrorCode.CONNECTION, "failed to create gRPC connection", exc
            ) from exc
        self._transport = transport

        logger.info("TogoMQ client created successfully")

    @property
    def config(self) -> Config:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection.  Live subscriptions end with a ``CONNECTION_ERROR``."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions = list(self._subscriptions)

        logger.info("Closing TogoMQ client")
        for subscription in subscriptions:
            subscription.abort(new_error(ErrorCode.CONNECTION, "client closed"))
        self._transport.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _metadata(self):
        return ((AUTH_METADATA_KEY, self._config.token),)

    def _ensure_open(self) -> None:
        if self._closed:
            raise new_error(ErrorCode.CONNECTION, "client is closed")

    def _translate(self, exc: BaseException, context: str) -> TogoMQError:
        if self._closed:
            return new_error(ErrorCode.CONNECTION, "client closed", exc)
        return wrap_grpc_error(exc, context)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self, messages: Iterable[Message], timeout: Optional[float] = None
    ) -> PubResponse:
        """Publish messages as they are produced by *messages*.

        The call returns once *messages* is exhausted and the server has
        acknowledged the stream.  Messages are sent in iteration order.  A
        message with an empty topic aborts the whole call; messages sent
        before it are not rolled back.

        Args:
            messages: Any iterable, e.g. a generator or
                      ``iter(queue.get, None)`` for a producer thread.
            timeout: Deadline in seconds for the whole stream.

        Returns:
            The number of messages the server registered.
        """
        self._ensure_open()
        logger.debug("Starting Pub operation")

        state = {"sent": 0, "exhausted": False}
        invalid: List[TogoMQError] = []

        def _requests() -> Iterator[object]:
            for message in messages:
                if not message.topic:
                    logger.error("Message topic is required")
                    invalid.append(new_error(ErrorCode.VALIDATION, "message topic is required"))
                    # Raising out of the request iterator aborts the stream.
                    raise invalid[0]
                logger.debug("Publishing message to topic: %s", message.topic)
                yield to_pub_request(message)
                state["sent"] += 1
            state["exhausted"] = True
            logger.info("Sent %d messages, waiting for response", state["sent"])

        try:
            response = self._transport.pub_message(
                _requests(), metadata=self._metadata(), timeout=timeout
            )
        except Exception as exc:
            if invalid:
                raise invalid[0] from None
            if state["exhausted"]:
                logger.error("Failed to receive pub response: %s", exc)
                raise self._translate(exc, "failed to receive publish response") from exc
            logger.error("Failed to send message: %s", exc)
            raise self._translate(exc, "failed to send message") from exc

        if invalid:
            raise invalid[0]

        logger.info(
            "Publish completed: %d messages received by server", response.messages_received
        )
        return PubResponse(messages_received=response.messages_received)

    def publish_batch(
        self, messages: Sequence[Message], timeout: Optional[float] = None
    ) -> PubResponse:
        """Publish a fixed sequence of messages.  See :meth:`publish`."""
        batch = list(messages)
        logger.debug("Publishing batch of %d messages", len(batch))
        return self.publish(batch, timeout=timeout)

    # ------------------------------------------------------------------
    # Subscribe
    # ------------------------------------------------------------------

    def subscribe(
        self,
        options: Optional[SubscribeOptions],
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Subscription:
        """Subscribe to a topic or topic pattern.

        Args:
            options: Subscription parameters.  ``options.topic`` may be an exact
                     topic, a pattern such as ``orders.*``, or ``*``.
            cancel_event: Setting this event cancels the subscription.
            timeout: Cancel the subscription after this many seconds.

        Returns:
            A running :class:`~togomq.subscription.Subscription`.
        """
        if options is None or not options.topic:
            raise new_error(ErrorCode.VALIDATION, "topic is required for subscription")
        self._ensure_open()

        logger.debug("Starting Sub operation for topic: %s", options.topic)
        try:
            stream = self._transport.sub_message(
                to_sub_request(options), metadata=self._metadata()
            )
        except Exception as exc:
            logger.error("Failed to create sub stream: %s", exc)
            raise self._translate(exc, "failed to create subscribe stream") from exc

        subscription = Subscription(
            stream, options.topic, cancel_event=cancel_event, timeout=timeout
        )
        with self._lock:
            self._subscriptions.add(subscription)
        if self._closed:
            subscription.abort(new_error(ErrorCode.CONNECTION, "client closed"))

        logger.info("Subscribe stream started for topic: %s", options.topic)
        return subscription

    # ------------------------------------------------------------------
    # Count
    # ------------------------------------------------------------------

    def count_messages(self, topic: str, timeout: Optional[float] = None) -> int:
        """Return the number of messages matching *topic* (wildcards allowed)."""
        if not topic:
            raise new_error(ErrorCode.VALIDATION, "topic is required for counting messages")
        self._ensure_open()

        logger.debug("Counting messages for topic: %s", topic)
        try:
            response = self._transport.count_messages(
                to_count_request(topic), metadata=self._metadata(), timeout=timeout
            )
        except Exception as exc:
            logger.error("Failed to count messages: %s", exc)
            raise self._translate(exc, "failed to count messages") from exc

        logger.info("Counted %d messages for topic: %s", response.messages_count, topic)
        return response.messages_count
