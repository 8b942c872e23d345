"""Abstract base class for TogoMQ transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional, Sequence, Tuple

Metadata = Sequence[Tuple[str, str]]


class ResponseStream(ABC):
    """Server-push stream returned by :meth:`Transport.sub_message`.

    Iterating yields ``SubMessageResponse`` frames.  Iteration stops on a
    clean end-of-stream and raises on failure.
    """

    @abstractmethod
    def __iter__(self) -> Iterator[object]:
        """Iterate over the inbound frames."""

    @abstractmethod
    def cancel(self) -> None:
        """Abort the stream.  A blocked iteration raises promptly afterwards."""


class Transport(ABC):
    """Interface for the RPC connection a :class:`~togomq.client.Client` talks through."""

    @abstractmethod
    def connect(self) -> None:
        """Open the underlying connection."""

    @abstractmethod
    def pub_message(
        self,
        requests: Iterable[object],
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> object:
        """Stream ``PubMessageRequest`` values and return the ``PubMessageResponse``.

        The request iterable is drained until exhausted; an exception raised
        by it aborts the stream.
        """

    @abstractmethod
    def sub_message(
        self,
        request: object,
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> ResponseStream:
        """Open a subscribe stream for a ``SubMessageRequest``."""

    @abstractmethod
    def count_messages(
        self,
        request: object,
        metadata: Metadata,
        timeout: Optional[float] = None,
    ) -> object:
        """Issue a ``CountMessagesRequest`` and return the response."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection and release resources."""

    def __enter__(self) -> "Transport":
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
