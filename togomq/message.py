"""Message envelopes and subscription options."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class Message:
    """An outbound message.

    Args:
        topic: Destination topic.  Checked for emptiness when the message is
               published, not here.
        body: Opaque payload.
        variables: Custom string key/value pairs.
        postpone: Seconds before the message becomes visible to subscribers.
        retention: Seconds the server keeps the message.
    """

    topic: str
    body: bytes = b""
    variables: Dict[str, str] = field(default_factory=dict)
    postpone: int = 0
    retention: int = 0

    def __post_init__(self) -> None:
        if self.variables is None:
            self.variables = {}

    def with_variables(self, variables: Optional[Dict[str, str]]) -> "Message":
        """Replace the variables mapping (no merging)."""
        self.variables = variables if variables is not None else {}
        return self

    def with_postpone(self, postpone: int) -> "Message":
        self.postpone = postpone
        return self

    def with_retention(self, retention: int) -> "Message":
        self.retention = retention
        return self


def new_message(topic: str, body: bytes = b"") -> Message:
    """Create a message with an empty variables mapping."""
    return Message(topic=topic, body=body)


@dataclass
class ReceivedMessage:
    """A message delivered by a subscription."""

    topic: str
    uuid: str
    body: bytes = b""
    variables: Dict[str, str] = field(default_factory=dict)


@dataclass
class SubscribeOptions:
    """Subscription parameters.

    Args:
        topic: Exact topic, prefix pattern such as ``orders.*``, or ``*``.
               Patterns are matched by the server.
        batch: Messages per server push; 0 uses the server default.
        speed_per_sec: Delivery rate cap; 0 means unlimited.
    """

    topic: str
    batch: int = 0
    speed_per_sec: int = 0

    def with_batch(self, batch: int) -> "SubscribeOptions":
        self.batch = batch
        return self

    def with_speed_per_sec(self, speed: int) -> "SubscribeOptions":
        self.speed_per_sec = speed
        return self


def new_subscribe_options(topic: str) -> SubscribeOptions:
    return SubscribeOptions(topic=topic)


@dataclass(frozen=True)
class PubResponse:
    """Result of a publish call."""

    messages_received: int
