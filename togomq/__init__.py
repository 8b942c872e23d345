"""Python client for the TogoMQ message queue service."""

import logging

from togomq.client import Client
from togomq.config import (
    Config,
    ConfigIssue,
    ConfigValidationError,
    default_config,
    load_config,
    new_config,
    with_host,
    with_initial_conn_window_size,
    with_initial_window_size,
    with_keepalive_time,
    with_keepalive_timeout,
    with_log_level,
    with_max_message_size,
    with_port,
    with_read_buffer_size,
    with_token,
    with_use_tls,
    with_write_buffer_size,
)
from togomq.errors import ErrorCode, TogoMQError, new_error, wrap_grpc_error
from togomq.message import (
    Message,
    PubResponse,
    ReceivedMessage,
    SubscribeOptions,
    new_message,
    new_subscribe_options,
)
from togomq.subscription import Subscription

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Client",
    "Config",
    "ConfigIssue",
    "ConfigValidationError",
    "ErrorCode",
    "Message",
    "PubResponse",
    "ReceivedMessage",
    "SubscribeOptions",
    "Subscription",
    "TogoMQError",
    "default_config",
    "load_config",
    "new_config",
    "new_error",
    "new_message",
    "new_subscribe_options",
    "with_host",
    "with_initial_conn_window_size",
    "with_initial_window_size",
    "with_keepalive_time",
    "with_keepalive_timeout",
    "with_log_level",
    "with_max_message_size",
    "with_port",
    "with_read_buffer_size",
    "with_token",
    "with_use_tls",
    "with_write_buffer_size",
    "wrap_grpc_error",
]
