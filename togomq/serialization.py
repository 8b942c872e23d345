"""Wire codec for the ``mq.v1`` RPC schema.

The schema is owned by the server.  Rather than shipping generated ``_pb2``
modules, the message classes are built once at import time from a
``FileDescriptorProto`` registered in a private descriptor pool:

  PubMessageRequest      topic=1 body=2 variables=3 postpone=4 retention=5
  PubMessageResponse     messages_received=1
  SubMessageRequest      topic=1 batch=2 speed_per_sec=3
  SubMessageResponse     topic=1 uuid=2 body=3 variables=4
  CountMessagesRequest   topic=1
  CountMessagesResponse  messages_count=1

  service MqService {
    rpc PubMessage(stream PubMessageRequest) returns (PubMessageResponse);
    rpc SubMessage(SubMessageRequest) returns (stream SubMessageResponse);
    rpc CountMessages(CountMessagesRequest) returns (CountMessagesResponse);
  }
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from togomq.message import Message, ReceivedMessage, SubscribeOptions

PACKAGE = "mq.v1"
SERVICE = f"{PACKAGE}.MqService"

PUB_MESSAGE_METHOD = f"/{SERVICE}/PubMessage"
SUB_MESSAGE_METHOD = f"/{SERVICE}/SubMessage"
COUNT_MESSAGES_METHOD = f"/{SERVICE}/CountMessages"

_Field = descriptor_pb2.FieldDescriptorProto


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _add_message(file_proto, name: str, *scalars) -> descriptor_pb2.DescriptorProto:
    message = file_proto.message_type.add(name=name)
    for field_name, number, field_type in scalars:
        message.field.add(
            name=field_name,
            number=number,
            type=field_type,
            label=_Field.LABEL_OPTIONAL,
        )
    return message


def _add_string_map(message, name: str, number: int) -> None:
    entry_name = "".join(part.capitalize() for part in name.split("_")) + "Entry"
    entry = message.nested_type.add(name=entry_name)
    entry.options.map_entry = True
    entry.field.add(name="key", number=1, type=_Field.TYPE_STRING, label=_Field.LABEL_OPTIONAL)
    entry.field.add(name="value", number=2, type=_Field.TYPE_STRING, label=_Field.LABEL_OPTIONAL)
    message.field.add(
        name=name,
        number=number,
        type=_Field.TYPE_MESSAGE,
        label=_Field.LABEL_REPEATED,
        type_name=f".{PACKAGE}.{message.name}.{entry_name}",
    )


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="mq/v1/mq.proto", package=PACKAGE, syntax="proto3"
    )

    pub_req = _add_message(
        file_proto,
        "PubMessageRequest",
        ("topic", 1, _Field.TYPE_STRING),
        ("body", 2, _Field.TYPE_BYTES),
    )
    _add_string_map(pub_req, "variables", 3)
    pub_req.field.add(name="postpone", number=4, type=_Field.TYPE_INT64, label=_Field.LABEL_OPTIONAL)
    pub_req.field.add(name="retention", number=5, type=_Field.TYPE_INT64, label=_Field.LABEL_OPTIONAL)

    _add_message(file_proto, "PubMessageResponse", ("messages_received", 1, _Field.TYPE_INT64))

    _add_message(
        file_proto,
        "SubMessageRequest",
        ("topic", 1, _Field.TYPE_STRING),
        ("batch", 2, _Field.TYPE_INT64),
        ("speed_per_sec", 3, _Field.TYPE_INT64),
    )

    sub_resp = _add_message(
        file_proto,
        "SubMessageResponse",
        ("topic", 1, _Field.TYPE_STRING),
        ("uuid", 2, _Field.TYPE_STRING),
        ("body", 3, _Field.TYPE_BYTES),
    )
    _add_string_map(sub_resp, "variables", 4)

    _add_message(file_proto, "CountMessagesRequest", ("topic", 1, _Field.TYPE_STRING))
    _add_message(file_proto, "CountMessagesResponse", ("messages_count", 1, _Field.TYPE_INT64))

    service = file_proto.service.add(name="MqService")
    for method, request, response, client_streaming, server_streaming in (
        ("PubMessage", "PubMessageRequest", "PubMessageResponse", True, False),
        ("SubMessage", "SubMessageRequest", "SubMessageResponse", False, True),
        ("CountMessages", "CountMessagesRequest", "CountMessagesResponse", False, False),
    ):
        service.method.add(
            name=method,
            input_type=f".{PACKAGE}.{request}",
            output_type=f".{PACKAGE}.{response}",
            client_streaming=client_streaming,
            server_streaming=server_streaming,
        )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.{name}"))


PubMessageRequest = _message_class("PubMessageRequest")
PubMessageResponse = _message_class("PubMessageResponse")
SubMessageRequest = _message_class("SubMessageRequest")
SubMessageResponse = _message_class("SubMessageResponse")
CountMessagesRequest = _message_class("CountMessagesRequest")
CountMessagesResponse = _message_class("CountMessagesResponse")


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def to_pub_request(message: Message):
    """Project a :class:`~togomq.message.Message` onto ``PubMessageRequest``."""
    return PubMessageRequest(
        topic=message.topic,
        body=message.body,
        variables=message.variables,
        postpone=message.postpone,
        retention=message.retention,
    )


def to_sub_request(options: SubscribeOptions):
    return SubMessageRequest(
        topic=options.topic,
        batch=options.batch,
        speed_per_sec=options.speed_per_sec,
    )


def to_count_request(topic: str):
    return CountMessagesRequest(topic=topic)


def from_sub_response(response) -> ReceivedMessage:
    """Project a ``SubMessageResponse`` frame onto a :class:`~togomq.message.ReceivedMessage`."""
    return ReceivedMessage(
        topic=response.topic,
        uuid=response.uuid,
        body=bytes(response.body),
        variables=dict(response.variables),
    )
