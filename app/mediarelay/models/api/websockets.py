from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

from marshmallow import INCLUDE, Schema, ValidationError, fields

from ...config import InboundType
from ...schemas.base import RelaySchema
from .requests import (
    CancelRequest,
    CancelRequestSchema,
    DownloadRequestSchema,
)
from ...download.models import DownloadRequest

InboundPayload = Union[DownloadRequest, CancelRequest]


@dataclass(slots=True)
class InboundMessage:
    type: InboundType
    payload: InboundPayload


class InboundEnvelopeSchema(RelaySchema):
    type = fields.String(required=True)

    class Meta(RelaySchema.Meta):
        unknown = INCLUDE


_PAYLOAD_SCHEMAS: dict[InboundType, type[Schema]] = {
    InboundType.DOWNLOAD_REQUEST: DownloadRequestSchema,
    InboundType.CANCEL: CancelRequestSchema,
}


def parse_inbound(message: Any) -> InboundMessage:
    """Validate a client frame against the schema selected by its ``type``."""

    if not isinstance(message, Mapping):
        raise ValidationError({"_schema": ["message must be a JSON object"]})
    envelope = InboundEnvelopeSchema().load(message)
    raw_type = str(envelope.get("type", "")).strip().lower()
    try:
        message_type = InboundType(raw_type)
    except ValueError as exc:
        raise ValidationError(
            {"type": [f"unknown message type '{envelope.get('type')}'"]}
        ) from exc
    body = {key: value for key, value in message.items() if key != "type"}
    payload = _PAYLOAD_SCHEMAS[message_type]().load(body)
    return InboundMessage(type=message_type, payload=payload)


__all__ = ["InboundEnvelopeSchema", "InboundMessage", "InboundPayload", "parse_inbound"]
