"""Common helpers for typed websocket payloads."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict

from ...config import TERMINAL_EVENTS, ClientEvent


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _convert_value(value: Any) -> Any:
    if isinstance(value, ClientEvent):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


@dataclass(slots=True)
class SocketPayload:
    """Base dataclass for events pushed to a client.

    Serialises to a flat JSON object: the ``type`` discriminator plus the
    camelCased fields, with ``None`` values dropped.
    """

    event: ClassVar[ClientEvent]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.event.value}
        for field_info in fields(self):
            value = getattr(self, field_info.name)
            if value is None:
                continue
            payload[_camel_case(field_info.name)] = _convert_value(value)
        return payload

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS and getattr(self, "item_id", None) is not None


__all__ = ["SocketPayload"]
