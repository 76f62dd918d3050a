"""
watchparty.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas for persisted documents and WebSocket events.
"""
from watchparty.schemas.events import (
    InboundFrame,
    RoomDetailsEvent,
    RoomErrorEvent,
    parse_frame,
    parse_payload,
)
from watchparty.schemas.room import ChatMessage, Participant, Room

__all__ = [
    "ChatMessage",
    "InboundFrame",
    "Participant",
    "Room",
    "RoomDetailsEvent",
    "RoomErrorEvent",
    "parse_frame",
    "parse_payload",
]
