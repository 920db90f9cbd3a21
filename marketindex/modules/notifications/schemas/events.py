"""
Notification events emitted on lifecycle transitions.

Each event kind is its own model with a literal ``kind`` tag, so consumers
can handle the closed set exhaustively instead of inspecting loose payloads.
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class FriendRequested(BaseModel):
    kind: Literal["friend_requested"] = "friend_requested"
    relationship_id: str
    requester_id: str
    recipient_id: str


class FriendAccepted(BaseModel):
    kind: Literal["friend_accepted"] = "friend_accepted"
    relationship_id: str
    accepter_id: str
    requester_id: str


class ContentReceived(BaseModel):
    kind: Literal["content_received"] = "content_received"
    item_id: str
    content_kind: str
    sender_id: str
    recipient_id: str


NotificationEvent = Annotated[
    Union[FriendRequested, FriendAccepted, ContentReceived],
    Field(discriminator="kind"),
]

_event_adapter = TypeAdapter(NotificationEvent)


def parse_event(payload: dict) -> Union[FriendRequested, FriendAccepted, ContentReceived]:
    """Validate a raw payload into its event variant"""
    return _event_adapter.validate_python(payload)
