"""Pydantic schemas for the broadcasting endpoints.

The broadcast request body itself is a Mutation (events/mutations.py);
these cover channel authorization, the publish receipt and reaction
toggles.
"""

from typing import Literal

from pydantic import BaseModel, Field



class ChannelAuthRequest(BaseModel):
    channel_name: str = Field(..., min_length=1, max_length=200)
    socket_id: str | None = None


class ChannelAuthResponse(BaseModel):
    channel: str
    authorized: bool


class BroadcastReceipt(BaseModel):
    """Returned to the application after a publish attempt.

    ``delivered`` is False when the transport was down; the mutation
    itself is already committed, so this is informational only.
    """
    event: str
    channels: list[str]
    delivered: bool


class ReactionToggleRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class Reactor(BaseModel):
    id: int
    name: str


class ReactionSummary(BaseModel):
    """One emoji on a comment: who used it, as {id, name} only."""
    emoji: str
    count: int
    users: list[Reactor]


class ReactionToggleResponse(BaseModel):
    action: Literal["added", "removed"]
    emoji: str
    reactions: list[ReactionSummary]
    delivered: bool
