"""Channel authorizer — "may user U subscribe to channel C?"

Learn: Three rules cover every channel kind:
- user.{id}.*                 → only that user (no lookup needed)
- project.{id} (+ task subs)  → project owner or project member
- conversation.{id}           → current (non-left) participant

This is a pure predicate. A denied subscription is not an error the user
sees; the socket simply never receives that channel's events. If the
directory lookup itself blows up we log it and deny.
"""

from typing import Optional

import structlog

from taskboard.errors import AuthorizationDenied, InvalidChannel
from taskboard.realtime.channels import Channel, ChannelKind
from taskboard.services.membership import MembershipDirectory

logger = structlog.get_logger()


class ChannelAuthorizer:
    def __init__(self, directory: MembershipDirectory):
        self.directory = directory

    async def authorize(self, user_id: Optional[int], channel: Channel) -> bool:
        if user_id is None:
            return False

        if channel.is_personal:
            return channel.owner_id == user_id

        try:
            if channel.kind == ChannelKind.CONVERSATION:
                return await self.directory.is_conversation_participant(
                    channel.conversation_id, user_id
                )
            return await self.directory.is_project_member(channel.project_id, user_id)
        except Exception as e:
            logger.warning(
                "authorizer.lookup_failed",
                channel=channel.name,
                user_id=user_id,
                error=str(e),
            )
            return False

    async def authorize_name(self, user_id: Optional[int], channel_name: str) -> bool:
        """Like authorize(), but for raw names from clients. Malformed → False."""
        try:
            channel = Channel.parse(channel_name)
        except InvalidChannel:
            return False
        return await self.authorize(user_id, channel)

    async def require(self, user_id: Optional[int], channel_name: str) -> Channel:
        """Parse and authorize, raising AuthorizationDenied on any refusal."""
        try:
            channel = Channel.parse(channel_name)
        except InvalidChannel:
            raise AuthorizationDenied(user_id, channel_name)
        if not await self.authorize(user_id, channel):
            raise AuthorizationDenied(user_id, channel_name)
        return channel
