"""Broadcasting endpoints — channel authorization and event publishing.

Learn: Two very different callers use this router:

POST /broadcasting/auth   ← a browser asking "may I join private-project.9?"
POST /broadcast           ← the main application reporting a committed change

The publish endpoint always answers 202 once the body validates. A
transport outage shows up as delivered=false in the receipt, never as a
5xx, because the application's own transaction has already committed.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from taskboard.auth.dependencies import (
    CurrentUser,
    get_current_user,
    require_broadcast_key,
)
from taskboard.errors import InvalidChannel
from taskboard.events.mutations import Mutation
from taskboard.realtime.authorizer import ChannelAuthorizer
from taskboard.realtime.dispatcher import FanoutDispatcher, get_dispatcher
from taskboard.schemas.broadcast import (
    BroadcastReceipt,
    ChannelAuthRequest,
    ChannelAuthResponse,
)
from taskboard.services.membership import MembershipDirectory, get_directory

router = APIRouter()


@router.post("/broadcasting/auth", response_model=ChannelAuthResponse)
async def authorize_channel(
    body: ChannelAuthRequest,
    user: CurrentUser = Depends(get_current_user),
    directory: MembershipDirectory = Depends(get_directory),
):
    """Check whether the current user may subscribe to a channel."""
    authorizer = ChannelAuthorizer(directory)
    if not await authorizer.authorize_name(user.user_id, body.channel_name):
        raise HTTPException(status_code=403, detail="Channel access denied")
    return ChannelAuthResponse(channel=body.channel_name, authorized=True)


@router.post(
    "/broadcast",
    response_model=BroadcastReceipt,
    status_code=202,
    dependencies=[Depends(require_broadcast_key)],
)
async def publish_mutation(
    mutation: Mutation,
    x_socket_id: Optional[str] = Header(None),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    """Fan a committed mutation out to its channels.

    Learn: X-Socket-ID is the actor's own WebSocket id (if they have one
    open). Subscribers on that socket skip the event — the actor's UI
    already applied the change optimistically.
    """
    try:
        result = await dispatcher.broadcast(mutation, socket_id=x_socket_id)
    except InvalidChannel as e:
        raise HTTPException(status_code=422, detail=str(e))
    return BroadcastReceipt(
        event=result.dispatch.event.name,
        channels=[c.name for c in result.dispatch.channels],
        delivered=result.ok,
    )
