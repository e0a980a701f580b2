"""Comment reaction endpoint — toggle an emoji and broadcast the result.

Learn: This is the one write the gateway performs on behalf of a user.
Reactions are tiny, extremely chatty rows, so the gateway owns them
instead of round-tripping through the main application. Access follows
the channel rules: if you can subscribe to a task's comments, you can
react to them. The comment must also belong to that task, and the task to
that project; anything else is a 404.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.auth.dependencies import CurrentUser, get_current_user
from taskboard.db.engine import get_db
from taskboard.db.models import User
from taskboard.events.models import UserRef
from taskboard.realtime.authorizer import ChannelAuthorizer
from taskboard.realtime.channels import Channel
from taskboard.realtime.dispatcher import FanoutDispatcher, get_dispatcher
from taskboard.schemas.broadcast import (
    ReactionSummary,
    ReactionToggleRequest,
    ReactionToggleResponse,
    Reactor,
)
from taskboard.services.membership import MembershipDirectory, get_directory
from taskboard.services.reactions import ReactionService, SqlReactionRepository

router = APIRouter()


@router.post(
    "/projects/{project_id}/tasks/{task_id}/comments/{comment_id}/reactions",
    response_model=ReactionToggleResponse,
)
async def toggle_reaction(
    body: ReactionToggleRequest,
    project_id: int = Path(..., gt=0),
    task_id: int = Path(..., gt=0),
    comment_id: int = Path(..., gt=0),
    x_socket_id: Optional[str] = Header(None),
    user: CurrentUser = Depends(get_current_user),
    directory: MembershipDirectory = Depends(get_directory),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
    db: AsyncSession = Depends(get_db),
):
    """Add the emoji if absent, remove it if present."""
    channel = Channel.task_comments(project_id, task_id)
    if not await ChannelAuthorizer(directory).authorize(user.user_id, channel):
        raise HTTPException(status_code=403, detail="Project access denied")

    row = await db.get(User, user.user_id)
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")

    service = ReactionService(SqlReactionRepository(db), dispatcher)
    try:
        mutation, result = await service.toggle(
            project_id=project_id,
            task_id=task_id,
            comment_id=comment_id,
            user=UserRef(id=row.id, name=row.name, avatar=row.avatar),
            emoji=body.emoji,
            socket_id=x_socket_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ReactionToggleResponse(
        action=mutation.action,
        emoji=mutation.emoji,
        reactions=[
            ReactionSummary(
                emoji=g.emoji,
                count=g.count,
                users=[Reactor(id=u.id, name=u.name) for u in g.users],
            )
            for g in mutation.reactions
        ],
        delivered=result.ok,
    )
