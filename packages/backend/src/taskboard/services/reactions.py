"""Comment reaction toggling.

Learn: Reacting is a toggle. The same user clicking the same emoji on the
same comment twice adds then removes it:

    toggle(👍) → row inserted → task_comment.reaction_toggled(action="added")
    toggle(👍) → row deleted  → task_comment.reaction_toggled(action="removed")

Each toggle commits first, then broadcasts exactly one event carrying the
regrouped reaction list, so other viewers can replace their copy wholesale
instead of replaying increments.
"""

from typing import Iterable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskboard.db.models import Task, TaskComment, TaskCommentReaction
from taskboard.events.models import ReactionGroup, UserRef
from taskboard.events.mutations import CommentReactionToggled
from taskboard.realtime.dispatcher import BroadcastResult, FanoutDispatcher


class ReactionRepository(Protocol):
    async def comment_exists(self, project_id: int, task_id: int, comment_id: int) -> bool:
        ...

    async def exists(self, comment_id: int, user_id: int, emoji: str) -> bool:
        ...

    async def add(self, comment_id: int, user_id: int, emoji: str) -> None:
        ...

    async def remove(self, comment_id: int, user_id: int, emoji: str) -> None:
        ...

    async def grouped(self, comment_id: int) -> list[ReactionGroup]:
        ...


class SqlReactionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def comment_exists(self, project_id: int, task_id: int, comment_id: int) -> bool:
        row = await self.db.scalar(
            select(TaskComment.id)
            .join(Task, Task.id == TaskComment.task_id)
            .where(
                TaskComment.id == comment_id,
                TaskComment.task_id == task_id,
                TaskComment.deleted_at.is_(None),
                Task.project_id == project_id,
            )
        )
        return row is not None

    async def exists(self, comment_id: int, user_id: int, emoji: str) -> bool:
        row = await self.db.scalar(
            select(TaskCommentReaction.id).where(
                TaskCommentReaction.task_comment_id == comment_id,
                TaskCommentReaction.user_id == user_id,
                TaskCommentReaction.emoji == emoji,
            )
        )
        return row is not None

    async def add(self, comment_id: int, user_id: int, emoji: str) -> None:
        self.db.add(
            TaskCommentReaction(task_comment_id=comment_id, user_id=user_id, emoji=emoji)
        )
        await self.db.commit()

    async def remove(self, comment_id: int, user_id: int, emoji: str) -> None:
        await self.db.execute(
            delete(TaskCommentReaction).where(
                TaskCommentReaction.task_comment_id == comment_id,
                TaskCommentReaction.user_id == user_id,
                TaskCommentReaction.emoji == emoji,
            )
        )
        await self.db.commit()

    async def grouped(self, comment_id: int) -> list[ReactionGroup]:
        result = await self.db.execute(
            select(TaskCommentReaction)
            .options(selectinload(TaskCommentReaction.user))
            .where(TaskCommentReaction.task_comment_id == comment_id)
            .order_by(TaskCommentReaction.id)
            .execution_options(populate_existing=True)
        )
        groups: dict[str, ReactionGroup] = {}
        for reaction in result.scalars():
            group = groups.setdefault(
                reaction.emoji, ReactionGroup(emoji=reaction.emoji, count=0)
            )
            group.count += 1
            group.users.append(
                UserRef(id=reaction.user.id, name=reaction.user.name, avatar=reaction.user.avatar)
            )
        return list(groups.values())


class InMemoryReactionRepository:
    def __init__(self, comments: Iterable[tuple[int, int, int]] = ()):
        # (project_id, task_id, comment_id) of live comments
        self.comments = set(comments)
        # (comment_id, user_id, emoji) → reacting user, insertion-ordered
        self.rows: dict[tuple[int, int, str], UserRef] = {}
        self.users: dict[int, UserRef] = {}

    async def comment_exists(self, project_id: int, task_id: int, comment_id: int) -> bool:
        return (project_id, task_id, comment_id) in self.comments

    async def exists(self, comment_id: int, user_id: int, emoji: str) -> bool:
        return (comment_id, user_id, emoji) in self.rows

    async def add(self, comment_id: int, user_id: int, emoji: str) -> None:
        user = self.users.get(user_id, UserRef(id=user_id, name=f"user-{user_id}"))
        self.rows[(comment_id, user_id, emoji)] = user

    async def remove(self, comment_id: int, user_id: int, emoji: str) -> None:
        self.rows.pop((comment_id, user_id, emoji), None)

    async def grouped(self, comment_id: int) -> list[ReactionGroup]:
        groups: dict[str, ReactionGroup] = {}
        for (cid, _, emoji), user in self.rows.items():
            if cid != comment_id:
                continue
            group = groups.setdefault(emoji, ReactionGroup(emoji=emoji, count=0))
            group.count += 1
            group.users.append(user)
        return list(groups.values())


class ReactionService:
    """Toggle reactions and broadcast the outcome."""

    def __init__(self, repo: ReactionRepository, dispatcher: FanoutDispatcher):
        self.repo = repo
        self.dispatcher = dispatcher

    async def toggle(
        self,
        project_id: int,
        task_id: int,
        comment_id: int,
        user: UserRef,
        emoji: str,
        socket_id: Optional[str] = None,
    ) -> tuple[CommentReactionToggled, BroadcastResult]:
        """Raises ValueError unless the comment lives under that task and project."""
        if not await self.repo.comment_exists(project_id, task_id, comment_id):
            raise ValueError(f"Comment {comment_id} not found")

        if await self.repo.exists(comment_id, user.id, emoji):
            await self.repo.remove(comment_id, user.id, emoji)
            action = "removed"
        else:
            await self.repo.add(comment_id, user.id, emoji)
            action = "added"

        mutation = CommentReactionToggled(
            project_id=project_id,
            task_id=task_id,
            comment_id=comment_id,
            emoji=emoji,
            action=action,
            user=user,
            reactions=await self.repo.grouped(comment_id),
            actor_id=user.id,
        )
        result = await self.dispatcher.broadcast(mutation, socket_id=socket_id)
        return mutation, result
