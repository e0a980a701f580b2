"""Membership directory — who belongs to which project and conversation.

Learn: The channel authorizer never touches the database directly. It asks
a MembershipDirectory, which has two implementations:
- SqlMembershipDirectory: read-only queries against the application schema
- InMemoryMembershipDirectory: a dict-backed stand-in for development/tests

A project "member" is the owner (projects.user_id) or anyone listed in
project_members. A conversation participant is "current" while left_at
is NULL.
"""

from typing import Protocol

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskboard.db.models import ConversationParticipant, Project, ProjectMember


class MembershipDirectory(Protocol):
    async def is_project_member(self, project_id: int, user_id: int) -> bool:
        ...

    async def is_conversation_participant(self, conversation_id: int, user_id: int) -> bool:
        ...


class SqlMembershipDirectory:
    """Membership lookups over the application's tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def is_project_member(self, project_id: int, user_id: int) -> bool:
        async with self.session_factory() as db:
            owner_id = await db.scalar(
                select(Project.user_id).where(
                    Project.id == project_id,
                    Project.deleted_at.is_(None),
                )
            )
            if owner_id is None:
                return False
            if owner_id == user_id:
                return True
            return bool(
                await db.scalar(
                    select(
                        exists().where(
                            ProjectMember.project_id == project_id,
                            ProjectMember.user_id == user_id,
                        )
                    )
                )
            )

    async def is_conversation_participant(self, conversation_id: int, user_id: int) -> bool:
        async with self.session_factory() as db:
            return bool(
                await db.scalar(
                    select(
                        exists().where(
                            ConversationParticipant.conversation_id == conversation_id,
                            ConversationParticipant.user_id == user_id,
                            ConversationParticipant.left_at.is_(None),
                        )
                    )
                )
            )


class InMemoryMembershipDirectory:
    """Dict-backed directory. Mutate it with the helper methods."""

    def __init__(self):
        self.project_owners: dict[int, int] = {}
        self.project_members: dict[int, set[int]] = {}
        self.participants: dict[int, set[int]] = {}
        self.left: dict[int, set[int]] = {}

    # ─── Setup helpers ───────────────────────────────────

    def add_project(self, project_id: int, owner_id: int, members=()) -> None:
        self.project_owners[project_id] = owner_id
        self.project_members[project_id] = set(members)

    def add_participant(self, conversation_id: int, user_id: int) -> None:
        self.participants.setdefault(conversation_id, set()).add(user_id)
        self.left.get(conversation_id, set()).discard(user_id)

    def leave_conversation(self, conversation_id: int, user_id: int) -> None:
        self.participants.get(conversation_id, set()).discard(user_id)
        self.left.setdefault(conversation_id, set()).add(user_id)

    # ─── MembershipDirectory ─────────────────────────────

    async def is_project_member(self, project_id: int, user_id: int) -> bool:
        if project_id not in self.project_owners:
            return False
        return (
            self.project_owners[project_id] == user_id
            or user_id in self.project_members.get(project_id, set())
        )

    async def is_conversation_participant(self, conversation_id: int, user_id: int) -> bool:
        return user_id in self.participants.get(conversation_id, set())


def get_directory() -> MembershipDirectory:
    """FastAPI dependency — the SQL-backed directory on the shared engine."""
    from taskboard.db.engine import async_session_factory

    return SqlMembershipDirectory(async_session_factory)
