"""SqlMembershipDirectory against a real (SQLite) schema."""

import pytest
import pytest_asyncio

from taskboard.db.models import ConversationParticipant, Project, ProjectMember, User, utcnow
from taskboard.services.membership import SqlMembershipDirectory


@pytest_asyncio.fixture()
async def sql_directory(session_factory):
    async with session_factory() as db:
        db.add_all([User(id=i, name=f"User {i}") for i in (1, 2, 3, 4)])
        await db.flush()
        db.add_all(
            [
                Project(id=9, user_id=1, name="Launch"),
                Project(id=10, user_id=1, name="Old", deleted_at=utcnow()),
            ]
        )
        await db.flush()
        db.add_all(
            [
                ProjectMember(project_id=9, user_id=2),
                ProjectMember(project_id=10, user_id=2),
                ConversationParticipant(conversation_id=5, user_id=1),
                ConversationParticipant(conversation_id=5, user_id=2),
                ConversationParticipant(conversation_id=5, user_id=3, left_at=utcnow()),
            ]
        )
        await db.commit()
    return SqlMembershipDirectory(session_factory)


@pytest.mark.asyncio
async def test_owner_and_member_are_project_members(sql_directory):
    assert await sql_directory.is_project_member(9, 1)
    assert await sql_directory.is_project_member(9, 2)


@pytest.mark.asyncio
async def test_outsider_is_not_a_project_member(sql_directory):
    assert not await sql_directory.is_project_member(9, 4)
    assert not await sql_directory.is_project_member(99, 1)


@pytest.mark.asyncio
async def test_deleted_project_has_no_members(sql_directory):
    assert not await sql_directory.is_project_member(10, 1)
    assert not await sql_directory.is_project_member(10, 2)


@pytest.mark.asyncio
async def test_left_participant_is_not_current(sql_directory):
    assert await sql_directory.is_conversation_participant(5, 2)
    assert not await sql_directory.is_conversation_participant(5, 3)
    assert not await sql_directory.is_conversation_participant(5, 4)
