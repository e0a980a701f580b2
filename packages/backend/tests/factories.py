"""Snapshot builders shared by the tests.

Each helper returns a valid committed-state model with sensible defaults;
pass keyword arguments to override fields.
"""

from datetime import datetime, timedelta, timezone

from taskboard.events.models import (
    Conversation,
    Label,
    Message,
    ParentSnapshot,
    Project,
    Task,
    TaskAttachment,
    TaskComment,
    TaskList,
    UserRef,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
NOW_ISO = "2026-03-01T12:00:00.000000Z"


def at(seconds: int) -> datetime:
    return NOW + timedelta(seconds=seconds)


def user(id: int, **kw) -> UserRef:
    kw.setdefault("name", f"User {id}")
    kw.setdefault("email", f"user{id}@example.com")
    kw.setdefault("avatar", f"https://cdn.example.com/avatars/{id}.png")
    return UserRef(id=id, **kw)


def message(id: int = 100, conversation_id: int = 5, sender_id: int = 1, **kw) -> Message:
    kw.setdefault("sender", user(sender_id))
    kw.setdefault("content", "hi")
    kw.setdefault("created_at", NOW)
    return Message(id=id, conversation_id=conversation_id, **kw)


def parent(id: int, author_id: int = 2, deleted: bool = False, **kw) -> ParentSnapshot:
    kw.setdefault("content", "original text")
    kw.setdefault("author", user(author_id))
    if deleted:
        kw["deleted_at"] = NOW
    return ParentSnapshot(id=id, **kw)


def conversation(id: int = 5, participant_ids=(1, 2, 3), **kw) -> Conversation:
    kw.setdefault("name", "General")
    kw.setdefault("created_at", NOW)
    return Conversation(id=id, participants=[user(i) for i in participant_ids], **kw)


def project(id: int = 9, user_id: int = 1, member_ids=(2, 3), **kw) -> Project:
    kw.setdefault("name", "Launch")
    kw.setdefault("created_at", NOW)
    kw.setdefault("updated_at", NOW)
    kw.setdefault("members_count", len(member_ids))
    return Project(id=id, user_id=user_id, member_ids=list(member_ids), **kw)


def task(id: int = 40, project_id: int = 9, list_id: int = 3, **kw) -> Task:
    kw.setdefault("title", "Write release notes")
    kw.setdefault("created_at", NOW)
    kw.setdefault("updated_at", NOW)
    return Task(id=id, project_id=project_id, list_id=list_id, **kw)


def task_list(id: int = 3, project_id: int = 9, **kw) -> TaskList:
    kw.setdefault("name", "Doing")
    kw.setdefault("created_at", NOW)
    kw.setdefault("updated_at", NOW)
    return TaskList(id=id, project_id=project_id, **kw)


def label(id: int = 7, project_id: int = 9, **kw) -> Label:
    kw.setdefault("name", "bug")
    kw.setdefault("color", "#ff0000")
    kw.setdefault("created_at", NOW)
    kw.setdefault("updated_at", NOW)
    return Label(id=id, project_id=project_id, **kw)


def comment(id: int = 70, task_id: int = 40, project_id: int = 9, user_id: int = 2, **kw):
    kw.setdefault("user", user(user_id))
    kw.setdefault("content", "Looks good")
    kw.setdefault("created_at", NOW)
    return TaskComment(id=id, task_id=task_id, project_id=project_id, **kw)


def attachment(id: int = 80, task_id: int = 40, project_id: int = 9, **kw) -> TaskAttachment:
    kw.setdefault("original_name", "spec.pdf")
    kw.setdefault("mime_type", "application/pdf")
    kw.setdefault("size", 2048)
    kw.setdefault("url", f"https://cdn.example.com/files/{id}")
    kw.setdefault("uploaded_by", user(2))
    kw.setdefault("created_at", NOW)
    return TaskAttachment(id=id, task_id=task_id, project_id=project_id, **kw)
