"""Pydantic snapshots of committed domain state.

Learn: The CRUD application hands us these after its transaction commits.
They intentionally carry more than any single event needs (e.g. a user's
email) — the encoder decides which fields go on the wire. Nothing here is
an ORM object, so encoding can never trigger a lazy load or see a
rolled-back row.

Soft-deletable records carry ``deleted_at``; the encoder turns that into
an ``is_deleted`` flag at encode time.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserRef(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    avatar: Optional[str] = None


# ─── Projects and boards ─────────────────────────────────

class Project(BaseModel):
    id: int
    user_id: int  # owner
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    is_archived: bool = False
    lists_count: int = 0
    tasks_count: int = 0
    members_count: int = 0
    member_ids: list[int] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class TaskList(BaseModel):
    id: int
    project_id: int
    name: str
    position: int = 0
    created_at: datetime
    updated_at: datetime


class Label(BaseModel):
    id: int
    project_id: int
    name: str
    color: str
    created_at: datetime
    updated_at: datetime


class Task(BaseModel):
    id: int
    project_id: int
    list_id: int
    title: str
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[date] = None
    due_time: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assigned_to: Optional[int] = None
    assignee: Optional[UserRef] = None
    position: int = 0
    created_at: datetime
    updated_at: datetime


# ─── Chat ────────────────────────────────────────────────

class ParentSnapshot(BaseModel):
    """The message/comment a reply points at, as it is right now."""

    id: int
    content: Optional[str] = None
    author: Optional[UserRef] = None
    deleted_at: Optional[datetime] = None


class MessageAttachment(BaseModel):
    id: int
    original_name: str
    mime_type: str
    size: int
    url: str


class Message(BaseModel):
    id: int
    conversation_id: int
    sender: UserRef
    content: Optional[str] = None
    parent_id: Optional[int] = None
    parent: Optional[ParentSnapshot] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    attachments: list[MessageAttachment] = Field(default_factory=list)
    created_at: datetime


class Conversation(BaseModel):
    id: int
    type: str = "group"  # "direct" or "group"
    name: Optional[str] = None
    avatar: Optional[str] = None
    participants: list[UserRef] = Field(default_factory=list)  # active only
    created_at: datetime


# ─── Task detail ─────────────────────────────────────────

class TaskComment(BaseModel):
    id: int
    task_id: int
    project_id: int
    user: UserRef
    content: str
    parent_id: Optional[int] = None
    parent: Optional[ParentSnapshot] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    created_at: datetime


class ReactionGroup(BaseModel):
    """Reactions on a comment, grouped by emoji."""

    emoji: str
    count: int
    users: list[UserRef] = Field(default_factory=list)


class TaskAttachment(BaseModel):
    id: int
    task_id: int
    project_id: int
    original_name: str
    mime_type: str
    size: int
    url: str
    uploaded_by: Optional[UserRef] = None
    created_at: datetime
