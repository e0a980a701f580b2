"""Typed channel identifiers.

Learn: Every real-time topic is one of seven shapes. Instead of building
names with f-strings at each call site, callers use one constructor per
kind and get back an immutable, hashable Channel. Parsing goes the other
way for names that arrive from clients ("private-project.9").

    user.{id}.projects                      → a user's project list
    user.{id}.conversations                 → a user's chat sidebar
    user.{id}.notifications                 → a user's mention notifications
    project.{id}                            → board view (tasks/lists/labels)
    project.{id}.task.{id}.comments         → task detail: comments
    project.{id}.task.{id}.attachments      → task detail: attachments
    conversation.{id}                       → open conversation view
"""

import enum
import re
from dataclasses import dataclass
from typing import Optional

from taskboard.errors import InvalidChannel

PRIVATE_PREFIX = "private-"


class ChannelKind(str, enum.Enum):
    USER_PROJECTS = "user_projects"
    USER_CONVERSATIONS = "user_conversations"
    USER_NOTIFICATIONS = "user_notifications"
    PROJECT = "project"
    TASK_COMMENTS = "task_comments"
    TASK_ATTACHMENTS = "task_attachments"
    CONVERSATION = "conversation"


_ID = r"([1-9][0-9]*)"

# ASCII ids only, no leading zeros, matched with fullmatch so "project.9\n" fails
_PATTERNS: list[tuple[ChannelKind, re.Pattern]] = [
    (ChannelKind.USER_PROJECTS, re.compile(rf"user\.{_ID}\.projects")),
    (ChannelKind.USER_CONVERSATIONS, re.compile(rf"user\.{_ID}\.conversations")),
    (ChannelKind.USER_NOTIFICATIONS, re.compile(rf"user\.{_ID}\.notifications")),
    (ChannelKind.PROJECT, re.compile(rf"project\.{_ID}")),
    (ChannelKind.TASK_COMMENTS, re.compile(rf"project\.{_ID}\.task\.{_ID}\.comments")),
    (ChannelKind.TASK_ATTACHMENTS, re.compile(rf"project\.{_ID}\.task\.{_ID}\.attachments")),
    (ChannelKind.CONVERSATION, re.compile(rf"conversation\.{_ID}")),
]

_TEMPLATES: dict[ChannelKind, str] = {
    ChannelKind.USER_PROJECTS: "user.{0}.projects",
    ChannelKind.USER_CONVERSATIONS: "user.{0}.conversations",
    ChannelKind.USER_NOTIFICATIONS: "user.{0}.notifications",
    ChannelKind.PROJECT: "project.{0}",
    ChannelKind.TASK_COMMENTS: "project.{0}.task.{1}.comments",
    ChannelKind.TASK_ATTACHMENTS: "project.{0}.task.{1}.attachments",
    ChannelKind.CONVERSATION: "conversation.{0}",
}


def _check_id(value, label: str) -> int:
    # bool is an int subclass; True must not become channel 1
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidChannel(f"{label} must be a positive integer, got {value!r}")
    return value


@dataclass(frozen=True)
class Channel:
    """A validated channel identifier. Build with the classmethods below."""

    kind: ChannelKind
    ids: tuple[int, ...]

    # ─── Constructors ────────────────────────────────────

    @classmethod
    def user_projects(cls, user_id: int) -> "Channel":
        return cls(ChannelKind.USER_PROJECTS, (_check_id(user_id, "user_id"),))

    @classmethod
    def user_conversations(cls, user_id: int) -> "Channel":
        return cls(ChannelKind.USER_CONVERSATIONS, (_check_id(user_id, "user_id"),))

    @classmethod
    def user_notifications(cls, user_id: int) -> "Channel":
        return cls(ChannelKind.USER_NOTIFICATIONS, (_check_id(user_id, "user_id"),))

    @classmethod
    def project(cls, project_id: int) -> "Channel":
        return cls(ChannelKind.PROJECT, (_check_id(project_id, "project_id"),))

    @classmethod
    def task_comments(cls, project_id: int, task_id: int) -> "Channel":
        return cls(
            ChannelKind.TASK_COMMENTS,
            (_check_id(project_id, "project_id"), _check_id(task_id, "task_id")),
        )

    @classmethod
    def task_attachments(cls, project_id: int, task_id: int) -> "Channel":
        return cls(
            ChannelKind.TASK_ATTACHMENTS,
            (_check_id(project_id, "project_id"), _check_id(task_id, "task_id")),
        )

    @classmethod
    def conversation(cls, conversation_id: int) -> "Channel":
        return cls(
            ChannelKind.CONVERSATION,
            (_check_id(conversation_id, "conversation_id"),),
        )

    @classmethod
    def parse(cls, name: str) -> "Channel":
        """Parse a logical or wire ("private-" prefixed) channel name."""
        if not isinstance(name, str):
            raise InvalidChannel(f"Channel name must be a string, got {name!r}")
        logical = name[len(PRIVATE_PREFIX):] if name.startswith(PRIVATE_PREFIX) else name
        for kind, pattern in _PATTERNS:
            match = pattern.fullmatch(logical)
            if match:
                return cls(kind, tuple(int(g) for g in match.groups()))
        raise InvalidChannel(f"Unrecognized channel name: {name!r}")

    # ─── Accessors ───────────────────────────────────────

    @property
    def name(self) -> str:
        return _TEMPLATES[self.kind].format(*self.ids)

    @property
    def wire_name(self) -> str:
        return PRIVATE_PREFIX + self.name

    def redis_key(self, prefix: str) -> str:
        return f"{prefix}{self.name}"

    @property
    def is_personal(self) -> bool:
        return self.kind in (
            ChannelKind.USER_PROJECTS,
            ChannelKind.USER_CONVERSATIONS,
            ChannelKind.USER_NOTIFICATIONS,
        )

    @property
    def owner_id(self) -> Optional[int]:
        """User id for personal channels, None otherwise."""
        return self.ids[0] if self.is_personal else None

    @property
    def project_id(self) -> Optional[int]:
        if self.kind in (
            ChannelKind.PROJECT,
            ChannelKind.TASK_COMMENTS,
            ChannelKind.TASK_ATTACHMENTS,
        ):
            return self.ids[0]
        return None

    @property
    def conversation_id(self) -> Optional[int]:
        return self.ids[0] if self.kind == ChannelKind.CONVERSATION else None

    def __str__(self) -> str:
        return self.name
