"""Domain mutations — "this committed change just happened".

Learn: A mutation is what the CRUD application reports after its
transaction commits. Each mutation type maps to exactly one EventKind
(its ``kind`` field doubles as the pydantic discriminator), so the
internal broadcast endpoint can accept any of them as one JSON body:

    {"kind": "task.updated", "action": "moved", "actor_id": 4, "task": {...}}

``actor_id`` is the user who caused the change (None for system actors
like the AI assistant). It is informational on the server — echo
suppression happens via the socket id and on the client.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, TypeAdapter

from taskboard.events.models import (
    Conversation,
    Label,
    Message,
    Project,
    ReactionGroup,
    Task,
    TaskAttachment,
    TaskComment,
    TaskList,
    UserRef,
)
from taskboard.events.types import EventKind


class BaseMutation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    actor_id: Optional[int] = None

    @property
    def event_kind(self) -> EventKind:
        return EventKind(self.kind)


# ─── Chat ────────────────────────────────────────────────

class MessageSent(BaseMutation):
    kind: Literal["message.sent"] = "message.sent"
    message: Message
    participant_ids: list[int] = Field(default_factory=list)  # active, incl. sender


class MessageEdited(BaseMutation):
    kind: Literal["message.edited"] = "message.edited"
    message: Message


class MessageDeleted(BaseMutation):
    kind: Literal["message.deleted"] = "message.deleted"
    conversation_id: int
    message_id: int


class MessagesRead(BaseMutation):
    kind: Literal["messages.read"] = "messages.read"
    conversation_id: int
    reader_id: int
    read_at: datetime
    last_read_message_id: Optional[int] = None


class UserTyping(BaseMutation):
    kind: Literal["user.typing"] = "user.typing"
    conversation_id: int
    user: UserRef
    is_typing: bool = True


class AIThinking(BaseMutation):
    kind: Literal["ai.thinking"] = "ai.thinking"
    conversation_id: int
    is_thinking: bool = True
    active_count: int = 0


# ─── Conversation membership ─────────────────────────────

class ConversationCreated(BaseMutation):
    kind: Literal["conversation.created"] = "conversation.created"
    conversation: Conversation


class ParticipantAdded(BaseMutation):
    kind: Literal["participant.added"] = "participant.added"
    conversation_id: int
    added_user: UserRef
    added_by: Optional[UserRef] = None


class ParticipantRemoved(BaseMutation):
    kind: Literal["participant.removed"] = "participant.removed"
    conversation_id: int
    removed_user: UserRef
    removed_by: Optional[UserRef] = None
    was_kicked: bool = False


class ParticipantRoleChanged(BaseMutation):
    kind: Literal["participant.role_changed"] = "participant.role_changed"
    conversation_id: int
    user: UserRef
    new_role: Literal["owner", "member"]
    changed_by: Optional[UserRef] = None


# ─── Projects and boards ─────────────────────────────────

class ProjectUpdated(BaseMutation):
    kind: Literal["project.updated"] = "project.updated"
    project: Project
    action: Literal["created", "updated", "archived", "deleted"] = "updated"


class TaskUpdated(BaseMutation):
    kind: Literal["task.updated"] = "task.updated"
    task: Task
    action: Literal[
        "created", "updated", "deleted", "moved", "completed", "reopened"
    ] = "updated"


class ListUpdated(BaseMutation):
    kind: Literal["list.updated"] = "list.updated"
    task_list: TaskList = Field(alias="list")
    action: Literal["created", "updated", "deleted", "reordered"] = "updated"


class LabelUpdated(BaseMutation):
    kind: Literal["label.updated"] = "label.updated"
    label: Label
    action: Literal["created", "updated", "deleted"] = "updated"


# ─── Task detail ─────────────────────────────────────────

class CommentCreated(BaseMutation):
    kind: Literal["task_comment.created"] = "task_comment.created"
    comment: TaskComment


class CommentUpdated(BaseMutation):
    kind: Literal["task_comment.updated"] = "task_comment.updated"
    comment: TaskComment


class CommentDeleted(BaseMutation):
    kind: Literal["task_comment.deleted"] = "task_comment.deleted"
    project_id: int
    task_id: int
    comment_id: int


class CommentReactionToggled(BaseMutation):
    kind: Literal["task_comment.reaction_toggled"] = "task_comment.reaction_toggled"
    project_id: int
    task_id: int
    comment_id: int
    emoji: str = Field(..., min_length=1, max_length=32)
    action: Literal["added", "removed"]
    user: UserRef
    reactions: list[ReactionGroup] = Field(default_factory=list)


class AttachmentUploaded(BaseMutation):
    kind: Literal["task_attachment.uploaded"] = "task_attachment.uploaded"
    attachment: TaskAttachment
    uploader_id: int


class AttachmentDeleted(BaseMutation):
    kind: Literal["task_attachment.deleted"] = "task_attachment.deleted"
    project_id: int
    task_id: int
    attachment_id: int
    deleter_id: int


# ─── Notifications ───────────────────────────────────────

class MentionNotification(BaseMutation):
    """Someone @-mentioned ``mentioned_user_id`` in a chat message."""

    kind: Literal["mention.notification"] = "mention.notification"
    notification_id: str
    message: Message
    mentioned_user_id: int
    conversation_name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Mutation = Annotated[
    Union[
        MessageSent,
        MessageEdited,
        MessageDeleted,
        MessagesRead,
        UserTyping,
        AIThinking,
        ConversationCreated,
        ParticipantAdded,
        ParticipantRemoved,
        ParticipantRoleChanged,
        ProjectUpdated,
        TaskUpdated,
        ListUpdated,
        LabelUpdated,
        CommentCreated,
        CommentUpdated,
        CommentDeleted,
        CommentReactionToggled,
        AttachmentUploaded,
        AttachmentDeleted,
        MentionNotification,
    ],
    Discriminator("kind"),
]

mutation_adapter: TypeAdapter[Mutation] = TypeAdapter(Mutation)
