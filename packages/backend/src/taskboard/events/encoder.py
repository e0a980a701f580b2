"""Event encoder — one payload builder per EventKind.

Learn: Payloads are whitelists. Each builder copies exactly the fields the
client renders, never a whole snapshot, so adding a column to a model can
never leak it onto the wire. A few rules apply everywhere:

- People are reduced to {id, name} or {id, name, avatar}.
- Datetimes are ISO-8601 UTC with a "Z" suffix; dates are YYYY-MM-DD.
- Reply previews are computed NOW: if the parent is soft-deleted the
  preview says is_deleted=true and carries no content or author name,
  even if the client renders it much later.

The registry maps every EventKind to its builder; encode() is the only
entry point the dispatcher uses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from taskboard.errors import UnknownEventKind
from taskboard.events import mutations as m
from taskboard.events.models import (
    MessageAttachment,
    ParentSnapshot,
    ReactionGroup,
    TaskAttachment,
    UserRef,
)
from taskboard.events.types import EventKind


@dataclass(frozen=True)
class Event:
    """A named payload ready for the transport."""

    name: str
    data: dict[str, Any] = field(default_factory=dict)

    def envelope(self, channel_name: str) -> dict[str, Any]:
        return {"event": self.name, "channel": channel_name, "data": self.data}


# ═══════════════════════════════════════════════════════════
# Field helpers
# ═══════════════════════════════════════════════════════════


def iso(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with a Z suffix. Naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


def iso_date(value: Optional[date]) -> Optional[str]:
    return value.strftime("%Y-%m-%d") if value else None


def human_size(size: int) -> str:
    if size >= 1024 ** 3:
        return f"{size / 1024 ** 3:,.2f} GB"
    if size >= 1024 ** 2:
        return f"{size / 1024 ** 2:,.2f} MB"
    if size >= 1024:
        return f"{size / 1024:,.2f} KB"
    return f"{size} bytes"


def preview(text: Optional[str], limit: int = 100) -> str:
    """First ``limit`` characters, with "..." appended when cut."""
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."


def person(user: Optional[UserRef], with_avatar: bool = False) -> Optional[dict]:
    if user is None:
        return None
    data = {"id": user.id, "name": user.name}
    if with_avatar:
        data["avatar"] = user.avatar
    return data


def parent_preview(parent: Optional[ParentSnapshot], author_key: str) -> Optional[dict]:
    """Reply preview with the deleted flag computed at encode time."""
    if parent is None:
        return None
    deleted = parent.deleted_at is not None
    return {
        "id": parent.id,
        "content": None if deleted else parent.content,
        author_key: None if deleted or parent.author is None else parent.author.name,
        "is_deleted": deleted,
    }


def _message_attachment(a: MessageAttachment) -> dict:
    return {
        "id": a.id,
        "original_name": a.original_name,
        "mime_type": a.mime_type,
        "size": a.size,
        "human_size": human_size(a.size),
        "url": a.url,
    }


def _task_attachment(a: TaskAttachment) -> dict:
    return {
        "id": a.id,
        "task_id": a.task_id,
        "original_name": a.original_name,
        "mime_type": a.mime_type,
        "size": a.size,
        "human_size": human_size(a.size),
        "url": a.url,
        "uploaded_by": person(a.uploaded_by, with_avatar=True),
        "created_at": iso(a.created_at),
    }


def _reaction_group(group: ReactionGroup) -> dict:
    return {
        "emoji": group.emoji,
        "count": group.count,
        "users": [person(u) for u in group.users],
    }


# ═══════════════════════════════════════════════════════════
# Payload builders
# ═══════════════════════════════════════════════════════════

# ─── Chat ────────────────────────────────────────────────


def _message_sent(mut: m.MessageSent) -> dict:
    msg = mut.message
    return {
        "conversation_id": msg.conversation_id,
        "message": {
            "id": msg.id,
            "conversation_id": msg.conversation_id,
            "content": msg.content,
            "parent_id": msg.parent_id,
            "is_edited": msg.is_edited,
            "created_at": iso(msg.created_at),
            "sender": person(msg.sender, with_avatar=True),
            "is_mine": False,  # broadcasts only ever reach other users
            "parent": parent_preview(msg.parent, "sender_name"),
            "attachments": [_message_attachment(a) for a in msg.attachments],
        },
    }


def _message_edited(mut: m.MessageEdited) -> dict:
    msg = mut.message
    return {
        "conversation_id": msg.conversation_id,
        "message": {
            "id": msg.id,
            "content": msg.content,
            "is_edited": msg.is_edited,
            "edited_at": iso(msg.edited_at),
        },
        "editor_id": msg.sender.id,
    }


def _message_deleted(mut: m.MessageDeleted) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "message_id": mut.message_id,
        "deleted_by": mut.actor_id,
    }


def _messages_read(mut: m.MessagesRead) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "reader_id": mut.reader_id,
        "last_read_message_id": mut.last_read_message_id,
        "read_at": iso(mut.read_at),
    }


def _user_typing(mut: m.UserTyping) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "user": person(mut.user),
        "is_typing": mut.is_typing,
    }


def _ai_thinking(mut: m.AIThinking) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "is_thinking": mut.is_thinking,
        "active_count": mut.active_count,
    }


# ─── Conversation membership ─────────────────────────────


def _conversation_created(mut: m.ConversationCreated) -> dict:
    conv = mut.conversation
    return {
        "conversation": {
            "id": conv.id,
            "type": conv.type,
            "name": conv.name,
            "avatar": conv.avatar,
            "created_at": iso(conv.created_at),
            "participants": [person(u, with_avatar=True) for u in conv.participants],
        },
    }


def _participant_added(mut: m.ParticipantAdded) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "added_user": person(mut.added_user, with_avatar=True),
        "added_by": person(mut.added_by),
    }


def _participant_removed(mut: m.ParticipantRemoved) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "removed_user": person(mut.removed_user),
        "removed_by": person(mut.removed_by),
        "was_kicked": mut.was_kicked,
    }


def _participant_role_changed(mut: m.ParticipantRoleChanged) -> dict:
    return {
        "conversation_id": mut.conversation_id,
        "user": person(mut.user),
        "new_role": mut.new_role,
        "changed_by": person(mut.changed_by),
    }


# ─── Projects and boards ─────────────────────────────────


def _project_updated(mut: m.ProjectUpdated) -> dict:
    p = mut.project
    return {
        "project": {
            "id": p.id,
            "user_id": p.user_id,
            "name": p.name,
            "description": p.description,
            "color": p.color,
            "icon": p.icon,
            "is_archived": p.is_archived,
            "lists_count": p.lists_count,
            "tasks_count": p.tasks_count,
            "members_count": p.members_count,
            "created_at": iso(p.created_at),
            "updated_at": iso(p.updated_at),
        },
        "action": mut.action,
    }


def _task_updated(mut: m.TaskUpdated) -> dict:
    t = mut.task
    assignee = None
    if t.assignee is not None:
        assignee = {
            "id": t.assignee.id,
            "name": t.assignee.name,
            "email": t.assignee.email,
            "avatar": t.assignee.avatar,
        }
    return {
        "task": {
            "id": t.id,
            "list_id": t.list_id,
            "title": t.title,
            "description": t.description,
            "priority": t.priority,
            "due_date": iso_date(t.due_date),
            "due_time": t.due_time,
            "started_at": iso(t.started_at),
            "completed_at": iso(t.completed_at),
            "assigned_to": t.assigned_to,
            "assignee": assignee,
            "position": t.position,
            "created_at": iso(t.created_at),
            "updated_at": iso(t.updated_at),
        },
        "action": mut.action,
    }


def _list_updated(mut: m.ListUpdated) -> dict:
    lst = mut.task_list
    return {
        "list": {
            "id": lst.id,
            "project_id": lst.project_id,
            "name": lst.name,
            "position": lst.position,
            "created_at": iso(lst.created_at),
            "updated_at": iso(lst.updated_at),
        },
        "action": mut.action,
    }


def _label_updated(mut: m.LabelUpdated) -> dict:
    label = mut.label
    return {
        "label": {
            "id": label.id,
            "project_id": label.project_id,
            "name": label.name,
            "color": label.color,
            "created_at": iso(label.created_at),
            "updated_at": iso(label.updated_at),
        },
        "action": mut.action,
    }


# ─── Task detail ─────────────────────────────────────────


def _comment_created(mut: m.CommentCreated) -> dict:
    c = mut.comment
    return {
        "comment": {
            "id": c.id,
            "task_id": c.task_id,
            "content": c.content,
            "parent_id": c.parent_id,
            "is_edited": c.is_edited,
            "created_at": iso(c.created_at),
            "user": person(c.user, with_avatar=True),
            "is_mine": False,
            "parent": parent_preview(c.parent, "user_name"),
            "reactions": [],
            "replies_count": 0,
        },
    }


def _comment_updated(mut: m.CommentUpdated) -> dict:
    c = mut.comment
    return {
        "comment": {
            "id": c.id,
            "task_id": c.task_id,
            "content": c.content,
            "is_edited": c.is_edited,
            "edited_at": iso(c.edited_at),
        },
        "editor_id": c.user.id,
    }


def _comment_deleted(mut: m.CommentDeleted) -> dict:
    return {
        "comment_id": mut.comment_id,
        "task_id": mut.task_id,
        "deleted_by": mut.actor_id,
    }


def _comment_reaction_toggled(mut: m.CommentReactionToggled) -> dict:
    return {
        "comment_id": mut.comment_id,
        "task_id": mut.task_id,
        "emoji": mut.emoji,
        "action": mut.action,
        "user_id": mut.user.id,
        "user": person(mut.user),
        "reactions": [_reaction_group(g) for g in mut.reactions],
    }


def _attachment_uploaded(mut: m.AttachmentUploaded) -> dict:
    return {
        "task_id": mut.attachment.task_id,
        "uploader_id": mut.uploader_id,
        "attachment": _task_attachment(mut.attachment),
    }


def _attachment_deleted(mut: m.AttachmentDeleted) -> dict:
    return {
        "task_id": mut.task_id,
        "attachment_id": mut.attachment_id,
        "deleter_id": mut.deleter_id,
    }


# ─── Notifications ───────────────────────────────────────


def _mention_notification(mut: m.MentionNotification) -> dict:
    msg = mut.message
    return {
        "id": mut.notification_id,
        "type": "mention",
        "data": {
            "message_id": msg.id,
            "conversation_id": msg.conversation_id,
            "conversation_name": mut.conversation_name,
            "sender_id": msg.sender.id,
            "sender_name": msg.sender.name,
            "sender_avatar": msg.sender.avatar,
            "content_preview": preview(msg.content),
            "url": f"/conversations/{msg.conversation_id}",
            "message": f"{msg.sender.name} mentioned you in {mut.conversation_name}",
        },
        "read_at": None,
        "is_read": False,
        "created_at": iso(mut.created_at),
    }


# ═══════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════

PAYLOAD_BUILDERS: dict[EventKind, Callable[[Any], dict]] = {
    EventKind.MESSAGE_SENT: _message_sent,
    EventKind.MESSAGE_EDITED: _message_edited,
    EventKind.MESSAGE_DELETED: _message_deleted,
    EventKind.MESSAGES_READ: _messages_read,
    EventKind.USER_TYPING: _user_typing,
    EventKind.AI_THINKING: _ai_thinking,
    EventKind.CONVERSATION_CREATED: _conversation_created,
    EventKind.PARTICIPANT_ADDED: _participant_added,
    EventKind.PARTICIPANT_REMOVED: _participant_removed,
    EventKind.PARTICIPANT_ROLE_CHANGED: _participant_role_changed,
    EventKind.PROJECT_UPDATED: _project_updated,
    EventKind.TASK_UPDATED: _task_updated,
    EventKind.LIST_UPDATED: _list_updated,
    EventKind.LABEL_UPDATED: _label_updated,
    EventKind.COMMENT_CREATED: _comment_created,
    EventKind.COMMENT_UPDATED: _comment_updated,
    EventKind.COMMENT_DELETED: _comment_deleted,
    EventKind.COMMENT_REACTION_TOGGLED: _comment_reaction_toggled,
    EventKind.ATTACHMENT_UPLOADED: _attachment_uploaded,
    EventKind.ATTACHMENT_DELETED: _attachment_deleted,
    EventKind.MENTION_NOTIFICATION: _mention_notification,
}


def encode(mutation: m.BaseMutation) -> Event:
    """Turn a committed mutation into its wire event."""
    kind = mutation.event_kind
    builder = PAYLOAD_BUILDERS.get(kind)
    if builder is None:
        raise UnknownEventKind(kind.value)
    return Event(name=kind.value, data=builder(mutation))
