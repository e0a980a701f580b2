"""Client-side views — fold channel events into local state.

Learn: Each view owns the state one screen renders and exposes
``handlers()`` for a Subscription:

    view = BoardView(project_id=9)
    async with client.subscribe(view.channel, view.handlers()):
        ...

State is keyed by entity id, so applying the same change twice (a replay
the dedup cache missed) converges to the same result. Events are plain
dicts exactly as encoded on the server; views never reach back to the
application.

Time-bounded state (typing indicators, AI thinking) reads the clock
lazily through an injectable ``clock`` so tests can move time by hand.
"""

import time
from datetime import datetime
from typing import Callable, Optional

from taskboard.config import settings
from taskboard.events.types import EventKind
from taskboard.realtime.channels import Channel

Clock = Callable[[], float]


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _mark_parent_deleted(items, parent_id: int, author_key: str) -> None:
    for item in items:
        parent = item.get("parent")
        if parent and parent.get("id") == parent_id:
            parent.update({"content": None, author_key: None, "is_deleted": True})


# ═══════════════════════════════════════════════════════════
# Chat
# ═══════════════════════════════════════════════════════════


class ConversationView:
    """An open conversation: messages, typing, AI status, read receipts."""

    def __init__(
        self,
        conversation_id: int,
        current_user_id: int,
        clock: Clock = time.monotonic,
        typing_ttl: Optional[float] = None,
        ai_timeout: Optional[float] = None,
    ):
        self.conversation_id = conversation_id
        self.current_user_id = current_user_id
        self.clock = clock
        self.typing_ttl = typing_ttl if typing_ttl is not None else settings.typing_ttl_seconds
        self.ai_timeout = (
            ai_timeout if ai_timeout is not None else settings.ai_thinking_timeout_seconds
        )
        self.messages: dict[int, dict] = {}
        self.participants: dict[int, dict] = {}
        self.read_by: dict[int, str] = {}  # reader id → read_at
        self._typing: dict[int, tuple[str, float]] = {}  # user id → (name, expires)
        self._ai_since: Optional[float] = None
        self.ai_active_count = 0

    @property
    def channel(self) -> Channel:
        return Channel.conversation(self.conversation_id)

    def handlers(self) -> dict:
        return {
            EventKind.MESSAGE_SENT.value: self.on_message_sent,
            EventKind.MESSAGE_EDITED.value: self.on_message_edited,
            EventKind.MESSAGE_DELETED.value: self.on_message_deleted,
            EventKind.MESSAGES_READ.value: self.on_messages_read,
            EventKind.USER_TYPING.value: self.on_user_typing,
            EventKind.AI_THINKING.value: self.on_ai_thinking,
            EventKind.PARTICIPANT_ADDED.value: self.on_participant_added,
            EventKind.PARTICIPANT_REMOVED.value: self.on_participant_removed,
            EventKind.PARTICIPANT_ROLE_CHANGED.value: self.on_participant_role_changed,
        }

    # ─── Messages ────────────────────────────────────────

    def ordered(self) -> list[dict]:
        return sorted(
            self.messages.values(), key=lambda msg: (parse_ts(msg["created_at"]), msg["id"])
        )

    def on_message_sent(self, data: dict) -> None:
        msg = dict(data["message"])
        if msg["id"] in self.messages:
            return
        msg.setdefault("is_read", False)
        self.messages[msg["id"]] = msg
        sender = msg.get("sender") or {}
        # A sent message ends that sender's typing indicator
        self._typing.pop(sender.get("id"), None)

    def on_message_edited(self, data: dict) -> None:
        patch = data["message"]
        msg = self.messages.get(patch["id"])
        if msg is None:
            return
        msg.update(
            content=patch.get("content"),
            is_edited=patch.get("is_edited", True),
            edited_at=patch.get("edited_at"),
        )

    def on_message_deleted(self, data: dict) -> None:
        message_id = data["message_id"]
        self.messages.pop(message_id, None)
        _mark_parent_deleted(self.messages.values(), message_id, "sender_name")

    def on_messages_read(self, data: dict) -> None:
        reader_id = data["reader_id"]
        self.read_by[reader_id] = data["read_at"]
        if reader_id == self.current_user_id:
            return
        read_at = parse_ts(data["read_at"])
        for msg in self.messages.values():
            if (msg.get("sender") or {}).get("id") != self.current_user_id:
                continue
            if parse_ts(msg["created_at"]) <= read_at:
                msg["is_read"] = True

    # ─── Typing and AI status ────────────────────────────

    def on_user_typing(self, data: dict) -> None:
        user = data["user"]
        if data.get("is_typing", True):
            self._typing[user["id"]] = (user["name"], self.clock() + self.typing_ttl)
        else:
            self._typing.pop(user["id"], None)

    def typing_users(self) -> list[str]:
        """Names of users still typing; expired entries are dropped."""
        now = self.clock()
        self._typing = {uid: v for uid, v in self._typing.items() if v[1] > now}
        return [name for name, _ in self._typing.values()]

    def on_ai_thinking(self, data: dict) -> None:
        self.ai_active_count = data.get("active_count", 0)
        if data.get("is_thinking"):
            self._ai_since = self.clock()
        elif self.ai_active_count <= 0:
            self._ai_since = None

    @property
    def ai_thinking(self) -> bool:
        if self._ai_since is None:
            return False
        if self.clock() - self._ai_since >= self.ai_timeout:
            # No "done" event arrived; assume the assistant gave up
            self._ai_since = None
            self.ai_active_count = 0
            return False
        return True

    # ─── Participants ────────────────────────────────────

    def on_participant_added(self, data: dict) -> None:
        user = data["added_user"]
        self.participants[user["id"]] = dict(user, role="member")

    def on_participant_removed(self, data: dict) -> None:
        self.participants.pop(data["removed_user"]["id"], None)
        self._typing.pop(data["removed_user"]["id"], None)

    def on_participant_role_changed(self, data: dict) -> None:
        user = data["user"]
        entry = self.participants.setdefault(user["id"], dict(user))
        entry["role"] = data["new_role"]


class ConversationSidebar:
    """The current user's conversation list (user.{id}.conversations)."""

    def __init__(self, current_user_id: int, active_conversation_id: Optional[int] = None):
        self.current_user_id = current_user_id
        self.active_conversation_id = active_conversation_id
        self.conversations: dict[int, dict] = {}
        # Set when an event names a conversation we hold no details for
        self.needs_reload = False

    @property
    def channel(self) -> Channel:
        return Channel.user_conversations(self.current_user_id)

    def handlers(self) -> dict:
        return {
            EventKind.MESSAGE_SENT.value: self.on_message_sent,
            EventKind.CONVERSATION_CREATED.value: self.on_conversation_created,
            EventKind.PARTICIPANT_ADDED.value: self.on_participant_added,
            EventKind.PARTICIPANT_REMOVED.value: self.on_participant_removed,
        }

    def set_active(self, conversation_id: Optional[int]) -> None:
        self.active_conversation_id = conversation_id
        if conversation_id in self.conversations:
            self.conversations[conversation_id]["unread_count"] = 0

    def ordered(self) -> list[dict]:
        """Most recent activity first; conversations without messages last."""
        def sort_key(conv):
            ts = parse_ts(conv.get("last_message_at"))
            return (ts is not None, ts or datetime.min, conv["id"])

        return sorted(self.conversations.values(), key=sort_key, reverse=True)

    def on_message_sent(self, data: dict) -> None:
        msg = data["message"]
        conv = self.conversations.get(data["conversation_id"])
        if conv is None:
            self.needs_reload = True
            return
        conv["last_message"] = {
            "content": msg.get("content"),
            "sender_name": (msg.get("sender") or {}).get("name"),
            "created_at": msg["created_at"],
        }
        conv["last_message_at"] = msg["created_at"]
        sender_id = (msg.get("sender") or {}).get("id")
        if conv["id"] != self.active_conversation_id and sender_id != self.current_user_id:
            conv["unread_count"] = conv.get("unread_count", 0) + 1

    def on_conversation_created(self, data: dict) -> None:
        conv = data["conversation"]
        if conv["id"] in self.conversations:
            return
        self.conversations[conv["id"]] = dict(
            conv, last_message=None, last_message_at=None, unread_count=0
        )

    def on_participant_added(self, data: dict) -> None:
        if data["added_user"]["id"] != self.current_user_id:
            return
        if data["conversation_id"] not in self.conversations:
            self.needs_reload = True

    def on_participant_removed(self, data: dict) -> None:
        if data["removed_user"]["id"] == self.current_user_id:
            self.conversations.pop(data["conversation_id"], None)
            if self.active_conversation_id == data["conversation_id"]:
                self.active_conversation_id = None


# ═══════════════════════════════════════════════════════════
# Projects and boards
# ═══════════════════════════════════════════════════════════


def _upsert(store: dict[int, dict], item: dict) -> dict:
    current = store.setdefault(item["id"], {})
    current.update(item)
    return current


class BoardView:
    """A project board (project.{id}): tasks, lists and labels."""

    def __init__(self, project_id: int):
        self.project_id = project_id
        self.project: Optional[dict] = None
        self.tasks: dict[int, dict] = {}
        self.lists: dict[int, dict] = {}
        self.labels: dict[int, dict] = {}
        self.closed = False

    @property
    def channel(self) -> Channel:
        return Channel.project(self.project_id)

    def handlers(self) -> dict:
        return {
            EventKind.TASK_UPDATED.value: self.on_task_updated,
            EventKind.LIST_UPDATED.value: self.on_list_updated,
            EventKind.LABEL_UPDATED.value: self.on_label_updated,
            EventKind.PROJECT_UPDATED.value: self.on_project_updated,
        }

    def tasks_in(self, list_id: int) -> list[dict]:
        return sorted(
            (t for t in self.tasks.values() if t.get("list_id") == list_id),
            key=lambda t: (t.get("position", 0), t["id"]),
        )

    def on_task_updated(self, data: dict) -> None:
        task = data["task"]
        if data["action"] == "deleted":
            self.tasks.pop(task["id"], None)
        else:
            _upsert(self.tasks, task)

    def on_list_updated(self, data: dict) -> None:
        lst = data["list"]
        if data["action"] == "deleted":
            self.lists.pop(lst["id"], None)
            self.tasks = {k: t for k, t in self.tasks.items() if t.get("list_id") != lst["id"]}
        else:
            _upsert(self.lists, lst)

    def on_label_updated(self, data: dict) -> None:
        label = data["label"]
        if data["action"] == "deleted":
            self.labels.pop(label["id"], None)
        else:
            _upsert(self.labels, label)

    def on_project_updated(self, data: dict) -> None:
        self.project = dict(data["project"])
        if data["action"] in ("archived", "deleted"):
            self.closed = True


class ProjectListView:
    """The current user's project list (user.{id}.projects)."""

    def __init__(self, current_user_id: int):
        self.current_user_id = current_user_id
        self.projects: dict[int, dict] = {}

    @property
    def channel(self) -> Channel:
        return Channel.user_projects(self.current_user_id)

    def handlers(self) -> dict:
        return {EventKind.PROJECT_UPDATED.value: self.on_project_updated}

    def active(self) -> list[dict]:
        return [p for p in self.projects.values() if not p.get("is_archived")]

    def on_project_updated(self, data: dict) -> None:
        project = data["project"]
        if data["action"] == "deleted":
            self.projects.pop(project["id"], None)
        else:
            _upsert(self.projects, project)


# ═══════════════════════════════════════════════════════════
# Task detail
# ═══════════════════════════════════════════════════════════


class TaskCommentsView:
    def __init__(self, project_id: int, task_id: int):
        self.project_id = project_id
        self.task_id = task_id
        self.comments: dict[int, dict] = {}

    @property
    def channel(self) -> Channel:
        return Channel.task_comments(self.project_id, self.task_id)

    def handlers(self) -> dict:
        return {
            EventKind.COMMENT_CREATED.value: self.on_comment_created,
            EventKind.COMMENT_UPDATED.value: self.on_comment_updated,
            EventKind.COMMENT_DELETED.value: self.on_comment_deleted,
            EventKind.COMMENT_REACTION_TOGGLED.value: self.on_reaction_toggled,
        }

    def on_comment_created(self, data: dict) -> None:
        comment = data["comment"]
        if comment["id"] not in self.comments:
            self.comments[comment["id"]] = dict(comment)
            parent_id = comment.get("parent_id")
            if parent_id in self.comments:
                parent = self.comments[parent_id]
                parent["replies_count"] = parent.get("replies_count", 0) + 1

    def on_comment_updated(self, data: dict) -> None:
        patch = data["comment"]
        comment = self.comments.get(patch["id"])
        if comment is not None:
            comment.update(
                content=patch.get("content"),
                is_edited=patch.get("is_edited", True),
                edited_at=patch.get("edited_at"),
            )

    def on_comment_deleted(self, data: dict) -> None:
        comment_id = data["comment_id"]
        self.comments.pop(comment_id, None)
        _mark_parent_deleted(self.comments.values(), comment_id, "user_name")

    def on_reaction_toggled(self, data: dict) -> None:
        comment = self.comments.get(data["comment_id"])
        if comment is not None:
            # Full regrouped snapshot; replace rather than increment
            comment["reactions"] = list(data.get("reactions", []))


class TaskAttachmentsView:
    def __init__(self, project_id: int, task_id: int):
        self.project_id = project_id
        self.task_id = task_id
        self.attachments: dict[int, dict] = {}

    @property
    def channel(self) -> Channel:
        return Channel.task_attachments(self.project_id, self.task_id)

    def handlers(self) -> dict:
        return {
            EventKind.ATTACHMENT_UPLOADED.value: self.on_attachment_uploaded,
            EventKind.ATTACHMENT_DELETED.value: self.on_attachment_deleted,
        }

    def on_attachment_uploaded(self, data: dict) -> None:
        attachment = data["attachment"]
        self.attachments.setdefault(attachment["id"], dict(attachment))

    def on_attachment_deleted(self, data: dict) -> None:
        self.attachments.pop(data["attachment_id"], None)


# ═══════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════


class NotificationsView:
    """The current user's notification bell (user.{id}.notifications)."""

    def __init__(self, current_user_id: int):
        self.current_user_id = current_user_id
        self.notifications: dict[str, dict] = {}

    @property
    def channel(self) -> Channel:
        return Channel.user_notifications(self.current_user_id)

    def handlers(self) -> dict:
        return {EventKind.MENTION_NOTIFICATION.value: self.on_mention}

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications.values() if not n.get("is_read"))

    def latest(self) -> list[dict]:
        return sorted(
            self.notifications.values(),
            key=lambda n: n.get("created_at") or "",
            reverse=True,
        )

    def on_mention(self, data: dict) -> None:
        self.notifications.setdefault(data["id"], dict(data))

    def mark_read(self, notification_id: str) -> None:
        notification = self.notifications.get(notification_id)
        if notification is not None:
            notification["is_read"] = True
