"""Event kinds.

Learn: Centralizing event names in one closed enum prevents typos and
makes it easy to discover every event the gateway can emit. The enum
value IS the wire name clients listen for, so it must never change once
shipped. Each kind has exactly one payload builder (events/encoder.py)
and one target-channel rule (realtime/dispatcher.py).
"""

import enum


class EventKind(str, enum.Enum):
    # ─── Chat ────────────────────────────────────────────

    MESSAGE_SENT = "message.sent"
    MESSAGE_EDITED = "message.edited"
    MESSAGE_DELETED = "message.deleted"
    MESSAGES_READ = "messages.read"
    USER_TYPING = "user.typing"
    AI_THINKING = "ai.thinking"

    # ─── Conversation membership ─────────────────────────

    CONVERSATION_CREATED = "conversation.created"
    PARTICIPANT_ADDED = "participant.added"
    PARTICIPANT_REMOVED = "participant.removed"
    PARTICIPANT_ROLE_CHANGED = "participant.role_changed"

    # ─── Projects and boards ─────────────────────────────

    PROJECT_UPDATED = "project.updated"
    TASK_UPDATED = "task.updated"
    LIST_UPDATED = "list.updated"
    LABEL_UPDATED = "label.updated"

    # ─── Task detail: comments and attachments ───────────

    COMMENT_CREATED = "task_comment.created"
    COMMENT_UPDATED = "task_comment.updated"
    COMMENT_DELETED = "task_comment.deleted"
    COMMENT_REACTION_TOGGLED = "task_comment.reaction_toggled"
    ATTACHMENT_UPLOADED = "task_attachment.uploaded"
    ATTACHMENT_DELETED = "task_attachment.deleted"

    # ─── Notifications ───────────────────────────────────

    MENTION_NOTIFICATION = "mention.notification"


# Control frames exchanged on the WebSocket itself (not channel events)
CONNECTION_ESTABLISHED = "connection.established"
SUBSCRIPTION_SUCCEEDED = "subscription.succeeded"
SUBSCRIPTION_REFUSED = "subscription.refused"
UNSUBSCRIBED = "unsubscribed"
PONG = "pong"
