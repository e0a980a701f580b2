"""Fan-out dispatcher — one committed mutation → N channels.

Learn: Dispatch has two halves:
1. plan()      — pure: which channels, which encoded event
2. broadcast() — publish the event to each channel via the transport

Target channels per event kind:

    message.sent              → conversation + user.{p}.conversations (p ≠ sender)
    message.edited/deleted,
    messages.read, user.typing,
    ai.thinking,
    participant.role_changed  → conversation
    conversation.created      → user.{p}.conversations for every participant
    participant.added/removed → conversation + affected user's conversations
    task/list/label.updated   → project
    project.updated           → project + owner's and members' user.{id}.projects
    task_comment.*            → project.{p}.task.{t}.comments
    task_attachment.*         → project.{p}.task.{t}.attachments
    mention.notification      → user.{m}.notifications of the mentioned user

Broadcast-now semantics: publishing happens inline in the request that
made the change. No queue, no retry. If the transport is down the
mutation has already committed, so broadcast() logs the failure and
returns it in the result instead of raising — every call site gets the
same swallow-and-log behaviour.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

import structlog

from taskboard.errors import TransportUnavailable
from taskboard.events import mutations as m
from taskboard.events.encoder import Event, encode
from taskboard.events.types import EventKind
from taskboard.realtime.channels import Channel
from taskboard.realtime.transport import Transport, get_transport

logger = structlog.get_logger()


@dataclass(frozen=True)
class Dispatch:
    """The pure outcome of planning: where an event goes."""

    channels: tuple[Channel, ...]
    event: Event


@dataclass
class BroadcastResult:
    """What actually happened when publishing a Dispatch."""

    dispatch: Dispatch
    delivered: list[Channel] = field(default_factory=list)
    error: Optional[TransportUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _unique(channels: Iterable[Channel]) -> tuple[Channel, ...]:
    seen: dict[Channel, None] = {}
    for channel in channels:
        seen.setdefault(channel, None)
    return tuple(seen)


# ═══════════════════════════════════════════════════════════
# Target-channel rules
# ═══════════════════════════════════════════════════════════


def _message_sent_targets(mut: m.MessageSent) -> list[Channel]:
    sender_id = mut.message.sender.id
    channels = [Channel.conversation(mut.message.conversation_id)]
    # Personal channels feed sidebar previews and unread badges
    channels += [
        Channel.user_conversations(uid) for uid in mut.participant_ids if uid != sender_id
    ]
    return channels


def _message_targets(mut) -> list[Channel]:
    return [Channel.conversation(mut.message.conversation_id)]


def _conversation_targets(mut) -> list[Channel]:
    return [Channel.conversation(mut.conversation_id)]


def _conversation_created_targets(mut: m.ConversationCreated) -> list[Channel]:
    return [Channel.user_conversations(u.id) for u in mut.conversation.participants]


def _participant_added_targets(mut: m.ParticipantAdded) -> list[Channel]:
    return [
        Channel.conversation(mut.conversation_id),
        Channel.user_conversations(mut.added_user.id),
    ]


def _participant_removed_targets(mut: m.ParticipantRemoved) -> list[Channel]:
    return [
        Channel.conversation(mut.conversation_id),
        Channel.user_conversations(mut.removed_user.id),
    ]


def _project_targets(mut: m.ProjectUpdated) -> list[Channel]:
    project = mut.project
    channels = [
        Channel.project(project.id),
        Channel.user_projects(project.user_id),
    ]
    channels += [Channel.user_projects(uid) for uid in project.member_ids]
    return channels


def _task_targets(mut: m.TaskUpdated) -> list[Channel]:
    return [Channel.project(mut.task.project_id)]


def _list_targets(mut: m.ListUpdated) -> list[Channel]:
    return [Channel.project(mut.task_list.project_id)]


def _label_targets(mut: m.LabelUpdated) -> list[Channel]:
    return [Channel.project(mut.label.project_id)]


def _comment_targets(mut) -> list[Channel]:
    comment = getattr(mut, "comment", None)
    if comment is not None:
        return [Channel.task_comments(comment.project_id, comment.task_id)]
    return [Channel.task_comments(mut.project_id, mut.task_id)]


def _attachment_uploaded_targets(mut: m.AttachmentUploaded) -> list[Channel]:
    a = mut.attachment
    return [Channel.task_attachments(a.project_id, a.task_id)]


def _attachment_deleted_targets(mut: m.AttachmentDeleted) -> list[Channel]:
    return [Channel.task_attachments(mut.project_id, mut.task_id)]


def _mention_targets(mut: m.MentionNotification) -> list[Channel]:
    return [Channel.user_notifications(mut.mentioned_user_id)]


TARGET_RULES: dict[EventKind, Callable[..., list[Channel]]] = {
    EventKind.MESSAGE_SENT: _message_sent_targets,
    EventKind.MESSAGE_EDITED: _message_targets,
    EventKind.MESSAGE_DELETED: _conversation_targets,
    EventKind.MESSAGES_READ: _conversation_targets,
    EventKind.USER_TYPING: _conversation_targets,
    EventKind.AI_THINKING: _conversation_targets,
    EventKind.CONVERSATION_CREATED: _conversation_created_targets,
    EventKind.PARTICIPANT_ADDED: _participant_added_targets,
    EventKind.PARTICIPANT_REMOVED: _participant_removed_targets,
    EventKind.PARTICIPANT_ROLE_CHANGED: _conversation_targets,
    EventKind.PROJECT_UPDATED: _project_targets,
    EventKind.TASK_UPDATED: _task_targets,
    EventKind.LIST_UPDATED: _list_targets,
    EventKind.LABEL_UPDATED: _label_targets,
    EventKind.COMMENT_CREATED: _comment_targets,
    EventKind.COMMENT_UPDATED: _comment_targets,
    EventKind.COMMENT_DELETED: _comment_targets,
    EventKind.COMMENT_REACTION_TOGGLED: _comment_targets,
    EventKind.ATTACHMENT_UPLOADED: _attachment_uploaded_targets,
    EventKind.ATTACHMENT_DELETED: _attachment_deleted_targets,
    EventKind.MENTION_NOTIFICATION: _mention_targets,
}


# ═══════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════


class FanoutDispatcher:
    """Plans and publishes events for committed mutations."""

    def __init__(self, transport: Transport):
        self.transport = transport

    def plan(self, mutation: m.BaseMutation) -> Dispatch:
        event = encode(mutation)
        channels = _unique(TARGET_RULES[mutation.event_kind](mutation))
        return Dispatch(channels=channels, event=event)

    async def broadcast(
        self,
        mutation: m.BaseMutation,
        socket_id: Optional[str] = None,
    ) -> BroadcastResult:
        """Publish a mutation's event to every target channel.

        Learn: The first transport failure stops the fan-out (the transport
        is down for everyone, not just one channel) and is returned in the
        result. Nothing is raised: the caller's request already committed.
        """
        dispatch = self.plan(mutation)
        result = BroadcastResult(dispatch=dispatch)

        for channel in dispatch.channels:
            try:
                await self.transport.publish(channel, dispatch.event, exclude_socket=socket_id)
            except TransportUnavailable as e:
                result.error = e
                logger.warning(
                    "broadcast.transport_unavailable",
                    event_name=dispatch.event.name,
                    channel=channel.name,
                    delivered=len(result.delivered),
                    targets=len(dispatch.channels),
                    actor_id=mutation.actor_id,
                    error=str(e),
                )
                break
            result.delivered.append(channel)

        if result.ok:
            logger.debug(
                "broadcast.published",
                event_name=dispatch.event.name,
                channels=[c.name for c in dispatch.channels],
                actor_id=mutation.actor_id,
            )
        return result


class UnavailableTransport:
    """Stands in when the transport never came up (e.g. Redis down at boot)."""

    async def publish(self, channel, event, exclude_socket=None):
        raise TransportUnavailable("Transport not initialized")


def get_dispatcher() -> FanoutDispatcher:
    """FastAPI dependency — a dispatcher bound to the process transport.

    If the transport was never initialized, the dispatcher still works:
    every broadcast comes back with a TransportUnavailable error.
    """
    try:
        return FanoutDispatcher(get_transport())
    except TransportUnavailable:
        return FanoutDispatcher(UnavailableTransport())
