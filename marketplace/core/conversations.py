"""
Conversation Aggregation Module
================================
Turns a user's flat message list into the messaging sidebar: one summary
per counterpart with the latest message and the number of unread
messages addressed to the user, most recent conversation first.

Also implements "opening" a conversation, which marks every unread
message addressed to the viewer as read in a single store call.

Tie-break: when two messages in a conversation share the same createdAt,
the one that comes first in the input list is reported as lastMessage.
That order depends on the store backend and is not a guarantee.
"""

import logging
from typing import Iterable, Optional

from marketplace.schemas import ConversationSummary, Message, PublicUser, User

logger = logging.getLogger(__name__)


def counterpart_of(message: Message, me: int) -> Optional[int]:
    """The other participant, or None if `me` is not on the message."""
    if message.senderId == me:
        return message.receiverId
    if message.receiverId == me:
        return message.senderId
    return None


def unread_for(messages: Iterable[Message], me: int) -> list[Message]:
    """Messages addressed to `me` that have not been read yet."""
    return [m for m in messages if m.receiverId == me and not m.read]


def summarize_conversations(messages: Iterable[Message], me: int,
                            users: Optional[Iterable[User]] = None) -> list[ConversationSummary]:
    """
    Group messages into per-counterpart conversation summaries.

    Args:
        messages: Messages to consider; ones not involving `me` are ignored
        me: Id of the viewing user
        users: Profiles to attach as `counterpart`; missing ones stay None

    Returns:
        Summaries sorted by lastMessage.createdAt, newest first
    """
    messages = list(messages)
    profiles = {u.id: PublicUser.from_user(u) for u in (users or [])}

    # dict keeps first-seen order of counterparts
    threads: dict[int, list[Message]] = {}
    for message in messages:
        other = counterpart_of(message, me)
        if other is not None:
            threads.setdefault(other, []).append(message)

    summaries = []
    for other, thread in threads.items():
        # max() returns the first maximal element, which fixes the tie-break
        last_message = max(thread, key=lambda m: m.createdAt)
        summaries.append(ConversationSummary(
            counterpartId=other,
            counterpart=profiles.get(other),
            lastMessage=last_message,
            unreadCount=len(unread_for(thread, me)),
        ))

    summaries.sort(key=lambda s: s.lastMessage.createdAt, reverse=True)
    return summaries


def open_conversation(store, me: int, counterpart_id: int) -> tuple[list[Message], int]:
    """
    Load the thread between `me` and the counterpart and mark it read.

    Only unread messages addressed to `me` change. Already-read messages
    and messages `me` sent are left alone.

    Args:
        store: Any BaseStore
        me: Id of the viewing user
        counterpart_id: The other participant

    Returns:
        (thread oldest first with updated read flags, number of messages marked)
    """
    thread = store.get_conversation(me, counterpart_id)
    pending = unread_for(thread, me)
    if not pending:
        return thread, 0

    changed = store.mark_messages_read(m.id for m in pending)
    logger.info(f"[MESSAGES] User {me} opened conversation with {counterpart_id}: marked {len(changed)} read")

    updated = {m.id: m for m in changed}
    return [updated.get(m.id, m) for m in thread], len(changed)
