"""Event types exchanged between transports and the core pipeline."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field


@dataclass
class QuotedMessage:
    """A message the current event replies to.

    Only two levels are ever inspected: the quoted message and the
    message it quotes in turn.
    """

    text: str
    author_id: str
    quoted: QuotedMessage | None = None
    author_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.author_name or self.author_id


@dataclass
class ConversationEvent:
    """One normalized inbound message.

    Transports deliver new-message notifications only; edits and acks
    are filtered out upstream.
    """

    sender_id: str                  # Identity that wrote the message
    chat_id: str                    # Group or direct chat it was posted in
    text: str
    is_group: bool = False
    mentioned_ids: set[str] = field(default_factory=set)
    quoted: QuotedMessage | None = None
    timestamp: float = field(default_factory=time.time)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sender_name: str | None = None  # Display name, if the transport has one

    @property
    def display_name(self) -> str:
        return self.sender_name or self.sender_id

    @property
    def channel_hint(self) -> str:
        return "group" if self.is_group else "direct"

    def referenced_ids(self) -> set[str]:
        """All identities the event points at: mentions plus the quoted author."""
        ids = set(self.mentioned_ids)
        if self.quoted is not None:
            ids.add(self.quoted.author_id)
        return ids
