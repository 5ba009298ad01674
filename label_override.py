#!/usr/bin/env python3
"""
Command-line label overrides applied to freshly observed messages.
"""

from dataclasses import dataclass, field, replace

from labels import INBOX, UNREAD, LabelSet
from sources import Message


@dataclass(frozen=True)
class LabelOverridePolicy:
    """Adjusts a message's default source state before reconciliation.

    ``strip_inbox`` archives (``--archive``), ``strip_unread`` marks read
    (``--read``) and ``extra_labels`` are added on top (``--extra-labels``).
    """
    strip_inbox: bool = False
    strip_unread: bool = False
    extra_labels: LabelSet = field(default_factory=LabelSet)

    def apply(self, message: Message) -> Message:
        """Return a copy of ``message`` with the overrides applied."""
        labels = message.labels.copy()
        if self.strip_inbox:
            labels.remove(INBOX)
        if self.strip_unread:
            labels.remove(UNREAD)
        return replace(message, labels=labels.union(self.extra_labels))

    @property
    def active(self) -> bool:
        return self.strip_inbox or self.strip_unread or len(self.extra_labels) > 0
