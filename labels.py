#!/usr/bin/env python3
"""
Label sets for indexed messages.

A label is a symbolic tag describing message state (read/unread, archived/inbox,
starred) or a user-defined category.
"""

import re
from typing import Iterable, Iterator

# Well-known labels
INBOX = "inbox"
UNREAD = "unread"
STARRED = "starred"
DRAFT = "draft"
DELETED = "deleted"
SENT = "sent"
SPAM = "spam"

_LABEL_SEPARATOR = re.compile(r"\s*,\s*")


class LabelSet:
    """Unordered collection of labels with set semantics."""

    __hash__ = None

    def __init__(self, labels: Iterable[str] = ()):
        self._labels = set()
        for label in labels:
            self.add(label)

    @classmethod
    def parse(cls, text: str) -> "LabelSet":
        """Build a label set from a comma-separated list (empty entries ignored)."""
        if not text or not text.strip():
            return cls()
        return cls(part for part in _LABEL_SEPARATOR.split(text.strip()) if part)

    def contains(self, label: str) -> bool:
        return label in self._labels

    def add(self, label: str) -> None:
        label = label.strip()
        if label:
            self._labels.add(label)

    def remove(self, label: str) -> None:
        """Remove a label; removing an absent label is a no-op."""
        self._labels.discard(label)

    def union(self, other: Iterable[str]) -> "LabelSet":
        return LabelSet(self._labels.union(other))

    def difference(self, other: Iterable[str]) -> "LabelSet":
        return LabelSet(self._labels.difference(other))

    def copy(self) -> "LabelSet":
        return LabelSet(self._labels)

    def to_display_string(self) -> str:
        """Stable, sorted, comma-joined representation used in dumps and logs."""
        return ",".join(sorted(self._labels))

    def __contains__(self, label) -> bool:
        return label in self._labels

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._labels))

    def __len__(self) -> int:
        return len(self._labels)

    def __eq__(self, other) -> bool:
        if isinstance(other, LabelSet):
            return self._labels == other._labels
        if isinstance(other, (set, frozenset)):
            return self._labels == other
        return NotImplemented

    def __or__(self, other: Iterable[str]) -> "LabelSet":
        return self.union(other)

    def __sub__(self, other: Iterable[str]) -> "LabelSet":
        return self.difference(other)

    def __str__(self) -> str:
        return self.to_display_string()

    def __repr__(self) -> str:
        return f"LabelSet({sorted(self._labels)!r})"
