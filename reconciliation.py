#!/usr/bin/env python3
"""
Reconciliation of observed message state against the index.

For every message a source reports, the operation mode decides one action:

=========================  ================================================
AsIs                       keep the index's labels; add new messages with
                           their source state; re-record moved messages
Restore(snapshot)          labels from the snapshot where it has an entry,
                           AsIs for everything else
Discard                    the source state wins over the index's labels
=========================  ================================================

Decisions are pure: they depend only on the mode, the observed message, the
prior index record and the snapshot entry, so repeated runs over an unchanged
source settle on ``NO_OP``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from labels import LabelSet
from message_index import IndexedRecord
from state_dump import RestoreSnapshot
from sources import Message


class Action(Enum):
    ADD_MESSAGE = "add_message"
    UPDATE_MESSAGE = "update_message"
    UPDATE_MESSAGE_STATE = "update_message_state"
    NO_OP = "no_op"
    DELETE = "delete"


@dataclass(frozen=True)
class Decision:
    action: Action
    labels: LabelSet
    restored: bool = False


def _location_changed(message: Message, prior: IndexedRecord) -> bool:
    return (prior.source_info != message.source_info
            or (bool(message.source) and prior.source != message.source))


class OperationMode:
    """Base for the per-run reconciliation policy."""

    name = None

    def restore_entry(self, message_id: str) -> Optional[LabelSet]:
        return None

    def decide(self, message: Message, prior: Optional[IndexedRecord],
               restore_entry: Optional[LabelSet] = None) -> Decision:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AsIs(OperationMode):
    """Keep whatever state the index already holds."""

    name = "asis"

    def decide(self, message, prior, restore_entry=None) -> Decision:
        if prior is None:
            return Decision(Action.ADD_MESSAGE, message.labels.copy())
        if _location_changed(message, prior):
            return Decision(Action.UPDATE_MESSAGE, prior.labels.copy())
        return Decision(Action.NO_OP, prior.labels.copy())


class Restore(AsIs):
    """Reinstate labels from a state dump; messages without an entry behave as AsIs."""

    name = "restore"

    def __init__(self, snapshot: RestoreSnapshot):
        self.snapshot = snapshot

    def restore_entry(self, message_id: str) -> Optional[LabelSet]:
        return self.snapshot.get(message_id)

    def decide(self, message, prior, restore_entry=None) -> Decision:
        if restore_entry is None:
            return super().decide(message, prior)
        if prior is None:
            return Decision(Action.ADD_MESSAGE, restore_entry.copy(), restored=True)
        if prior.labels != restore_entry:
            return Decision(Action.UPDATE_MESSAGE_STATE, restore_entry.copy(), restored=True)
        return Decision(Action.NO_OP, prior.labels.copy())

    def __repr__(self) -> str:
        return f"Restore({len(self.snapshot)} entries)"


class Discard(OperationMode):
    """Replace index state with the source's (override-adjusted) state."""

    name = "discard"

    def decide(self, message, prior, restore_entry=None) -> Decision:
        labels = message.labels.copy()
        if prior is None:
            return Decision(Action.ADD_MESSAGE, labels)
        if prior.labels != labels:
            return Decision(Action.UPDATE_MESSAGE_STATE, labels)
        return Decision(Action.NO_OP, labels)


def reconcile(mode: OperationMode, message: Message, prior: Optional[IndexedRecord],
              restore_entry: Optional[LabelSet] = None) -> Decision:
    """Decide what to do with one observed message."""
    return mode.decide(message, prior, restore_entry)
