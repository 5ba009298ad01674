#!/usr/bin/env python3
"""
Local mailbox sources (Maildir and mbox) for the mail index sync system.
"""

import os
import logging
import mailbox
from typing import Iterator, List

from errors import SourceCommunicationError
from sources import Message, Source


class LocalMailboxSource(Source):
    """Common handling for mailboxes read through the ``mailbox`` module."""

    def __init__(self, uri: str, **kwargs):
        super().__init__(uri, **kwargs)
        self.path = os.path.expanduser(self.parsed_uri.netloc + self.parsed_uri.path)
        self.mailbox = None

    def open_mailbox(self) -> mailbox.Mailbox:
        raise NotImplementedError

    def flags_for(self, message) -> dict:
        raise NotImplementedError

    def connect(self) -> None:
        if not os.path.exists(self.path):
            raise SourceCommunicationError(self.uri, f"mailbox {self.path} does not exist")
        try:
            self.mailbox = self.open_mailbox()
        except (OSError, mailbox.Error) as e:
            raise SourceCommunicationError(self.uri, e) from e
        logging.debug(f"Opened mailbox {self.path}")

    def close(self) -> None:
        if self.mailbox is not None:
            self.mailbox.close()
            self.mailbox = None

    def _keys(self) -> List:
        return sorted(self.mailbox.keys())

    def count(self) -> int:
        try:
            return len(self.mailbox)
        except (OSError, mailbox.Error) as e:
            raise SourceCommunicationError(self.uri, e) from e

    def iter_messages(self) -> Iterator[Message]:
        try:
            for key in self._keys():
                message = self.mailbox.get_message(key)
                labels = self.default_labels(**self.flags_for(message))
                yield self.make_message(message.get('Message-ID'), key, labels)
        except (OSError, mailbox.Error) as e:
            raise SourceCommunicationError(self.uri, e) from e


class MaildirSource(LocalMailboxSource):
    """Maildir directory: ``maildir:///path/to/Maildir``."""

    def open_mailbox(self) -> mailbox.Mailbox:
        return mailbox.Maildir(self.path, factory=None, create=False)

    def flags_for(self, message) -> dict:
        flags = message.get_flags()
        return {
            'seen': 'S' in flags and message.get_subdir() != 'new',
            'flagged': 'F' in flags,
            'draft': 'D' in flags,
            'deleted': 'T' in flags,
        }


class MboxSource(LocalMailboxSource):
    """Single mbox file: ``mbox:///path/to/file``."""

    def open_mailbox(self) -> mailbox.Mailbox:
        if os.path.isdir(self.path):
            raise SourceCommunicationError(self.uri, f"{self.path} is a directory, not an mbox file")
        return mailbox.mbox(self.path, create=False)

    def flags_for(self, message) -> dict:
        flags = message.get_flags()
        return {
            'seen': 'R' in flags,
            'flagged': 'F' in flags,
            'deleted': 'D' in flags,
        }
