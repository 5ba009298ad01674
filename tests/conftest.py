"""
Shared pytest fixtures and utilities for mail index sync tests.
"""

import os
import sys
import mailbox
from email.message import EmailMessage

import pytest

# Ensure the project modules are importable without installation
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from labels import LabelSet
from message_index import IndexedRecord, MessageIndex
from sources import EventKind, Message, MessageEvent, Source


def make_message(message_id, labels=(), source_info=None, source="fake://source"):
    return Message(
        id=message_id,
        source_info=source_info if source_info is not None else f"info-{message_id}",
        labels=LabelSet(labels),
        source=source,
    )


def make_record(message_id, labels=(), source_info=None, source="fake://source"):
    return IndexedRecord(
        id=message_id,
        source=source,
        source_info=source_info if source_info is not None else f"info-{message_id}",
        labels=LabelSet(labels),
    )


def add_event(message, prior=None, progress=1.0):
    return MessageEvent(EventKind.ADD, message, prior, progress)


def delete_event(message, prior=None, progress=1.0):
    return MessageEvent(EventKind.DELETE, message, prior, progress)


def make_email(message_id=None, subject="hello"):
    msg = EmailMessage()
    msg["From"] = "alice@example.com"
    msg["To"] = "bob@example.com"
    msg["Subject"] = subject
    if message_id:
        msg["Message-ID"] = message_id
    msg.set_content("body\n")
    return msg


class FakeSource(Source):
    """In-memory source yielding the messages it was given."""

    def __init__(self, uri="fake://source", messages=None, **kwargs):
        super().__init__(uri, **kwargs)
        self.messages = list(messages or [])
        self.connected = False
        self.closed = False

    def connect(self):
        self.connected = True

    def close(self):
        self.closed = True

    def count(self):
        return len(self.messages)

    def iter_messages(self):
        for message in self.messages:
            yield message


class FakeClock:
    def __init__(self, start=1000.0, step=0.0):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def index(tmp_path):
    idx = MessageIndex(str(tmp_path / "index.json"))
    idx.load()
    return idx


@pytest.fixture
def maildir_factory(tmp_path):
    """Creates a Maildir populated with (email, subdir, flags) tuples."""

    def _create(entries, name="Maildir"):
        path = tmp_path / name
        box = mailbox.Maildir(str(path), create=True)
        keys = []
        for email_message, subdir, flags in entries:
            maildir_message = mailbox.MaildirMessage(email_message)
            maildir_message.set_subdir(subdir)
            if flags:
                maildir_message.set_flags(flags)
            keys.append(box.add(maildir_message))
        box.close()
        return str(path), keys

    return _create


@pytest.fixture
def mbox_factory(tmp_path):
    """Creates an mbox file populated with (email, flags) tuples."""

    def _create(entries, name="archive.mbox"):
        path = tmp_path / name
        box = mailbox.mbox(str(path), create=True)
        for email_message, flags in entries:
            mbox_message = mailbox.mboxMessage(email_message)
            if flags:
                mbox_message.set_flags(flags)
            box.add(mbox_message)
        box.flush()
        box.close()
        return str(path)

    return _create
