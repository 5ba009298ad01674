"""
Tests for sources.py
"""

import pytest

from errors import ConfigError, UnknownSourceError
from labels import DELETED, DRAFT, INBOX, STARRED, UNREAD, LabelSet
from local_sources import MaildirSource, MboxSource
from sources import EventKind, ScanClaims, Source, SourceRegistry, create_source, poll_from
from conftest import FakeSource, make_message


class TestDefaultLabels:
    def test_unseen_message_in_inbox(self):
        assert Source("x://y").default_labels(seen=False) == LabelSet([INBOX, UNREAD])

    def test_archived_source_with_flags(self):
        source = Source("x://y", archived=True, labels=["lists"])
        labels = source.default_labels(seen=True, flagged=True, draft=True, deleted=True)
        assert labels == LabelSet(["lists", STARRED, DRAFT, DELETED])

    def test_source_labels_not_shared_between_messages(self):
        source = Source("x://y", labels=["lists"])
        source.default_labels(seen=True).add("other")
        assert source.labels == LabelSet(["lists"])


class TestMessageId:
    def test_header_brackets_stripped(self):
        assert Source("x://y").message_id_for(" <abc@example.com> ", 1) == "abc@example.com"

    def test_missing_header_hashes_location(self):
        source = Source("x://y")
        first = source.message_id_for(None, 7)
        assert first.startswith("sha1:")
        assert first == source.message_id_for("", 7)
        assert first != source.message_id_for(None, 8)


class TestPollFrom:
    def test_adds_then_deletes(self, index):
        index.upsert("m1", "fake://source", "info-m1", LabelSet([STARRED]))
        index.upsert("old", "fake://source", "k", LabelSet())
        index.upsert("elsewhere", "fake://other", "k", LabelSet())
        source = FakeSource(messages=[make_message("m1", [INBOX]), make_message("m2", [INBOX])])

        events = list(poll_from(source, index))
        assert [(e.kind, e.message.id) for e in events] == [
            (EventKind.ADD, "m1"),
            (EventKind.ADD, "m2"),
            (EventKind.DELETE, "old"),
        ]
        assert events[0].prior.labels == LabelSet([STARRED])
        assert events[1].prior is None
        assert [e.progress for e in events] == [0.5, 1.0, 1.0]
        assert source.connected and source.closed

    def test_empty_source(self, index):
        assert list(poll_from(FakeSource(), index)) == []

    def test_duplicate_ids_yield_first_copy(self, index):
        source = FakeSource(messages=[
            make_message("dup@x", [INBOX], source_info="key1"),
            make_message("dup@x", [INBOX], source_info="key2"),
            make_message("m2", [INBOX]),
        ])
        events = list(poll_from(source, index))
        assert [(e.message.id, e.message.source_info) for e in events] == [("dup@x", "key1"), ("m2", "info-m2")]
        assert [e.progress for e in events] == [pytest.approx(1 / 3), 1.0]

    def test_record_owned_by_other_source_is_left_alone(self, index):
        index.upsert("m1", "fake://other", "k", LabelSet([STARRED]))
        source = FakeSource(messages=[make_message("m1", [INBOX])])
        claims = ScanClaims(owners={"fake://other", "fake://source"})
        assert list(poll_from(source, index, claims)) == []
        assert list(poll_from(FakeSource(messages=[make_message("m1", [INBOX])]), index)) != []


class TestRegistry:
    @pytest.fixture
    def registry(self, tmp_path):
        return SourceRegistry.from_config({
            'sources': [
                {'uri': f"maildir://{tmp_path}/a"},
                {'uri': f"mbox://{tmp_path}/b.mbox", 'usual': False, 'archived': True},
            ],
            'settings': {},
        })

    def test_types_from_scheme(self, registry):
        assert isinstance(registry.sources[0], MaildirSource)
        assert isinstance(registry.sources[1], MboxSource)
        assert registry.sources[1].archived

    def test_select_usual_by_default(self, registry):
        assert registry.select() == registry.sources[:1]

    def test_select_all(self, registry):
        assert registry.select(all_sources=True) == registry.sources

    def test_select_explicit_in_given_order(self, registry):
        uris = [registry.sources[1].uri, registry.sources[0].uri]
        assert [s.uri for s in registry.select(uris)] == uris

    def test_unknown_uri(self, registry):
        with pytest.raises(UnknownSourceError):
            registry.select(["maildir:///nowhere"])

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigError):
            create_source({'uri': "pop3://mail.example.com"})

    def test_missing_uri(self):
        with pytest.raises(ConfigError):
            create_source({'usual': True})
