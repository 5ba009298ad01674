#!/usr/bin/env python3
"""
Message sources and the poll stream for the mail index sync system.

A source enumerates the messages it currently holds together with their default
label state. ``poll_from`` turns one source into a lazy stream of add/delete events
against the index, which the sync orchestrator then reconciles.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set
from urllib.parse import urlparse

from errors import ConfigError, UnknownSourceError
from labels import DELETED, DRAFT, INBOX, STARRED, UNREAD, LabelSet


@dataclass
class Message:
    """A message as currently observed in a source."""
    id: str
    source_info: Any
    labels: LabelSet
    source: str = ""


class EventKind(Enum):
    ADD = "add"
    DELETE = "delete"


@dataclass
class MessageEvent:
    """One item of a poll stream."""
    kind: Any
    message: Message
    prior: Any  # IndexedRecord or None
    progress: float


class Source:
    """Base class for message sources.

    Subclasses implement ``count`` and ``iter_messages``; remote sources also
    override ``connect`` and ``close``.
    """

    def __init__(self, uri: str, usual: bool = True, archived: bool = False,
                 labels: List[str] = None, settings: Dict[str, Any] = None, **options):
        self.uri = uri
        self.settings = settings or {}
        self.usual = usual
        self.archived = archived
        self.labels = LabelSet(labels or [])
        self.options = options
        self.parsed_uri = urlparse(uri)

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def count(self) -> int:
        raise NotImplementedError

    def iter_messages(self) -> Iterator[Message]:
        raise NotImplementedError

    def default_labels(self, seen: bool, flagged: bool = False, draft: bool = False,
                       deleted: bool = False) -> LabelSet:
        """Labels a message gets from this source when nothing is known about it."""
        labels = self.labels.copy()
        if not self.archived:
            labels.add(INBOX)
        if not seen:
            labels.add(UNREAD)
        if flagged:
            labels.add(STARRED)
        if draft:
            labels.add(DRAFT)
        if deleted:
            labels.add(DELETED)
        return labels

    def message_id_for(self, header_value: Optional[str], source_info) -> str:
        """Stable message id from a Message-ID header, or a hash of its location."""
        message_id = (header_value or "").strip().strip("<>").strip()
        if message_id and not any(c.isspace() for c in message_id):
            return message_id
        digest = hashlib.sha1(f"{self.uri}#{source_info}".encode("utf-8")).hexdigest()
        return f"sha1:{digest}"

    def make_message(self, header_value: Optional[str], source_info, labels: LabelSet) -> Message:
        return Message(
            id=self.message_id_for(header_value, source_info),
            source_info=source_info,
            labels=labels,
            source=self.uri,
        )

    def __str__(self) -> str:
        return self.uri


@dataclass
class ScanClaims:
    """Message ids settled so far in one run, shared by every source it scans.

    ``claimed`` holds ids that already produced an add event; ``released`` holds
    ids whose record a delete event has given up. Records indexed from one of the
    ``owners`` stay with that source.
    """
    owners: Set[str] = field(default_factory=set)
    claimed: Set[str] = field(default_factory=set)
    released: Set[str] = field(default_factory=set)


def poll_from(source: Source, index, claims: ScanClaims = None) -> Iterator[MessageEvent]:
    """Yield add events for every message in ``source``, then delete events.

    Only the first copy of an id within a run is yielded. A message whose record
    belongs to another owning source is left there until that source gives
    it up. Delete events cover ids the index holds for this source that the source
    no longer reports. Progress never decreases.
    """
    claims = claims if claims is not None else ScanClaims()
    reported = set()
    with source:
        total = source.count()
        logging.info(f"Scanning {source} ({total} messages)...")
        for position, message in enumerate(source.iter_messages(), start=1):
            reported.add(message.id)
            if message.id in claims.claimed:
                logging.debug(f"Skipping duplicate {message.id} at {source}#{message.source_info}")
                continue
            prior = None if message.id in claims.released else index.get(message.id)
            if (prior is not None and prior.source != source.uri
                    and prior.source in claims.owners):
                logging.debug(f"Skipping {message.id}: indexed from {prior.source}")
                continue
            claims.claimed.add(message.id)
            progress = min(position / total, 1.0) if total else 1.0
            yield MessageEvent(EventKind.ADD, message, prior, progress)

    stale = [record for record in index.records_for_source(source.uri)
             if record.id not in reported
             and record.id not in claims.claimed
             and record.id not in claims.released]
    for record in stale:
        claims.released.add(record.id)
        message = Message(record.id, record.source_info, record.labels.copy(), source.uri)
        yield MessageEvent(EventKind.DELETE, message, record, 1.0)


def _source_class(scheme: str):
    """Resolve the source implementation for a URI scheme."""
    # Imported lazily so remote client libraries are only loaded when used
    if scheme in ("maildir", "mbox"):
        from local_sources import MaildirSource, MboxSource
        return MaildirSource if scheme == "maildir" else MboxSource
    if scheme in ("imap", "imaps"):
        from imap_source import IMAPSource
        return IMAPSource
    if scheme == "gmail":
        from gmail_source import GmailSource
        return GmailSource
    raise ConfigError(f"Unsupported source type '{scheme}'")


def create_source(source_config: Dict[str, Any], settings: Dict[str, Any] = None) -> Source:
    """Instantiate a source from its configuration entry."""
    if 'uri' not in source_config:
        raise ConfigError("Source entry is missing 'uri'")
    options = dict(source_config)
    uri = options.pop('uri')
    scheme = urlparse(uri).scheme
    source_class = _source_class(scheme)
    return source_class(uri, settings=settings or {}, **options)


class SourceRegistry:
    """Configured sources, in configuration order."""

    def __init__(self, sources: List[Source]):
        self.sources = list(sources)
        self._by_uri = {source.uri: source for source in self.sources}

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SourceRegistry":
        settings = config.get('settings') or {}
        return cls([create_source(entry, settings) for entry in config.get('sources') or []])

    def get(self, uri: str) -> Source:
        if uri not in self._by_uri:
            raise UnknownSourceError(uri)
        return self._by_uri[uri]

    def usual_sources(self) -> List[Source]:
        return [source for source in self.sources if source.usual]

    def select(self, uris: List[str] = None, all_sources: bool = False) -> List[Source]:
        """Resolve the sources to scan: explicit URIs, all, or the usual ones."""
        if all_sources:
            return list(self.sources)
        if uris:
            return [self.get(uri) for uri in uris]
        return self.usual_sources()
