#!/usr/bin/env python3
"""
Message index storage for the mail index sync system.

The index is a JSON document holding the registered source URIs and one record
per message id. Writes go through a temporary file so an interrupted save never
leaves a truncated index behind.
"""

import os
import json
import socket
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import psutil

from errors import IndexLockedError, SyncError
from labels import LabelSet

INDEX_VERSION = 1


@dataclass
class IndexedRecord:
    """A message as stored in the index."""
    id: str
    source: str
    source_info: Any
    labels: LabelSet


class MessageIndex:
    """JSON-file message index with an exclusive lock file."""

    def __init__(self, index_file: str = "index.json"):
        self.index_file = index_file
        self.lock_file = f"{index_file}.lock"
        self.sources = []
        self.messages = {}
        self.dirty = False
        self._locked = False

    # Locking

    def lock(self) -> None:
        """Acquire the index lock, breaking it if its holder is no longer running."""
        try:
            self._create_lock_file()
        except FileExistsError:
            holder = self._read_lock_holder()
            if not self._is_stale(holder):
                raise IndexLockedError(self.index_file, self._describe_holder(holder))
            logging.warning(f"⚠️ Breaking stale index lock held by {self._describe_holder(holder)}")
            os.remove(self.lock_file)
            try:
                self._create_lock_file()
            except FileExistsError:
                raise IndexLockedError(self.index_file, self._describe_holder(self._read_lock_holder()))
        self._locked = True
        logging.debug(f"Locked index {self.index_file}")

    def unlock(self) -> None:
        if not self._locked:
            return
        try:
            os.remove(self.lock_file)
        except FileNotFoundError:
            logging.warning(f"Index lock {self.lock_file} disappeared while held")
        self._locked = False
        logging.debug(f"Unlocked index {self.index_file}")

    @contextmanager
    def locked(self):
        """Hold the index lock for the duration of the block, releasing it on any exit."""
        self.lock()
        try:
            yield self
        finally:
            self.unlock()

    def _create_lock_file(self) -> None:
        fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, 'w') as lock:
            json.dump({"pid": os.getpid(), "host": socket.gethostname()}, lock)

    def _read_lock_holder(self) -> Dict[str, Any]:
        try:
            with open(self.lock_file, 'r') as lock:
                holder = json.load(lock)
            return holder if isinstance(holder, dict) else {}
        except (OSError, json.JSONDecodeError):
            return {}

    def _is_stale(self, holder: Dict[str, Any]) -> bool:
        pid = holder.get("pid")
        if not isinstance(pid, int) or holder.get("host") != socket.gethostname():
            return False
        return not psutil.pid_exists(pid)

    @staticmethod
    def _describe_holder(holder: Dict[str, Any]) -> str:
        if not holder:
            return "an unknown process"
        return f"pid {holder.get('pid')} on {holder.get('host')}"

    # Persistence

    def load(self) -> None:
        """Load the index from disk; a missing file is an empty index."""
        if not os.path.exists(self.index_file):
            logging.info(f"Index {self.index_file} does not exist yet, starting empty")
            self.sources = []
            self.messages = {}
            return
        try:
            with open(self.index_file, 'r', encoding='utf-8') as file:
                data = json.load(file)
        except json.JSONDecodeError as e:
            raise SyncError(f"Index {self.index_file} is corrupt: {e}") from e
        if data.get("version") != INDEX_VERSION:
            raise SyncError(f"Index {self.index_file} has unsupported version {data.get('version')}")

        self.sources = list(data.get("sources", []))
        self.messages = {
            message_id: IndexedRecord(message_id, entry["source"], entry.get("source_info"),
                                      LabelSet(entry.get("labels", [])))
            for message_id, entry in data.get("messages", {}).items()
        }
        self.dirty = False
        logging.info(f"Loaded index with {len(self.messages)} messages from {len(self.sources)} sources")

    def _serialize(self) -> Dict[str, Any]:
        return {
            "version": INDEX_VERSION,
            "sources": self.sources,
            "messages": {
                record.id: {
                    "source": record.source,
                    "source_info": record.source_info,
                    "labels": list(record.labels),
                }
                for record in sorted(self.messages.values(), key=lambda r: r.id)
            },
        }

    def save(self, indent: Optional[int] = 2) -> None:
        """Write the index atomically."""
        tmp_path = f"{self.index_file}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as file:
            json.dump(self._serialize(), file, indent=indent)
        os.replace(tmp_path, self.index_file)
        self.dirty = False
        logging.info(f"💾 Saved index with {len(self.messages)} messages")

    def optimize(self) -> int:
        """Drop records of unregistered sources and rewrite the index compactly.

        Returns the number of records dropped.
        """
        registered = set(self.sources)
        orphans = [message_id for message_id, record in self.messages.items()
                   if record.source not in registered]
        for message_id in orphans:
            del self.messages[message_id]
        if orphans:
            logging.info(f"Dropped {len(orphans)} messages from unregistered sources")
        self.save(indent=None)
        return len(orphans)

    def size(self) -> int:
        return len(self.messages)

    # Sources

    def has_source(self, uri: str) -> bool:
        return uri in self.sources

    def add_source(self, uri: str) -> None:
        if uri not in self.sources:
            self.sources.append(uri)
            self.dirty = True
            logging.info(f"Registered source {uri}")

    # Records

    def get(self, message_id: str) -> Optional[IndexedRecord]:
        record = self.messages.get(message_id)
        if record is None:
            return None
        # Callers get a copy; the index only changes through upsert/delete
        return IndexedRecord(record.id, record.source, record.source_info, record.labels.copy())

    def upsert(self, message_id: str, source: str, source_info, labels: LabelSet) -> None:
        self.messages[message_id] = IndexedRecord(message_id, source, source_info, LabelSet(labels))
        self.dirty = True

    def delete(self, message_id: str) -> bool:
        if self.messages.pop(message_id, None) is None:
            return False
        self.dirty = True
        return True

    def records_for_source(self, uri: str) -> List[IndexedRecord]:
        return [self.get(record.id) for record in self.messages.values() if record.source == uri]

    def records(self) -> Iterator[IndexedRecord]:
        for message_id in sorted(self.messages):
            yield self.get(message_id)
