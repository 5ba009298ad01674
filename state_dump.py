#!/usr/bin/env python3
"""
Label state dumps for the mail index sync system.

A dump holds one message per line in the form ``<id> (<label1,label2,...>)``.
Dumps are written from the index and read back with ``--restore`` to reinstate
message state after the index has been rebuilt.
"""

import re
import logging
from typing import Dict, Iterable, TextIO

from errors import MalformedDumpError, SyncError
from labels import LabelSet

DUMP_LINE = re.compile(r"^(\S+) \((.*)\)$")
# A label is a run of escaped characters or anything but an unescaped comma
DUMP_LABEL = re.compile(r"(?:\\.|[^,\\])+")
DUMP_ESCAPE = re.compile(r"\\(.)")

RestoreSnapshot = Dict[str, LabelSet]


def parse(lines: Iterable[str]) -> RestoreSnapshot:
    """Parse dump lines into a message id -> labels mapping.

    Any line that does not match the dump format fails the whole parse; a partial
    snapshot is never returned.
    """
    snapshot = {}
    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.rstrip("\r\n")
        match = DUMP_LINE.match(line)
        if not match:
            raise MalformedDumpError(line, line_number)
        message_id, labels = match.groups()
        snapshot[message_id] = parse_labels(labels)
    return snapshot


def load(path: str) -> RestoreSnapshot:
    """Load a restore snapshot from a dump file."""
    logging.info(f"Loading state dump from {path}...")
    try:
        with open(path, 'r', encoding='utf-8') as dump_file:
            snapshot = parse(dump_file)
    except (OSError, UnicodeDecodeError) as e:
        raise SyncError(f"Can't read state dump {path}: {e}") from e
    logging.info(f"Loaded state for {len(snapshot)} messages.")
    return snapshot


def parse_labels(text: str) -> LabelSet:
    """Split a dump label list on unescaped commas."""
    return LabelSet(DUMP_ESCAPE.sub(r"\1", label.strip()) for label in DUMP_LABEL.findall(text))


def escape_label(label: str) -> str:
    return label.replace("\\", "\\\\").replace(",", "\\,")


def format_line(message_id: str, labels: LabelSet) -> str:
    return f"{message_id} ({','.join(escape_label(label) for label in labels)})"


def dump(records, stream: TextIO) -> int:
    """Write index records to ``stream`` in dump format, sorted by message id.

    Returns the number of lines written.
    """
    count = 0
    for record in sorted(records, key=lambda r: r.id):
        stream.write(format_line(record.id, record.labels) + "\n")
        count += 1
    return count
