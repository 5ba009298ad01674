#!/usr/bin/env python3
"""
IMAP source for the mail index sync system.
"""

import time
import email
import logging
from typing import Iterator, List
from urllib.parse import unquote

# IMAP imports
import imapclient
from imapclient.exceptions import IMAPClientError

from errors import SourceCommunicationError
from sources import Message, Source
from utils import retry_source_call


class IMAPSource(Source):
    """Read-only scan of one IMAP folder: ``imap[s]://user@host[:port]/FOLDER``."""

    # Servers differ in how they echo the field list, e.g. (MESSAGE-ID) or ("Message-ID")
    HEADER_FIELDS_PREFIX = b'BODY[HEADER.FIELDS'
    FETCH_ITEMS = [b'FLAGS', b'BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)]']

    def __init__(self, uri: str, password: str = None, batch_size: int = None, **kwargs):
        super().__init__(uri, **kwargs)
        self.use_ssl = self.parsed_uri.scheme == 'imaps'
        self.server = self.parsed_uri.hostname
        self.port = self.parsed_uri.port or (993 if self.use_ssl else 143)
        self.username = unquote(self.parsed_uri.username or "")
        self.password = password if password is not None else unquote(self.parsed_uri.password or "")
        self.folder = unquote(self.parsed_uri.path.lstrip('/')) or 'INBOX'
        self.batch_size = batch_size or self.settings.get('batch_size', 100)
        self.client = None
        self.connection_start_time = None
        self.connection_errors = 0
        self.exists = 0

    @retry_source_call
    def _open(self) -> None:
        self.connection_start_time = time.time()
        logging.info(f"🔌 Attempting IMAP connection to {self.server}:{self.port}")
        client = imapclient.IMAPClient(self.server, port=self.port, ssl=self.use_ssl)
        try:
            client.login(self.username, self.password)
            folder_info = client.select_folder(self.folder, readonly=True)
        except Exception:
            self.connection_errors += 1
            client.shutdown()
            raise
        self.client = client
        self.exists = folder_info.get(b'EXISTS', 0)
        logging.info(f"✅ Connected to IMAP server {self.server}, folder {self.folder} ({self.exists} messages)")
        logging.debug(f"🔗 Connection established in {time.time() - self.connection_start_time:.2f}s")

    def connect(self) -> None:
        """Connect and select the folder read-only."""
        try:
            self._open()
        except (IMAPClientError, OSError) as e:
            raise SourceCommunicationError(self.uri, e) from e

    def count(self) -> int:
        return self.exists

    @retry_source_call
    def _fetch_batch(self, uids: List[int]) -> dict:
        return self.client.fetch(uids, self.FETCH_ITEMS)

    def iter_messages(self) -> Iterator[Message]:
        try:
            uids = sorted(self.client.search('ALL'))
        except (IMAPClientError, OSError) as e:
            raise SourceCommunicationError(self.uri, e) from e

        for i in range(0, len(uids), self.batch_size):
            batch = uids[i:i + self.batch_size]
            try:
                response = self._fetch_batch(batch)
            except (IMAPClientError, OSError) as e:
                self.connection_errors += 1
                raise SourceCommunicationError(self.uri, e) from e

            for uid in batch:
                data = response.get(uid)
                if data is None:
                    # Expunged between SEARCH and FETCH
                    logging.debug(f"UID {uid} vanished from {self.folder}")
                    continue
                yield self._message_from_fetch(uid, data)

    def _message_from_fetch(self, uid: int, data: dict) -> Message:
        flags = set(data.get(b'FLAGS', ()))
        headers = email.message_from_bytes(self._header_bytes(data))
        labels = self.default_labels(
            seen=imapclient.SEEN in flags,
            flagged=imapclient.FLAGGED in flags,
            draft=imapclient.DRAFT in flags,
            deleted=imapclient.DELETED in flags,
        )
        return self.make_message(headers.get('Message-ID'), uid, labels)

    def _header_bytes(self, data: dict) -> bytes:
        for key, value in data.items():
            if isinstance(key, bytes) and key.upper().startswith(self.HEADER_FIELDS_PREFIX):
                return value or b''
        return b''

    def close(self) -> None:
        """Disconnect from IMAP server with diagnostics."""
        if self.client is None:
            return
        try:
            self.client.logout()
            total_duration = time.time() - self.connection_start_time
            logging.info(f"✅ Disconnected from IMAP server (duration: {total_duration:.1f}s, errors: {self.connection_errors})")
        except (IMAPClientError, OSError) as e:
            logging.error(f"❌ Error disconnecting from IMAP server: {e}")
        finally:
            self.client = None
