#!/usr/bin/env python3
"""
Gmail API source for the mail index sync system.
"""

import os
import time
import logging
from typing import Any, Dict, Iterator, List

# Google API imports
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from errors import ConfigError, SourceCommunicationError
from labels import DELETED, DRAFT, INBOX, SENT, SPAM, STARRED, UNREAD, LabelSet
from sources import Message, Source
from utils import retry_source_call

# Gmail system label ids and the index labels they stand for
SYSTEM_LABELS = {
    'INBOX': INBOX,
    'UNREAD': UNREAD,
    'STARRED': STARRED,
    'SENT': SENT,
    'DRAFT': DRAFT,
    'SPAM': SPAM,
    'TRASH': DELETED,
}

# System labels that carry no message state worth indexing
IGNORED_LABELS = ['CHAT', 'IMPORTANT', 'CATEGORY_PERSONAL', 'CATEGORY_FORUMS',
                  'CATEGORY_UPDATES', 'CATEGORY_PROMOTIONS', 'CATEGORY_SOCIAL']


class GmailSource(Source):
    """Gmail mailbox read through the Gmail API: ``gmail://me``."""

    SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']
    MAX_BATCH_SIZE = 25

    def __init__(self, uri: str, credentials_file: str = None, token_file: str = None,
                 query: str = None, **kwargs):
        super().__init__(uri, **kwargs)
        self.user_id = self.parsed_uri.netloc or 'me'
        self.credentials_file = credentials_file or self.settings.get('gmail_credentials_file', 'credentials.json')
        self.token_file = token_file or self.settings.get('gmail_token_file', 'token.json')
        self.query = query
        self.service = None
        self.label_names = {}
        self.message_ids = None

    def authenticate(self) -> Credentials:
        """Authenticate with Gmail using OAuth 2.0, reusing a saved token."""
        creds = None
        if os.path.exists(self.token_file):
            creds = Credentials.from_authorized_user_file(self.token_file, self.SCOPES)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                try:
                    creds.refresh(Request())
                except GoogleAuthError as e:
                    logging.warning(f"Token refresh failed: {e}")
                    creds = None

            if not creds:
                if not os.path.exists(self.credentials_file):
                    raise ConfigError(f"Gmail credentials file '{self.credentials_file}' not found")
                logging.info("Opening browser for OAuth authorization...")
                flow = InstalledAppFlow.from_client_secrets_file(self.credentials_file, self.SCOPES)
                creds = flow.run_local_server(port=0)
                logging.info("OAuth flow completed successfully")

            with open(self.token_file, 'w') as token:
                token.write(creds.to_json())
        return creds

    def connect(self) -> None:
        try:
            creds = self.authenticate()
            self.service = build('gmail', 'v1', credentials=creds)
            self.label_names = self._load_label_names()
        except (HttpError, GoogleAuthError, OSError) as e:
            raise SourceCommunicationError(self.uri, e) from e
        logging.info(f"Gmail authentication successful for {self.user_id}")

    def close(self) -> None:
        self.service = None
        self.message_ids = None

    @retry_source_call
    def _load_label_names(self) -> Dict[str, str]:
        results = self.service.users().labels().list(userId=self.user_id).execute()
        labels = results.get('labels', [])
        logging.info(f"Found {len(labels)} Gmail labels")
        return {label['id']: label['name'] for label in labels if label.get('type') == 'user'}

    @retry_source_call
    def _list_message_ids(self) -> List[str]:
        messages = []
        page_token = None
        while True:
            results = self.service.users().messages().list(
                userId=self.user_id,
                q=self.query,
                pageToken=page_token
            ).execute()
            messages.extend(msg['id'] for msg in results.get('messages', []))
            page_token = results.get('nextPageToken')
            if not page_token:
                break
        return messages

    def count(self) -> int:
        if self.message_ids is None:
            try:
                self.message_ids = sorted(self._list_message_ids())
            except HttpError as e:
                raise SourceCommunicationError(self.uri, e) from e
            logging.info(f"Found {len(self.message_ids)} messages in {self.uri}")
        return len(self.message_ids)

    def labels_for(self, label_ids: List[str]) -> LabelSet:
        """Translate Gmail label ids into index labels."""
        labels = self.labels.copy()
        for label_id in label_ids:
            if label_id in SYSTEM_LABELS:
                labels.add(SYSTEM_LABELS[label_id])
            elif label_id in self.label_names:
                labels.add(self.label_names[label_id])
            elif label_id not in IGNORED_LABELS:
                logging.debug(f"Ignoring unknown Gmail label {label_id}")
        if self.archived:
            labels.remove(INBOX)
        return labels

    def get_metadata_batch(self, message_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Fetch Message-ID headers and label ids for a batch, backing off on rate limits."""
        results = {}
        pending = list(message_ids)
        max_retries = 3

        for attempt in range(max_retries):
            rate_limited = []

            def batch_callback(request_id, response, exception):
                if exception is None:
                    results[request_id] = response
                elif isinstance(exception, HttpError) and exception.resp.status == 429:
                    rate_limited.append(request_id)
                else:
                    raise SourceCommunicationError(self.uri, exception)

            batch = self.service.new_batch_http_request(callback=batch_callback)
            for msg_id in pending:
                batch.add(self.service.users().messages().get(
                    userId=self.user_id,
                    id=msg_id,
                    format='metadata',
                    metadataHeaders=['Message-ID']
                ), request_id=msg_id)
            batch.execute()

            if not rate_limited:
                return results
            if attempt == max_retries - 1:
                raise SourceCommunicationError(self.uri, f"rate limited on {len(rate_limited)} requests")
            wait_time = (2 ** attempt) * 5
            logging.warning(f"Rate limited on {len(rate_limited)} requests, waiting {wait_time}s before retry {attempt + 1}/{max_retries}")
            time.sleep(wait_time)
            pending = rate_limited
        return results

    def iter_messages(self) -> Iterator[Message]:
        self.count()
        for i in range(0, len(self.message_ids), self.MAX_BATCH_SIZE):
            batch_ids = self.message_ids[i:i + self.MAX_BATCH_SIZE]
            try:
                metadata = self.get_metadata_batch(batch_ids)
            except HttpError as e:
                raise SourceCommunicationError(self.uri, e) from e
            for msg_id in batch_ids:
                data = metadata.get(msg_id)
                if data is None:
                    continue
                headers = {h['name'].lower(): h['value'] for h in data.get('payload', {}).get('headers', [])}
                labels = self.labels_for(data.get('labelIds', []))
                yield self.make_message(headers.get('message-id'), msg_id, labels)
