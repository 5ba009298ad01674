"""
Tests for the mail-index-sync and mail-index-dump command line entry points.

Tests cover:
- Full runs against a Maildir source, including dry-run and optimize
- Mode selection and label override flags
- Exit codes for configuration, source and unexpected failures
- Dumping the index and restoring from the dump
"""

import json
import logging

import pytest
import yaml

import mail_index_sync
from labels import INBOX, STARRED, UNREAD
from mail_index_sync import EXCEPTION_LOG, build_parser, dump_main, main
from conftest import make_email


@pytest.fixture(autouse=True)
def restore_root_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


@pytest.fixture
def workspace(tmp_path, monkeypatch, maildir_factory):
    """A Maildir with one unread and one seen, flagged message plus a config pointing at it."""
    monkeypatch.chdir(tmp_path)
    path, _ = maildir_factory([
        (make_email("<one@example.com>"), "new", ""),
        (make_email("<two@example.com>"), "cur", "FS"),
    ])
    uri = f"maildir://{path}"
    config = {
        'index': {'path': str(tmp_path / "index.json")},
        'sources': [{'uri': uri}],
        'settings': {'progress_bar': False, 'log_file': str(tmp_path / "sync.log")},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))
    return {
        'tmp_path': tmp_path,
        'uri': uri,
        'config': str(config_path),
        'index': tmp_path / "index.json",
    }


def read_index(workspace):
    return json.loads(workspace['index'].read_text())


def labels_of(workspace, message_id):
    return set(read_index(workspace)['messages'][message_id]['labels'])


class TestParser:
    def test_modes_are_mutually_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--asis', '--discard'])
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--discard', '--restore', 'state.txt'])

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.sources == []
        assert not (args.asis or args.discard or args.restore)
        assert args.config == 'config.yaml'


class TestSync:
    def test_first_run_indexes_source(self, workspace):
        assert main(['--config', workspace['config']]) == 0

        data = read_index(workspace)
        assert data['sources'] == [workspace['uri']]
        assert set(data['messages']) == {"one@example.com", "two@example.com"}
        assert labels_of(workspace, "one@example.com") == {INBOX, UNREAD}
        assert labels_of(workspace, "two@example.com") == {INBOX, STARRED}
        assert not (workspace['tmp_path'] / "index.json.lock").exists()

    def test_second_run_keeps_index_state(self, workspace):
        assert main(['--config', workspace['config']]) == 0
        first = read_index(workspace)
        assert main(['--config', workspace['config'], '--asis']) == 0
        assert read_index(workspace) == first

    def test_dry_run_does_not_write_index(self, workspace):
        assert main(['--config', workspace['config'], '--dry-run']) == 0
        assert not workspace['index'].exists()

    def test_archive_and_read_overrides(self, workspace):
        assert main(['--config', workspace['config'], '--archive', '--read',
                     '--extra-labels', 'imported, old']) == 0
        assert labels_of(workspace, "one@example.com") == {"imported", "old"}
        assert labels_of(workspace, "two@example.com") == {STARRED, "imported", "old"}

    def test_discard_replaces_index_state(self, workspace):
        assert main(['--config', workspace['config']]) == 0
        assert main(['--config', workspace['config'], '--discard', '--read']) == 0
        assert labels_of(workspace, "one@example.com") == {INBOX}

    def test_explicit_source_uri(self, workspace):
        assert main(['--config', workspace['config'], workspace['uri']]) == 0
        assert len(read_index(workspace)['messages']) == 2

    def test_optimize_drops_orphans(self, workspace):
        workspace['index'].write_text(json.dumps({
            'version': 1,
            'sources': [],
            'messages': {
                'gone@example.com': {'source': 'maildir:///elsewhere', 'source_info': 'x', 'labels': []},
            },
        }))
        assert main(['--config', workspace['config'], '--optimize']) == 0
        messages = read_index(workspace)['messages']
        assert 'gone@example.com' not in messages
        assert len(messages) == 2


class TestExitCodes:
    def test_missing_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert main(['--config', str(tmp_path / "missing.yaml")]) == 2

    def test_unknown_source_uri(self, workspace):
        assert main(['--config', workspace['config'], 'maildir:///not/configured']) == 2
        assert not workspace['index'].exists()

    def test_malformed_restore_dump_fails_before_scanning(self, workspace):
        dump = workspace['tmp_path'] / "state.txt"
        dump.write_text("one@example.com (inbox)\nthis is not a dump line\n")

        assert main(['--config', workspace['config'], '--restore', str(dump)]) == 2
        assert not workspace['index'].exists()
        assert not (workspace['tmp_path'] / "index.json.lock").exists()

    def test_missing_mailbox_is_communication_error(self, workspace):
        config = yaml.safe_load(open(workspace['config']))
        config['sources'] = [{'uri': f"maildir://{workspace['tmp_path'] / 'nowhere'}"}]
        with open(workspace['config'], 'w') as f:
            yaml.safe_dump(config, f)

        assert main(['--config', workspace['config']]) == 1
        assert not (workspace['tmp_path'] / "index.json.lock").exists()

    def test_unexpected_failure_writes_exception_log(self, workspace, monkeypatch):
        def explode(self, sources, owners=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(mail_index_sync.SyncOrchestrator, 'run', explode)

        with pytest.raises(RuntimeError, match="boom"):
            main(['--config', workspace['config']])

        log = workspace['tmp_path'] / EXCEPTION_LOG
        assert log.exists()
        assert "RuntimeError: boom" in log.read_text()
        assert not (workspace['tmp_path'] / "index.json.lock").exists()

    def test_keyboard_interrupt(self, workspace, monkeypatch):
        def interrupt(self, sources, owners=None):
            raise KeyboardInterrupt

        monkeypatch.setattr(mail_index_sync.SyncOrchestrator, 'run', interrupt)
        assert main(['--config', workspace['config']]) == 1


class TestDumpAndRestore:
    def test_dump_writes_sorted_lines(self, workspace):
        assert main(['--config', workspace['config']]) == 0
        output = workspace['tmp_path'] / "state.txt"

        assert dump_main(['--config', workspace['config'], '--output', str(output)]) == 0
        assert output.read_text().splitlines() == [
            "one@example.com (inbox,unread)",
            "two@example.com (inbox,starred)",
        ]

    def test_restore_reinstates_dumped_state(self, workspace):
        assert main(['--config', workspace['config']]) == 0
        output = workspace['tmp_path'] / "state.txt"
        assert dump_main(['--config', workspace['config'], '--output', str(output)]) == 0

        # Rebuild the index from scratch, losing the state
        workspace['index'].unlink()
        assert main(['--config', workspace['config'], '--read']) == 0
        assert labels_of(workspace, "one@example.com") == {INBOX}

        workspace['index'].unlink()
        assert main(['--config', workspace['config'], '--restore', str(output)]) == 0
        assert labels_of(workspace, "one@example.com") == {INBOX, UNREAD}
        assert labels_of(workspace, "two@example.com") == {INBOX, STARRED}

    def test_dump_with_missing_config(self, tmp_path):
        assert dump_main(['--config', str(tmp_path / "missing.yaml")]) == 2
