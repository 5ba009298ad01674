#!/usr/bin/env python3
"""
Mail Index Sync

Synchronizes a local message index with mail sources (Maildir, mbox, IMAP, Gmail),
reconciling each message's labels between what the source reports and what the
index already holds. Message state can be kept as-is, restored from a state dump,
or discarded in favour of the source's state.
"""

import sys
import time
import logging
import argparse
import traceback
from typing import List

from config_manager import ConfigManager
from errors import SourceCommunicationError, SyncError
from label_override import LabelOverridePolicy
from labels import LabelSet
from message_index import MessageIndex
from reconciliation import AsIs, Discard, OperationMode, Restore
from sources import SourceRegistry
from sync_orchestrator import SyncOrchestrator
import state_dump

__version__ = "0.3.0"

EXCEPTION_LOG = "mail-index-sync-exception-log.txt"


def setup_logging(log_file: str = None, verbose: bool = False) -> None:
    """Configure root logging for console and, optionally, a log file."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mail-index-sync',
        description='Synchronize the message index with its mail sources. '
                    'With no source URIs, scans the configured sources marked as usual.'
    )
    parser.add_argument('sources', nargs='*', metavar='SOURCE_URI', help='Sources to scan')
    parser.add_argument('--config', default='config.yaml', help='Configuration file path')

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--asis', action='store_true',
                      help='Keep the state of messages already in the index (default)')
    mode.add_argument('--restore', metavar='FILE',
                      help='Restore message state from a state dump file')
    mode.add_argument('--discard', action='store_true',
                      help='Discard message state in the index and use the source state. Dangerous!')

    parser.add_argument('--archive', '-x', action='store_true',
                        help='When using the source state, mark messages as archived')
    parser.add_argument('--read', '-r', action='store_true',
                        help='When using the source state, mark messages as read')
    parser.add_argument('--extra-labels', default='', metavar='CSV',
                        help='When using the source state, also apply these comma-separated labels')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log every message as it is processed')
    parser.add_argument('--optimize', '-o', action='store_true', help='Optimize the index as the final operation')
    parser.add_argument('--all-sources', action='store_true', help='Scan over all configured sources')
    parser.add_argument('--dry-run', '-n', action='store_true',
                        help="Don't modify the index; probably only useful with --verbose")
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def resolve_mode(args: argparse.Namespace) -> OperationMode:
    """Pick the operation mode once for the whole run; loads the restore dump."""
    if args.restore:
        return Restore(state_dump.load(args.restore))
    if args.discard:
        return Discard()
    return AsIs()


def resolve_overrides(args: argparse.Namespace) -> LabelOverridePolicy:
    return LabelOverridePolicy(
        strip_inbox=args.archive,
        strip_unread=args.read,
        extra_labels=LabelSet.parse(args.extra_labels),
    )


def write_exception_log(path: str = EXCEPTION_LOG) -> None:
    """Persist the traceback of the exception being handled."""
    with open(path, 'w') as log:
        traceback.print_exc(file=log)


def sync(args: argparse.Namespace, config: dict) -> None:
    settings = config['settings']
    mode = resolve_mode(args)
    overrides = resolve_overrides(args)
    registry = SourceRegistry.from_config(config)
    sources = registry.select(args.sources, args.all_sources)

    index = MessageIndex(config['index']['path'])
    with index.locked():
        index.load()
        for source in registry.sources:
            if not index.has_source(source.uri):
                index.add_source(source.uri)

        orchestrator = SyncOrchestrator(
            index,
            mode=mode,
            overrides=overrides,
            dry_run=args.dry_run,
            progress_interval=settings.get('progress_interval', 15),
            progress_bar=settings.get('progress_bar', True) and not args.verbose,
        )
        orchestrator.install_signal_handlers()
        try:
            orchestrator.run(sources, owners=[source.uri for source in registry.sources])
        finally:
            orchestrator.restore_signal_handlers()

        if args.dry_run:
            logging.info("=== DRY RUN COMPLETE: index not saved ===")
            return
        index.save()

        if args.optimize:
            logging.info("Optimizing index...")
            optimize_start = time.time()
            index.optimize()
            logging.info(f"Optimized index of size {index.size()} in {time.time() - optimize_start:.1f}s.")


def main(argv: List[str] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = ConfigManager(args.config).config
    except SyncError as e:
        setup_logging(verbose=args.verbose)
        logging.error(str(e))
        return 2
    setup_logging(config['settings'].get('log_file'), args.verbose)

    try:
        sync(args, config)
    except SourceCommunicationError as e:
        logging.error(f"Sorry, I couldn't communicate with a source: {e}")
        return 1
    except SyncError as e:
        logging.error(str(e))
        return 2
    except KeyboardInterrupt:
        logging.info("Sync interrupted by user")
        return 1
    except Exception:
        write_exception_log()
        logging.error(f"Unexpected failure; traceback written to {EXCEPTION_LOG}")
        raise

    return 0


def dump_main(argv: List[str] = None) -> int:
    """Write the index's label state in the format read by ``--restore``."""
    parser = argparse.ArgumentParser(prog='mail-index-dump', description='Dump message label state from the index')
    parser.add_argument('--config', default='config.yaml', help='Configuration file path')
    parser.add_argument('--output', '-o', help='Write the dump to this file instead of stdout')
    args = parser.parse_args(argv)
    setup_logging()

    try:
        config = ConfigManager(args.config).config
        index = MessageIndex(config['index']['path'])
        with index.locked():
            index.load()
            if args.output:
                with open(args.output, 'w', encoding='utf-8') as output:
                    count = state_dump.dump(index.records(), output)
            else:
                count = state_dump.dump(index.records(), sys.stdout)
    except SyncError as e:
        logging.error(str(e))
        return 2

    logging.info(f"Dumped state for {count} messages.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
