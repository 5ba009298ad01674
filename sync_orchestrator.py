#!/usr/bin/env python3
"""
Main sync orchestrator for the mail index sync system.
"""

import time
import signal
import logging
from typing import Callable, Dict, Iterable, List, Optional

# Progress bar
from tqdm import tqdm

# Local imports
from errors import ProtocolContractViolation
from label_override import LabelOverridePolicy
from reconciliation import Action, AsIs, Decision, OperationMode, reconcile
from scan_telemetry import PROGRESS_UPDATE_INTERVAL, ScanCounters, ScanTelemetry
from sources import EventKind, MessageEvent, ScanClaims, poll_from


class SyncOrchestrator:
    """Drives each source's poll stream through overrides, reconciliation and the index."""

    def __init__(self, index, mode: OperationMode = None, overrides: LabelOverridePolicy = None,
                 dry_run: bool = False, progress_interval: float = PROGRESS_UPDATE_INTERVAL,
                 progress_bar: bool = False, poll: Callable = poll_from,
                 clock: Callable[[], float] = time.time,
                 should_stop: Optional[Callable[[], bool]] = None):
        self.index = index
        self.mode = mode if mode is not None else AsIs()
        self.overrides = overrides if overrides is not None else LabelOverridePolicy()
        self.dry_run = dry_run
        self.progress_interval = progress_interval
        self.progress_bar = progress_bar
        self.poll = poll
        self.clock = clock
        self.should_stop = should_stop
        self.shutdown_requested = False
        self._previous_handlers = {}

    def install_signal_handlers(self) -> None:
        """Stop between messages on SIGINT/SIGTERM instead of dying mid-write."""
        def signal_handler(signum, frame):
            if self.shutdown_requested:
                raise KeyboardInterrupt
            logging.info(f"🛑 Received signal {signum}, stopping after the current message...")
            self.shutdown_requested = True

        # Ctrl+C and termination requests
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, signal_handler)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def _stop_requested(self) -> bool:
        return self.shutdown_requested or (self.should_stop is not None and self.should_stop())

    def run(self, sources: List, owners: Iterable[str] = None) -> Dict[str, ScanCounters]:
        """Scan every source in order and return the counters of each.

        ``owners`` are the source URIs whose records other sources must not take
        over; it defaults to the sources being scanned.
        """
        if self.dry_run:
            logging.info("=== DRY RUN MODE: the index will not be modified ===")
        logging.info(f"Operation mode: {self.mode!r}")

        results = {}
        claims = ScanClaims(owners=set(owners if owners is not None else (s.uri for s in sources)))
        for source in sources:
            if self._stop_requested():
                logging.info("🛑 Shutdown requested, skipping remaining sources")
                break
            results[source.uri] = self.sync_source(source, self.poll(source, self.index, claims))
        return results

    def sync_source(self, source, events: Iterable[MessageEvent]) -> ScanCounters:
        """Consume one source's event stream and return its counters."""
        counters = ScanCounters()
        telemetry = ScanTelemetry(counters, start_time=self.clock(), interval=self.progress_interval)
        pbar = tqdm(total=100, desc=f"📥 {source}", unit="%", disable=not self.progress_bar, leave=False)
        shown_percent = 0

        try:
            for event in events:
                self.process_event(source, event, telemetry)
                telemetry.maybe_report(self.clock(), event.progress)

                percent = int(min(max(event.progress, 0.0), 1.0) * 100)
                if percent > shown_percent:
                    pbar.update(percent - shown_percent)
                    shown_percent = percent

                if self._stop_requested():
                    logging.info(f"🛑 Stopping scan of {source} early")
                    break
        finally:
            pbar.close()
            close = getattr(events, 'close', None)
            if close is not None:
                close()

        for line in telemetry.summary_lines(source):
            logging.info(line)
        return counters

    def process_event(self, source, event: MessageEvent, telemetry: ScanTelemetry) -> Action:
        """Handle one poll event; returns the action taken (or that would be taken)."""
        kind = self._event_kind(event.kind)
        message = event.message

        if kind is EventKind.DELETE:
            logging.debug(f"Deleting {message.id}")
            if not self.dry_run:
                self.index.delete(message.id)
            telemetry.on_deleted()
            telemetry.on_scanned()
            return Action.DELETE

        message = self.overrides.apply(message)
        decision = reconcile(self.mode, message, event.prior, self.mode.restore_entry(message.id))
        self.apply_decision(source, message, event.prior, decision)

        if decision.action is Action.ADD_MESSAGE:
            telemetry.on_added()
        elif decision.action in (Action.UPDATE_MESSAGE, Action.UPDATE_MESSAGE_STATE):
            telemetry.on_updated()
        if decision.restored:
            telemetry.on_restored()
        telemetry.on_scanned()
        return decision.action

    @staticmethod
    def _event_kind(kind) -> EventKind:
        if isinstance(kind, EventKind):
            return kind
        try:
            return EventKind(kind)
        except ValueError:
            raise ProtocolContractViolation(kind) from None

    def apply_decision(self, source, message, prior, decision: Decision) -> None:
        """Materialize a decision in the index (skipped in dry-run)."""
        location = f"{source}#{message.source_info}"
        if decision.action is Action.ADD_MESSAGE:
            logging.debug(f"Adding new message {location} with labels {decision.labels}")
        elif decision.action is Action.UPDATE_MESSAGE:
            logging.debug(f"Updating message {location}; labels {prior.labels} => {decision.labels}")
        elif decision.action is Action.UPDATE_MESSAGE_STATE:
            logging.debug(f"Changing flags for {location} from {prior.labels} to {decision.labels}")
        else:
            return

        if not self.dry_run:
            self.index.upsert(message.id, source.uri, message.source_info, decision.labels)
