#!/usr/bin/env python3
"""
Scan counters and progress reporting for the mail index sync system.
"""

import time
import logging
from dataclasses import dataclass
from typing import List, Optional

import psutil

from utils import format_duration

PROGRESS_UPDATE_INTERVAL = 15  # seconds


@dataclass
class ScanCounters:
    """Per-source totals; every field only ever grows during a scan."""
    scanned: int = 0
    added: int = 0
    updated: int = 0
    deleted: int = 0
    restored: int = 0


class ScanTelemetry:
    """Counts what a source scan did and periodically reports throughput and ETA."""

    def __init__(self, counters: ScanCounters = None, start_time: float = None,
                 interval: float = PROGRESS_UPDATE_INTERVAL):
        self.counters = counters if counters is not None else ScanCounters()
        self.start_time = time.time() if start_time is None else start_time
        self.last_report_time = self.start_time
        self.interval = interval
        self.process = psutil.Process()
        self.initial_memory = self._memory_mb()

    def on_scanned(self) -> None:
        self.counters.scanned += 1

    def on_added(self) -> None:
        self.counters.added += 1

    def on_updated(self) -> None:
        self.counters.updated += 1

    def on_deleted(self) -> None:
        self.counters.deleted += 1

    def on_restored(self) -> None:
        self.counters.restored += 1

    def _memory_mb(self) -> float:
        return self.process.memory_info().rss / (1024 * 1024)

    def progress_line(self, now: float, progress: float) -> str:
        elapsed = max(now - self.start_time, 0.0)
        rate = self.counters.scanned / elapsed if elapsed > 0 else 0.0
        remaining = None
        if progress and progress > 0:
            remaining = (1.0 - min(progress, 1.0)) * elapsed / progress
        return (f"## scanned {self.counters.scanned}m (~{(progress or 0) * 100:.0f}%) "
                f"@ {rate:.1f}m/s. {format_duration(elapsed)} elapsed, "
                f"~{format_duration(remaining)} remaining")

    def maybe_report(self, now: float, progress: float) -> Optional[str]:
        """Log a progress line if the report interval has passed since the last one."""
        if now - self.last_report_time <= self.interval:
            return None
        self.last_report_time = now
        line = self.progress_line(now, progress)
        logging.info(line)
        memory_delta = self._memory_mb() - self.initial_memory
        logging.debug(f"📊 Resources: Memory {memory_delta:+.1f}MB since scan start")
        return line

    def summary_lines(self, source) -> List[str]:
        c = self.counters
        lines = [f"Scanned {c.scanned}, added {c.added}, updated {c.updated}, "
                 f"deleted {c.deleted} messages from {source}."]
        if c.restored > 0:
            percent = 100.0 * c.restored / c.scanned if c.scanned else 100.0
            lines.append(f"Restored state on {c.restored} ({percent:.1f}%) messages.")
        return lines
