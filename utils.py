#!/usr/bin/env python3
"""
Utility functions for the mail index sync system.
"""

import time
import logging
import functools

from errors import SyncError


def retry_source_call(func, max_retries: int = 3):
    """Decorator for source calls with retry logic.

    Errors already classified as ``SyncError`` are not retried.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        for attempt in range(max_retries):
            try:
                return func(*args, **kwargs)
            except SyncError:
                raise
            except Exception as e:
                if attempt == max_retries - 1:
                    raise
                wait_time = 2 ** attempt
                logging.warning(f"Source call {func.__name__} attempt {attempt + 1} failed: {e}. Retrying in {wait_time}s...")
                time.sleep(wait_time)
    return wrapper


def format_duration(seconds) -> str:
    """Render a duration as H:MM:SS, or 'unknown' when it cannot be known."""
    if seconds is None:
        return "unknown"
    try:
        seconds = float(seconds)
    except (TypeError, ValueError):
        return "unknown"
    if seconds != seconds or seconds in (float('inf'), float('-inf')):
        return "unknown"
    total = int(max(seconds, 0))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"
