#!/usr/bin/env python3
"""
Error hierarchy for the mail index sync system.

All project exceptions inherit from SyncError so the command line entry point can
separate user-facing failures from unexpected ones:

    SyncError
    ├── ConfigError
    ├── MalformedDumpError
    ├── UnknownSourceError
    ├── SourceCommunicationError
    ├── ProtocolContractViolation
    └── IndexLockedError
"""


class SyncError(Exception):
    """Base class for all mail index sync errors."""


class ConfigError(SyncError):
    """Configuration file is missing, unreadable or incomplete."""


class MalformedDumpError(SyncError):
    """A restore dump line does not match ``<id> (<labels>)``."""

    def __init__(self, line: str, line_number: int = None):
        self.line = line
        self.line_number = line_number
        where = f" (line {line_number})" if line_number is not None else ""
        super().__init__(f"Can't read dump line{where}: {line!r}")


class UnknownSourceError(SyncError):
    """A source URI was requested that is not configured."""

    def __init__(self, uri: str):
        self.uri = uri
        super().__init__(f"Unknown source: {uri}. Did you add it to the configuration?")


class SourceCommunicationError(SyncError):
    """A source could not be reached or read."""

    def __init__(self, source: str, reason):
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class ProtocolContractViolation(SyncError):
    """The poll stream produced an event kind the orchestrator cannot handle."""

    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"Cannot handle poll events of type {kind!r}")


class IndexLockedError(SyncError):
    """The index is locked by another running process."""

    def __init__(self, path: str, holder: str = ""):
        self.path = path
        self.holder = holder
        detail = f" by {holder}" if holder else ""
        super().__init__(f"Index {path} is locked{detail}")
