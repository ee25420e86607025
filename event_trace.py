"""
Shared pieces for the event trace tools: error types, severity levels,
XML namespaces and the cancellation token passed through long-running calls.
"""
import argparse
import threading
from enum import IntEnum

from lxml import etree


EVENT_NS = "http://schemas.microsoft.com/win/2004/08/events/event"
EXTENDED_DATA_NS = "http://schemas.microsoft.com/2006/09/System.Diagnostics/ExtendedData"

# Prefixes used in XPath queries over merged documents
NAMESPACES = {
    "e": EVENT_NS,
    "x": EXTENDED_DATA_NS,
}


class LoggingLevel(IntEnum):
    """Severity thresholds. Lower values are more severe."""
    VERBOSE = 0
    ERROR = 2
    WARNING = 4
    INFORMATION = 8


def parse_level(value: str) -> int:
    """Parse a --level argument: a LoggingLevel name or an integer code."""
    text = value.strip()
    try:
        return LoggingLevel[text.upper()]
    except KeyError:
        pass
    try:
        level = int(text)
    except ValueError:
        names = ", ".join(lvl.name.lower() for lvl in LoggingLevel)
        raise argparse.ArgumentTypeError(
            f"invalid level {value!r} (expected an integer or one of: {names})"
        ) from None
    if level < 0:
        raise argparse.ArgumentTypeError(f"level must not be negative: {level}")
    return level


class EventTraceError(Exception):
    """Base class for every error raised by the trace tools."""


class InvalidArgumentError(EventTraceError, ValueError):
    pass


class NotFoundError(EventTraceError, FileNotFoundError):
    def __init__(self, message: str, filename: str | None = None):
        super().__init__(message)
        self.filename = filename

    def __str__(self) -> str:
        if self.filename:
            return f"{self.args[0]}: {self.filename}"
        return self.args[0]


class MalformedInputError(EventTraceError):
    pass


class OperationCancelledError(EventTraceError):
    pass


class CancellationToken:
    """Cooperative cancellation flag, safe to set from a signal handler or another thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelledError("The operation was cancelled.")


def drop_blank_text(root: etree._Element):
    """Remove whitespace-only text and tails so layout whitespace never reaches content."""
    for el in root.iter(etree.Element):
        if el.text is not None and not el.text.strip():
            el.text = None
        if el.tail is not None and not el.tail.strip():
            el.tail = None
