#!/usr/bin/env python
"""
Render a merged event trace XML document as pipe-delimited text.

Only events at least as severe as the requested level are written, one per
line, as:

  timestamp|level|message

Usage:
  python trace_to_csv.py Output.xml
  python trace_to_csv.py Output.xml --level warning -o events.txt
"""
import argparse
import io
import logging
import os
import re
import sys
from datetime import datetime
from typing import BinaryIO, Iterator, NamedTuple, TextIO

from lxml import etree

from event_trace import (
    NAMESPACES,
    CancellationToken,
    EventTraceError,
    InvalidArgumentError,
    LoggingLevel,
    MalformedInputError,
    NotFoundError,
    drop_blank_text,
    parse_level,
)


logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"
LINE_BREAK_REPLACEMENT = ";"

EVENT_FILTER = "//e:Event[e:System/e:Level <= $level]"

LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
FRACTION_RE = re.compile(r"\.(\d+)")


class FilteredRecord(NamedTuple):
    timestamp: datetime
    level: str
    message: str


def parse_system_time(value: str | None) -> datetime:
    """Parse a TimeCreated/@SystemTime value.

    Windows writes 100ns precision (7 fractional digits) and a trailing Z;
    fractions are cut to microseconds.
    """
    if not value:
        raise MalformedInputError("Event has an empty TimeCreated/@SystemTime")
    ts = value.strip().replace("Z", "+00:00")
    ts = FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], ts, count=1)
    try:
        return datetime.fromisoformat(ts)
    except ValueError as e:
        raise MalformedInputError(f"Invalid TimeCreated/@SystemTime {value!r}") from e


def _require(node: etree._Element, path: str) -> etree._Element:
    found = node.find(path, NAMESPACES)
    if found is None:
        raise MalformedInputError(
            f"Event at line {node.sourceline} is missing {path.replace('e:', '')}"
        )
    return found


def to_record(node: etree._Element) -> FilteredRecord:
    """Project one <Event> element onto timestamp, rendered level and message."""
    _require(node, "e:System")
    time_created = _require(node, "e:System/e:TimeCreated")
    _require(node, "e:RenderingInfo")
    rendered_level = _require(node, "e:RenderingInfo/e:Level")
    event_data = _require(node, "e:EventData")

    system_time = time_created.get("SystemTime")
    if system_time is None:
        raise MalformedInputError(
            f"Event at line {node.sourceline} has no TimeCreated/@SystemTime"
        )

    message = str(event_data.xpath("string()"))
    return FilteredRecord(
        timestamp=parse_system_time(system_time),
        level=rendered_level.text or "",
        message=LINE_BREAK_RE.sub(LINE_BREAK_REPLACEMENT, message),
    )


def iter_filtered_records(
    root: etree._Element, minimum_level: int = LoggingLevel.INFORMATION
) -> Iterator[FilteredRecord]:
    """Yield records for events with System/Level <= minimum_level, in document order."""
    nodes = root.xpath(EVENT_FILTER, namespaces=NAMESPACES, level=float(minimum_level))
    logger.debug("%d events at level <= %d", len(nodes), minimum_level)
    for node in nodes:
        yield to_record(node)


def format_record(record: FilteredRecord) -> str:
    return FIELD_SEPARATOR.join(
        [record.timestamp.isoformat(), record.level, record.message]
    )


def load_document(file_path) -> etree._Element:
    if not file_path:
        raise InvalidArgumentError("Missing merged trace file path.")
    path = os.fspath(file_path)
    if not os.path.isfile(path):
        raise NotFoundError("Missing merged trace file", path)

    parser = etree.XMLParser(huge_tree=True)
    try:
        root = etree.parse(path, parser).getroot()
    except etree.XMLSyntaxError as e:
        raise MalformedInputError(f"{path} is not well-formed XML: {e}") from e
    except OSError as e:
        raise EventTraceError(f"Cannot read {path}: {e}") from e

    drop_blank_text(root)
    return root


def write_filtered(
    file_path,
    output_stream: BinaryIO | TextIO,
    minimum_level: int = LoggingLevel.INFORMATION,
    cancellation_token: CancellationToken | None = None,
) -> int:
    """Write one line per matching event to output_stream.

    The stream is flushed but left open. Cancellation is checked before each
    line; lines already written stay written. Returns the number of lines.
    """
    if cancellation_token is None:
        cancellation_token = CancellationToken()

    root = load_document(file_path)

    if isinstance(output_stream, io.TextIOBase):
        # Text streams translate "\n" to the host terminator themselves
        writer = output_stream
        line_end = "\n"
        wrapped = False
    else:
        writer = io.TextIOWrapper(output_stream, encoding="utf-8", newline="")
        line_end = os.linesep
        wrapped = True

    count = 0
    try:
        for record in iter_filtered_records(root, minimum_level):
            cancellation_token.raise_if_cancelled()
            writer.write(format_record(record) + line_end)
            count += 1
    finally:
        if wrapped:
            # detach() flushes and hands the caller's stream back unclosed
            writer.detach()
        else:
            writer.flush()

    return count


def main():
    ap = argparse.ArgumentParser(
        description="Write merged event trace XML as pipe-delimited text"
    )
    ap.add_argument("input", help="Merged XML file from merge_traces.py")
    ap.add_argument(
        "-o", "--output",
        default=None,
        help="Output text file (default: stdout)"
    )
    ap.add_argument(
        "-l", "--level",
        type=parse_level,
        default=LoggingLevel.INFORMATION,
        help="Most verbose level to include: name or number (default: information)"
    )
    ap.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v: info, -vv: debug)",
    )
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose >= 2 else logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.output:
            with open(args.output, "wb") as f:
                count = write_filtered(args.input, f, args.level)
        else:
            count = write_filtered(args.input, sys.stdout.buffer, args.level)
    except (EventTraceError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(1)

    print(f"[format] wrote {count} events", file=sys.stderr)


if __name__ == "__main__":
    main()
