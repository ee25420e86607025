#!/usr/bin/env python
"""
Merge multiple event trace fragments into one time-ordered XML document.

Each input holds zero or more sibling <Event> elements without an enclosing
root (e.g. the output of `wevtutil qe <log> /f:xml`). Inputs are ordered by
file creation time, wrapped in a single <Events> root and written out
pretty-printed.

Usage:
  python merge_traces.py system.xml application.xml -o Output.xml
"""
import argparse
import logging
import os
import sys
import tempfile
from typing import NamedTuple

from lxml import etree

from event_trace import (
    CancellationToken,
    EventTraceError,
    InvalidArgumentError,
    MalformedInputError,
    NotFoundError,
    drop_blank_text,
)


logger = logging.getLogger(__name__)

ROOT_TAG = "Events"
INDENT = "    "

UTF8_BOM = b"\xef\xbb\xbf"
UTF16_LE_BOM = b"\xff\xfe"
UTF16_BE_BOM = b"\xfe\xff"

if os.name == "nt":
    INVALID_FILENAME_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(c) for c in range(32))
else:
    INVALID_FILENAME_CHARS = frozenset("\0/")


class TraceSource(NamedTuple):
    path: str
    created: float


def source_creation_time(path: str) -> float:
    """Creation time of a file, falling back to st_ctime where birth time is not reported."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        raise NotFoundError("Missing event data file", path) from None
    except OSError as e:
        raise EventTraceError(f"Cannot stat event data file {path}: {e}") from e
    birthtime = getattr(st, "st_birthtime", None)
    return birthtime if birthtime is not None else st.st_ctime


def read_fragment(path: str) -> str:
    """Read a trace fragment, stripping a leading byte-order mark.

    Event exports are usually UTF-8, sometimes with a BOM; UTF-16 exports
    always carry one, so the encoding is picked from the BOM first.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except FileNotFoundError:
        raise NotFoundError("Missing event data file", path) from None
    except OSError as e:
        raise EventTraceError(f"Cannot read event data file {path}: {e}") from e

    try:
        if raw.startswith(UTF8_BOM):
            return raw[len(UTF8_BOM):].decode("utf-8")
        elif raw.startswith(UTF16_LE_BOM):
            return raw[len(UTF16_LE_BOM):].decode("utf-16-le")
        elif raw.startswith(UTF16_BE_BOM):
            return raw[len(UTF16_BE_BOM):].decode("utf-16-be")
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"Cannot decode event data file {path}: {e}") from e


def _check_output_path(path) -> str:
    if path is None:
        raise InvalidArgumentError("Missing output file path.")
    path = os.fspath(path)
    if not path:
        raise InvalidArgumentError("Missing output file path.")

    name = os.path.basename(path)
    if not name or "\0" in path or any(c in INVALID_FILENAME_CHARS for c in name):
        raise InvalidArgumentError(f"Not a valid output file name: {path!r}")
    if os.path.isdir(path):
        raise InvalidArgumentError(f"Output path is a directory: {path}")
    return path


class TraceMerger:
    """Assembles event trace files into a single time-ordered XML file.

    The merger owns its output path and a private scratch file; use it as a
    context manager so the scratch file is removed however the merge ends.
    """

    def __init__(self, output_file_path):
        self.output_file_path = _check_output_path(output_file_path)
        self._sources: list[str] = []

        if os.path.exists(self.output_file_path):
            os.remove(self.output_file_path)

        fd, self._scratch_path = tempfile.mkstemp(prefix="trace_merge_", suffix=".xml")
        os.close(fd)
        self._closed = False

    @property
    def scratch_path(self) -> str:
        return self._scratch_path

    @property
    def sources(self) -> tuple[str, ...]:
        return tuple(self._sources)

    def add_source(self, path):
        """Register an event data file.

        Registering the same file twice merges its events twice; no
        deduplication is done.
        """
        if not path:
            raise InvalidArgumentError("Missing event data file path.")
        path = os.fspath(path)
        if not os.path.isfile(path):
            raise NotFoundError("Missing event data file", path)
        self._sources.append(path)

    def ordered_sources(self) -> list[TraceSource]:
        """Sources in ascending creation time; ties keep registration order."""
        sources = [TraceSource(p, source_creation_time(p)) for p in self._sources]
        return sorted(sources, key=lambda s: s.created)

    def process(self, cancellation_token: CancellationToken | None = None) -> int:
        """Merge every registered source into the output file.

        Returns the number of <Event> elements in the merged document.
        """
        if self._closed:
            raise EventTraceError("TraceMerger is closed.")
        if cancellation_token is None:
            cancellation_token = CancellationToken()

        sources = self.ordered_sources()

        with open(self._scratch_path, "w", encoding="utf-8", newline="") as scratch:
            scratch.write(f"<{ROOT_TAG}>\n")
            for source in sources:
                cancellation_token.raise_if_cancelled()
                logger.debug("appending %s (created %s)", source.path, source.created)
                scratch.write(read_fragment(source.path))
            cancellation_token.raise_if_cancelled()
            scratch.write(f"</{ROOT_TAG}>\n")

        with open(self._scratch_path, "rb") as f:
            data = f.read()

        parser = etree.XMLParser(huge_tree=True)
        try:
            root = etree.fromstring(data, parser)
        except etree.XMLSyntaxError as e:
            raise MalformedInputError(f"Merged event data is not well-formed XML: {e}") from e

        drop_blank_text(root)
        etree.indent(root, space=INDENT)
        try:
            etree.ElementTree(root).write(
                self.output_file_path, encoding="utf-8", xml_declaration=False
            )
        except OSError as e:
            raise EventTraceError(f"Cannot write {self.output_file_path}: {e}") from e

        count = len(root.xpath("*[local-name()='Event']"))
        logger.info("merged %d events from %d files into %s", count, len(sources), self.output_file_path)
        return count

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            if os.path.exists(self._scratch_path):
                os.remove(self._scratch_path)
        except OSError as e:
            # Cleanup must never mask the merge result
            logger.debug("could not remove scratch file %s: %s", self._scratch_path, e)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def main():
    parser = argparse.ArgumentParser(
        description="Merge multiple event trace XML fragments"
    )
    parser.add_argument("inputs", nargs="+", help="Input event trace files")
    parser.add_argument(
        "-o", "--output", required=True, help="Output merged XML file"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v: info, -vv: debug)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose >= 2 else logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        with TraceMerger(args.output) as merger:
            for input_file in args.inputs:
                merger.add_source(input_file)
            count = merger.process()
    except (EventTraceError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(1)

    print(f"[merge] wrote {args.output} ({count} events from {len(args.inputs)} files)")


if __name__ == "__main__":
    main()
