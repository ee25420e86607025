#!/usr/bin/env python
"""
Merge event trace files and print a filtered, pipe-delimited view.

Runs merge_traces.py and trace_to_csv.py back to back: the inputs are merged
into a single XML file, which is then written to stdout one event per line.
Ctrl+C cancels cleanly between files/records.

Usage:
  python process_event_traces.py system.xml application.xml
  python process_event_traces.py *.xml --output merged.xml --level error
"""
import argparse
import logging
import signal
import sys
from typing import BinaryIO, Sequence

from event_trace import (
    CancellationToken,
    EventTraceError,
    LoggingLevel,
    OperationCancelledError,
    parse_level,
)
from merge_traces import TraceMerger
from trace_to_csv import write_filtered


logger = logging.getLogger(__name__)


def run(
    inputs: Sequence[str],
    output_xml: str,
    output_stream: BinaryIO,
    minimum_level: int = LoggingLevel.INFORMATION,
    cancellation_token: CancellationToken | None = None,
) -> int:
    """Merge inputs into output_xml, then format it to output_stream.

    Returns the number of lines written.
    """
    if cancellation_token is None:
        cancellation_token = CancellationToken()

    with TraceMerger(output_xml) as merger:
        for src in inputs:
            merger.add_source(src)
        merged = merger.process(cancellation_token)
    logger.info("merged %d events into %s", merged, output_xml)

    return write_filtered(output_xml, output_stream, minimum_level, cancellation_token)


def main():
    ap = argparse.ArgumentParser(
        description="Merge event trace files and print matching events as pipe-delimited text"
    )
    ap.add_argument("inputs", nargs="+", help="Input event trace files")
    ap.add_argument(
        "--output",
        default="Output.xml",
        help="Merged XML file (default: Output.xml)",
    )
    ap.add_argument(
        "-l", "--level",
        type=parse_level,
        default=LoggingLevel.INFORMATION,
        help="Most verbose level to include: name or number (default: information)",
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

    token = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    try:
        count = run(args.inputs, args.output, sys.stdout.buffer, args.level, token)
    except OperationCancelledError as e:
        print(f"[trace] {e}", file=sys.stderr)
        raise SystemExit(130)
    except (EventTraceError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(1)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(f"[trace] wrote {count} events (merged XML: {args.output})", file=sys.stderr)


if __name__ == "__main__":
    main()
