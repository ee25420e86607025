"""
pytest configuration and shared fixtures for the event trace tools.
"""

import os
from pathlib import Path

import pytest

import merge_traces


EVENT_NS = "http://schemas.microsoft.com/win/2004/08/events/event"

RENDERED_LEVELS = {
    0: "Verbose",
    2: "Error",
    4: "Warning",
    8: "Information",
}


def make_event(
    level: int,
    message: str = "message",
    *,
    event_id: int = 1,
    rendered_level: str | None = None,
    system_time: str = "2024-01-02T03:04:05.1234567Z",
) -> str:
    """Build one <Event> element the way wevtutil exports it (single line)."""
    if rendered_level is None:
        rendered_level = RENDERED_LEVELS.get(level, f"Level{level}")
    return (
        f"<Event xmlns='{EVENT_NS}'>"
        f"<System><Provider Name='TestProvider'/><EventID>{event_id}</EventID>"
        f"<Level>{level}</Level><TimeCreated SystemTime='{system_time}'/>"
        f"<Computer>host</Computer></System>"
        f"<EventData><Data>{message}</Data></EventData>"
        f"<RenderingInfo Culture='en-US'><Message>{message}</Message>"
        f"<Level>{rendered_level}</Level></RenderingInfo>"
        f"</Event>"
    )


@pytest.fixture
def write_fragment(tmp_path):
    """Write a trace fragment (events without a root) and return its path."""

    def _write(name: str, *events: str, bom: bytes = b"", encoding: str = "utf-8") -> Path:
        path = tmp_path / name
        text = "\r\n".join(events)
        if events:
            text += "\r\n"
        path.write_bytes(bom + text.encode(encoding))
        return path

    return _write


@pytest.fixture
def creation_times(monkeypatch):
    """Map of path -> creation time consulted instead of the filesystem."""
    times: dict[str, float] = {}
    monkeypatch.setattr(merge_traces, "source_creation_time", lambda p: times[os.fspath(p)])
    return times
