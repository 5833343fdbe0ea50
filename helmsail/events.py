"""Decoding and filtering of ``kubectl get events -o json`` output."""

from __future__ import annotations

import datetime as dt

import msgspec


class InvolvedObject(msgspec.Struct):
    """Object an event refers to."""

    name: str = ""


class KubernetesEvent(msgspec.Struct, rename="camel"):
    """Subset of a core/v1 Event used for install diagnostics."""

    message: str = ""
    reason: str = ""
    last_timestamp: dt.datetime | None = None
    involved_object: InvolvedObject | None = None

    def concerns(self, release_name: str) -> bool:
        """Return True if the involved object name starts with ``release_name``."""
        if self.involved_object is None:
            return False
        return self.involved_object.name.casefold().startswith(release_name.casefold())

    def format_line(self) -> str:
        """Render the event as ``<timestamp> <reason>: <message>``."""
        stamp = (
            self.last_timestamp.strftime("%Y-%m-%d %H:%M:%S")
            if self.last_timestamp is not None
            else "-"
        )
        return f"{stamp} {self.reason}: {self.message}"


class EventList(msgspec.Struct):
    """Top-level ``kubectl get events`` response."""

    items: list[KubernetesEvent] = msgspec.field(default_factory=list)


def decode_events(payload: str | bytes) -> list[KubernetesEvent]:
    """Decode an event list document.

    Raises
    ------
    msgspec.DecodeError
        If ``payload`` is not a valid event list.

    """
    return msgspec.json.decode(payload, type=EventList).items


def select_release_events(
    events: list[KubernetesEvent], release_name: str, since: dt.datetime
) -> list[KubernetesEvent]:
    """Keep events about ``release_name`` recorded strictly after ``since``.

    ``since`` must be timezone-aware; events without a ``lastTimestamp`` are
    dropped.
    """
    return [
        event
        for event in events
        if event.concerns(release_name)
        and event.last_timestamp is not None
        and event.last_timestamp > since
    ]
