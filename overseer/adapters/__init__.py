"""Adapters package - Bridge between the session manager and frontends.

Typed session events and the event bus that carries them to the CLI.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "SessionEvent",
    "event_to_dict",
]

from overseer.adapters.event_bus import EventBus
from overseer.adapters.events import SessionEvent, event_to_dict
