"""Agent status state machine.

Provider callbacks are authoritative, so an unexpected transition
is logged rather than refused.

State Diagram:

    IDLE ──> STARTING ──> RUNNING ──┬──> DONE
                 │                  │
                 │                  ├──> INTERRUPTED
                 │                  │
                 │                  └──> ERROR
                 │
                 └──> DONE | INTERRUPTED | ERROR  (start settled early)

    DONE | INTERRUPTED | ERROR ──> STARTING  (resume)

    Any state ──> IDLE  (reset)
"""
from __future__ import annotations

import logging

from .models import AgentStatus

logger = logging.getLogger(__name__)

_SETTLED = {AgentStatus.DONE, AgentStatus.INTERRUPTED, AgentStatus.ERROR}

VALID_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.IDLE: {
        AgentStatus.STARTING,
        AgentStatus.DONE,  # session loaded from history
        AgentStatus.IDLE,
    },
    AgentStatus.STARTING: {
        AgentStatus.RUNNING,
        AgentStatus.IDLE,
        *_SETTLED,
    },
    AgentStatus.RUNNING: {
        AgentStatus.RUNNING,  # new system/init after compaction
        AgentStatus.IDLE,
        *_SETTLED,
    },
    AgentStatus.DONE: {
        AgentStatus.STARTING,
        AgentStatus.IDLE,
        *_SETTLED,
    },
    AgentStatus.INTERRUPTED: {
        AgentStatus.STARTING,
        AgentStatus.IDLE,
        *_SETTLED,
    },
    AgentStatus.ERROR: {
        AgentStatus.STARTING,
        AgentStatus.IDLE,
        *_SETTLED,
    },
}


def is_valid_transition(current: AgentStatus, target: AgentStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def check_transition(current: AgentStatus, target: AgentStatus) -> bool:
    """Log a warning for an unexpected transition. Returns validity."""
    if is_valid_transition(current, target):
        return True
    allowed = sorted(s.value for s in VALID_TRANSITIONS.get(current, set()))
    logger.warning(
        "Unexpected status transition: %s -> %s (allowed from %s: %s)",
        current.value, target.value, current.value, ", ".join(allowed),
    )
    return False
