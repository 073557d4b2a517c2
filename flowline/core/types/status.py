# core/types/status.py
"""
Status enums shared by tasks and the engine.
This module should not import from other application modules.
"""

from enum import Enum


class TaskStatus(str, Enum):
    """Task execution status within a single run"""

    PENDING = 'PENDING'  # Created by the workflow builder, not reached yet.

    RUNNING = 'RUNNING'  # Selected by the engine, delegate in flight.

    COMPLETED = 'COMPLETED'  # Delegate returned; output holds its result.

    FAILED = 'FAILED'  # Delegate raised or input could not be resolved.

    SKIPPED = 'SKIPPED'  # Never reached; only set when branch pruning is enabled.

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in TASK_TERMINAL_STATES


TASK_TERMINAL_STATES: frozenset[TaskStatus] = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.SKIPPED,
})
