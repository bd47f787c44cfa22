"""Agent Task state machine (the owner-visible unit of work)."""

from .service import TaskService, can_transition

__all__ = [
    "TaskService",
    "can_transition",
]
