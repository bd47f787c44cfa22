"""Pending action approval queue."""

from .queue import ApprovalQueue, ResolutionListener, default_title

__all__ = [
    "ApprovalQueue",
    "ResolutionListener",
    "default_title",
]
