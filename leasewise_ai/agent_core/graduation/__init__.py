"""Trust graduation per (user, tool category).

``GraduationTracker`` turns owner approvals and rejections into an
eligibility view and, once the owner accepts, a less strict autonomy level.
"""

from .tracker import GraduationTracker, is_eligible, progress_of

__all__ = [
    "GraduationTracker",
    "is_eligible",
    "progress_of",
]
