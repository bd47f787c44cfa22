"""Repository interfaces and SQL implementations for agent persistence.

The repository layer is the persistence boundary for the agent core.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  engine, approval queue and graduation tracker depend on.
- Persist durable, independently recoverable records:

  - agent tasks and their timelines,
  - pending actions and their resolutions,
  - graduation records per (user, category),
  - workflow instance checkpoints and driver leases,
  - the event trail and tool invocation log (append-only),
  - owner autonomy overrides.

Design notes
------------

The core is written against interfaces so it can be used with:

- a SQL database (async SQLAlchemy implementation provided in ``repos.sql``),
- in-memory fakes for unit tests.
"""

from .interfaces import (
    AutonomyOverrideRepository,
    EventRepository,
    GraduationRepository,
    PendingActionRepository,
    TaskRepository,
    ToolInvocationRepository,
    WorkflowInstanceRepository,
)

__all__ = [
    "AutonomyOverrideRepository",
    "EventRepository",
    "GraduationRepository",
    "PendingActionRepository",
    "TaskRepository",
    "ToolInvocationRepository",
    "WorkflowInstanceRepository",
]
