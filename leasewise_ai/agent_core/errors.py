"""Error taxonomy for the agent core.

Purpose:
- Give every refusal the engine can produce a distinct type so callers (and
  the HTTP layer) can explain it to the owner.
- Separate the diagnostic message (``str(exc)``) from the owner-facing
  ``user_message``; raw tool error text never reaches the owner.

Propagation:
- ``ToolExecutionError`` is caught at the workflow step boundary and resolved
  locally (optional / compensation / fail). It never reaches the caller of a
  workflow.
- ``PolicyViolation``, ``DuplicateActionError`` and ``ExpiredGateError`` are
  surfaced to the initiating caller.
- ``ConcurrencyConflict`` tells the losing driver to abort without side
  effects.
"""

from __future__ import annotations

from typing import Any, Optional


class LeasewiseError(Exception):
    """Base error for the agent core.

    Args:
        message: Diagnostic description (may contain internal details).
        user_message: Owner-safe explanation of the refusal.
    """

    default_user_message = "Something went wrong while handling this task."

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class PolicyViolation(LeasewiseError):
    """Raised on an attempt to auto-execute a tool that can never auto-execute."""

    default_user_message = "This action always needs your approval and was not run automatically."

    def __init__(self, tool_name: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"tool may never auto-execute: {tool_name}")
        self.tool_name = tool_name


class DuplicateActionError(LeasewiseError):
    """Raised when a task already has an open pending action."""

    default_user_message = "This task is already waiting for your approval."

    def __init__(self, task_id: str, existing_action_id: str) -> None:
        super().__init__(f"task {task_id} already has open pending action {existing_action_id}")
        self.task_id = task_id
        self.existing_action_id = existing_action_id


class ExpiredGateError(LeasewiseError):
    """Raised when a waiting workflow is resumed outside its resume window."""

    default_user_message = "This task waited too long for a response and was stopped."

    def __init__(self, instance_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"resume window elapsed for workflow instance {instance_id}")
        self.instance_id = instance_id


class ToolExecutionError(LeasewiseError):
    """Raised when an invoked tool fails or returns an unsuccessful result."""

    default_user_message = "This step failed and was rolled back."

    def __init__(self, tool_name: str, error: str, *, details: Optional[Any] = None) -> None:
        super().__init__(f"tool {tool_name} failed: {error}")
        self.tool_name = tool_name
        self.error = error
        self.details = details


class ConcurrencyConflict(LeasewiseError):
    """Raised when a second writer/driver loses a race for the same record."""

    default_user_message = "This task is being updated elsewhere. Please try again."


class NotFoundError(LeasewiseError):
    """Raised when a referenced task, action, workflow or instance does not exist."""

    default_user_message = "We couldn't find that item."

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class InvalidTransitionError(LeasewiseError):
    """Raised when a state machine is asked for a transition it does not allow."""

    default_user_message = "That change isn't possible for this task right now."


class GraduationNotEligibleError(InvalidTransitionError):
    """Raised when graduation is accepted for a category that is not eligible."""

    default_user_message = "This category isn't ready for more autonomy yet."
