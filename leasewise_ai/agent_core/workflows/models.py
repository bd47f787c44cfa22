from __future__ import annotations

"""Workflow definition models.

Definitions are immutable templates shared by every running instance: an
ordered list of ``WorkflowStep`` plus lifetime bounds. ``StepOutcome`` is the
tagged result of executing one step.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import Field, model_validator

from ..schemas.base import FrozenSchema
from ..schemas.domain import ParamResolver, TaskCategory, WorkflowGate


class WorkflowStep(FrozenSchema):
    """
    One step of a workflow.

    Attributes:
        step_index: Position of the step (0-based); must match its place in
            the definition.
        tool_name: Tool invoked by the step.
        param_resolver: Where the step's params come from.
        static_params: Params merged over the resolved params.
        gate: Suspension point evaluated before the tool runs.
        compensation_tool: Tool invoked to undo the step if it fails or its
            approval is rejected.
        compensation_params: Params merged over the step's resolved params
            for the compensation call.
        optional: Failure (or rejection) of the step does not stop the
            workflow; it records a null result and moves on.
        per_item: Run the tool once per element of the previous result.
        wait_ms: Delay of a ``schedule_wait`` gate.
        description: What the step does, for owners and audit.
    """

    step_index: int = Field(ge=0)
    tool_name: str
    param_resolver: ParamResolver = ParamResolver.from_previous
    static_params: Dict[str, Any] = Field(default_factory=dict)
    gate: Optional[WorkflowGate] = None
    compensation_tool: Optional[str] = None
    compensation_params: Optional[Dict[str, Any]] = None
    optional: bool = False
    per_item: bool = False
    wait_ms: Optional[int] = Field(default=None, ge=0)
    description: str = ""

    @model_validator(mode="after")
    def _schedule_needs_delay(self) -> "WorkflowStep":
        if self.gate == WorkflowGate.schedule_wait and self.wait_ms is None:
            raise ValueError(f"step {self.step_index} ({self.tool_name}) has a schedule_wait gate without wait_ms")
        return self


class WorkflowDefinition(FrozenSchema):
    """
    Immutable workflow template.

    Attributes:
        name: Unique workflow name (also its tool name).
        description: Human-readable summary.
        task_category: Category of the Agent Task created for each instance.
        steps: Ordered steps.
        max_duration_ms: Lifetime bound of an instance.
        checkpoint_after_each_step: Persist the instance after every step.
            When false only gates and terminal states are persisted.
        resumable: Whether a waiting instance is bound by
            ``resume_window_ms``. When false only ``max_duration_ms`` applies.
        resume_window_ms: How long a waiting instance stays resumable after
            entering its gate.
    """

    name: str
    description: str
    task_category: TaskCategory = TaskCategory.general
    steps: Tuple[WorkflowStep, ...]
    max_duration_ms: int = Field(gt=0)
    checkpoint_after_each_step: bool = True
    resumable: bool = True
    resume_window_ms: int = Field(gt=0)

    @model_validator(mode="after")
    def _steps_in_order(self) -> "WorkflowDefinition":
        if not self.steps:
            raise ValueError(f"workflow {self.name} has no steps")
        for position, step in enumerate(self.steps):
            if step.step_index != position:
                raise ValueError(f"workflow {self.name}: step {position} declares step_index {step.step_index}")
        return self

    @property
    def max_duration(self) -> timedelta:
        return timedelta(milliseconds=self.max_duration_ms)

    @property
    def resume_window(self) -> timedelta:
        return timedelta(milliseconds=self.resume_window_ms)


class StepOutcomeKind(str, Enum):
    succeeded = "succeeded"
    skipped = "skipped"
    tolerated_failure = "tolerated_failure"
    fatal_failure = "fatal_failure"
    gated = "gated"


@dataclass(frozen=True)
class StepOutcome:
    """Result of driving one step.

    ``succeeded``, ``skipped`` and ``tolerated_failure`` advance the
    instance; ``gated`` suspends it; ``fatal_failure`` ends it (through
    compensation when the step declares one).
    """

    kind: StepOutcomeKind
    result: Any = None
    error: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def advances(self) -> bool:
        return self.kind in (StepOutcomeKind.succeeded, StepOutcomeKind.skipped, StepOutcomeKind.tolerated_failure)

    @classmethod
    def succeeded(cls, result: Any, params: Optional[Dict[str, Any]] = None) -> "StepOutcome":
        return cls(StepOutcomeKind.succeeded, result=result, params=params or {})

    @classmethod
    def skipped(cls) -> "StepOutcome":
        return cls(StepOutcomeKind.skipped)

    @classmethod
    def tolerated(cls, error: str, params: Optional[Dict[str, Any]] = None) -> "StepOutcome":
        return cls(StepOutcomeKind.tolerated_failure, error=error, params=params or {})

    @classmethod
    def fatal(cls, error: str, params: Optional[Dict[str, Any]] = None) -> "StepOutcome":
        return cls(StepOutcomeKind.fatal_failure, error=error, params=params or {})

    @classmethod
    def gated(cls) -> "StepOutcome":
        return cls(StepOutcomeKind.gated)
