"""Workflow definitions and parameter resolution.

Definitions are static, immutable templates; the runtime engine
(``leasewise_ai.agent_core.runtime``) executes instances of them.
"""

from .definitions import WORKFLOW_DEFINITIONS, get_definition
from .models import StepOutcome, StepOutcomeKind, WorkflowDefinition, WorkflowStep
from .params import fanout_items, resolve_params

__all__ = [
    "WORKFLOW_DEFINITIONS",
    "StepOutcome",
    "StepOutcomeKind",
    "WorkflowDefinition",
    "WorkflowStep",
    "fanout_items",
    "get_definition",
    "resolve_params",
]
