"""Step parameter resolution.

- ``static``: the step's static params only.
- ``from_context``: the instance's subject context, then static params.
- ``from_previous``: the most recent non-null step result (a dict, or
  ``{"input": value}``), then static params. Falls back to the subject
  context when no step has produced a result yet.

For per-item fan-out the current element replaces the previous result.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from ..schemas.domain import ParamResolver
from .models import WorkflowStep


def last_result(step_results: Sequence[Any]) -> Optional[Any]:
    for value in reversed(step_results):
        if value is not None:
            return value
    return None


def _as_params(value: Any, key: str) -> Dict[str, Any]:
    if isinstance(value, dict):
        return dict(value)
    return {key: value}


def resolve_params(
    step: WorkflowStep,
    *,
    context: Dict[str, Any],
    step_results: Sequence[Any],
    item: Any = None,
    has_item: bool = False,
) -> Dict[str, Any]:
    """Build the params for one invocation of ``step``."""
    if step.param_resolver == ParamResolver.static:
        base: Dict[str, Any] = {}
    elif has_item:
        base = _as_params(item, "item")
        if step.param_resolver == ParamResolver.from_context:
            base = {**context, **base}
    elif step.param_resolver == ParamResolver.from_context:
        base = dict(context)
    else:
        previous = last_result(step_results)
        base = dict(context) if previous is None else _as_params(previous, "input")
    return {**base, **step.static_params}


def fanout_items(step_results: Sequence[Any]) -> List[Any]:
    """Collection a per-item step iterates over.

    The previous result itself when it is a list, its ``items`` list when it
    is a dict carrying one, nothing when there is no previous result, and a
    single element otherwise. Null elements (failed items of an earlier
    fan-out) are dropped.
    """
    previous = last_result(step_results)
    if previous is None:
        return []
    if isinstance(previous, list):
        return [item for item in previous if item is not None]
    if isinstance(previous, dict) and isinstance(previous.get("items"), list):
        return [item for item in previous["items"] if item is not None]
    return [previous]
