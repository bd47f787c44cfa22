from __future__ import annotations

import pytest

from leasewise_ai.agent_core.errors import NotFoundError
from leasewise_ai.agent_core.schemas.domain import ParamResolver, WorkflowGate
from leasewise_ai.agent_core.workflows.definitions import WORKFLOW_DEFINITIONS, get_definition
from leasewise_ai.agent_core.workflows.models import WorkflowDefinition, WorkflowStep
from leasewise_ai.agent_core.workflows.params import fanout_items, last_result, resolve_params

CTX = {"property_id": "p1", "tenancy_id": "t1"}


def _step(resolver: ParamResolver, **kwargs) -> WorkflowStep:
    return WorkflowStep(step_index=0, tool_name="x", param_resolver=resolver, **kwargs)


def test_static_ignores_context_and_previous() -> None:
    step = _step(ParamResolver.static, static_params={"tone": "formal"})
    assert resolve_params(step, context=CTX, step_results=[{"a": 1}]) == {"tone": "formal"}


def test_from_context_merges_static_last() -> None:
    step = _step(ParamResolver.from_context, static_params={"tenancy_id": "override"})
    assert resolve_params(step, context=CTX, step_results=[]) == {"property_id": "p1", "tenancy_id": "override"}


def test_from_previous_uses_latest_non_null_result() -> None:
    step = _step(ParamResolver.from_previous)
    assert resolve_params(step, context=CTX, step_results=[{"a": 1}, None]) == {"a": 1}
    assert resolve_params(step, context=CTX, step_results=[{"a": 1}, "text"]) == {"input": "text"}


def test_from_previous_falls_back_to_context() -> None:
    step = _step(ParamResolver.from_previous)
    assert resolve_params(step, context=CTX, step_results=[None]) == CTX


def test_item_replaces_previous_result() -> None:
    step = _step(ParamResolver.from_previous, static_params={"mode": "fast"})
    params = resolve_params(step, context=CTX, step_results=[[1, 2]], item={"id": "app-1"}, has_item=True)
    assert params == {"id": "app-1", "mode": "fast"}
    assert resolve_params(step, context=CTX, step_results=[], item=7, has_item=True) == {"item": 7, "mode": "fast"}

    ctx_step = _step(ParamResolver.from_context)
    assert resolve_params(ctx_step, context=CTX, step_results=[], item={"id": "a"}, has_item=True) == {**CTX, "id": "a"}


@pytest.mark.parametrize(
    ("results", "expected"),
    [
        ([], []),
        ([None], []),
        ([[{"id": 1}, None, {"id": 2}]], [{"id": 1}, {"id": 2}]),
        ([{"items": ["a", "b"]}], ["a", "b"]),
        ([{"id": 1}], [{"id": 1}]),
    ],
)
def test_fanout_items(results, expected) -> None:
    assert fanout_items(results) == expected


def test_last_result() -> None:
    assert last_result([1, None]) == 1
    assert last_result([]) is None


def test_definitions_are_well_formed() -> None:
    assert set(WORKFLOW_DEFINITIONS) == {
        "workflow_find_tenant",
        "workflow_onboard_tenant",
        "workflow_end_tenancy",
        "workflow_maintenance_lifecycle",
        "workflow_arrears_escalation",
    }
    arrears = get_definition("workflow_arrears_escalation")
    assert arrears.steps[1].gate == WorkflowGate.schedule_wait
    assert arrears.steps[1].wait_ms == 3 * 86_400_000
    with pytest.raises(NotFoundError):
        get_definition("workflow_unknown")


def test_definition_validation() -> None:
    with pytest.raises(ValueError):
        WorkflowStep(step_index=0, tool_name="x", gate=WorkflowGate.schedule_wait)
    with pytest.raises(ValueError):
        WorkflowDefinition(
            name="bad",
            description="out of order",
            steps=(WorkflowStep(step_index=1, tool_name="x"),),
            max_duration_ms=1,
            resume_window_ms=1,
        )
    with pytest.raises(ValueError):
        WorkflowDefinition(name="empty", description="", steps=(), max_duration_ms=1, resume_window_ms=1)


def test_definitions_are_immutable() -> None:
    definition = get_definition("workflow_find_tenant")
    with pytest.raises(ValueError):
        definition.steps[0].tool_name = "other"
