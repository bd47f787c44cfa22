from __future__ import annotations

"""LangGraph workflow engine.

``WorkflowEngine`` executes instances of the static workflow definitions.

Execution model
---------------

- ``drive(instance_id)`` is the single entry point that moves an instance.
  It claims the instance's driver lease (at most one live driver per
  instance), runs the LangGraph state machine, and releases the lease.
- The ``start`` node applies the lazy time bounds (max duration, resume
  window) and evaluates the gate the instance is waiting on.
- Each pass through the ``execute`` node runs exactly one step at
  ``current_step_index`` and checkpoints it before the next step is looked at.

Gates
-----

A gate is evaluated before the step's tool runs:

- ``owner_approval`` raises a ``PendingAction`` and waits for its resolution.
  Never-auto-execute tools are always behind one, declared or not; a declared
  approval is waived when the tool resolves to ``autonomous`` for the owner.
- ``webhook_wait`` waits for ``deliver_webhook`` to store a payload for the
  instance and step; the payload is merged into the step's params.
- ``schedule_wait`` waits until ``wake_at``. Resuming code compares the clock
  with ``wake_at``; there is no in-process timer.

A step whose tool names another workflow starts it as a child instance with
its own Agent Task and moves on without waiting for it.

Failures
--------

Tool errors stop at the step boundary: optional steps record a null result
and continue, steps with a compensation tool are compensated, anything else
fails the instance. Compensation is invoked directly and is never gated.

Per-item fan-out is serialized: one item at a time, each item checkpointed,
each item gated on its own when the step needs owner approval. The fan-out
fails only when no item of a non-optional step succeeds.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from langgraph.graph import END, StateGraph

from ..errors import (
    ConcurrencyConflict,
    DuplicateActionError,
    ExpiredGateError,
    NotFoundError,
    ToolExecutionError,
)
from ..notifications import NotificationKind, safe_notify
from ..schemas.domain import (
    AgentEvent,
    AgentEventType,
    AutonomyLevel,
    PendingAction,
    PendingActionStatus,
    TaskStatus,
    ToolInvocation,
    WorkflowGate,
    WorkflowInstance,
    WorkflowStatus,
)
from ..tasks.service import can_transition
from ..workflows.definitions import WORKFLOW_DEFINITIONS, get_definition
from ..workflows.models import StepOutcome, StepOutcomeKind, WorkflowDefinition, WorkflowStep
from ..workflows.params import fanout_items, resolve_params
from .models import EngineDeps, _GraphState

logger = logging.getLogger(__name__)

ROLLED_BACK_MESSAGE = "This step failed and was rolled back."
CANCELLED_MESSAGE = "This task was cancelled."

_LIVE_STATUSES = (WorkflowStatus.running, WorkflowStatus.waiting_on_gate, WorkflowStatus.compensating)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    """Drive workflow instances with checkpointing, gates and compensation."""

    def __init__(
        self,
        *,
        deps: EngineDeps,
        definitions: Mapping[str, WorkflowDefinition] = WORKFLOW_DEFINITIONS,
        lease_ttl: timedelta = timedelta(minutes=5),
        driver_id: Optional[str] = None,
    ) -> None:
        """
        Initialize the WorkflowEngine.

        Args:
            deps: Repositories, services and the tool invoker.
            definitions: Workflow definitions by name.
            lease_ttl: How long a driver lease stays valid without renewal.
            driver_id: Prefix identifying this engine in lease owners.

        Raises:
            ValueError: If a definition puts a never-auto-execute tool behind a
                gate other than owner approval.
        """
        self._deps = deps
        self._definitions = definitions
        self._policy = deps.autonomy.policy
        self._clock = deps.clock or _utc_now
        self._lease_ttl = lease_ttl
        self._driver_id = driver_id or f"engine-{uuid4().hex[:12]}"
        self._validate_definitions()
        self._graph = self._build_graph()

    @property
    def definitions(self) -> Mapping[str, WorkflowDefinition]:
        return self._definitions

    def _validate_definitions(self) -> None:
        for definition in self._definitions.values():
            for step in definition.steps:
                if self._policy.is_never_auto(step.tool_name) and step.gate not in (None, WorkflowGate.owner_approval):
                    raise ValueError(
                        f"{definition.name} step {step.step_index}: {step.tool_name} can never auto-execute "
                        f"and cannot sit behind a {step.gate.value} gate"
                    )

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("execute", self._node_execute)
        g.add_node("pause", self._node_pause)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        routes = {"continue": "execute", "pause": "pause", "finish": "finish"}
        g.add_conditional_edges("start", self._route, routes)
        g.add_conditional_edges("execute", self._route, routes)
        g.add_edge("pause", END)
        g.add_edge("finish", END)
        return g.compile()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_workflow(
        self,
        definition_name: str,
        *,
        user_id: str,
        subject_context: Optional[Dict[str, Any]] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        related_entity_type: Optional[str] = None,
        related_entity_id: Optional[str] = None,
    ) -> WorkflowInstance:
        """Create an instance and its Agent Task, then drive it as far as it goes.

        Raises:
            NotFoundError: If no workflow has that name.
        """
        definition = get_definition(definition_name, self._definitions)
        now = self._clock()
        instance = WorkflowInstance(
            definition_name=definition.name,
            user_id=user_id,
            subject_context=dict(subject_context or {}),
            started_at=now,
            updated_at=now,
        )
        task = await self._deps.tasks.create(
            user_id=user_id,
            title=title or definition.description,
            description=description,
            category=definition.task_category,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            workflow_instance_id=instance.id,
        )
        instance.task_id = task.id
        await self._deps.instances.create(instance)
        await self._emit(instance, AgentEventType.workflow_started, {"definition": definition.name})
        logger.info(f"Workflow {definition.name} started: instance={instance.id} task={task.id} user={user_id}")
        return await self.drive(instance.id)

    async def _claim(self, instance_id: str) -> str:
        owner = f"{self._driver_id}/{uuid4().hex}"
        now = self._clock()
        claimed = await self._deps.instances.claim_lease(
            instance_id, owner=owner, now=now, expires_at=now + self._lease_ttl
        )
        if not claimed:
            if await self._deps.instances.get(instance_id) is None:
                raise NotFoundError("workflow instance", instance_id)
            raise ConcurrencyConflict(f"workflow instance {instance_id} is being driven elsewhere")
        return owner

    async def drive(self, instance_id: str) -> WorkflowInstance:
        """Advance an instance until it completes, fails or suspends.

        Raises:
            NotFoundError: If the instance does not exist.
            ConcurrencyConflict: If another driver holds the instance.
            ExpiredGateError: If the instance was waiting past its resume window;
                the instance has been marked failed.
        """
        owner = await self._claim(instance_id)
        try:
            instance = await self.get_instance(instance_id)
            if instance.is_terminal:
                return instance
            definition = self._definition_of(instance)
            state: _GraphState = {"instance": instance, "route": "continue", "gate_cleared": False, "expired": False}
            final = await self._graph.ainvoke(state, config={"recursion_limit": 2 * len(definition.steps) + 10})
        finally:
            await self._deps.instances.release_lease(instance_id, owner=owner)

        instance = final["instance"]
        if final.get("expired"):
            raise ExpiredGateError(instance.id)
        return instance

    async def cancel(self, instance_id: str, *, reason: str = "cancelled by owner") -> WorkflowInstance:
        """Fail a live instance without running any further step.

        The Agent Task is left to the caller.
        """
        owner = await self._claim(instance_id)
        try:
            instance = await self.get_instance(instance_id)
            if not instance.is_terminal:
                await self._fail(instance, reason=reason)
                logger.info(f"Instance {instance_id} cancelled: {reason}")
            return instance
        finally:
            await self._deps.instances.release_lease(instance_id, owner=owner)

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._deps.instances.get(instance_id)
        if instance is None:
            raise NotFoundError("workflow instance", instance_id)
        return instance

    async def deliver_webhook(self, instance_id: str, step_index: int, payload: Dict[str, Any]) -> bool:
        """
        Store an external event for an instance waiting on a webhook gate.

        Callbacks for a step the instance is not waiting on (already advanced,
        not yet reached, or already delivered) are ignored.

        Returns:
            True if the payload was accepted.
        """
        instance = await self.get_instance(instance_id)
        if (
            instance.status != WorkflowStatus.waiting_on_gate
            or instance.gate != WorkflowGate.webhook_wait
            or instance.current_step_index != step_index
            or instance.webhook_payload is not None
        ):
            logger.info(
                f"Ignoring webhook for {instance_id} step {step_index}: instance is {instance.status.value} "
                f"at step {instance.current_step_index}"
            )
            return False

        expected = instance.version
        instance.webhook_payload = dict(payload)
        instance.version = expected + 1
        instance.updated_at = self._clock()
        await self._deps.instances.save(instance, expected_version=expected)
        logger.info(f"Webhook accepted for {instance_id} step {step_index}")
        try:
            await self.drive(instance_id)
        except ConcurrencyConflict:
            logger.info(f"Instance {instance_id} busy; webhook will be picked up by the next tick")
        return True

    async def on_action_resolved(self, action: PendingAction) -> None:
        """Approval queue listener: resume the workflow that raised the action."""
        if action.workflow_instance_id is None:
            return
        try:
            await self.drive(action.workflow_instance_id)
        except ConcurrencyConflict:
            logger.info(f"Instance {action.workflow_instance_id} busy; resolution will be picked up by the next tick")

    async def tick(self, *, limit: int = 500) -> List[WorkflowInstance]:
        """
        Lazy sweep over live instances.

        Drives instances whose schedule is due, whose time bounds have
        elapsed, whose gate was satisfied without a driver picking it up, or
        whose driver went away (no live lease).

        Returns:
            The instances that were driven.
        """
        now = self._clock()
        candidates = await self._deps.instances.list(statuses=_LIVE_STATUSES, limit=limit)
        driven: List[WorkflowInstance] = []
        for instance in candidates:
            if not await self._is_due(instance, now):
                continue
            try:
                driven.append(await self.drive(instance.id))
            except ConcurrencyConflict:
                logger.debug(f"Tick skipped {instance.id}: driven elsewhere")
            except ExpiredGateError as e:
                logger.info(f"Tick expired {instance.id}: {e}")
                driven.append(await self.get_instance(instance.id))
        return driven

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    def _route(self, state: _GraphState) -> str:
        return state["route"]

    @staticmethod
    def _next(state: _GraphState, route: str, *, gate_cleared: bool = False, expired: bool = False) -> _GraphState:
        return {"instance": state["instance"], "route": route, "gate_cleared": gate_cleared, "expired": expired}

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Apply time bounds and evaluate the gate the instance waits on."""
        instance = state["instance"]
        definition = self._definition_of(instance)
        now = self._clock()

        if self._lifetime_exceeded(instance, definition, now):
            await self._expire_lifetime(instance, definition)
            return self._next(state, "finish")

        if instance.status == WorkflowStatus.compensating:
            step = definition.steps[instance.current_step_index]
            await self._compensate(instance, step, self._params_for(instance, step), reason="compensation resumed")
            return self._next(state, "finish")

        if instance.status != WorkflowStatus.waiting_on_gate:
            return self._next(state, "continue")

        if instance.resumable_until is not None and now > instance.resumable_until:
            logger.info(f"Instance {instance.id} resume window elapsed at {instance.resumable_until.isoformat()}")
            await self._fail(instance, reason="resume window elapsed")
            return self._next(state, "finish", expired=True)

        if await self._is_overridden(instance):
            logger.info(f"Instance {instance.id} is under manual control; not resuming")
            return self._next(state, "pause")

        return await self._evaluate_gate(state, definition, now)

    async def _node_execute(self, state: _GraphState) -> _GraphState:
        """Execute the step at ``current_step_index``."""
        instance = state["instance"]
        definition = self._definition_of(instance)

        if self._lifetime_exceeded(instance, definition, self._clock()):
            await self._expire_lifetime(instance, definition)
            return self._next(state, "finish")

        if instance.current_step_index >= len(definition.steps):
            instance.status = WorkflowStatus.completed
            self._clear_gate(instance)
            await self._checkpoint(instance, force=True)
            return self._next(state, "finish")

        task = await self._deps.tasks.find(instance.task_id) if instance.task_id else None
        if task is not None and task.status == TaskStatus.cancelled:
            await self._fail(instance, reason="task cancelled")
            return self._next(state, "finish")
        if task is not None and task.manual_override:
            logger.info(f"Instance {instance.id} is under manual control; stopping before step {instance.current_step_index}")
            return self._next(state, "pause")

        step = definition.steps[instance.current_step_index]
        if step.per_item:
            outcome = await self._run_fanout(instance, definition, step, gate_cleared=state["gate_cleared"])
        else:
            outcome = await self._run_step(instance, definition, step, gate_cleared=state["gate_cleared"])

        if outcome.kind == StepOutcomeKind.gated:
            return self._next(state, "pause")
        if outcome.advances:
            await self._advance(instance, step, outcome)
            return self._next(state, "continue")

        logger.warning(f"Instance {instance.id} step {step.step_index} ({step.tool_name}) failed: {outcome.error}")
        await self._emit(
            instance,
            AgentEventType.step_failed,
            {"step_index": step.step_index, "tool_name": step.tool_name, "error": outcome.error},
        )
        if step.compensation_tool:
            await self._compensate(instance, step, outcome.params, reason=outcome.error or "step failed")
        else:
            await self._fail(instance, reason=outcome.error or "step failed")
        return self._next(state, "finish")

    async def _node_pause(self, state: _GraphState) -> _GraphState:
        """Pause node.

        The graph transitions to END after this node; the instance resumes on
        the next ``drive`` (approval, webhook, tick or owner resume).
        """
        return state

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Finish node: settle the Agent Task and notify the owner."""
        instance = state["instance"]
        task = await self._deps.tasks.find(instance.task_id) if instance.task_id else None

        if instance.status == WorkflowStatus.completed:
            await self._emit(instance, AgentEventType.workflow_completed, {"steps": len(instance.step_results)})
            logger.info(f"Workflow {instance.definition_name} completed: instance={instance.id}")
            if task is not None and not task.is_terminal:
                await self._settle_task(task.id, task.status, TaskStatus.completed, "workflow_completed", None)
                await safe_notify(
                    self._deps.notifier,
                    instance.user_id,
                    NotificationKind.task_completed,
                    title=task.title,
                    data={"task_id": task.id, "workflow_instance_id": instance.id},
                )
            return state

        logger.info(f"Workflow {instance.definition_name} ended {instance.status.value}: instance={instance.id}")
        if task is not None and not task.is_terminal:
            await self._settle_task(
                task.id, task.status, TaskStatus.cancelled, f"workflow_{instance.status.value}", instance.error
            )
            await safe_notify(
                self._deps.notifier,
                instance.user_id,
                NotificationKind.workflow_failed,
                title=task.title,
                body=instance.error or CANCELLED_MESSAGE,
                data={"task_id": task.id, "workflow_instance_id": instance.id},
            )
        return state

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    async def _evaluate_gate(self, state: _GraphState, definition: WorkflowDefinition, now: datetime) -> _GraphState:
        instance = state["instance"]
        gate = instance.gate

        if gate == WorkflowGate.owner_approval:
            action = await self._deps.approvals.find(instance.pending_action_id) if instance.pending_action_id else None
            if action is None:
                logger.warning(f"Instance {instance.id} waits on a missing pending action")
                return self._next(state, "pause")
            if action.is_open:
                return self._next(state, "pause")
            if action.status == PendingActionStatus.rejected:
                return await self._handle_rejection(state, definition, action)
        elif gate == WorkflowGate.webhook_wait:
            if instance.webhook_payload is None:
                return self._next(state, "pause")
        elif gate == WorkflowGate.schedule_wait:
            if instance.wake_at is None or now < instance.wake_at:
                return self._next(state, "pause")
        else:
            logger.warning(f"Instance {instance.id} is waiting without a gate; continuing")

        await self._emit(
            instance,
            AgentEventType.gate_cleared,
            {"step_index": instance.current_step_index, "gate": gate.value if gate else None},
        )
        return self._next(state, "continue", gate_cleared=True)

    async def _handle_rejection(
        self, state: _GraphState, definition: WorkflowDefinition, action: PendingAction
    ) -> _GraphState:
        instance = state["instance"]
        step = definition.steps[instance.current_step_index]
        reason = f"owner rejected {step.tool_name}"

        if step.per_item and action.item_index is not None:
            instance.fanout_results.append({"ok": False, "result": None, "error": reason})
            instance.fanout_cursor = action.item_index + 1
            self._clear_gate(instance, keep_payload=True)
            instance.status = WorkflowStatus.running
            await self._checkpoint(instance)
            await self._emit(
                instance,
                AgentEventType.step_skipped,
                {"step_index": step.step_index, "item_index": action.item_index, "reason": reason},
            )
            await self._return_task_to_progress(instance, "item_rejected")
            return self._next(state, "continue")

        if step.optional:
            await self._advance(instance, step, StepOutcome.skipped())
            await self._return_task_to_progress(instance, "step_skipped")
            return self._next(state, "continue")

        if step.compensation_tool:
            await self._compensate(instance, step, self._params_for(instance, step), reason=reason)
        else:
            await self._fail(instance, reason=reason)
        return self._next(state, "finish")

    def _effective_gate(self, step: WorkflowStep) -> Optional[WorkflowGate]:
        if step.gate is not None:
            return step.gate
        if self._policy.is_never_auto(step.tool_name):
            return WorkflowGate.owner_approval
        return None

    async def _approval_level(self, instance: WorkflowInstance, step: WorkflowStep) -> AutonomyLevel:
        resolution = await self._deps.autonomy.resolve(
            instance.user_id,
            step.tool_name,
            task_id=instance.task_id,
            workflow_instance_id=instance.id,
        )
        return resolution.level

    async def _enter_gate(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: WorkflowStep,
        gate: WorkflowGate,
        params: Dict[str, Any],
        *,
        level: AutonomyLevel = AutonomyLevel.draft,
        item_index: Optional[int] = None,
    ) -> None:
        now = self._clock()
        instance.status = WorkflowStatus.waiting_on_gate
        instance.gate = gate
        instance.gate_entered_at = now
        instance.resumable_until = now + definition.resume_window if definition.resumable else None
        instance.pending_action_id = None
        instance.wake_at = None

        if gate == WorkflowGate.owner_approval:
            action = await self._raise_gate_action(instance, step, params, level=level, item_index=item_index)
            instance.pending_action_id = action.id
        elif gate == WorkflowGate.schedule_wait:
            instance.wake_at = now + timedelta(milliseconds=step.wait_ms or 0)

        await self._checkpoint(instance, force=True)
        await self._emit(
            instance,
            AgentEventType.gate_entered,
            {
                "step_index": step.step_index,
                "item_index": item_index,
                "gate": gate.value,
                "pending_action_id": instance.pending_action_id,
                "wake_at": instance.wake_at.isoformat() if instance.wake_at else None,
            },
        )
        if gate != WorkflowGate.owner_approval and instance.task_id:
            await self._deps.tasks.note(
                instance.task_id,
                action="waiting",
                status=gate.value,
                tool_name=step.tool_name,
                data={"step_index": step.step_index},
            )
        logger.info(f"Instance {instance.id} waiting on {gate.value} at step {step.step_index} ({step.tool_name})")

    async def _raise_gate_action(
        self,
        instance: WorkflowInstance,
        step: WorkflowStep,
        params: Dict[str, Any],
        *,
        level: AutonomyLevel,
        item_index: Optional[int],
    ) -> PendingAction:
        try:
            return await self._deps.approvals.raise_action(
                user_id=instance.user_id,
                tool_name=step.tool_name,
                tool_params=params,
                category=self._policy.category_for(step.tool_name),
                task_id=instance.task_id,
                description=step.description,
                autonomy_level=level,
                workflow_instance_id=instance.id,
                step_index=step.step_index,
                item_index=item_index,
            )
        except DuplicateActionError as e:
            # A previous drive raised this action but crashed before its checkpoint.
            existing = await self._deps.approvals.get(e.existing_action_id)
            if (
                existing.workflow_instance_id == instance.id
                and existing.step_index == step.step_index
                and existing.item_index == item_index
            ):
                return existing
            raise

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: WorkflowStep,
        *,
        gate_cleared: bool,
    ) -> StepOutcome:
        params = self._params_for(instance, step)
        gate = self._effective_gate(step)
        if gate is not None and not gate_cleared:
            if gate == WorkflowGate.owner_approval:
                level = await self._approval_level(instance, step)
                if level != AutonomyLevel.autonomous:
                    await self._enter_gate(instance, definition, step, gate, params, level=level)
                    return StepOutcome.gated()
                logger.debug(f"Approval for {step.tool_name} waived: owner trusts it to run autonomously")
            else:
                await self._enter_gate(instance, definition, step, gate, params)
                return StepOutcome.gated()

        if instance.webhook_payload:
            params = {**params, **instance.webhook_payload}
        ok, result, error = await self._invoke(instance, step.tool_name, params, step.step_index)
        if ok:
            return StepOutcome.succeeded(result, params)
        if step.optional:
            return StepOutcome.tolerated(error or "step failed", params)
        return StepOutcome.fatal(error or "step failed", params)

    async def _run_fanout(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: WorkflowStep,
        *,
        gate_cleared: bool,
    ) -> StepOutcome:
        gate = self._effective_gate(step)
        per_item_approval = gate == WorkflowGate.owner_approval
        started = instance.fanout_cursor > 0 or bool(instance.fanout_results)

        if gate is not None and not per_item_approval and not started and not gate_cleared:
            await self._enter_gate(instance, definition, step, gate, self._params_for(instance, step))
            return StepOutcome.gated()

        items = fanout_items(instance.step_results)
        payload = instance.webhook_payload or {}
        item_cleared = gate_cleared and per_item_approval
        while instance.fanout_cursor < len(items):
            index = instance.fanout_cursor
            params = {**self._params_for(instance, step, item=items[index], has_item=True), **payload}
            if per_item_approval and not item_cleared:
                level = await self._approval_level(instance, step)
                if level != AutonomyLevel.autonomous:
                    await self._enter_gate(instance, definition, step, gate, params, level=level, item_index=index)
                    return StepOutcome.gated()
            item_cleared = False

            ok, result, error = await self._invoke(instance, step.tool_name, params, step.step_index)
            instance.fanout_results.append({"ok": ok, "result": result if ok else None, "error": error})
            instance.fanout_cursor = index + 1
            self._clear_gate(instance, keep_payload=True)
            instance.status = WorkflowStatus.running
            await self._checkpoint(instance)

        results = [entry["result"] if entry["ok"] else None for entry in instance.fanout_results]
        succeeded = sum(1 for entry in instance.fanout_results if entry["ok"])
        if items and succeeded == 0:
            error = f"no item of {step.tool_name} succeeded ({len(items)} attempted)"
            if step.optional:
                return StepOutcome.tolerated(error)
            return StepOutcome.fatal(error, self._params_for(instance, step))
        return StepOutcome.succeeded(results)

    async def _advance(self, instance: WorkflowInstance, step: WorkflowStep, outcome: StepOutcome) -> None:
        """Record the step's result and move the cursor, in one checkpoint."""
        instance.step_results.append(outcome.result if outcome.kind == StepOutcomeKind.succeeded else None)
        instance.current_step_index = step.step_index + 1
        self._clear_gate(instance)
        instance.fanout_results = []
        instance.fanout_cursor = 0
        instance.status = WorkflowStatus.running
        await self._checkpoint(instance)

        event_type = {
            StepOutcomeKind.succeeded: AgentEventType.step_completed,
            StepOutcomeKind.skipped: AgentEventType.step_skipped,
        }.get(outcome.kind, AgentEventType.step_failed)
        await self._emit(
            instance,
            event_type,
            {"step_index": step.step_index, "tool_name": step.tool_name, "outcome": outcome.kind.value},
        )
        if instance.task_id:
            await self._deps.tasks.note(
                instance.task_id,
                action=f"step_{outcome.kind.value}",
                status=outcome.kind.value,
                tool_name=step.tool_name,
                reasoning=step.description or None,
                data={"step_index": step.step_index},
            )

    async def _invoke(
        self, instance: WorkflowInstance, tool_name: str, params: Dict[str, Any], step_index: int
    ) -> Tuple[bool, Any, Optional[str]]:
        """Invoke a tool (or child workflow) and audit it. Errors never escape."""
        try:
            if tool_name in self._definitions:
                result = await self._start_child(instance, tool_name, params)
            else:
                result = await self._deps.tools.invoke(tool_name, params)
            ok, error = True, None
        except Exception as e:
            ok, result = False, None
            error = e.error if isinstance(e, ToolExecutionError) else str(e)
            logger.warning(f"Instance {instance.id} tool {tool_name} failed: {error}")

        await self._deps.tool_invocations.append(
            ToolInvocation(
                user_id=instance.user_id,
                tool_name=tool_name,
                params=params,
                ok=ok,
                result=result,
                error=error,
                workflow_instance_id=instance.id,
                step_index=step_index,
                created_at=self._clock(),
            )
        )
        await self._emit(
            instance,
            AgentEventType.tool_invoked,
            {"tool_name": tool_name, "step_index": step_index, "ok": ok},
        )
        return ok, result, error

    async def _start_child(self, parent: WorkflowInstance, name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Start a child workflow under its own Agent Task and hand it off.

        The parent does not wait for the child to finish. A child that already
        ended failed or compensated during its first drive fails the step.
        """
        child = await self.start_workflow(name, user_id=parent.user_id, subject_context=params)
        if child.status in (WorkflowStatus.failed, WorkflowStatus.compensated):
            raise ToolExecutionError(name, f"child workflow {child.id} ended {child.status.value}")
        logger.info(f"Instance {parent.id} handed off to child workflow {name}: {child.id} ({child.status.value})")
        return {"workflow_instance_id": child.id, "task_id": child.task_id, "status": child.status.value}

    # ------------------------------------------------------------------
    # Terminal paths
    # ------------------------------------------------------------------

    async def _compensate(
        self,
        instance: WorkflowInstance,
        step: WorkflowStep,
        params: Dict[str, Any],
        *,
        reason: str,
        final_status: WorkflowStatus = WorkflowStatus.compensated,
    ) -> None:
        await self._withdraw_open_action(instance, reason)
        instance.status = WorkflowStatus.compensating
        instance.error = ROLLED_BACK_MESSAGE
        await self._checkpoint(instance, force=True)
        await self._emit(
            instance,
            AgentEventType.compensation_started,
            {"step_index": step.step_index, "tool_name": step.compensation_tool, "reason": reason},
        )

        comp_params = {**params, **(step.compensation_params or {})}
        ok, _, error = await self._invoke(instance, step.compensation_tool, comp_params, step.step_index)
        self._clear_gate(instance)
        if ok:
            instance.status = final_status
        else:
            logger.error(f"Instance {instance.id} compensation {step.compensation_tool} failed: {error}")
            instance.status = WorkflowStatus.failed
            instance.error = CANCELLED_MESSAGE
        await self._checkpoint(instance, force=True)
        event_type = AgentEventType.compensated if instance.status == WorkflowStatus.compensated else AgentEventType.workflow_failed
        await self._emit(
            instance,
            event_type,
            {"step_index": step.step_index, "reason": reason, "compensation_ok": ok},
        )

    async def _withdraw_open_action(self, instance: WorkflowInstance, reason: str) -> None:
        if instance.task_id:
            await self._deps.approvals.withdraw(instance.task_id, reason=reason)

    async def _fail(self, instance: WorkflowInstance, *, reason: str) -> None:
        await self._withdraw_open_action(instance, reason)
        instance.status = WorkflowStatus.failed
        instance.error = CANCELLED_MESSAGE
        self._clear_gate(instance)
        await self._checkpoint(instance, force=True)
        await self._emit(
            instance,
            AgentEventType.workflow_failed,
            {"step_index": instance.current_step_index, "reason": reason},
        )

    def _lifetime_exceeded(self, instance: WorkflowInstance, definition: WorkflowDefinition, now: datetime) -> bool:
        return now - instance.started_at > definition.max_duration

    async def _expire_lifetime(self, instance: WorkflowInstance, definition: WorkflowDefinition) -> None:
        reason = f"exceeded max duration of {definition.max_duration}"
        logger.info(f"Instance {instance.id} {reason}")
        index = instance.current_step_index
        step = definition.steps[index] if index < len(definition.steps) else None
        if step is not None and step.compensation_tool:
            await self._compensate(
                instance,
                step,
                self._params_for(instance, step),
                reason=reason,
                final_status=WorkflowStatus.failed,
            )
        else:
            await self._fail(instance, reason=reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _definition_of(self, instance: WorkflowInstance) -> WorkflowDefinition:
        return get_definition(instance.definition_name, self._definitions)

    @staticmethod
    def _params_for(
        instance: WorkflowInstance, step: WorkflowStep, *, item: Any = None, has_item: bool = False
    ) -> Dict[str, Any]:
        return resolve_params(
            step,
            context=instance.subject_context,
            step_results=instance.step_results,
            item=item,
            has_item=has_item,
        )

    @staticmethod
    def _clear_gate(instance: WorkflowInstance, *, keep_payload: bool = False) -> None:
        instance.gate = None
        instance.gate_entered_at = None
        instance.resumable_until = None
        instance.pending_action_id = None
        instance.wake_at = None
        if not keep_payload:
            instance.webhook_payload = None

    async def _checkpoint(self, instance: WorkflowInstance, *, force: bool = False) -> None:
        """Durably persist the instance (compare-and-swap on ``version``)."""
        if not force and not self._definition_of(instance).checkpoint_after_each_step:
            return
        expected = instance.version
        instance.version = expected + 1
        instance.updated_at = self._clock()
        try:
            await self._deps.instances.save(instance, expected_version=expected)
        except ConcurrencyConflict:
            instance.version = expected
            raise
        await self._emit(
            instance,
            AgentEventType.checkpoint_saved,
            {
                "version": instance.version,
                "step_index": instance.current_step_index,
                "status": instance.status.value,
            },
        )

    async def _is_overridden(self, instance: WorkflowInstance) -> bool:
        if not instance.task_id:
            return False
        task = await self._deps.tasks.find(instance.task_id)
        return bool(task is not None and task.manual_override)

    async def _return_task_to_progress(self, instance: WorkflowInstance, action: str) -> None:
        if not instance.task_id:
            return
        task = await self._deps.tasks.find(instance.task_id)
        if task is not None and task.status == TaskStatus.pending_input:
            await self._deps.tasks.transition(task.id, TaskStatus.in_progress, action=action)

    async def _settle_task(
        self, task_id: str, current: TaskStatus, target: TaskStatus, action: str, reasoning: Optional[str]
    ) -> None:
        if can_transition(current, target):
            await self._deps.tasks.transition(task_id, target, action=action, reasoning=reasoning)
        else:
            await self._deps.tasks.note(task_id, action=action, status=target.value, reasoning=reasoning)

    async def _is_due(self, instance: WorkflowInstance, now: datetime) -> bool:
        definition = self._definitions.get(instance.definition_name)
        if definition is None:
            return False
        if instance.lease_owner and instance.lease_expires_at and instance.lease_expires_at > now:
            return False
        if self._lifetime_exceeded(instance, definition, now):
            return True
        if instance.resumable_until is not None and now > instance.resumable_until:
            return True
        if instance.status == WorkflowStatus.compensating:
            return True
        if await self._is_overridden(instance):
            # Held by the owner; resuming the task drives it.
            return False
        if instance.status != WorkflowStatus.waiting_on_gate:
            # running without a live lease: its driver went away.
            return True
        if instance.gate == WorkflowGate.schedule_wait:
            return instance.wake_at is not None and now >= instance.wake_at
        if instance.gate == WorkflowGate.webhook_wait:
            return instance.webhook_payload is not None
        if instance.gate == WorkflowGate.owner_approval and instance.pending_action_id:
            action = await self._deps.approvals.find(instance.pending_action_id)
            if action is None:
                logger.warning(f"Instance {instance.id} waits on a missing pending action")
                return False
            return not action.is_open
        return False

    async def _emit(self, instance: WorkflowInstance, event_type: AgentEventType, payload: Dict[str, Any]) -> None:
        await self._deps.events.append(
            AgentEvent(
                type=event_type,
                user_id=instance.user_id,
                task_id=instance.task_id,
                workflow_instance_id=instance.id,
                payload=payload,
                created_at=self._clock(),
            )
        )
