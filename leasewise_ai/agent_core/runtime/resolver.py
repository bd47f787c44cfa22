from __future__ import annotations

import logging
from typing import Optional

from ..graduation.tracker import GraduationTracker
from ..policy.autonomy import AutonomyPolicy
from ..repos.interfaces import AutonomyOverrideRepository, EventRepository
from ..schemas.domain import AgentEvent, AgentEventType, AutonomyResolution

logger = logging.getLogger(__name__)


class AutonomyResolver:
    """Gather a user's override and graduation state and resolve a tool call.

    The resolution itself is delegated to the pure ``AutonomyPolicy``; this
    class only does the lookups and writes the ``autonomy.resolved`` event.
    """

    def __init__(
        self,
        *,
        policy: AutonomyPolicy,
        tracker: GraduationTracker,
        overrides: Optional[AutonomyOverrideRepository] = None,
        events: Optional[EventRepository] = None,
    ) -> None:
        self._policy = policy
        self._tracker = tracker
        self._overrides = overrides
        self._events = events

    @property
    def policy(self) -> AutonomyPolicy:
        return self._policy

    async def resolve(
        self,
        user_id: str,
        tool_name: str,
        *,
        confidence: Optional[float] = None,
        task_id: Optional[str] = None,
        workflow_instance_id: Optional[str] = None,
    ) -> AutonomyResolution:
        category = self._policy.category_for(tool_name)
        override = await self._overrides.get(user_id, category) if self._overrides is not None else None
        record = await self._tracker.get(user_id, category)
        resolution = self._policy.explain(
            tool_name,
            category=category,
            user_override=override,
            graduation=record,
            confidence=confidence,
        )
        logger.debug(
            f"Autonomy for {user_id}/{tool_name}: {resolution.level.value} "
            f"({resolution.source.value}: {resolution.reason})"
        )
        if self._events is not None:
            await self._events.append(
                AgentEvent(
                    type=AgentEventType.autonomy_resolved,
                    user_id=user_id,
                    task_id=task_id,
                    workflow_instance_id=workflow_instance_id,
                    payload=resolution.model_dump(mode="json"),
                )
            )
        return resolution
