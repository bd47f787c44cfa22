from __future__ import annotations

"""Per-(user, category) graduation state machine.

The tracker consumes owner decisions and turns them into trust:

- ``record_approval``: extends the approval streak. Reaching the effective
  threshold only makes the category *eligible*; nothing advances on its own.
- ``record_rejection``: resets the streak and multiplies the backoff, so the
  next graduation needs a proportionally longer streak.
- ``accept_graduation``: only valid when eligible; moves one tier along the
  ladder and resets streak and backoff.
- ``decline_graduation``: keeps the level but still applies the backoff.

Atomicity
---------

Every operation is a read-modify-write of one record. Within the process a
per-key ``asyncio.Lock`` serializes writers; across processes the repository's
versioned compare-and-swap rejects stale writes, and the tracker retries on
``ConcurrencyConflict``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from ..errors import ConcurrencyConflict, GraduationNotEligibleError, InvalidTransitionError
from ..policy.autonomy import AutonomyPolicy
from ..policy.models import GraduationConfig
from ..repos.interfaces import GraduationRepository
from ..schemas.domain import (
    AutonomyLevel,
    GraduationProgress,
    GraduationRecord,
    ToolCategory,
    autonomy_rank,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_MAX_CAS_RETRIES = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_eligible(record: GraduationRecord, config: GraduationConfig) -> bool:
    """Eligibility: the streak reached the effective threshold below the maximum level."""
    return (
        record.consecutive_approvals >= record.effective_threshold
        and autonomy_rank(record.current_level) > autonomy_rank(config.max_level)
    )


def progress_of(record: GraduationRecord, config: GraduationConfig) -> GraduationProgress:
    threshold = record.effective_threshold
    if threshold <= 0:
        pct = 100
    else:
        pct = min(100, round(100 * record.consecutive_approvals / threshold))
    return GraduationProgress(
        category=record.category,
        current_level=record.current_level,
        consecutive_approvals=record.consecutive_approvals,
        threshold=threshold,
        eligible=is_eligible(record, config),
        progress_pct=pct,
    )


class GraduationTracker:
    """Apply owner decisions to graduation records."""

    def __init__(
        self,
        *,
        repo: GraduationRepository,
        policy: AutonomyPolicy,
        config: Optional[GraduationConfig] = None,
        clock: Clock = _utc_now,
    ) -> None:
        self._repo = repo
        self._policy = policy
        self._cfg = config or policy.graduation_config
        self._clock = clock
        self._locks: Dict[Tuple[str, ToolCategory], asyncio.Lock] = {}

    @property
    def config(self) -> GraduationConfig:
        return self._cfg

    def _lock_for(self, user_id: str, category: ToolCategory) -> asyncio.Lock:
        key = (user_id, ToolCategory(category))
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _next_level(self, current: AutonomyLevel) -> AutonomyLevel:
        """Next ladder tier that is less strict than ``current``."""
        rank = autonomy_rank(current)
        for level in self._cfg.ladder:
            if autonomy_rank(level) < rank:
                return level
        return current

    def _backoff(self, multiplier: float) -> float:
        grown = multiplier * self._cfg.backoff_factor
        if self._cfg.max_backoff_multiplier is not None:
            grown = min(grown, self._cfg.max_backoff_multiplier)
        return grown

    async def get(self, user_id: str, category: ToolCategory) -> Optional[GraduationRecord]:
        return await self._repo.get(user_id, category)

    async def _get_or_create(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        record = await self._repo.get(user_id, category)
        if record is not None:
            return record
        threshold = self._policy.category_threshold(category)
        record = GraduationRecord(
            user_id=user_id,
            category=category,
            current_level=self._policy.default_level(category),
            graduation_threshold=threshold,
        )
        try:
            await self._repo.create(record)
        except ConcurrencyConflict:
            existing = await self._repo.get(user_id, category)
            if existing is None:
                raise
            return existing
        logger.debug(f"Created graduation record for {user_id}/{category.value} threshold={threshold}")
        return record

    async def _mutate(
        self,
        user_id: str,
        category: ToolCategory,
        change: Callable[[GraduationRecord, datetime], None],
        *,
        create: bool = True,
    ) -> GraduationRecord:
        category = ToolCategory(category)
        async with self._lock_for(user_id, category):
            for attempt in range(_MAX_CAS_RETRIES):
                if create:
                    current = await self._get_or_create(user_id, category)
                else:
                    current = await self._repo.get(user_id, category)
                    if current is None:
                        raise GraduationNotEligibleError(f"no graduation record for {user_id}/{category.value}")
                now = self._clock()
                updated = current.model_copy(deep=True)
                change(updated, now)
                updated.version = current.version + 1
                updated.updated_at = now
                try:
                    await self._repo.save(updated, expected_version=current.version)
                    return updated
                except ConcurrencyConflict:
                    logger.debug(
                        f"Graduation record {user_id}/{category.value} changed concurrently, retry {attempt + 1}"
                    )
            raise ConcurrencyConflict(f"could not update graduation record {user_id}/{category.value}")

    async def record_approval(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        """Count one owner approval towards the category's streak."""

        def change(record: GraduationRecord, now: datetime) -> None:
            record.consecutive_approvals += 1
            record.total_approvals += 1
            record.last_approval_at = now
            if is_eligible(record, self._cfg) and record.last_suggestion_at is None:
                record.last_suggestion_at = now

        record = await self._mutate(user_id, category, change)
        logger.info(
            f"Approval recorded for {user_id}/{record.category.value}: "
            f"{record.consecutive_approvals}/{record.effective_threshold:g}"
        )
        return record

    async def record_rejection(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        """Reset the streak and grow the backoff multiplier."""

        def change(record: GraduationRecord, now: datetime) -> None:
            record.consecutive_approvals = 0
            record.total_rejections += 1
            record.last_rejection_at = now
            record.backoff_multiplier = self._backoff(record.backoff_multiplier)
            record.last_suggestion_at = None

        record = await self._mutate(user_id, category, change)
        logger.info(
            f"Rejection recorded for {user_id}/{record.category.value}: backoff={record.backoff_multiplier:g}"
        )
        return record

    async def accept_graduation(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        """
        Advance the category one tier along the ladder.

        Raises:
            GraduationNotEligibleError: If the category is not eligible.
        """

        def change(record: GraduationRecord, now: datetime) -> None:
            if not is_eligible(record, self._cfg):
                raise GraduationNotEligibleError(
                    f"{user_id}/{record.category.value} is not eligible for graduation "
                    f"({record.consecutive_approvals}/{record.effective_threshold:g})"
                )
            record.current_level = self._next_level(record.current_level)
            record.consecutive_approvals = 0
            record.backoff_multiplier = 1.0
            record.last_suggestion_at = None

        record = await self._mutate(user_id, category, change, create=False)
        logger.info(f"Graduation accepted for {user_id}/{record.category.value}: now {record.current_level.value}")
        return record

    async def decline_graduation(self, user_id: str, category: ToolCategory) -> GraduationRecord:
        """
        Keep the current level and apply the backoff penalty.

        Raises:
            InvalidTransitionError: If there is no graduation to decline.
        """

        def change(record: GraduationRecord, now: datetime) -> None:
            if not is_eligible(record, self._cfg):
                raise InvalidTransitionError(f"no graduation offered for {user_id}/{record.category.value}")
            record.consecutive_approvals = 0
            record.backoff_multiplier = self._backoff(record.backoff_multiplier)
            record.last_suggestion_at = None

        record = await self._mutate(user_id, category, change, create=False)
        logger.info(
            f"Graduation declined for {user_id}/{record.category.value}: backoff={record.backoff_multiplier:g}"
        )
        return record

    async def progress(self, user_id: str, category: ToolCategory) -> GraduationProgress:
        """Eligibility/progress view; categories without a record report the defaults."""
        category = ToolCategory(category)
        record = await self._repo.get(user_id, category)
        if record is None:
            record = GraduationRecord(
                user_id=user_id,
                category=category,
                current_level=self._policy.default_level(category),
                graduation_threshold=self._policy.category_threshold(category),
            )
        return progress_of(record, self._cfg)

    async def list_progress(self, user_id: str) -> list[GraduationProgress]:
        return [progress_of(record, self._cfg) for record in await self._repo.list(user_id)]
