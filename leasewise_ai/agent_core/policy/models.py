from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import Field, field_validator

from ..schemas.base import FrozenSchema
from ..schemas.domain import AutonomyLevel, ToolCategory, autonomy_rank
from .catalog import TOOL_CATEGORIES


class GraduatedTool(FrozenSchema):
    """
    Graduation threshold for a single tool.

    Attributes:
        required_approvals: Consecutive owner approvals needed before the
            category may be offered a graduation. A category uses the
            smallest non-zero value among its tools. ``0`` means the tool is
            always auto-executed once its category has graduated.
    """

    required_approvals: int = Field(ge=0)


DEFAULT_CATEGORY_LEVELS: Dict[ToolCategory, AutonomyLevel] = {
    ToolCategory.query: AutonomyLevel.autonomous,
    ToolCategory.memory: AutonomyLevel.autonomous,
    ToolCategory.planning: AutonomyLevel.autonomous,
    ToolCategory.generate: AutonomyLevel.suggest,
    ToolCategory.action: AutonomyLevel.draft,
    ToolCategory.integration: AutonomyLevel.draft,
    ToolCategory.workflow: AutonomyLevel.execute,
}

DEFAULT_NEVER_AUTO_EXECUTE: FrozenSet[str] = frozenset(
    {
        "terminate_lease",
        "claim_bond",
        "send_breach_notice",
        "change_rent_amount",
        "process_payment",
        "accept_application",
        "escalate_arrears",
    }
)

DEFAULT_GRADUATED_AUTO_EXECUTE: Dict[str, GraduatedTool] = {
    "send_message": GraduatedTool(required_approvals=2),
    "send_rent_reminder": GraduatedTool(required_approvals=3),
    "schedule_inspection": GraduatedTool(required_approvals=3),
    "update_maintenance_status": GraduatedTool(required_approvals=0),
    "create_listing": GraduatedTool(required_approvals=5),
    "create_work_order": GraduatedTool(required_approvals=5),
}

# Below this confidence an otherwise autonomous call is escalated.
CONFIDENCE_ESCALATION_THRESHOLD = 0.4


class AutonomyPolicyConfig(FrozenSchema):
    """
    Static autonomy table, loaded once and read-only for the process lifetime.

    Attributes:
        category_defaults: Default autonomy level per tool category.
        never_auto_execute: Tools that are always gated, whatever the owner's
            overrides or graduation state.
        graduated_auto_execute: Tools that take part in graduation, with the
            approval streak each one requires.
        tool_categories: Tool name to category lookup.
        unknown_tool_category: Category assumed for tools missing from the
            lookup.
        confidence_escalation_threshold: Confidence below which an autonomous
            call is downgraded to ``suggest``.
    """

    category_defaults: Dict[ToolCategory, AutonomyLevel] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_LEVELS)
    )
    never_auto_execute: FrozenSet[str] = Field(default=DEFAULT_NEVER_AUTO_EXECUTE)
    graduated_auto_execute: Dict[str, GraduatedTool] = Field(
        default_factory=lambda: dict(DEFAULT_GRADUATED_AUTO_EXECUTE)
    )
    tool_categories: Dict[str, ToolCategory] = Field(default_factory=lambda: dict(TOOL_CATEGORIES))
    unknown_tool_category: ToolCategory = ToolCategory.action
    confidence_escalation_threshold: float = Field(default=CONFIDENCE_ESCALATION_THRESHOLD, ge=0.0, le=1.0)


class GraduationConfig(FrozenSchema):
    """
    Constants for the graduation state machine.

    Attributes:
        default_threshold: Base approval streak for categories without a
            graduated tool in ``graduated_auto_execute``.
        backoff_factor: Multiplier applied to ``backoff_multiplier`` on every
            rejection or declined graduation. Must be greater than 1.
        max_backoff_multiplier: Optional cap on the multiplier. ``None`` keeps
            every rejection strictly increasing the required streak.
        ladder: Graduation tiers from strictest to most autonomous. Accepting a
            graduation moves one tier along; the last tier is the maximum level.
    """

    default_threshold: int = Field(default=10, ge=1)
    backoff_factor: float = Field(default=2.0, gt=1.0)
    max_backoff_multiplier: Optional[float] = Field(default=None, ge=1.0)
    ladder: Tuple[AutonomyLevel, ...] = (
        AutonomyLevel.execute,
        AutonomyLevel.draft,
        AutonomyLevel.autonomous,
    )

    @field_validator("ladder")
    @classmethod
    def _ladder_must_loosen(cls, value: Tuple[AutonomyLevel, ...]) -> Tuple[AutonomyLevel, ...]:
        if not value:
            raise ValueError("graduation ladder must not be empty")
        ranks = [autonomy_rank(level) for level in value]
        if any(a <= b for a, b in zip(ranks, ranks[1:])):
            raise ValueError("graduation ladder must go from strictest to most autonomous")
        return value

    @property
    def max_level(self) -> AutonomyLevel:
        return self.ladder[-1]
