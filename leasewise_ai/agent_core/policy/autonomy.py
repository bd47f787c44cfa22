from __future__ import annotations

"""Autonomy resolution for a single tool call.

``AutonomyPolicy`` answers one question: may this tool call run unattended,
and if not, how much owner involvement does it need?

Precedence, strongest first
---------------------------

1. Never-auto-execute tools are clamped to ``draft`` or stricter, whatever
   the other inputs say.
2. An owner override for the tool's category.
3. The owner's accepted graduation level for the category. Only tools listed
   in ``graduated_auto_execute`` take part in graduation; an *eligible* but
   not yet accepted graduation does not change anything.
4. The category default from the policy table.

An otherwise autonomous call made with a confidence below
``confidence_escalation_threshold`` is escalated to ``suggest``.

Resolution is pure: identical inputs give an identical ``AutonomyResolution``,
which is what gets written to the audit trail.
"""

from typing import Optional

from ..errors import PolicyViolation
from ..schemas.domain import (
    AutonomyLevel,
    AutonomyResolution,
    AutonomySource,
    GraduationRecord,
    ToolCategory,
    autonomy_rank,
    stricter_of,
)
from .models import AutonomyPolicyConfig, GraduationConfig


class AutonomyPolicy:
    """Read-only view over ``AutonomyPolicyConfig`` used by the runtime."""

    def __init__(
        self,
        config: Optional[AutonomyPolicyConfig] = None,
        graduation: Optional[GraduationConfig] = None,
    ) -> None:
        self._cfg = config or AutonomyPolicyConfig()
        self._graduation = graduation or GraduationConfig()

    @property
    def config(self) -> AutonomyPolicyConfig:
        return self._cfg

    @property
    def graduation_config(self) -> GraduationConfig:
        return self._graduation

    def category_for(self, tool_name: str) -> ToolCategory:
        """Return the category of a tool, falling back to ``unknown_tool_category``."""
        return self._cfg.tool_categories.get(tool_name, self._cfg.unknown_tool_category)

    def default_level(self, category: ToolCategory) -> AutonomyLevel:
        # Categories missing from the table are treated as the strictest level.
        return self._cfg.category_defaults.get(category, AutonomyLevel.execute)

    def is_never_auto(self, tool_name: str) -> bool:
        return tool_name in self._cfg.never_auto_execute

    def is_graduated_tool(self, tool_name: str) -> bool:
        return tool_name in self._cfg.graduated_auto_execute

    def threshold_for(self, tool_name: str) -> int:
        """Approval streak listed for a tool, or the configured default."""
        entry = self._cfg.graduated_auto_execute.get(tool_name)
        if entry is None:
            return self._graduation.default_threshold
        return entry.required_approvals

    def category_threshold(self, category: ToolCategory) -> int:
        """
        Base approval streak a category needs before graduation is offered.

        The smallest non-zero ``required_approvals`` among the category's
        graduated tools, or ``default_threshold`` when it has none. Tools
        listed with ``0`` follow their category once it graduates and do not
        lower the streak. The result is never below 1, so a rejection always
        lengthens the next streak.
        """
        streaks = [
            entry.required_approvals
            for name, entry in self._cfg.graduated_auto_execute.items()
            if entry.required_approvals > 0 and self.category_for(name) == category
        ]
        return max(1, min(streaks) if streaks else self._graduation.default_threshold)

    def explain(
        self,
        tool_name: str,
        *,
        category: Optional[ToolCategory] = None,
        user_override: Optional[AutonomyLevel] = None,
        graduation: Optional[GraduationRecord] = None,
        confidence: Optional[float] = None,
    ) -> AutonomyResolution:
        """
        Resolve the autonomy level of a tool call and record why.

        Args:
            tool_name: Name of the tool about to be invoked.
            category: Category of the tool; looked up in the catalog when omitted.
            user_override: Owner-configured level for the category, if any.
            graduation: The owner's graduation record for the category, if any.
            confidence: Optional confidence score of the agent's proposal.

        Returns:
            The resolved level together with the rule that produced it.
        """
        cat = category or self.category_for(tool_name)
        default = self.default_level(cat)

        if user_override is not None:
            level = AutonomyLevel(user_override)
            source = AutonomySource.owner_override
            reason = f"owner override for {cat.value}: {level.value}"
        elif (
            graduation is not None
            and self.is_graduated_tool(tool_name)
            and autonomy_rank(graduation.current_level) < autonomy_rank(default)
        ):
            level = graduation.current_level
            source = AutonomySource.graduated
            reason = f"{cat.value} graduated to {level.value}"
        else:
            level = default
            source = AutonomySource.tool_default
            reason = f"default for {cat.value}: {level.value}"

        if (
            level == AutonomyLevel.autonomous
            and confidence is not None
            and confidence < self._cfg.confidence_escalation_threshold
        ):
            level = AutonomyLevel.suggest
            source = AutonomySource.low_confidence
            reason = f"confidence {confidence:.2f} below {self._cfg.confidence_escalation_threshold:.2f}"

        if self.is_never_auto(tool_name):
            level = stricter_of(level, AutonomyLevel.draft)
            source = AutonomySource.never_auto
            reason = f"{tool_name} always requires owner approval"

        return AutonomyResolution(tool_name=tool_name, category=cat, level=level, source=source, reason=reason)

    def resolve(
        self,
        tool_name: str,
        *,
        category: Optional[ToolCategory] = None,
        user_override: Optional[AutonomyLevel] = None,
        graduation: Optional[GraduationRecord] = None,
        confidence: Optional[float] = None,
    ) -> AutonomyLevel:
        """Return only the resolved level (see ``explain``)."""
        return self.explain(
            tool_name,
            category=category,
            user_override=user_override,
            graduation=graduation,
            confidence=confidence,
        ).level

    def assert_auto_executable(self, tool_name: str) -> None:
        """Raise ``PolicyViolation`` if the tool may never run unattended."""
        if self.is_never_auto(tool_name):
            raise PolicyViolation(tool_name)


_DEFAULT_POLICY = AutonomyPolicy()


def resolve_autonomy(
    tool_name: str,
    category: Optional[ToolCategory] = None,
    user_override: Optional[AutonomyLevel] = None,
    *,
    graduation: Optional[GraduationRecord] = None,
    confidence: Optional[float] = None,
    policy: Optional[AutonomyPolicy] = None,
) -> AutonomyLevel:
    """Resolve a tool call's autonomy level against ``policy`` (default table if omitted)."""
    return (policy or _DEFAULT_POLICY).resolve(
        tool_name,
        category=category,
        user_override=user_override,
        graduation=graduation,
        confidence=confidence,
    )
