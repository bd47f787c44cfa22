"""Autonomy policy for tool calls.

The policy layer decides, per tool call, whether the agent may act alone or
must put the call in front of the owner. It is static configuration plus a
pure resolution function; mutable trust state lives in ``graduation``.

Components
----------

- ``AutonomyPolicyConfig``: category defaults, the never-auto-execute set,
  graduated tool thresholds and the tool catalog.
- ``GraduationConfig``: backoff and ladder constants for graduation.
- ``AutonomyPolicy``: resolves a call to an ``AutonomyResolution``.
"""

from .autonomy import AutonomyPolicy, resolve_autonomy
from .catalog import TOOL_CATEGORIES
from .models import (
    AutonomyPolicyConfig,
    GraduatedTool,
    GraduationConfig,
)

__all__ = [
    "AutonomyPolicy",
    "AutonomyPolicyConfig",
    "GraduatedTool",
    "GraduationConfig",
    "TOOL_CATEGORIES",
    "resolve_autonomy",
]
