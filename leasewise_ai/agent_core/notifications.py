"""Owner notification dispatch.

The core emits a handful of owner-facing events; delivery (push, SMS,
email) belongs to a collaborator behind the ``Notifier`` protocol.

A failed delivery must never fail the step that produced it, so callers go
through ``safe_notify`` which logs and swallows delivery errors.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    action_needs_approval = "action_needs_approval"
    task_completed = "task_completed"
    task_cancelled = "task_cancelled"
    workflow_failed = "workflow_failed"


class Notifier(Protocol):
    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        *,
        title: str,
        body: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class LoggingNotifier(Notifier):
    """Default notifier: writes notifications to the log."""

    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        *,
        title: str,
        body: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.info(f"[notify:{kind.value}] user={user_id} title={title!r} data={data or {}}")


async def safe_notify(
    notifier: Optional[Notifier],
    user_id: str,
    kind: NotificationKind,
    *,
    title: str,
    body: str = "",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    if notifier is None:
        return
    try:
        await notifier.notify(user_id, kind, title=title, body=body, data=data)
    except Exception as e:
        logger.warning(f"Notification {kind.value} for {user_id} failed: {e}")
