"""Spending limit gate checked before any reservation is created."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from creditledger.contracts.enums import LimitScope, LimitTimeFrame
from creditledger.contracts.models import FailedLimit, LimitCheckResult, SpendingLimit
from creditledger.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ROLLING_WINDOWS: dict[LimitTimeFrame, timedelta] = {
    LimitTimeFrame.DAILY: timedelta(hours=24),
    LimitTimeFrame.WEEKLY: timedelta(days=7),
    LimitTimeFrame.MONTHLY: timedelta(days=30),
}


class SpendingLimitGate(Protocol):
    """Side-effect free check of an estimated cost against configured limits."""

    async def check(
        self,
        workspace_id: str,
        agent_id: str | None,
        estimated_amount: int,
    ) -> LimitCheckResult:
        ...


class SpendingSource(Protocol):
    """Reports net spend of a workspace (optionally one agent) since a time."""

    async def spending_in_window(
        self,
        workspace_id: str,
        agent_id: str | None,
        since: datetime,
    ) -> int:
        ...


def rolling_window_start(time_frame: LimitTimeFrame, now: datetime) -> datetime:
    """Start of the rolling window ending at now."""
    return now - ROLLING_WINDOWS[time_frame]


class RollingWindowLimitGate:
    """SpendingLimitGate over daily, weekly and monthly rolling windows.

    Workspace limits apply to all spend in the workspace; agent limits apply
    only to spend attributed to that agent. Workspaces without explicit
    limits fall back to default_limits, read from settings when not given.
    """

    def __init__(
        self,
        spending: SpendingSource,
        workspace_limits: dict[str, list[SpendingLimit]] | None = None,
        agent_limits: dict[tuple[str, str], list[SpendingLimit]] | None = None,
        default_limits: list[SpendingLimit] | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._spending = spending
        self._workspace_limits = dict(workspace_limits or {})
        self._agent_limits = dict(agent_limits or {})
        if default_limits is None:
            default_limits = (settings or get_settings()).get_default_spending_limits()
        self._default_limits = list(default_limits)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def check(
        self,
        workspace_id: str,
        agent_id: str | None,
        estimated_amount: int,
    ) -> LimitCheckResult:
        """Check estimated_amount against every applicable limit.

        Raises:
            ValueError: If estimated_amount is negative
        """
        if estimated_amount < 0:
            raise ValueError("estimated_amount must be >= 0")

        now = self._clock()
        scoped: list[tuple[LimitScope, SpendingLimit, str | None]] = [
            (LimitScope.WORKSPACE, limit, None)
            for limit in self._workspace_limits.get(workspace_id, self._default_limits)
        ]
        if agent_id is not None:
            scoped.extend(
                (LimitScope.AGENT, limit, agent_id)
                for limit in self._agent_limits.get((workspace_id, agent_id), [])
            )

        failed: list[FailedLimit] = []
        for scope, limit, scoped_agent in scoped:
            since = rolling_window_start(limit.time_frame, now)
            spent = await self._spending.spending_in_window(workspace_id, scoped_agent, since)
            if spent + estimated_amount > limit.amount:
                failed.append(
                    FailedLimit(
                        scope=scope,
                        time_frame=limit.time_frame,
                        limit=limit.amount,
                        current_spending=spent,
                    )
                )

        if failed:
            logger.info(
                "Spending limit check failed: workspace=%s agent=%s estimated=%d failed=%d",
                workspace_id,
                agent_id,
                estimated_amount,
                len(failed),
            )
        return LimitCheckResult(passed=not failed, failed_limits=failed)
