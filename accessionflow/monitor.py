"""Periodic detection of steps stuck in ``queued`` or ``started``."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field

from .config import MonitorConfig
from .constants import QUEUED, STARTED
from .contracts import WorkflowStep, utcnow
from .persistence import StepRepository

logger = logging.getLogger(__name__)


class StuckStepReport(BaseModel):
    checked_at: datetime = Field(default_factory=utcnow)
    queued: List[WorkflowStep] = Field(default_factory=list)
    started: List[WorkflowStep] = Field(default_factory=list)
    # A status hit batch_size; older rows are reported first, the rest on later sweeps.
    truncated: bool = False

    @property
    def total(self) -> int:
        return len(self.queued) + len(self.started)


AlertSink = Callable[[StuckStepReport], Awaitable[None]]


async def log_alert(report: StuckStepReport) -> None:
    """Default sink: one WARNING per stuck step."""
    for status, steps in ((QUEUED, report.queued), (STARTED, report.started)):
        for step in steps:
            logger.warning(
                f"Step {step.workflow}:{step.process} for {step.object_id} v{step.version} "
                f"has been {status} since {step.updated_at.isoformat()}"
            )


class StuckStepMonitor:
    """Reports stuck steps to an alert sink. Never changes step state."""

    def __init__(
        self,
        repository: StepRepository,
        config: Optional[MonitorConfig] = None,
        alert: AlertSink = log_alert,
    ) -> None:
        self.repository = repository
        self.config = config or MonitorConfig()
        self.alert = alert

    async def sweep(self, now: Optional[datetime] = None) -> StuckStepReport:
        now = now or utcnow()
        limit = self.config.batch_size
        queued = await self.repository.find_stale(
            QUEUED, now - timedelta(hours=self.config.queued_threshold_hours), limit=limit
        )
        started = await self.repository.find_stale(
            STARTED, now - timedelta(hours=self.config.started_threshold_hours), limit=limit
        )
        report = StuckStepReport(
            checked_at=now,
            queued=queued,
            started=started,
            truncated=len(queued) >= limit or len(started) >= limit,
        )
        if report.total:
            await self.alert(report)
        logger.info(
            f"Stuck step sweep: {len(report.queued)} queued, {len(report.started)} started"
        )
        return report

    async def run_forever(self, interval: Optional[float] = None) -> None:
        interval = interval if interval is not None else self.config.interval_seconds
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Stuck step sweep failed: {e}")
            await asyncio.sleep(interval)
