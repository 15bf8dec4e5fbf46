"""Step dispatcher: pushes claimed steps onto the execution fabric."""

from __future__ import annotations

import logging
from typing import Optional

from .contracts import QueueJob, WorkflowStep
from .errors import DispatchError
from .routing import QueueRouter
from .transports import BaseTransport
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class StepDispatcher:
    """Service responsible for enqueueing runnable steps.

    Robot steps go to ``transport``; steps the application executes itself go
    to ``app_transport`` when one is configured.
    """

    def __init__(
        self,
        transport: BaseTransport,
        router: Optional[QueueRouter] = None,
        app_transport: Optional[BaseTransport] = None,
        retries: int = 0,
    ) -> None:
        self.transport = transport
        self.router = router or QueueRouter()
        self.app_transport = app_transport or transport
        self.retries = retries

    async def dispatch(self, step: WorkflowStep) -> str:
        """Enqueue ``step`` and return the job id.

        Raises:
            DispatchError: If the transport fails on every attempt or returns
                no job id.
        """
        route = self.router.route(step)
        job = QueueJob(queue=route.queue, job_class=route.job_class, args=[step.object_id])
        transport = self.app_transport if route.app_fabric else self.transport

        attempt = 0
        while True:
            try:
                jid = await transport.publish(route.queue, job)
                break
            except Exception as e:
                if attempt >= self.retries:
                    logger.error(
                        f"Enqueueing {step.workflow}:{step.process} for {step.object_id} "
                        f"to {route.queue} failed: {e}"
                    )
                    raise DispatchError(step, route.queue, str(e)) from e
                logger.warning(f"Retrying enqueue of {step.process} to {route.queue}: {e}")
                await schedule_retry(attempt)
                attempt += 1

        if not jid:
            logger.error(f"Enqueueing {step.process} to {route.queue} returned no job id")
            raise DispatchError(step, route.queue, "no job id returned")

        logger.info(
            f"Enqueued {route.job_class} for {step.object_id} on {route.queue} (jid {jid})"
        )
        return jid
