"""Version lifecycle: when an object's version may be opened, closed or is accessioned.

State is derived from the step store and the version ledger:

* ``open``: the current version has a ``versioningWF`` with unfinished steps.
* ``accessioning``: the current version has an ``accessionWF`` with unfinished
  steps other than ``end-accession``. The terminal step is ignored so a new
  version can be opened from other workflows before it is marked complete.
* ``accessioned``: some version of the object completed accessioning. The
  ledger milestone makes this monotonic.
* ``assembling``: an assembly-type workflow for the current version has
  unfinished steps, ignoring the step that closes the version.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, DefaultDict, Dict, List, Optional

from pydantic import BaseModel

from .constants import (
    ACCESSION_WF,
    ACCESSIONED_LIFECYCLE,
    ASSEMBLY_WORKFLOWS,
    COMPLETED,
    END_ACCESSION,
    SUBMIT_VERSION,
    VERSIONING_WF,
)
from .contracts import WorkflowStep
from .db import ObjectVersion, VersionLedger
from .errors import (
    AccessioningInProgressError,
    AlreadyOpenError,
    AssemblingError,
    MissingVersionMetadataError,
    NotAccessionedError,
    ObjectNotFoundError,
    PreconditionError,
    PreservationNotFoundError,
    VersioningError,
    VersionNotOpenError,
)
from .preservation import PreservationClient
from .service import WorkflowProcessService

logger = logging.getLogger(__name__)


class VersionStatus(BaseModel):
    object_id: str
    version: int
    open: bool
    openable: bool
    accessioning: bool
    accessioned: bool
    assembling: bool
    closeable: bool
    description: Optional[str] = None
    significance: Optional[str] = None


def _incomplete(steps: List[WorkflowStep], ignore: Optional[str] = None) -> List[WorkflowStep]:
    return [s for s in steps if not s.is_done() and s.process != ignore]


class VersionLifecycleController:
    """Opens and closes object versions and records the accessioned milestone."""

    def __init__(
        self,
        service: WorkflowProcessService,
        ledger: VersionLedger,
        preservation: Optional[PreservationClient] = None,
        sync_with_preservation: bool = False,
    ) -> None:
        if sync_with_preservation and preservation is None:
            raise ValueError("sync_with_preservation requires a preservation client")
        self.service = service
        self.repository = service.repository
        self.ledger = ledger
        self.preservation = preservation
        self.sync_with_preservation = sync_with_preservation
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: DefaultDict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _object_lock(self, object_id: str) -> AsyncIterator[None]:
        """Serialise transitions per object; the lock is dropped once unused."""
        lock = self._locks.setdefault(object_id, asyncio.Lock())
        self._lock_users[object_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[object_id] -= 1
            if not self._lock_users[object_id]:
                del self._lock_users[object_id]
                del self._locks[object_id]

    # -- derived state -------------------------------------------------

    async def current_version(self, object_id: str) -> int:
        row = await self.ledger.find_current(object_id)
        if row is not None:
            return row.version
        steps = await self.repository.list_steps(object_id)
        if not steps:
            raise ObjectNotFoundError(f"No versions recorded for {object_id}")
        return max(s.version for s in steps)

    async def _workflow_steps(self, object_id: str, workflow: str, version: int) -> List[WorkflowStep]:
        return await self.repository.list_steps(object_id, workflow=workflow, version=version)

    async def is_open(self, object_id: str, version: int) -> bool:
        steps = await self._workflow_steps(object_id, VERSIONING_WF, version)
        return bool(_incomplete(steps))

    async def is_accessioning(self, object_id: str, version: int) -> bool:
        steps = await self._workflow_steps(object_id, ACCESSION_WF, version)
        return bool(_incomplete(steps, ignore=END_ACCESSION))

    async def is_assembling(self, object_id: str, version: int) -> bool:
        for workflow, ignored in ASSEMBLY_WORKFLOWS.items():
            steps = await self._workflow_steps(object_id, workflow, version)
            if _incomplete(steps, ignore=ignored):
                return True
        return False

    async def is_accessioned(self, object_id: str) -> bool:
        if await self.ledger.is_accessioned(object_id):
            return True
        steps = await self.repository.list_steps(object_id)
        return any(s.lifecycle == ACCESSIONED_LIFECYCLE and s.status == COMPLETED for s in steps)

    async def status(self, object_id: str) -> VersionStatus:
        version = await self.current_version(object_id)
        row = await self.ledger.get(object_id, version)
        return VersionStatus(
            object_id=object_id,
            version=version,
            open=await self.is_open(object_id, version),
            openable=await self.can_open(object_id),
            accessioning=await self.is_accessioning(object_id, version),
            accessioned=await self.is_accessioned(object_id),
            assembling=await self.is_assembling(object_id, version),
            closeable=await self.can_close(object_id),
            description=row.description if row else None,
            significance=row.significance if row else None,
        )

    # -- preconditions -------------------------------------------------

    async def _ensure_openable(self, object_id: str, assume_accessioned: bool) -> int:
        if not assume_accessioned and not await self.is_accessioned(object_id):
            raise NotAccessionedError(f"Object {object_id} not yet accessioned")
        version = await self.current_version(object_id)
        if await self.is_open(object_id, version):
            raise AlreadyOpenError(f"Object {object_id} already opened for versioning")
        if await self.is_accessioning(object_id, version):
            raise AccessioningInProgressError(f"Object {object_id} currently being accessioned")
        if self.sync_with_preservation and self.preservation is not None and not assume_accessioned:
            await self._check_preservation(self.preservation, object_id, version)
        return version

    async def _check_preservation(
        self, preservation: PreservationClient, object_id: str, version: int
    ) -> None:
        try:
            preserved = await preservation.current_version(object_id)
        except PreservationNotFoundError as e:
            raise PreconditionError(
                f"Preservation is not yet answering queries about {object_id}"
            ) from e
        if preserved != version:
            raise PreconditionError(
                f"Version from preservation is out of sync for {object_id}: "
                f"preservation expects {preserved} but current version is {version}"
            )

    async def _ensure_closeable(
        self,
        object_id: str,
        description: Optional[str] = None,
        significance: Optional[str] = None,
    ) -> int:
        """Check a close is allowed, counting metadata about to be supplied."""
        version = await self.current_version(object_id)
        if not await self.is_open(object_id, version):
            raise VersionNotOpenError(
                f"Trying to close version {version} on {object_id} which is not opened for versioning"
            )
        if await self.is_assembling(object_id, version):
            raise AssemblingError(
                f"Trying to close version {version} on {object_id} which has active assembly"
            )
        if await self._workflow_steps(object_id, ACCESSION_WF, version):
            raise AccessioningInProgressError(
                f"{ACCESSION_WF} already created for versioned object {object_id}"
            )
        row = await self.ledger.get(object_id, version)
        if row is None or not (description or row.description) or not (
            significance or row.significance
        ):
            raise MissingVersionMetadataError(
                f"Version {version} of {object_id} needs a description and significance"
            )
        return version

    async def can_open(self, object_id: str, assume_accessioned: bool = False) -> bool:
        try:
            await self._ensure_openable(object_id, assume_accessioned)
        except (VersioningError, ObjectNotFoundError):
            return False
        return True

    async def can_close(self, object_id: str) -> bool:
        try:
            await self._ensure_closeable(object_id)
        except (VersioningError, ObjectNotFoundError):
            return False
        return True

    # -- transitions ---------------------------------------------------

    async def register(self, object_id: str) -> ObjectVersion:
        """Record version 1 of a newly registered object."""
        return await self.ledger.register(object_id)

    async def open(
        self,
        object_id: str,
        description: Optional[str] = None,
        significance: Optional[str] = None,
        opened_by: Optional[str] = None,
        assume_accessioned: bool = False,
    ) -> ObjectVersion:
        """Open the next version for editing.

        Raises:
            NotAccessionedError: If the object was never accessioned and
                ``assume_accessioned`` is not set.
            AlreadyOpenError: If a version is already open, including when a
                concurrent caller opened it first.
            PreconditionError: If accessioning is in progress or preservation
                disagrees about the current version.
        """
        async with self._object_lock(object_id):
            current = await self._ensure_openable(object_id, assume_accessioned)
            new_version = current + 1
            row = await self.ledger.open_version(
                object_id,
                new_version,
                description=description,
                significance=significance,
                opened_by=opened_by,
            )
            await self.service.create_workflow(object_id, VERSIONING_WF, new_version)
            if description or significance or opened_by:
                data: Dict[str, object] = {"who": opened_by, "version": str(new_version)}
                if description:
                    data["description"] = description
                if significance:
                    data["significance"] = significance
                await self.ledger.record_event(object_id, "version_open", data)
            logger.info(f"Opened version {new_version} of {object_id}")

        return row

    async def close(
        self,
        object_id: str,
        description: Optional[str] = None,
        significance: Optional[str] = None,
        closed_by: Optional[str] = None,
        start_accession: bool = True,
    ) -> ObjectVersion:
        """Close the open version and, by default, start accessioning it.

        Raises:
            MissingVersionMetadataError: If description or significance is missing.
            VersionNotOpenError: If no version is open.
            AssemblingError: If an assembly workflow is still running.
            AccessioningInProgressError: If accessioning already exists for the version.
            DispatchError: If the new accessioning workflow could not be queued.
                The version stays closed and its close event is recorded.

        Metadata is only written once every check has passed.
        """
        async with self._object_lock(object_id):
            version = await self._ensure_closeable(object_id, description, significance)
            if description or significance:
                await self.ledger.update_metadata(
                    object_id, version, description=description, significance=significance
                )

            row = await self.ledger.close_version(object_id, version, closed_by=closed_by)
            await self.ledger.record_event(
                object_id, "version_close", {"who": closed_by, "version": str(version)}
            )
            logger.info(f"Closed version {version} of {object_id}")
            await self.service.update_status(object_id, VERSIONING_WF, SUBMIT_VERSION, COMPLETED)
            if start_accession:
                await self.service.create_workflow(object_id, ACCESSION_WF, version)

        return row

    async def mark_accessioned(self, object_id: str, version: int) -> bool:
        """Record that ``version`` finished accessioning. Never reverted."""
        recorded = await self.ledger.mark_accessioned(object_id, version)
        if recorded:
            logger.info(f"Version {version} of {object_id} accessioned")
        return recorded

    async def on_accessioned(self, step: WorkflowStep) -> None:
        """Notifier hook for the completed terminal accessioning step."""
        await self.mark_accessioned(step.object_id, step.version)
