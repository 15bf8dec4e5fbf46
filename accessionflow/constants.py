"""Workflow names, step states and other shared constants."""

from __future__ import annotations

DEFAULT_LANE = "default"

WAITING = "waiting"
QUEUED = "queued"
STARTED = "started"
COMPLETED = "completed"
ERROR = "error"
SKIPPED = "skipped"
RETRYING = "retrying"

STEP_STATUSES = frozenset({WAITING, QUEUED, STARTED, COMPLETED, ERROR, SKIPPED, RETRYING})
# Statuses that satisfy a prerequisite.
DONE_STATUSES = frozenset({COMPLETED, SKIPPED})

ACCESSION_WF = "accessionWF"
END_ACCESSION = "end-accession"
ACCESSIONED_LIFECYCLE = "accessioned"

VERSIONING_WF = "versioningWF"
SUBMIT_VERSION = "submit-version"

# Assembly-type workflows and the final step that is ignored when deciding
# whether the object is still assembling. The final step of most of these
# workflows closes the version, so it is still incomplete while closing.
# ``None`` means every step counts.
ASSEMBLY_WORKFLOWS: dict[str, str | None] = {
    "assemblyWF": "accessioning-initiate",
    "wasCrawlPreassemblyWF": "end-was-crawl-preassembly",
    "wasSeedPreassemblyWF": "end-was-seed-preassembly",
    "gisDeliveryWF": "start-accession-workflow",
    "ocrWF": "end-ocr",
    "speechToTextWF": "end-stt",
    "gisAssemblyWF": None,
}

# Workflows executed by the preservation robots.
SDR_WORKFLOWS = frozenset({"preservationIngestWF", "preservationAuditWF"})

DEFAULT_QUEUED_THRESHOLD_HOURS = 24
DEFAULT_STARTED_THRESHOLD_HOURS = 48
DEFAULT_STEP_UPDATED_DELAY = 1.0
