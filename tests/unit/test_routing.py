"""Tests for queue selection and job class naming."""

import pytest

from accessionflow.config import AccessionFlowConfig
from accessionflow.contracts import WorkflowStep
from accessionflow.routing import QueueRouter, job_class_for


def _step(workflow, process, lane="default"):
    return WorkflowStep(
        object_id="druid:bc123df4567", workflow=workflow, version=1, process=process, lane=lane
    )


def test_default_queue_uses_workflow_and_lane():
    route = QueueRouter().route(_step("accessionWF", "shelve", lane="low"))
    assert route.queue == "accessionWF_low"
    assert route.app_fabric is False


def test_dedicated_queue():
    route = QueueRouter().route(_step("assemblyWF", "jp2-create", lane="low"))
    assert route.queue == "assemblyWF_jp2"


@pytest.mark.parametrize(
    "workflow,process",
    [
        ("accessionWF", "publish"),
        ("accessionWF", "update-doi"),
        ("accessionWF", "update-orcid-work"),
        ("releaseWF", "release-members"),
        ("releaseWF", "release-publish"),
    ],
)
def test_app_fabric_processes(workflow, process):
    route = QueueRouter().route(_step(workflow, process))
    assert route.queue == f"{workflow}_default_dsa"
    assert route.app_fabric is True


@pytest.mark.parametrize(
    "workflow,process,expected",
    [
        ("accessionWF", "technical-metadata", "Robots::DorRepo::Accession::TechnicalMetadata"),
        ("assemblyWF", "jp2-create", "Robots::DorRepo::Assembly::Jp2Create"),
        (
            "wasCrawlPreassemblyWF",
            "end-was-crawl-preassembly",
            "Robots::DorRepo::WasCrawlPreassembly::EndWasCrawlPreassembly",
        ),
        (
            "preservationIngestWF",
            "transfer-object",
            "Robots::SdrRepo::PreservationIngest::TransferObject",
        ),
    ],
)
def test_job_class_names(workflow, process, expected):
    assert job_class_for(workflow, process) == expected


def test_routes_extended_from_config():
    config = AccessionFlowConfig(
        routing={
            "dedicated": [{"workflow": "ocrWF", "process": "ocr-create", "queue": "ocrWF_gpu"}],
            "app_fabric": [{"workflow": "gisDeliveryWF", "process": "load-geoserver"}],
        }
    )
    router = QueueRouter.from_config(config)

    assert router.route(_step("ocrWF", "ocr-create")).queue == "ocrWF_gpu"
    assert router.route(_step("gisDeliveryWF", "load-geoserver")).queue == "gisDeliveryWF_default_dsa"
    assert router.route(_step("assemblyWF", "jp2-create")).queue == "assemblyWF_jp2"


def test_dedicated_route_without_queue_rejected():
    config = AccessionFlowConfig(
        routing={"dedicated": [{"workflow": "ocrWF", "process": "ocr-create"}]}
    )
    with pytest.raises(ValueError):
        QueueRouter.from_config(config)
