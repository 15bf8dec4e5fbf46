"""Tests for computing which processes are ready to run."""

import random

import pytest

from accessionflow.contracts import ProcessSpec, WorkflowDefinition
from accessionflow.definitions import DefinitionCache, validate_definition
from accessionflow.resolver import ready_processes


def _definition(graph, skip=()):
    return WorkflowDefinition(
        name="testWF",
        processes=tuple(
            ProcessSpec(name=name, prerequisites=frozenset(prereqs), skip_queue=name in skip)
            for name, prereqs in graph.items()
        ),
    )


def _random_dag(rng, size):
    names = [f"p{i}" for i in range(size)]
    graph = {}
    for i, name in enumerate(names):
        earlier = names[:i]
        graph[name] = rng.sample(earlier, rng.randint(0, min(3, len(earlier))))
    skip = {n for n in names if rng.random() < 0.15}
    return graph, skip


def test_diamond_scenario():
    definition = _definition({"A": [], "B": ["A"], "C": ["A"], "D": ["B", "C"]})

    assert ready_processes(definition, set()) == ["A"]
    assert ready_processes(definition, {"A"}) == ["B", "C"]
    assert ready_processes(definition, {"A", "B"}) == ["C"]
    assert ready_processes(definition, {"A", "B", "C"}) == ["D"]
    assert ready_processes(definition, {"A", "B", "C", "D"}) == []


def test_skip_queue_process_is_never_ready():
    definition = DefinitionCache().load("hydrusAssemblyWF")
    assert ready_processes(definition, {"start-deposit"}) == []
    assert ready_processes(definition, {"start-deposit", "submit"}) == []


def test_accession_fan_out_after_publish():
    definition = DefinitionCache().load("accessionWF")
    done = {"start-accession", "stage", "technical-metadata", "shelve", "publish"}
    assert ready_processes(definition, done) == ["update-doi", "update-orcid-work"]


@pytest.mark.parametrize("seed", range(25))
def test_readiness_matches_definition_over_random_graphs(seed):
    rng = random.Random(seed)
    graph, skip = _random_dag(rng, rng.randint(1, 12))
    definition = _definition(graph, skip)
    validate_definition(definition)

    for _ in range(20):
        done = {n for n in graph if rng.random() < 0.5}
        ready = ready_processes(definition, done)

        for name in ready:
            assert name not in done
            assert set(graph[name]) <= done
            assert name not in skip
        for name in graph:
            if name in done or name in skip:
                continue
            if set(graph[name]) <= done:
                assert name in ready
        assert ready == [n for n in definition.process_names if n in ready]
