"""Tests for the merge/reject aggregation rule."""
import itertools

import pytest

from conftest import make_result
from mergegate.model import JobStatus, Outcome
from mergegate.orchestrator import decide


def test_all_passed_merges(event):
    results = [make_result(n, JobStatus.PASSED) for n in ("fmt", "clippy", "test")]
    decision = decide(event, results)

    assert decision.outcome is Outcome.MERGE
    assert decision.commit == event.commit
    assert decision.branch == "staging"
    assert set(decision.per_job) == {"fmt", "clippy", "test"}


def test_single_failure_rejects(event):
    results = [
        make_result("fmt", JobStatus.PASSED),
        make_result("test", JobStatus.FAILED, failed_step="cargo test -v"),
    ]
    decision = decide(event, results)

    assert decision.outcome is Outcome.REJECT
    assert decision.failed == ["test"]
    assert decision.per_job["test"].failed_step == "cargo test -v"


def test_single_error_rejects(event):
    results = [make_result("fmt", JobStatus.PASSED), make_result("doc", JobStatus.ERRORED)]
    decision = decide(event, results)

    assert decision.outcome is Outcome.REJECT
    assert decision.errored == ["doc"]
    assert decision.failed == []


def test_empty_registry_is_vacuously_merge(event):
    decision = decide(event, [])
    assert decision.outcome is Outcome.MERGE
    assert decision.per_job == {}


def test_decision_is_independent_of_arrival_order(event):
    results = [
        make_result("a", JobStatus.PASSED),
        make_result("b", JobStatus.FAILED),
        make_result("c", JobStatus.ERRORED),
        make_result("d", JobStatus.PASSED),
    ]
    decisions = [decide(event, perm) for perm in itertools.permutations(results)]

    first = decisions[0]
    assert all(d == first for d in decisions)
    assert all(list(d.per_job) == ["a", "b", "c", "d"] for d in decisions)


def test_duplicate_results_are_rejected(event):
    with pytest.raises(ValueError, match="Duplicate"):
        decide(event, [make_result("a", JobStatus.PASSED), make_result("a", JobStatus.FAILED)])
