"""Tests for the webhook service."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import make_result
from mergegate.model import JobStatus, PushEvent
from mergegate.orchestrator import decide
from mergegate.service import create_app
from mergegate.store import DecisionStore


@pytest.fixture
def orchestrator():
    orch = MagicMock()
    orch.registry.names.return_value = ["fmt", "test"]
    return orch


def test_push_to_integration_branch_is_accepted(orchestrator):
    client = TestClient(create_app(orchestrator))

    resp = client.post("/events/push", json={"branch": "staging", "commit": "abc123"})

    assert resp.status_code == 202
    assert resp.json() == {"accepted": True, "branch": "staging", "commit": "abc123", "jobs": ["fmt", "test"]}
    orchestrator.submit.assert_called_once_with(PushEvent(branch="staging", commit="abc123"))


def test_github_style_push_payload(orchestrator):
    client = TestClient(create_app(orchestrator))

    resp = client.post("/events/push", json={"ref": "refs/heads/trying", "after": "def456", "pusher": {"name": "bors"}})

    assert resp.status_code == 202
    orchestrator.submit.assert_called_once_with(PushEvent(branch="trying", commit="def456"))


def test_other_branches_are_ignored(orchestrator):
    client = TestClient(create_app(orchestrator))

    resp = client.post("/events/push", json={"ref": "refs/heads/main", "after": "abc"})

    assert resp.status_code == 200
    assert resp.json()["accepted"] is False
    orchestrator.submit.assert_not_called()


def test_malformed_push_is_rejected(orchestrator):
    client = TestClient(create_app(orchestrator))
    resp = client.post("/events/push", json={"branch": "staging"})
    assert resp.status_code == 422
    orchestrator.submit.assert_not_called()


def test_decision_lookup(orchestrator, tmp_path):
    store = DecisionStore(f"sqlite:///{tmp_path / 'gate.db'}")
    event = PushEvent(branch="staging", commit="abc123")
    store.report(event, decide(event, [make_result("fmt", JobStatus.PASSED)]))
    client = TestClient(create_app(orchestrator, store))

    resp = client.get("/decisions/abc123")
    missing = client.get("/decisions/zzz")
    store.dispose()

    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "Merge"
    assert body["per_job"]["fmt"]["status"] == "Passed"
    assert missing.status_code == 404


def test_decisions_without_store(orchestrator):
    client = TestClient(create_app(orchestrator))
    assert client.get("/decisions/abc").status_code == 404


def test_healthz(orchestrator):
    client = TestClient(create_app(orchestrator))
    assert client.get("/healthz").json() == {"ok": True, "jobs": ["fmt", "test"]}
