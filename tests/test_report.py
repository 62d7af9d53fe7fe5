"""Tests for reporting decisions back to the source-control host."""
import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_result
from mergegate.errors import ReportError
from mergegate.model import JobStatus
from mergegate.orchestrator import decide
from mergegate.report import CommitStatusReporter, ConsoleReporter


def _decision(event):
    results = [
        make_result("fmt", JobStatus.PASSED),
        make_result("test", JobStatus.FAILED, failed_step="cargo test -v"),
        make_result("doc", JobStatus.ERRORED),
    ]
    return decide(event, results)


def test_statuses_map_job_results(event):
    reporter = CommitStatusReporter("https://api.example.com", "acme/widget")
    statuses = reporter.statuses(_decision(event))

    by_context = {s["context"]: s for s in statuses}
    assert by_context["mergegate/fmt"]["state"] == "success"
    assert by_context["mergegate/test"]["state"] == "failure"
    assert by_context["mergegate/test"]["description"] == "Failed: cargo test -v"
    assert by_context["mergegate/doc"]["state"] == "error"
    assert statuses[-1]["context"] == "mergegate"
    assert statuses[-1]["state"] == "failure"
    assert statuses[-1]["description"] == "Reject: 1 failed, 1 errored"
    # log refs that are not URLs are not linked
    assert "target_url" not in by_context["mergegate/fmt"]


def test_report_posts_each_status(event):
    reporter = CommitStatusReporter("https://api.example.com/", "acme/widget", token="s3cret")
    response = MagicMock()
    response.read.return_value = b"{}"
    response.__enter__.return_value = response

    with patch("mergegate.report.urllib.request.urlopen", return_value=response) as urlopen:
        reporter.report(event, _decision(event))

    assert urlopen.call_count == 4
    req = urlopen.call_args_list[0][0][0]
    assert req.full_url == f"https://api.example.com/repos/acme/widget/statuses/{event.commit}"
    assert req.get_method() == "POST"
    assert req.get_header("Authorization") == "Bearer s3cret"
    last = json.loads(urlopen.call_args_list[-1][0][0].data)
    assert last["context"] == "mergegate"


def test_http_error_raises_report_error(event):
    reporter = CommitStatusReporter("https://api.example.com", "acme/widget")
    err = urllib.error.HTTPError("u", 422, "Unprocessable", {}, io.BytesIO(b"bad sha"))

    with patch("mergegate.report.urllib.request.urlopen", side_effect=err):
        with pytest.raises(ReportError, match="422"):
            reporter.report(event, _decision(event))


def test_repo_must_be_owner_slash_name():
    with pytest.raises(ValueError):
        CommitStatusReporter("https://api.example.com", "widget")


def test_console_reporter_prints_table(event, console):
    ConsoleReporter(console).report(event, _decision(event))
    out = console._out.getvalue()
    assert "DECISION: REJECT" in out
    assert "test: FAILED  <- cargo test -v" in out


def test_job_titles_prefix_descriptions(event):
    reporter = CommitStatusReporter("https://api.example.com", "acme/widget", titles={"test": "Tests on Linux"})
    by_context = {s["context"]: s for s in reporter.statuses(_decision(event))}

    assert by_context["mergegate/test"]["description"] == "Tests on Linux: Failed: cargo test -v"
    assert by_context["mergegate/fmt"]["description"] == "Passed"
