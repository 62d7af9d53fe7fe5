# report.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Mapping, Optional
from urllib.parse import urljoin

from .errors import ReportError
from .model import GateDecision, JobStatus, Outcome, PushEvent
from .ui.console import Console, get_console

STATUS_CONTEXT = "mergegate"

_STATE = {
    JobStatus.PASSED: "success",
    JobStatus.FAILED: "failure",
    JobStatus.ERRORED: "error",
}


class ConsoleReporter:
    """Prints the decision table."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console

    def report(self, event: PushEvent, decision: GateDecision) -> None:
        (self.console or get_console()).print_decision(decision)


class CommitStatusReporter:
    """
    Posts the decision back to the source-control host as commit statuses:
    one per job (context "mergegate/<job>") plus the aggregate ("mergegate").
    """

    def __init__(
        self,
        api_url: str,
        repo: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        titles: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            api_url: Base URL of the host API (e.g. "https://api.github.com")
            repo: "owner/name"
            token: Optional bearer token
            titles: Optional job name -> display title, used in descriptions
        """
        if "/" not in repo:
            raise ValueError(f"repo must look like 'owner/name', got {repo!r}")
        self.api_url = api_url.rstrip("/")
        self.repo = repo
        self.token = token
        self.timeout = timeout
        self.titles = dict(titles or {})

    def _post(self, path: str, data: dict) -> dict:
        url = urljoin(self.api_url + "/", path.lstrip("/"))
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/vnd.github+json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        req = urllib.request.Request(url, data=json.dumps(data).encode("utf-8"), headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise ReportError(f"status API request failed: {e.code} {e.reason}. {error_body}") from e
        except urllib.error.URLError as e:
            raise ReportError(f"Network error: {e.reason}") from e
        except json.JSONDecodeError as e:
            raise ReportError(f"Invalid JSON response: {e}") from e

    def statuses(self, decision: GateDecision) -> list[dict]:
        """The status payloads for a decision, aggregate last."""
        out: list[dict] = []
        for name, result in decision.per_job.items():
            description = result.status.value
            if result.failed_step:
                description = f"{description}: {result.failed_step}"
            elif result.message and result.status is JobStatus.ERRORED:
                description = f"{description}: {result.message.splitlines()[0]}"
            if name in self.titles:
                description = f"{self.titles[name]}: {description}"
            status = {
                "state": _STATE[result.status],
                "context": f"{STATUS_CONTEXT}/{name}",
                "description": description[:140],
            }
            if result.log_ref.startswith(("http://", "https://")):
                status["target_url"] = result.log_ref
            out.append(status)

        if decision.outcome is Outcome.MERGE:
            summary = f"Merge: {len(decision.per_job)} job(s) passed"
        else:
            summary = f"Reject: {len(decision.failed)} failed, {len(decision.errored)} errored"
        out.append({
            "state": "success" if decision.outcome is Outcome.MERGE else "failure",
            "context": STATUS_CONTEXT,
            "description": summary,
        })
        return out

    def report(self, event: PushEvent, decision: GateDecision) -> None:
        path = f"/repos/{self.repo}/statuses/{decision.commit}"
        for status in self.statuses(decision):
            self._post(path, status)
