# orchestrator.py
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from .errors import JobCancelled
from .model import GateDecision, JobResult, JobSpec, JobStatus, Outcome, PushEvent
from .registry import JobRegistry
from .ui.console import Console, get_console


class Runner(Protocol):
    def run(self, job: JobSpec, event: PushEvent, cancel: Optional[threading.Event] = None) -> JobResult:
        ...


class Reporter(Protocol):
    def report(self, event: PushEvent, decision: GateDecision) -> None:
        ...


def decide(event: PushEvent, results: Iterable[JobResult]) -> GateDecision:
    """
    Merge iff every result Passed. An empty result set is vacuously Merge.
    Depends only on the set of results, never on their arrival order.
    """
    per_job: Dict[str, JobResult] = {}
    for r in results:
        if r.job_name in per_job:
            raise ValueError(f"Duplicate result for job '{r.job_name}'")
        per_job[r.job_name] = r

    merge = all(r.status is JobStatus.PASSED for r in per_job.values())
    return GateDecision(
        commit=event.commit,
        branch=event.branch,
        outcome=Outcome.MERGE if merge else Outcome.REJECT,
        per_job=dict(sorted(per_job.items())),
    )


@dataclass
class _Run:
    """One push being gated: Pending -> Running -> Decided (or cancelled)."""
    event: PushEvent
    cancel: threading.Event = field(default_factory=threading.Event)
    superseded_by: Optional[PushEvent] = None


def _errored(job: JobSpec, exc: BaseException) -> JobResult:
    now = datetime.now(timezone.utc)
    return JobResult(
        job_name=job.name,
        status=JobStatus.ERRORED,
        start_time=now,
        end_time=now,
        log_ref="",
        message=f"runner crashed: {type(exc).__name__}: {exc}",
    )


class Orchestrator:
    """
    The gate. For every push: run the whole registry concurrently, wait for
    every job (no fail-fast), decide, report.

    The only state kept across pushes is which run is current per branch,
    so a newer push can cancel the run it supersedes.
    """

    def __init__(
        self,
        registry: JobRegistry,
        runner: Runner,
        reporters: Sequence[Reporter] = (),
        *,
        max_workers: Optional[int] = None,
        console: Optional[Console] = None,
    ):
        self.registry = registry
        self.runner = runner
        self.reporters: List[Reporter] = list(reporters)
        self.max_workers = max_workers
        self.console = console

        self._lock = threading.Lock()
        self._current: Dict[str, _Run] = {}
        self._events = ThreadPoolExecutor(thread_name_prefix="mergegate-event")

    @property
    def _console(self) -> Console:
        return self.console or get_console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, event: PushEvent) -> "Future[Optional[GateDecision]]":
        """
        Start gating `event`. The future resolves to the GateDecision, or to
        None if a newer push on the same branch superseded it.
        """
        run = _Run(event=event)
        with self._lock:
            previous = self._current.get(event.branch)
            self._current[event.branch] = run
        if previous is not None:
            previous.superseded_by = event
            previous.cancel.set()
            self._console.print_superseded(previous.event, event)

        return self._events.submit(self._gate, run)

    def run(self, event: PushEvent) -> Optional[GateDecision]:
        return self.submit(event).result()

    def shutdown(self, wait: bool = True) -> None:
        self._events.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _gate(self, run: _Run) -> Optional[GateDecision]:
        jobs = self.registry.all_jobs()
        self._console.print_event_received(run.event, len(jobs))

        results = self._fan_out(run, jobs)

        with self._lock:
            current = self._current.get(run.event.branch) is run
            if current:
                del self._current[run.event.branch]
        if run.cancel.is_set() or not current:
            by = run.superseded_by.commit[:12] if run.superseded_by else "a newer push"
            self._console.print_debug(f"discarding results for {run.event.commit[:12]} (superseded by {by})")
            return None

        decision = decide(run.event, results)
        self._report(run.event, decision)
        return decision

    def _fan_out(self, run: _Run, jobs: Sequence[JobSpec]) -> List[JobResult]:
        """Dispatch every job and block until all of them are terminal."""
        if not jobs:
            return []

        results: List[JobResult] = []
        workers = self.max_workers or len(jobs)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mergegate-job") as pool:
            futures = {pool.submit(self.runner.run, job, run.event, run.cancel): job for job in jobs}

            for future in as_completed(futures):
                job = futures[future]
                try:
                    results.append(future.result())
                except JobCancelled:
                    continue
                except Exception as e:
                    self._console.print_exception(e)
                    results.append(_errored(job, e))
        return results

    def _report(self, event: PushEvent, decision: GateDecision) -> None:
        for reporter in self.reporters:
            try:
                reporter.report(event, decision)
            except Exception as e:
                self._console.print_error(
                    "Report failed",
                    f"{type(reporter).__name__} could not report {event.commit[:12]}: {e}",
                )
