"""Console output formatting utilities for mergegate."""

from __future__ import annotations

import sys
import threading
from typing import Optional, Sequence, TextIO

from ..model import GateDecision, JobResult, JobSpec, JobStatus, PushEvent


class Console:
    """Centralized console output formatting. Safe to call from job threads."""

    def __init__(self, debug: bool = False, out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            out/err: Streams to write to (default: sys.stdout / sys.stderr)
        """
        self.debug = debug
        self._out = out
        self._err = err
        self._lock = threading.Lock()

    def _write(self, *lines: str, error: bool = False) -> None:
        stream = (self._err or sys.stderr) if error else (self._out or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_event_received(self, event: PushEvent, job_count: int) -> None:
        """Print gate start information."""
        self._write(
            "\nGATE STARTED",
            f"Branch: {event.branch}",
            f"Commit: {event.commit}",
            f"Jobs: {job_count}",
            "",
        )

    def print_superseded(self, event: PushEvent, by: PushEvent) -> None:
        self._write(f"SUPERSEDED: {event.branch}@{event.commit[:12]} by {by.commit[:12]}")

    def print_job_start(self, name: str, attempt: int = 1, title: Optional[str] = None) -> None:
        suffix = f" (attempt {attempt})" if attempt > 1 else ""
        label = f": {title}" if title else ""
        self._write(f"[{name}] JOB STARTED{label}{suffix}")

    def print_step(self, job: str, name: str) -> None:
        self._write(f"[{job}] STEP: {name}")

    def print_cache(self, job: str, message: str) -> None:
        self._write(f"[{job}] CACHE: {message}")

    def print_job_result(self, result: JobResult) -> None:
        line = f"[{result.job_name}] STATUS: {result.status.value} ({result.duration:.1f}s)"
        lines = [line]
        if result.failed_step:
            lines.append(f"[{result.job_name}] failed step: {result.failed_step}")
        if result.message and (self.debug or result.status is not JobStatus.PASSED):
            first = result.message if self.debug else result.message.split("\n")[0]
            lines.append(f"[{result.job_name}] {first}")
        lines.append(f"[{result.job_name}] log: {result.log_ref}")
        self._write(*lines)

    def print_decision(self, decision: GateDecision) -> None:
        """Print final decision summary."""
        lines = [
            "",
            "=" * 40,
            f"DECISION: {decision.outcome.value.upper()} ({decision.branch}@{decision.commit[:12]})",
            "=" * 40,
        ]
        for name in sorted(decision.per_job):
            r = decision.per_job[name]
            extra = f"  <- {r.failed_step}" if r.failed_step else ""
            lines.append(f"  {name}: {r.status.value.upper()}{extra}")
        self._write(*lines)

    def print_jobs(self, jobs: Sequence[JobSpec]) -> None:
        """Print the registry as a table: name, environment, steps, cache key, title."""
        if not jobs:
            self._write("(no jobs)")
            return
        width = max(len(j.name) for j in jobs)
        for j in jobs:
            key = j.cache_key_template or "-"
            title = f"  ({j.title})" if j.title else ""
            self._write(f"  {j.name.ljust(width)}  {j.environment.value:<9} {len(j.steps):>2} step(s)  {key}{title}")

    def print_job(self, job: JobSpec) -> None:
        """Print one job in full."""
        lines = [f"{job.name}: {job.display_name}", f"  environment: {job.environment.value}"]
        if job.caches:
            lines.append(f"  cache: {job.cache_key_template} -> {', '.join(job.cache_paths)}")
        if job.timeout:
            lines.append(f"  timeout: {job.timeout:g}s")
        for i, step in enumerate(job.steps, 1):
            lines.append(f"  {i}. {step.display}")
        self._write(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._write(*lines, error=True)

    def print_warning(self, message: str) -> None:
        self._write(f"WARNING: {message}", error=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            self._write(text.rstrip(), error=True)
        else:
            self._write(f"Error: {exc}", error=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._write(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._write(f"[DEBUG] {message}", error=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
