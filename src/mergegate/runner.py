# runner.py
from __future__ import annotations

import os
import re
import shlex
import subprocess
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from .cache import CacheStore, manifest_fingerprint, resolve
from .environment import EnvironmentHandle, Provisioner
from .errors import HarnessError, JobCancelled, JobTimeout, ProvisionError
from .model import CacheKey, JobResult, JobSpec, JobStatus, PushEvent, Step
from .settings import DEFAULT_JOB_TIMEOUT
from .ui.console import Console, get_console

# push ---> orchestrator ---> job runner (x N) ---> decision

TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "git": "Install Git or fix PATH.",
    "make": "Install make or fix PATH.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

Attempt = Tuple[JobStatus, Optional[str], Optional[str]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name)


class JobRunner:
    """
    Runs one JobSpec for one push and returns its terminal JobResult.

    Failed  -> a step ran and exited non-zero (never retried).
    Errored -> infrastructure could not give an answer: provisioning,
               a step that could not start, timeout, harness crash.
               Retried up to `max_retries` times.
    Cancelled runs raise JobCancelled and produce no result.
    """

    def __init__(
        self,
        cache: Optional[CacheStore],
        provisioner: Provisioner,
        *,
        log_dir: str | Path = ".mergegate/logs",
        log_url: Optional[str] = None,
        default_timeout: float = DEFAULT_JOB_TIMEOUT,
        max_retries: int = 1,
        console: Optional[Console] = None,
        poll_interval: float = 0.1,
    ):
        self.cache = cache
        self.provisioner = provisioner
        self.log_dir = Path(log_dir).resolve()
        self.log_url = log_url
        self.default_timeout = default_timeout
        self.max_retries = max(0, max_retries)
        self.console = console
        self.poll_interval = poll_interval

    @property
    def _console(self) -> Console:
        return self.console or get_console()

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def log_path(self, job: JobSpec, event: PushEvent) -> Path:
        return self.log_dir / _safe_name(event.branch) / _safe_name(event.commit) / f"{_safe_name(job.name)}.log"

    def log_ref(self, job: JobSpec, event: PushEvent) -> str:
        if self.log_url:
            return f"{self.log_url.rstrip('/')}/{_safe_name(event.branch)}/{_safe_name(event.commit)}/{_safe_name(job.name)}.log"
        return str(self.log_path(job, event))

    @staticmethod
    def _log(log_path: Path, text: str) -> None:
        with log_path.open("a", encoding="utf-8") as f:
            f.write(text.rstrip("\n") + "\n")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        job: JobSpec,
        event: PushEvent,
        cancel: Optional[threading.Event] = None,
    ) -> JobResult:
        cancel = cancel or threading.Event()
        log_path = self.log_path(job, event)
        # append only, another run of this commit may still be writing
        log_path.parent.mkdir(parents=True, exist_ok=True)

        start = _utcnow()
        attempts = 0
        while True:
            attempts += 1
            status, failed_step, message = self._attempt(job, event, cancel, log_path, attempts)
            if status is not JobStatus.ERRORED or attempts > self.max_retries:
                break
            self._console.print_warning(f"[{job.name}] errored, retrying ({message})")

        result = JobResult(
            job_name=job.name,
            status=status,
            start_time=start,
            end_time=_utcnow(),
            log_ref=self.log_ref(job, event),
            failed_step=failed_step,
            attempts=attempts,
            message=message,
        )
        self._console.print_job_result(result)
        return result

    # ------------------------------------------------------------------
    # Execution primitives
    # ------------------------------------------------------------------

    def _attempt(
        self,
        job: JobSpec,
        event: PushEvent,
        cancel: threading.Event,
        log_path: Path,
        attempt: int,
    ) -> Attempt:
        if cancel.is_set():
            raise JobCancelled(job=job.name, commit=event.commit)

        self._console.print_job_start(job.name, attempt, job.title)
        self._log(log_path, f"== {job.name} attempt {attempt} on {job.environment.value} ({event.branch}@{event.commit}) ==")
        try:
            with self.provisioner.acquire(job.environment, event) as env:
                return self._run_in(env, job, event, cancel, log_path)
        except ProvisionError as e:
            self._log(log_path, f"provisioning failed: {e}")
            return JobStatus.ERRORED, None, str(e)
        except JobCancelled:
            self._log(log_path, "cancelled")
            raise
        except Exception as e:
            self._log(log_path, f"harness error: {type(e).__name__}: {e}")
            return JobStatus.ERRORED, None, f"harness error: {type(e).__name__}: {e}"

    def _run_in(
        self,
        env: EnvironmentHandle,
        job: JobSpec,
        event: PushEvent,
        cancel: threading.Event,
        log_path: Path,
    ) -> Attempt:
        budget = job.timeout or self.default_timeout
        deadline = time.monotonic() + budget

        key = self._restore(job, env)

        status, failed_step, message = JobStatus.PASSED, None, None
        try:
            for step in job.steps:
                self._console.print_step(job.name, step.display)
                code = self._run_step(job, step, env, event, cancel, log_path, deadline, budget)
                if code != 0:
                    status = JobStatus.FAILED
                    failed_step = step.display
                    message = f"step '{step.display}' exited with {code}"
                    self._log(log_path, message)
                    break
        except (JobTimeout, HarnessError) as e:
            self._log(log_path, str(e))
            status, message = JobStatus.ERRORED, str(e)

        # saved whatever the outcome
        self._save(job, env, key)
        return status, failed_step, message

    def _run_step(
        self,
        job: JobSpec,
        step: Step,
        env: EnvironmentHandle,
        event: PushEvent,
        cancel: threading.Event,
        log_path: Path,
        deadline: float,
        budget: float,
    ) -> int:
        proc_env = os.environ.copy()
        proc_env.update(env.env)
        proc_env.update(job.env)

        with log_path.open("a", encoding="utf-8") as log:
            log.write(f"$ {shlex.join(step.argv)}\n")
            log.flush()
            try:
                proc = subprocess.Popen(
                    step.argv,
                    cwd=str(env.workspace),
                    env=proc_env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                )
            except FileNotFoundError:
                raise HarnessError(
                    job=job.name,
                    step=step.display,
                    message=f"executable not found: {step.command}",
                    hint=TOOL_HINTS.get(step.command, f"Install {step.command} or fix PATH."),
                ) from None
            except OSError as e:
                raise HarnessError(job=job.name, step=step.display, message=str(e)) from e

            try:
                while True:
                    try:
                        return proc.wait(timeout=self.poll_interval)
                    except subprocess.TimeoutExpired:
                        pass
                    if cancel.is_set():
                        raise JobCancelled(job=job.name, commit=event.commit)
                    if time.monotonic() >= deadline:
                        raise JobTimeout(job=job.name, step=step.display, budget=budget)
            finally:
                if proc.poll() is None:
                    proc.kill()
                    proc.wait()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _restore(self, job: JobSpec, env: EnvironmentHandle) -> Optional[CacheKey]:
        if self.cache is None or not job.caches:
            return None
        try:
            fingerprint = manifest_fingerprint(env.workspace, job.inputs)
            key = resolve(job.cache_key_template, fingerprint, job.environment)
        except (OSError, ValueError) as e:
            self._console.print_warning(f"[{job.name}] cache key unavailable: {e}")
            return None

        hit = self.cache.restore(key, job.cache_paths, env.workspace, home=env.home)
        self._console.print_cache(job.name, f"{'hit' if hit.hit else 'miss'} {key.value} ({hit.reason})")
        return key

    def _save(self, job: JobSpec, env: EnvironmentHandle, key: Optional[CacheKey]) -> None:
        if self.cache is None or key is None:
            return
        saved = self.cache.save(key, job.cache_paths, env.workspace, home=env.home)
        if saved.saved:
            self._console.print_cache(job.name, f"saved {key.value}")
        else:
            self._console.print_cache(job.name, f"not saved ({saved.reason})")
