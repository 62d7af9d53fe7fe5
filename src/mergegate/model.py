# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

INTEGRATION_BRANCHES = ("staging", "trying")


class Environment(str, Enum):
    """Execution environment a job runs on."""
    LINUX = "linux"
    LINUX_VM = "linux-vm"
    WINDOWS = "windows"
    MACOS = "macos"

    @property
    def os_family(self) -> str:
        # linux and linux-vm share a runner OS, so they share cache entries
        return _OS_FAMILY[self]


_OS_FAMILY = {
    Environment.LINUX: "Linux",
    Environment.LINUX_VM: "Linux",
    Environment.WINDOWS: "Windows",
    Environment.MACOS: "macOS",
}


@dataclass(frozen=True)
class PushEvent:
    """A push to one of the integration branches."""
    branch: str
    commit: str

    def __post_init__(self) -> None:
        if self.branch not in INTEGRATION_BRANCHES:
            raise ValueError(
                f"Not an integration branch: {self.branch!r} (expected one of {INTEGRATION_BRANCHES})"
            )
        if not self.commit:
            raise ValueError("PushEvent.commit must not be empty")


@dataclass(frozen=True)
class Step:
    """A single command inside a job."""
    command: str
    args: Tuple[str, ...] = ()
    name: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    @property
    def display(self) -> str:
        return self.name or " ".join(self.argv)


@dataclass(frozen=True)
class JobSpec:
    """
    One verification job: where it runs, what it runs, what it caches.

    `inputs` are the globs whose contents make up the dependency manifest
    fingerprint used in the cache key. `title` is the human-readable name
    shown next to the job's `name` (e.g. "Tests on Linux").
    """
    name: str
    environment: Environment
    steps: Tuple[Step, ...]
    cache_key_template: Optional[str] = None
    cache_paths: Tuple[str, ...] = ()
    inputs: Tuple[str, ...] = ("**/Cargo.lock",)
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    title: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.title or self.name

    @property
    def caches(self) -> bool:
        return bool(self.cache_key_template) and bool(self.cache_paths)


@dataclass(frozen=True)
class CacheKey:
    template: str
    environment: Optional[str]
    fingerprint: str

    @property
    def value(self) -> str:
        return self.template.format(
            os=self.environment or "",
            hash=self.fingerprint,
            fingerprint=self.fingerprint,
        )

    def __str__(self) -> str:
        return self.value


class JobStatus(str, Enum):
    PASSED = "Passed"
    FAILED = "Failed"
    ERRORED = "Errored"


class Outcome(str, Enum):
    MERGE = "Merge"
    REJECT = "Reject"


@dataclass(frozen=True)
class JobResult:
    """Terminal result of one job for one push."""
    job_name: str
    status: JobStatus
    start_time: datetime
    end_time: datetime
    log_ref: str
    failed_step: Optional[str] = None
    attempts: int = 1
    message: Optional[str] = None

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True)
class GateDecision:
    commit: str
    branch: str
    outcome: Outcome
    per_job: Dict[str, JobResult]

    def _with_status(self, status: JobStatus) -> list[str]:
        return sorted(n for n, r in self.per_job.items() if r.status is status)

    @property
    def passed(self) -> list[str]:
        return self._with_status(JobStatus.PASSED)

    @property
    def failed(self) -> list[str]:
        return self._with_status(JobStatus.FAILED)

    @property
    def errored(self) -> list[str]:
        return self._with_status(JobStatus.ERRORED)
