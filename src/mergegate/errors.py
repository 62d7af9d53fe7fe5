# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class MergegateError(Exception):
    """Base class for all mergegate errors."""


class RegistryError(MergegateError):
    """The job registry (or the file it was loaded from) is invalid."""


@dataclass
class ProvisionError(MergegateError):
    """An execution environment could not be acquired."""
    environment: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"could not provision {self.environment}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class JobTimeout(MergegateError):
    job: str
    step: str
    budget: float

    def __str__(self) -> str:
        return f"[{self.job}] timed out after {self.budget:g}s during step '{self.step}'"


@dataclass
class JobCancelled(MergegateError):
    job: str
    commit: str

    def __str__(self) -> str:
        return f"[{self.job}] cancelled (commit {self.commit[:12]} superseded)"


@dataclass
class HarnessError(MergegateError):
    """A step could not be started at all (missing executable, bad cwd...)."""
    job: str
    step: str
    message: str
    hint: str | None = None

    def __str__(self) -> str:
        text = f"[{self.job}] step '{self.step}' could not start: {self.message}"
        if self.hint:
            text += f"\nhint: {self.hint}"
        return text


class ReportError(MergegateError):
    """A decision could not be delivered to a reporting collaborator."""
