from .dsl import cargo, cmd, job, toolchain, wf
from .model import Environment, GateDecision, JobResult, JobSpec, JobStatus, Outcome, PushEvent, Step
from .orchestrator import Orchestrator, decide
from .registry import JobRegistry, load_registry
from .runner import JobRunner

__all__ = [
    "cargo", "cmd", "job", "toolchain", "wf",
    "Environment", "GateDecision", "JobResult", "JobSpec", "JobStatus", "Outcome", "PushEvent", "Step",
    "Orchestrator", "decide", "JobRegistry", "load_registry", "JobRunner",
]
