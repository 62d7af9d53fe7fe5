import io
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mergegate.environment import EnvironmentHandle
from mergegate.errors import ProvisionError
from mergegate.model import Environment, JobResult, JobSpec, JobStatus, PushEvent, Step
from mergegate.ui import console as console_mod
from mergegate.ui.console import Console


def py(code: str, name: str | None = None) -> Step:
    """A portable step: run a python snippet with the current interpreter."""
    return Step(command=sys.executable, args=("-c", code), name=name)


def make_result(name: str, status: JobStatus, failed_step: str | None = None) -> JobResult:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return JobResult(
        job_name=name,
        status=status,
        start_time=start,
        end_time=start + timedelta(seconds=1),
        log_ref=f"logs/{name}.log",
        failed_step=failed_step,
    )


class RecordingProvisioner:
    """Hands out fresh workspaces under `root` and records every acquire/release."""

    def __init__(self, root: Path, *, fail: bool = False, files: dict | None = None):
        self.root = root
        self.fail = fail
        self.files = files or {}
        self.acquired: list[Environment] = []
        self.released: list[Environment] = []
        self._count = 0
        self._lock = threading.Lock()

    @contextmanager
    def acquire(self, kind, event):
        if self.fail:
            raise ProvisionError(environment=kind.value, message="no capacity")
        with self._lock:
            n = self._count
            self._count += 1
        ws = self.root / f"ws{n}"
        home = self.root / f"home{n}"
        ws.mkdir(parents=True)
        home.mkdir()
        for rel, content in self.files.items():
            (ws / rel).parent.mkdir(parents=True, exist_ok=True)
            (ws / rel).write_text(content)
        self.acquired.append(kind)
        try:
            yield EnvironmentHandle(kind=kind, workspace=ws, home=home, env={"HOME": str(home), "USERPROFILE": str(home)})
        finally:
            self.released.append(kind)


@pytest.fixture
def console():
    return Console(out=io.StringIO(), err=io.StringIO())


@pytest.fixture(autouse=True)
def quiet_console(console):
    previous = console_mod._console
    console_mod.set_console(console)
    yield
    console_mod._console = previous


@pytest.fixture
def event():
    return PushEvent(branch="staging", commit="0123456789abcdef0123456789abcdef01234567")


@pytest.fixture
def provisioner(tmp_path):
    return RecordingProvisioner(tmp_path / "envs", files={"Cargo.lock": "version = 3\n"})


def simple_job(name: str, *steps: Step, **kwargs) -> JobSpec:
    return JobSpec(name=name, environment=kwargs.pop("environment", Environment.LINUX), steps=tuple(steps), **kwargs)
