# environment.py
from __future__ import annotations

import shutil
import subprocess
import sys
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import ContextManager, Dict, Iterable, Iterator, Optional, Protocol

from .errors import ProvisionError
from .model import Environment, PushEvent


@dataclass(frozen=True)
class EnvironmentHandle:
    """An isolated place to run one job: a workspace, its own home, extra env vars."""
    kind: Environment
    workspace: Path
    env: Dict[str, str] = field(default_factory=dict)
    home: Optional[Path] = None


class Provisioner(Protocol):
    def acquire(self, kind: Environment, event: PushEvent) -> ContextManager[EnvironmentHandle]:
        """Scoped environment; released when the `with` block exits, however it exits."""
        ...


def host_environments() -> frozenset[Environment]:
    if sys.platform.startswith("linux"):
        return frozenset({Environment.LINUX, Environment.LINUX_VM})
    if sys.platform == "win32":
        return frozenset({Environment.WINDOWS})
    if sys.platform == "darwin":
        return frozenset({Environment.MACOS})
    return frozenset()


def _git(args: list[str], cwd: Optional[Path] = None) -> None:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=False,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise RuntimeError(f"git {args[0]} failed: {result.stderr.strip()}")


class LocalProvisioner:
    """
    Runs jobs on this machine, each in a fresh temporary workspace.

    The workspace is either a checkout of `repo_url` at the pushed commit or
    a copy of `source`. Each job also gets its own HOME (and CARGO_HOME) next
    to the workspace, so "~" paths never reach the host user's home. Only
    the environments matching the host platform can be provisioned; anything
    else is a ProvisionError.
    """

    def __init__(
        self,
        *,
        repo_url: Optional[str] = None,
        source: Optional[str | Path] = None,
        work_root: Optional[str | Path] = None,
        kinds: Optional[Iterable[Environment]] = None,
    ):
        if repo_url and source:
            raise ValueError("LocalProvisioner takes repo_url or source, not both")
        self.repo_url = repo_url
        self.source = Path(source).resolve() if source else None
        self.work_root = Path(work_root).resolve() if work_root else None
        self.kinds = frozenset(kinds) if kinds is not None else host_environments()

    def _checkout(self, workspace: Path, event: PushEvent) -> None:
        try:
            _git(["clone", "--quiet", self.repo_url, str(workspace)])
            _git(["checkout", "--quiet", "--detach", event.commit], cwd=workspace)
        except FileNotFoundError:
            raise RuntimeError("git command not found. Please install Git.") from None

    @contextmanager
    def acquire(self, kind: Environment, event: PushEvent) -> Iterator[EnvironmentHandle]:
        if kind not in self.kinds:
            raise ProvisionError(
                environment=kind.value,
                message="not available on this host",
                details={"available": ",".join(sorted(k.value for k in self.kinds)) or "none"},
            )

        if self.work_root is not None:
            self.work_root.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix=f"mergegate-{kind.value}-", dir=self.work_root))
        workspace = root / "workspace"
        home = root / "home"

        try:
            try:
                home.mkdir()
                if self.repo_url:
                    self._checkout(workspace, event)
                elif self.source is not None:
                    shutil.copytree(self.source, workspace, ignore=shutil.ignore_patterns(".mergegate"))
                else:
                    workspace.mkdir()
            except (OSError, RuntimeError) as e:
                raise ProvisionError(
                    environment=kind.value,
                    message=str(e),
                    details={"commit": event.commit},
                ) from e

            yield EnvironmentHandle(
                kind=kind,
                workspace=workspace,
                home=home,
                env={
                    "CI": "true",
                    "HOME": str(home),
                    "USERPROFILE": str(home),
                    "CARGO_HOME": str(home / ".cargo"),
                    "MERGEGATE_BRANCH": event.branch,
                    "MERGEGATE_COMMIT": event.commit,
                    "MERGEGATE_ENVIRONMENT": kind.value,
                },
            )
        finally:
            shutil.rmtree(root, ignore_errors=True)
