# src/mergegate/dsl.py
from __future__ import annotations

import shlex
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .model import Environment, JobSpec, Step

Args = Union[str, Sequence[str], None]


def _split(args: Args) -> tuple[str, ...]:
    if args is None:
        return ()
    if isinstance(args, str):
        return tuple(shlex.split(args))
    return tuple(str(a) for a in args)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def cmd(command: str, args: Args = None, *, name: str | None = None) -> Step:
    """Create a plain command step: cmd("make", "-j4 test")."""
    return Step(command=command, args=_split(args), name=name)


def cargo(subcommand: str, args: Args = None, *, name: str | None = None) -> Step:
    """Create a cargo step: cargo("test", "-v") runs `cargo test -v`."""
    return Step(command="cargo", args=(subcommand, *_split(args)), name=name)


def toolchain(
    channel: str = "stable",
    *,
    profile: str = "minimal",
    components: Iterable[str] = (),
) -> List[Step]:
    """
    Install a rust toolchain and make it the override for the workspace.

    Expands to two steps, so use it with `*`: job("x", *toolchain(), cargo(...)).
    """
    install = ["toolchain", "install", channel, "--profile", profile]
    for c in components:
        install.extend(["--component", c])
    return [
        Step(command="rustup", args=tuple(install), name=f"Install {channel} toolchain"),
        Step(command="rustup", args=("override", "set", channel), name=f"Use {channel} toolchain"),
    ]


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,
    environment: Union[Environment, str] = Environment.LINUX,
    cache_key: Optional[str] = None,
    cache_paths: Optional[List[str]] = None,
    inputs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    title: Optional[str] = None,
) -> JobSpec:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    return JobSpec(
        name=name,
        environment=Environment(environment),
        steps=tuple(steps),
        cache_key_template=cache_key,
        cache_paths=tuple(cache_paths or ()),
        inputs=tuple(inputs) if inputs is not None else ("**/Cargo.lock",),
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        title=title,
    )


def wf(*jobs: JobSpec) -> List[JobSpec]:
    """
    Workflow definition helper:

        from mergegate.dsl import wf, job, cargo

        def workflow():
            return wf(
                job("fmt", cargo("fmt", "--all -- --check")),
            )
    """
    return list(jobs)
