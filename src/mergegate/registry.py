# registry.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple

from pydantic import ValidationError

from .errors import RegistryError
from .model import JobSpec
from .schema import RegistryConfig


class JobRegistry:
    """
    The job matrix: an ordered, immutable set of JobSpecs.

    Built once at startup and passed explicitly to whoever needs it;
    every push runs all of it.
    """

    def __init__(self, jobs: Iterable[JobSpec] = ()):
        jobs = tuple(jobs)

        for j in jobs:
            if not isinstance(j, JobSpec):
                raise RegistryError(f"Registry entries must be JobSpec, got {type(j).__name__}")
            if not j.steps:
                raise RegistryError(f"Job '{j.name}' has no steps")

        names = [j.name for j in jobs]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise RegistryError(f"Duplicate job names found: {dupes}")

        self._jobs: Tuple[JobSpec, ...] = jobs
        self._by_name = {j.name: j for j in jobs}

    def all_jobs(self) -> Tuple[JobSpec, ...]:
        return self._jobs

    def names(self) -> List[str]:
        return [j.name for j in self._jobs]

    def get(self, name: str) -> JobSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown job {name!r}. Known jobs: {self.names()}") from None

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[JobSpec]:
        return iter(self._jobs)

    def __repr__(self) -> str:
        return f"JobRegistry({self.names()!r})"


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def registry_from_dict(data: dict) -> JobRegistry:
    """Validate a declarative matrix ({"jobs": [...]}) and build the registry."""
    try:
        config = RegistryConfig.model_validate(data)
    except ValidationError as e:
        raise RegistryError(f"Invalid job registry:\n{e}") from e
    return JobRegistry(j.to_spec() for j in config.jobs)


def _load_python(path: Path) -> List[JobSpec]:
    module_name = f"mergegate_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, (list, tuple)) or not all(isinstance(j, JobSpec) for j in jobs):
        raise RegistryError(
            f"{path.name} must return/define a list of JobSpec. "
            "Define workflow() -> list[JobSpec] or JOBS = [JobSpec, ...]."
        )
    return list(jobs)


def load_registry(path: str | Path) -> JobRegistry:
    """
    Load the registry from either:
      - a Python workflow file defining workflow() or JOBS
      - a JSON document: {"jobs": [{name, environment, steps, ...}, ...]}
    """
    reg_path = Path(path).expanduser().resolve()
    if not reg_path.exists():
        raise RegistryError(f"Registry file not found: {reg_path}")

    if reg_path.suffix == ".py":
        return JobRegistry(_load_python(reg_path))

    if reg_path.suffix == ".json":
        try:
            data = json.loads(reg_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise RegistryError(f"{reg_path.name} is not valid JSON: {e}") from e
        return registry_from_dict(data)

    raise RegistryError(f"Registry must be a .py or .json file, got: {reg_path.name}")
