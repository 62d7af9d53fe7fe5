"""Pydantic models for the declarative job matrix and the webhook payloads."""

from __future__ import annotations

import shlex
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

from .cache import validate_template
from .model import INTEGRATION_BRANCHES, Environment, JobSpec, PushEvent, Step


def _args(value):
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    return [str(v) for v in value]


ArgList = Annotated[List[str], BeforeValidator(_args)]


# -------------------- Steps --------------------

class CommandStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["command"] = "command"
    name: Optional[str] = None
    command: str
    args: ArgList = Field(default_factory=list)

    def compile(self) -> list[Step]:
        return [Step(command=self.command, args=tuple(self.args), name=self.name)]


class CargoStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["cargo"]
    name: Optional[str] = None
    command: str
    args: ArgList = Field(default_factory=list)

    def compile(self) -> list[Step]:
        return [Step(command="cargo", args=(self.command, *self.args), name=self.name)]


class ToolchainStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["toolchain"]
    toolchain: str = "stable"
    profile: str = "minimal"
    components: List[str] = Field(default_factory=list)

    def compile(self) -> list[Step]:
        from .dsl import toolchain

        return toolchain(self.toolchain, profile=self.profile, components=self.components)


StepConfig = Annotated[
    Union[CommandStep, CargoStep, ToolchainStep],
    Field(discriminator="kind"),
]


# -------------------- Jobs --------------------

class JobConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    title: Optional[str] = None
    environment: Environment
    steps: List[StepConfig] = Field(min_length=1)
    cache_key_template: Optional[str] = None
    cache_paths: List[str] = Field(default_factory=list)
    inputs: List[str] = Field(default_factory=lambda: ["**/Cargo.lock"])
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("steps", mode="before")
    @classmethod
    def default_step_kind(cls, value):
        # steps without a kind are plain commands
        if isinstance(value, list):
            return [
                {**s, "kind": "command"} if isinstance(s, dict) and "kind" not in s else s
                for s in value
            ]
        return value

    @field_validator("cache_key_template")
    @classmethod
    def check_template(cls, value):
        if value is not None:
            validate_template(value)
        return value

    def to_spec(self) -> JobSpec:
        steps: list[Step] = []
        for s in self.steps:
            steps.extend(s.compile())
        return JobSpec(
            name=self.name,
            environment=self.environment,
            steps=tuple(steps),
            cache_key_template=self.cache_key_template,
            cache_paths=tuple(self.cache_paths),
            inputs=tuple(self.inputs),
            env=dict(self.env),
            timeout=self.timeout,
            title=self.title,
        )


class RegistryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jobs: List[JobConfig] = Field(default_factory=list)


# -------------------- Webhook --------------------

class PushPayload(BaseModel):
    """
    Either {"branch": ..., "commit": ...} or a GitHub-style push payload
    ({"ref": "refs/heads/staging", "after": "<sha>", ...}).
    """
    model_config = ConfigDict(extra="ignore")

    branch: Optional[str] = None
    commit: Optional[str] = None
    ref: Optional[str] = None
    after: Optional[str] = None

    @model_validator(mode="after")
    def normalise(self):
        if self.branch is None and self.ref is not None:
            self.branch = self.ref.removeprefix("refs/heads/")
        if self.commit is None and self.after is not None:
            self.commit = self.after
        if not self.branch or not self.commit:
            raise ValueError("push payload needs branch/commit (or ref/after)")
        return self

    @property
    def is_integration(self) -> bool:
        return self.branch in INTEGRATION_BRANCHES

    def to_event(self) -> PushEvent:
        return PushEvent(branch=self.branch, commit=self.commit)


class PushAccepted(BaseModel):
    accepted: bool
    branch: str
    commit: str
    jobs: List[str] = Field(default_factory=list)


class JobResultResponse(BaseModel):
    job_name: str
    status: str
    start_time: str
    end_time: str
    log_ref: str
    failed_step: Optional[str] = None
    attempts: int = 1
    message: Optional[str] = None


class DecisionResponse(BaseModel):
    commit: str
    branch: str
    outcome: str
    per_job: Dict[str, JobResultResponse]
