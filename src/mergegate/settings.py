from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_JOB_TIMEOUT = 6 * 60 * 60


def _int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    registry: str = "mergegate_workflow.py"
    cache_dir: str = ".mergegate/cache"
    log_dir: str = ".mergegate/logs"
    log_url: Optional[str] = None
    job_timeout: float = DEFAULT_JOB_TIMEOUT
    max_retries: int = 1
    max_workers: Optional[int] = None
    database_url: str = "sqlite:///.mergegate/mergegate.db"
    repo_url: Optional[str] = None
    status_api_url: Optional[str] = None
    status_repo: Optional[str] = None
    status_token: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        d = cls()
        return cls(
            registry=env.get("MERGEGATE_REGISTRY", d.registry),
            cache_dir=env.get("MERGEGATE_CACHE_DIR", d.cache_dir),
            log_dir=env.get("MERGEGATE_LOG_DIR", d.log_dir),
            log_url=env.get("MERGEGATE_LOG_URL") or None,
            job_timeout=_float(env, "MERGEGATE_JOB_TIMEOUT", DEFAULT_JOB_TIMEOUT),
            max_retries=_int(env, "MERGEGATE_MAX_RETRIES", d.max_retries),
            max_workers=_int(env, "MERGEGATE_MAX_WORKERS", None),
            database_url=env.get("MERGEGATE_DATABASE_URL", d.database_url),
            repo_url=env.get("MERGEGATE_REPO_URL") or None,
            status_api_url=env.get("MERGEGATE_STATUS_API_URL") or None,
            status_repo=env.get("MERGEGATE_STATUS_REPO") or None,
            status_token=env.get("MERGEGATE_STATUS_TOKEN") or None,
        )
