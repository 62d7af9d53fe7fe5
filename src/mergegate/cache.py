# cache.py
from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
import string
import tarfile
import tempfile
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .model import CacheKey, Environment

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# cache_key = template rendered with
#     {os}                  -> OS family of the job's environment (optional)
#     {hash} / {fingerprint} -> sha256 of the dependency manifest files
#
# e.g. "{os}-cargo-test-{hash}" -> "Linux-cargo-test-3f2a..."
#
# Cache artifact:
#   <root>/<key>.tar.gz        the declared cache_paths, one tar prefix per path
#   <root>/<key>.manifest.json what was saved, for explainability
#
# Restore and save are best-effort: they report problems in their return
# value and never raise. A cold cache costs time, not correctness.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".mergegate/cache"
DEFAULT_FINGERPRINT_EXCLUDES = [
    ".git/**",
    ".mergegate/**",
]
TEMPLATE_FIELDS = {"os", "hash", "fingerprint"}

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable


@dataclass(frozen=True)
class CacheSave:
    saved: bool
    key: str
    reason: str


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _relpath(p: Path, root: Path) -> str:
    return p.resolve().relative_to(root.resolve()).as_posix()


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _excluded(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) or rel.startswith(g.rstrip("*").rstrip("/") + "/") for g in globs)


# ---------------------------------------------------------------------
# Key resolution
# ---------------------------------------------------------------------

def template_fields(template: str) -> set[str]:
    return {f for _, f, _, _ in string.Formatter().parse(template) if f is not None}


def validate_template(template: str) -> None:
    """Raise ValueError if the template uses placeholders we cannot fill."""
    try:
        fields = template_fields(template)
    except ValueError as e:
        raise ValueError(f"Malformed cache key template {template!r}: {e}") from e
    unknown = fields - TEMPLATE_FIELDS
    if unknown:
        raise ValueError(
            f"Unknown placeholder(s) {sorted(unknown)} in cache key template {template!r}; "
            f"known: {sorted(TEMPLATE_FIELDS)}"
        )
    if "hash" not in fields and "fingerprint" not in fields:
        raise ValueError(f"Cache key template {template!r} must include {{hash}}")


def manifest_fingerprint(
    root: PathLike,
    globs: Sequence[str],
    *,
    excludes: Optional[List[str]] = None,
) -> str:
    """
    Fingerprint the dependency manifest: every file matching `globs` under
    `root`, by relative path and content. Empty string when nothing matches.
    """
    root_p = Path(root).resolve()
    exclude_globs = list(DEFAULT_FINGERPRINT_EXCLUDES) + list(excludes or [])

    files: Dict[str, str] = {}
    for pattern in globs:
        for p in sorted(root_p.glob(pattern)):
            if not p.is_file():
                continue
            rel = _relpath(p, root_p)
            if _excluded(rel, exclude_globs):
                continue
            files[rel] = _hash_file_contents(p)

    if not files:
        return ""
    payload = json.dumps(sorted(files.items()), separators=(",", ":"))
    return _sha256_str(payload)


def resolve(
    key_template: str,
    fingerprint: str,
    environment: Union[Environment, str, None],
) -> CacheKey:
    """
    Pure and deterministic: the same (template, fingerprint, environment)
    always gives the same key.
    """
    validate_template(key_template)

    env_part: Optional[str] = None
    if "os" in template_fields(key_template):
        if environment is None:
            raise ValueError(f"Cache key template {key_template!r} needs an environment")
        try:
            env_part = Environment(environment).os_family
        except ValueError:
            # already an OS family (or a custom label)
            env_part = str(environment)

    return CacheKey(template=key_template, environment=env_part, fingerprint=fingerprint)


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

def _safe_name(key: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]", "_", key)
    if len(name) > 200:
        name = name[:120] + "-" + _sha256_str(key)[:16]
    return name


def _cache_target(entry: str, workspace: Path, home: Optional[Path] = None) -> Path:
    # "~" is the job's home, never the host's
    if entry == "~" or entry.startswith(("~/", "~\\")):
        return (home or workspace) / entry[2:]
    p = Path(entry)
    if p.is_absolute():
        return p
    return workspace / p


class CacheStore:
    """
    File-based cache store shared by all jobs and runs:
      root/
        <key>.tar.gz
        <key>.manifest.json

    Different keys never touch the same files. Writers on the same key
    build a private temp file and rename it into place, so the last writer
    wins and readers never see a partial artifact.
    """

    def __init__(self, root: PathLike = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def artifact_path(self, key: CacheKey | str) -> Path:
        return self.root / f"{_safe_name(str(key))}.tar.gz"

    def manifest_path(self, key: CacheKey | str) -> Path:
        return self.root / f"{_safe_name(str(key))}.manifest.json"

    def restore(
        self,
        key: CacheKey | str,
        target_paths: Sequence[str],
        workspace: PathLike,
        *,
        home: Optional[PathLike] = None,
    ) -> CacheHit:
        """
        Restore cached paths into place. "Overwrite by extraction": existing
        files are replaced, nothing is deleted. Paths starting with "~" land
        under `home` (the job's home directory), or the workspace without one.
        """
        k = str(key)
        art = self.artifact_path(k)
        if not art.exists():
            return CacheHit(hit=False, key=k, reason="cache miss")

        ws = Path(workspace).resolve()
        home_p = Path(home).resolve() if home is not None else None
        try:
            with tempfile.TemporaryDirectory(dir=self.root, prefix=".restore-") as tmp:
                tmp_p = Path(tmp)
                with tarfile.open(str(art), mode="r:gz") as tar:
                    tar.extractall(path=tmp_p, filter="data")

                restored = 0
                for i, entry in enumerate(target_paths):
                    src = tmp_p / f"p{i}"
                    if not src.exists():
                        continue
                    dest = _cache_target(entry, ws, home_p)
                    if src.is_dir():
                        shutil.copytree(src, dest, dirs_exist_ok=True)
                    else:
                        dest.parent.mkdir(parents=True, exist_ok=True)
                        shutil.copy2(src, dest)
                    restored += 1
        except Exception as e:
            return CacheHit(hit=False, key=k, reason=f"cache exists but restore failed: {e}")

        return CacheHit(hit=True, key=k, reason=f"restored {restored} path(s)")

    def save(
        self,
        key: CacheKey | str,
        source_paths: Sequence[str],
        workspace: PathLike,
        *,
        home: Optional[PathLike] = None,
    ) -> CacheSave:
        k = str(key)
        ws = Path(workspace).resolve()
        home_p = Path(home).resolve() if home is not None else None
        art = self.artifact_path(k)
        tmp = self.root / f".{art.name}.{uuid.uuid4().hex}.tmp"

        saved: List[str] = []
        try:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for i, entry in enumerate(source_paths):
                    src = _cache_target(entry, ws, home_p)
                    if not src.exists():
                        continue
                    if src.is_file():
                        tar.add(str(src), arcname=f"p{i}", recursive=False)
                    else:
                        for f in _iter_files_under(src):
                            rel = f.relative_to(src).as_posix()
                            tar.add(str(f), arcname=f"p{i}/{rel}", recursive=False)
                    saved.append(entry)

            if not saved:
                return CacheSave(saved=False, key=k, reason="nothing to save (no cache paths exist)")

            os.replace(tmp, art)
            manifest = {
                "key": k,
                "paths": list(source_paths),
                "saved": saved,
                "saved_at_unix": int(time.time()),
            }
            man_tmp = self.root / f".{self.manifest_path(k).name}.{uuid.uuid4().hex}.tmp"
            man_tmp.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")
            os.replace(man_tmp, self.manifest_path(k))
        except Exception as e:
            return CacheSave(saved=False, key=k, reason=f"save failed: {e}")
        finally:
            tmp.unlink(missing_ok=True)

        return CacheSave(saved=True, key=k, reason=f"saved {len(saved)} path(s)")

    def prune(self, keep: int = 20) -> List[str]:
        """
        Keep only the newest N artifacts (by mtime). Returns removed file names.
        """
        tars = sorted(self.root.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed: List[str] = []
        for p in tars[keep:]:
            man = self.root / (p.name[: -len(".tar.gz")] + ".manifest.json")
            p.unlink(missing_ok=True)
            man.unlink(missing_ok=True)
            removed.append(p.name)
        return removed
