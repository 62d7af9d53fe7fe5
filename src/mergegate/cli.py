# cli.py
from __future__ import annotations

import subprocess
import sys
from dataclasses import replace
from typing import Optional

import click

from mergegate.cache import CacheStore, manifest_fingerprint, resolve
from mergegate.environment import LocalProvisioner
from mergegate.errors import MergegateError
from mergegate.git import head_sha, is_dirty
from mergegate.model import INTEGRATION_BRANCHES, Environment, Outcome, PushEvent
from mergegate.orchestrator import Orchestrator
from mergegate.registry import JobRegistry, load_registry
from mergegate.report import CommitStatusReporter, ConsoleReporter
from mergegate.runner import JobRunner
from mergegate.settings import Settings
from mergegate.ui.console import Console, get_console, set_console


def _load(path: str) -> JobRegistry:
    console = get_console()
    try:
        return load_registry(path)
    except MergegateError as e:
        console.print_error(
            "Could not load job registry",
            str(e),
            suggestion="Create mergegate_workflow.py (or a .json matrix) or pass --registry <path>.",
        )
        sys.exit(1)


def _provisioner(repo_url: Optional[str], source: Optional[str]) -> LocalProvisioner:
    if repo_url:
        return LocalProvisioner(repo_url=repo_url)
    return LocalProvisioner(source=source or ".")


def build_orchestrator(
    settings: Settings,
    registry: JobRegistry,
    provisioner: LocalProvisioner,
    *,
    use_cache: bool = True,
    extra_reporters: tuple = (),
) -> Orchestrator:
    """Wire the gate together from settings."""
    runner = JobRunner(
        CacheStore(settings.cache_dir) if use_cache else None,
        provisioner,
        log_dir=settings.log_dir,
        log_url=settings.log_url,
        default_timeout=settings.job_timeout,
        max_retries=settings.max_retries,
    )
    reporters: list = [ConsoleReporter()]
    if settings.status_api_url and settings.status_repo:
        reporters.append(
            CommitStatusReporter(
                settings.status_api_url,
                settings.status_repo,
                token=settings.status_token,
                titles={j.name: j.title for j in registry if j.title},
            )
        )
    reporters.extend(extra_reporters)
    return Orchestrator(registry, runner, reporters, max_workers=settings.max_workers)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """mergegate: the merge-queue gate for staging/trying pushes."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        ctx.obj["settings"] = Settings.from_env()
    except ValueError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(2)


@cli.command()
@click.argument("name", required=False)
@click.option("--registry", "registry_path", default=None, help="Job registry (.py workflow or .json matrix)")
@click.pass_context
def jobs(ctx, name, registry_path):
    """List the jobs every push runs, or show job NAME in full."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    registry = _load(registry_path or settings.registry)
    if name is None:
        console.print_jobs(registry.all_jobs())
        return
    try:
        console.print_job(registry.get(name))
    except KeyError as e:
        console.print_error("Unknown job", e.args[0])
        sys.exit(1)


@cli.command()
@click.option("--branch", type=click.Choice(INTEGRATION_BRANCHES), required=True, help="Integration branch pushed to")
@click.option("--commit", default=None, help="Commit to gate (defaults to HEAD)")
@click.option("--registry", "registry_path", default=None, help="Job registry (.py workflow or .json matrix)")
@click.option("--repo", "repo_url", default=None, help="Repository URL to check out at the commit")
@click.option("--source", default=None, type=click.Path(exists=True, file_okay=False), help="Directory to copy instead of cloning (default: .)")
@click.option("--cache-dir", default=None, help="Cache directory")
@click.option("--log-dir", default=None, help="Job log directory")
@click.option("--timeout", type=float, default=None, help="Per-job budget in seconds")
@click.option("--retries", type=int, default=None, help="Retries for errored jobs")
@click.option("--workers", type=int, default=None, help="Max concurrent jobs")
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True, help="Restore/save dependency caches")
@click.pass_context
def run(ctx, branch, commit, registry_path, repo_url, source, cache_dir, log_dir, timeout, retries, workers, use_cache):
    """Gate one push locally and exit 0 on Merge, 1 on Reject."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]

    overrides = {
        k: v for k, v in {
            "cache_dir": cache_dir,
            "log_dir": log_dir,
            "job_timeout": timeout,
            "max_retries": retries,
            "max_workers": workers,
        }.items() if v is not None
    }
    settings = replace(settings, **overrides)

    if commit is None:
        try:
            commit = head_sha(source or ".")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine commit",
                "No --commit given and HEAD could not be resolved.",
                suggestion="Run inside a git checkout or pass --commit <sha>.",
            )
            sys.exit(1)
        if not (repo_url or settings.repo_url) and is_dirty(source or "."):
            console.print_warning("Working tree has uncommitted changes; they are part of the copied workspace.")

    registry = _load(registry_path or settings.registry)
    provisioner = _provisioner(repo_url or settings.repo_url, source)
    orchestrator = build_orchestrator(settings, registry, provisioner, use_cache=use_cache)

    try:
        decision = orchestrator.run(PushEvent(branch=branch, commit=commit))
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        orchestrator.shutdown(wait=False)

    if decision is None or decision.outcome is not Outcome.MERGE:
        sys.exit(1)


@cli.command("cache-key")
@click.option("--template", required=True, help='Cache key template, e.g. "{os}-cargo-test-{hash}"')
@click.option("--environment", "--os", "environment", type=click.Choice([e.value for e in Environment]), default=None)
@click.option("--manifest", "--manifest-glob", "globs", multiple=True, default=["**/Cargo.lock"], show_default=True, help="Manifest glob(s)")
@click.option("--root", default=".", type=click.Path(exists=True, file_okay=False), help="Directory to fingerprint")
def cache_key(template, environment, globs, root):
    """Print the cache key a job would use in ROOT."""
    console = get_console()
    try:
        key = resolve(template, manifest_fingerprint(root, globs), environment)
    except ValueError as e:
        console.print_error("Invalid cache key template", str(e))
        sys.exit(1)
    console.print_info(key.value)


@cli.command("cache-prune")
@click.option("--cache-dir", default=None, help="Cache directory")
@click.option("--keep", default=20, type=click.IntRange(min=0), show_default=True, help="Number of newest artifacts to keep")
@click.pass_context
def cache_prune(ctx, cache_dir, keep):
    """Delete all but the newest KEEP cache artifacts."""
    settings: Settings = ctx.obj["settings"]
    store = CacheStore(cache_dir or settings.cache_dir)
    removed = store.prune(keep=keep)
    console = get_console()
    for name in removed:
        console.print_debug(f"removed {name}")
    console.print_info(f"Removed {len(removed)} cache artifact(s) from {store.root}")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.option("--registry", "registry_path", default=None, help="Job registry (.py workflow or .json matrix)")
@click.option("--source", default=None, type=click.Path(exists=True, file_okay=False), help="Directory to copy when MERGEGATE_REPO_URL is unset")
@click.pass_context
def serve(ctx, host, port, registry_path, source):
    """Run the webhook service that receives integration-branch pushes."""
    import uvicorn

    from mergegate.service import create_app
    from mergegate.store import DecisionStore

    settings: Settings = ctx.obj["settings"]
    registry = _load(registry_path or settings.registry)
    store = DecisionStore(settings.database_url)
    orchestrator = build_orchestrator(
        settings,
        registry,
        _provisioner(settings.repo_url, source),
        extra_reporters=(store,),
    )
    get_console().print_info(f"Serving {len(registry)} job(s) on http://{host}:{port}")
    uvicorn.run(create_app(orchestrator, store), host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
