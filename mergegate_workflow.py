# mergegate_workflow.py
# The job matrix every push to staging/trying runs.
from __future__ import annotations

from mergegate.dsl import cargo, job, toolchain, wf

CARGO_CACHE = ["target", "~/.cargo/git", "~/.cargo/registry"]


def workflow():
    return wf(
        job(
            "test_on_linux",
            *toolchain(),
            cargo("test", "-v"),
            environment="linux",
            cache_key="{os}-cargo-test-{hash}",
            cache_paths=CARGO_CACHE,
            title="Tests on Linux",
        ),
        job(
            "test_vm_on_linux",
            *toolchain(),
            cargo("test", "--package Boa --lib --features=vm -- vm --nocapture"),
            environment="linux-vm",
            cache_key="{os}-cargo-test-{hash}",
            cache_paths=CARGO_CACHE,
            title="Tests on Linux with vm enabled",
        ),
        job(
            "test_on_windows",
            *toolchain(),
            cargo("test", "-v"),
            environment="windows",
            cache_key="{os}-cargo-test-{hash}",
            cache_paths=["target"],
            title="Tests on Windows",
        ),
        # no cache on macos
        job(
            "test_on_macos",
            *toolchain(),
            cargo("test", "-v"),
            environment="macos",
            title="Tests on MacOS",
        ),
        job(
            "fmt",
            *toolchain(components=["rustfmt"]),
            cargo("fmt", "--all -- --check"),
            title="Rustfmt",
        ),
        job(
            "clippy",
            *toolchain(components=["clippy"]),
            cargo("clippy", "-- --verbose"),
            cache_key="{os}-cargo-clippy-{hash}",
            cache_paths=CARGO_CACHE,
            title="Clippy",
        ),
        job(
            "examples",
            *toolchain(),
            cargo("build", "--examples -v", name="Build examples"),
            cargo("run", "--example classes", name="Run example classes"),
            cache_key="{os}-cargo-examples-{hash}",
            cache_paths=CARGO_CACHE,
            title="Examples",
        ),
        job(
            "doc",
            *toolchain(),
            cargo("doc", "-v --document-private-items", name="Generate documentation"),
            cache_key="{os}-cargo-doc-{hash}",
            cache_paths=CARGO_CACHE,
            title="Documentation",
        ),
    )
