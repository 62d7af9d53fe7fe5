"""Tests for the job registry, the DSL and registry loading."""
import json
from pathlib import Path

import pytest

from conftest import py, simple_job
from mergegate.dsl import cargo, cmd, job, toolchain, wf
from mergegate.errors import RegistryError
from mergegate.model import Environment, Step
from mergegate.registry import JobRegistry, load_registry, registry_from_dict

ROOT = Path(__file__).resolve().parents[1]


def test_registry_preserves_order_and_lookup():
    reg = JobRegistry([simple_job("b", py("pass")), simple_job("a", py("pass"))])
    assert reg.names() == ["b", "a"]
    assert [j.name for j in reg.all_jobs()] == ["b", "a"]
    assert reg.get("a").name == "a"
    assert len(reg) == 2


def test_registry_rejects_duplicate_names():
    with pytest.raises(RegistryError, match="Duplicate"):
        JobRegistry([simple_job("a", py("pass")), simple_job("a", py("pass"))])


def test_registry_rejects_jobs_without_steps():
    with pytest.raises(RegistryError, match="no steps"):
        JobRegistry([simple_job("empty")])


def test_unknown_job_lookup():
    with pytest.raises(KeyError, match="Unknown job"):
        JobRegistry([]).get("nope")


def test_dsl_builds_cargo_and_toolchain_steps():
    spec = job(
        "clippy",
        *toolchain(components=["clippy"]),
        cargo("clippy", "-- --verbose"),
        cache_key="{os}-cargo-clippy-{hash}",
        cache_paths=["target"],
    )
    assert spec.environment is Environment.LINUX
    assert spec.steps[0].argv == [
        "rustup", "toolchain", "install", "stable", "--profile", "minimal", "--component", "clippy",
    ]
    assert spec.steps[1].argv == ["rustup", "override", "set", "stable"]
    assert spec.steps[2].argv == ["cargo", "clippy", "--", "--verbose"]
    assert spec.caches


def test_dsl_job_needs_steps():
    with pytest.raises(ValueError, match="at least one step"):
        job("x")


def test_cmd_accepts_list_args():
    assert cmd("make", ["-j", "4"]).argv == ["make", "-j", "4"]
    assert wf(job("x", cmd("true"))) == [job("x", cmd("true"))]


def test_registry_from_dict_with_tagged_steps():
    reg = registry_from_dict({
        "jobs": [
            {
                "name": "fmt",
                "environment": "linux",
                "steps": [
                    {"kind": "toolchain", "components": ["rustfmt"]},
                    {"kind": "cargo", "command": "fmt", "args": "--all -- --check"},
                ],
            },
            {
                "name": "lint",
                "environment": "linux-vm",
                "steps": [{"command": "make", "args": ["lint"], "name": "Lint"}],
                "cache_key_template": "{os}-lint-{hash}",
                "cache_paths": ["build"],
                "inputs": ["requirements.txt"],
                "timeout": 60,
            },
        ]
    })

    fmt = reg.get("fmt")
    assert [s.argv for s in fmt.steps][-1] == ["cargo", "fmt", "--all", "--", "--check"]
    assert len(fmt.steps) == 3
    assert not fmt.caches

    lint = reg.get("lint")
    assert lint.environment is Environment.LINUX_VM
    assert lint.steps == (Step(command="make", args=("lint",), name="Lint"),)
    assert lint.cache_paths == ("build",)
    assert lint.inputs == ("requirements.txt",)
    assert lint.timeout == 60


@pytest.mark.parametrize("bad", [
    {"jobs": [{"name": "x", "environment": "solaris", "steps": [{"command": "true"}]}]},
    {"jobs": [{"name": "x", "environment": "linux", "steps": []}]},
    {"jobs": [{"name": "x", "environment": "linux", "steps": [{"kind": "docker", "image": "a"}]}]},
    {"jobs": [{"name": "x", "environment": "linux", "steps": [{"command": "true"}], "cache_key_template": "{branch}-{hash}"}]},
    {"jobs": [{"name": "x", "environment": "linux", "steps": [{"command": "true"}], "colour": "red"}]},
])
def test_invalid_matrix_is_rejected_at_load(bad):
    with pytest.raises(RegistryError, match="Invalid job registry"):
        registry_from_dict(bad)


def test_load_json_registry(tmp_path):
    path = tmp_path / "jobs.json"
    path.write_text(json.dumps({"jobs": [{"name": "t", "environment": "macos", "steps": [{"command": "true"}]}]}))
    reg = load_registry(path)
    assert reg.names() == ["t"]
    assert reg.get("t").environment is Environment.MACOS


def test_load_invalid_json(tmp_path):
    path = tmp_path / "jobs.json"
    path.write_text("{nope")
    with pytest.raises(RegistryError, match="not valid JSON"):
        load_registry(path)


def test_load_python_registry(tmp_path):
    path = tmp_path / "my_workflow.py"
    path.write_text(
        "from mergegate.dsl import wf, job, cmd\n"
        "JOBS = wf(job('a', cmd('true')), job('b', cmd('false'), environment='windows'))\n"
    )
    reg = load_registry(path)
    assert reg.names() == ["a", "b"]
    assert reg.get("b").environment is Environment.WINDOWS


def test_load_python_registry_must_define_jobs(tmp_path):
    path = tmp_path / "empty_workflow.py"
    path.write_text("X = 1\n")
    with pytest.raises(RegistryError, match="must return/define"):
        load_registry(path)


def test_load_registry_errors(tmp_path):
    with pytest.raises(RegistryError, match="not found"):
        load_registry(tmp_path / "missing.py")
    (tmp_path / "jobs.yaml").write_text("jobs: []")
    with pytest.raises(RegistryError, match=r"\.py or \.json"):
        load_registry(tmp_path / "jobs.yaml")


def test_project_workflow_matrix():
    reg = load_registry(ROOT / "mergegate_workflow.py")
    assert reg.names() == [
        "test_on_linux", "test_vm_on_linux", "test_on_windows", "test_on_macos",
        "fmt", "clippy", "examples", "doc",
    ]
    assert not reg.get("test_on_macos").caches
    assert not reg.get("fmt").caches
    assert reg.get("test_on_windows").cache_paths == ("target",)
    assert reg.get("examples").steps[-1].argv == ["cargo", "run", "--example", "classes"]
    assert reg.get("doc").title == "Documentation"
    assert all(j.title for j in reg)


def test_title_defaults_to_name():
    plain = simple_job("fmt", py("pass"))
    titled = simple_job("fmt", py("pass"), title="Rustfmt")
    assert plain.display_name == "fmt"
    assert titled.display_name == "Rustfmt"
