"""Tests for docker command construction and the subprocess plumbing."""
from __future__ import annotations

import os
import stat
import subprocess
import textwrap

import pytest
import yaml

from buildrun.errors import BuildError
from buildrun.executors import DockerExecutor, DryRunExecutor


def _pairs(cmd, flag):
    return [cmd[i + 1] for i, part in enumerate(cmd) if part == flag]


@pytest.fixture
def sample_build(sample_text, make_build):
    return make_build(yaml.safe_load(sample_text))


def test_command_for_step_with_dir(tmp_path, sample_build):
    executor = DockerExecutor(tmp_path)
    cmd = executor.command_for(sample_build, sample_build.steps[2])

    assert cmd[:3] == ["docker", "run", "--rm"]
    assert _pairs(cmd, "--name") == ["buildrun-build-123-step-2"]
    assert f"{tmp_path.resolve()}:/workspace" in _pairs(cmd, "-v")
    assert "buildrun-build-123-home:/builder/home" in _pairs(cmd, "-v")
    assert _pairs(cmd, "-w") == ["/workspace/build"]
    assert "CARGO_HOME=/workspace/.cargo" in _pairs(cmd, "-e")
    assert "HOME=/builder/home" in _pairs(cmd, "-e")
    assert cmd[-4:] == [
        "us-docker.pkg.dev/my-proj/ci/make-docker",
        "BUILD_IMAGE_TAG=us-docker.pkg.dev/my-proj/ci/build-image",
        "BUILD_IMAGE_ARG=--cache-from us-docker.pkg.dev/my-proj/ci/build-image",
        "test",
    ]


def test_command_without_docker_socket(tmp_path, sample_build):
    executor = DockerExecutor(tmp_path, mount_docker_socket=False, network="cloudbuild")
    cmd = executor.command_for(sample_build, sample_build.steps[0])
    assert "/var/run/docker.sock:/var/run/docker.sock" not in _pairs(cmd, "-v")
    assert _pairs(cmd, "--network") == ["cloudbuild"]
    assert _pairs(cmd, "-w") == ["/workspace"]


def test_entrypoint_and_script(tmp_path, make_build):
    build = make_build({"steps": [
        {"name": "alpine", "entrypoint": "sh", "args": ["-c", "echo hi"]},
        {"name": "ubuntu", "script": "echo $$HOME"},
        {"name": "node", "volumes": [{"name": "cache", "path": "/cache"}]},
    ]})
    executor = DockerExecutor(tmp_path)

    first = executor.command_for(build, build.steps[0])
    assert _pairs(first, "--entrypoint") == ["sh"]
    assert first[-3:] == ["alpine", "-c", "echo hi"]

    second = executor.command_for(build, build.steps[1])
    assert _pairs(second, "--entrypoint") == ["bash"]
    assert second[-3:] == ["ubuntu", "-c", "echo $$HOME"]

    third = executor.command_for(build, build.steps[2])
    assert "buildrun-build-123-cache:/cache" in _pairs(third, "-v")


def test_step_env_may_override_home(tmp_path, make_build):
    build = make_build({"steps": [{"name": "alpine", "env": ["HOME=/root"]}]})
    cmd = DockerExecutor(tmp_path).command_for(build, build.steps[0])
    assert "HOME=/root" in _pairs(cmd, "-e")
    assert "HOME=/builder/home" not in _pairs(cmd, "-e")


def test_pull_failure(monkeypatch, tmp_path):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="denied: access")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(BuildError) as exc_info:
        DockerExecutor(tmp_path).pull("private/image")
    assert exc_info.value.kind == "image_pull"
    assert "denied" in exc_info.value.details["stderr"]


def test_docker_unavailable(monkeypatch, tmp_path):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(BuildError) as exc_info:
        DockerExecutor(tmp_path).check_available()
    assert exc_info.value.kind == "docker_unavailable"


def _fake_docker(tmp_path, body):
    script = tmp_path / "fake-docker"
    script.write_text("#!/bin/sh\n" + textwrap.dedent(body), encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as docker")
def test_run_step_streams_output(tmp_path, make_build):
    docker = _fake_docker(tmp_path, """\
        echo "first line"
        echo "args: $1 $2"
        exit 3
    """)
    build = make_build({"steps": [{"name": "alpine"}]})
    lines = []

    outcome = DockerExecutor(tmp_path, docker=docker).run_step(
        build, build.steps[0], timeout=10, sink=lines.append
    )

    assert outcome.exit_code == 3
    assert not outcome.timed_out
    assert lines == ["first line", "args: run --rm"]
    assert "first line" in outcome.output_tail


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as docker")
def test_run_step_timeout(tmp_path, make_build):
    docker = _fake_docker(tmp_path, """\
        if [ "$1" = "kill" ]; then exit 0; fi
        exec sleep 5
    """)
    build = make_build({"steps": [{"name": "alpine"}]})

    outcome = DockerExecutor(tmp_path, docker=docker).run_step(
        build, build.steps[0], timeout=0.2, sink=lambda line: None
    )

    assert outcome.timed_out


def test_dry_run_records_commands(tmp_path, sample_build):
    executor = DryRunExecutor(tmp_path)
    lines = []

    executor.pull("alpine")
    outcome = executor.run_step(sample_build, sample_build.steps[0], timeout=None, sink=lines.append)

    assert outcome.exit_code == 0
    assert executor.commands[0] == ["docker", "pull", "alpine"]
    assert executor.commands[1][:2] == ["docker", "run"]
    assert lines[0].startswith("$ docker run --rm")
    assert "gcr.io/cloud-builders/git submodule update --init --recursive" in lines[0]
