"""Tests for CLI commands."""

import json

import pytest
import yaml
from click.testing import CliRunner

from buildrun.cli import cli, parse_substitutions


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


COMMON = ["--project-id", "my-proj", "--no-git"]


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("validate", "render", "plan", "run"):
        assert command in result.output


def test_validate_ok(runner, sample_file):
    result = runner.invoke(cli, ["validate", str(sample_file)])
    assert result.exit_code == 0
    assert "OK:" in result.output


def test_validate_reports_problems(runner, tmp_path):
    path = tmp_path / "cloudbuild.yaml"
    path.write_text(
        "steps:\n"
        "  - name: alpine\n"
        "    id: same\n"
        "  - name: alpine\n"
        "    id: same\n"
        "timeout: 20m\n",
        encoding="utf-8",
    )
    result = runner.invoke(cli, ["validate", str(path)])
    assert result.exit_code == 1
    assert "timeout" in result.output


def test_validate_duplicate_ids(runner, tmp_path):
    path = tmp_path / "cloudbuild.yaml"
    path.write_text(
        "steps:\n  - name: alpine\n    id: same\n  - name: alpine\n    id: same\n",
        encoding="utf-8",
    )
    result = runner.invoke(cli, ["validate", str(path)])
    assert result.exit_code == 1
    assert "duplicate step id" in result.output


def test_validate_strict_fails_on_warnings(runner, tmp_path):
    path = tmp_path / "cloudbuild.yaml"
    path.write_text("steps:\n  - name: alpine\n    dir: /opt\n", encoding="utf-8")

    assert runner.invoke(cli, ["validate", str(path)]).exit_code == 0
    assert runner.invoke(cli, ["validate", "--strict", str(path)]).exit_code == 1


def test_validate_discovers_default_file(runner, sample_file, monkeypatch):
    monkeypatch.chdir(sample_file.parent)
    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 0


def test_no_config_found(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 1
    assert "No build config found" in result.output


def test_missing_config_argument(runner, tmp_path):
    result = runner.invoke(cli, ["validate", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "Build config not found" in result.output


def test_render_yaml(runner, sample_file):
    result = runner.invoke(cli, ["render", str(sample_file), *COMMON])
    assert result.exit_code == 0, result.output

    rendered = yaml.safe_load(result.output)
    assert rendered["steps"][1]["args"] == ["pull", "us-docker.pkg.dev/my-proj/ci/build-image"]
    assert rendered["steps"][2]["name"] == "us-docker.pkg.dev/my-proj/ci/make-docker"
    assert rendered["timeout"] == "1800s"
    assert rendered["logsBucket"] == "gs://example-build-logs"


def test_render_json_with_override(runner, sample_file):
    result = runner.invoke(cli, [
        "render", str(sample_file), *COMMON,
        "--format", "json",
        "--substitutions", "_BUILD_IMAGE_TAG=local/build-image",
    ])
    assert result.exit_code == 0, result.output

    rendered = json.loads(result.output)
    assert rendered["steps"][1]["args"] == ["pull", "local/build-image"]


def test_render_substitution_error(runner, tmp_path):
    path = tmp_path / "cloudbuild.yaml"
    path.write_text("steps:\n  - name: alpine\n    args: [echo, $HOME]\n", encoding="utf-8")
    result = runner.invoke(cli, ["render", str(path), *COMMON])
    assert result.exit_code == 1
    assert "Substitution failed" in result.output


def test_plan(runner, tmp_path):
    path = tmp_path / "cloudbuild.yaml"
    path.write_text(
        "steps:\n"
        "  - {name: alpine, id: a}\n"
        "  - {name: alpine, id: b, waitFor: ['-']}\n"
        "  - {name: alpine, id: c}\n",
        encoding="utf-8",
    )
    result = runner.invoke(cli, ["plan", str(path), *COMMON])
    assert result.exit_code == 0, result.output
    assert "Stage 1" in result.output
    assert "Stage 2" in result.output
    assert "Stage 3" not in result.output


def test_run_dry_run(runner, sample_file, tmp_path):
    log_dir = tmp_path / "logs"
    result = runner.invoke(cli, [
        "run", str(sample_file), *COMMON,
        "--dry-run",
        "--workspace", str(tmp_path),
        "--log-dir", str(log_dir),
    ])
    assert result.exit_code == 0, result.output
    assert "BUILD STARTED" in result.output
    assert "docker run --rm" in result.output
    assert "BUILD SUCCESS" in result.output

    summaries = list(log_dir.glob("*/summary.json"))
    assert len(summaries) == 1
    summary = json.loads(summaries[0].read_text())
    assert summary["status"] == "success"
    assert summary["logsBucket"] == "gs://example-build-logs"


def test_run_with_worker_limit(runner, sample_file, tmp_path):
    result = runner.invoke(cli, [
        "run", str(sample_file), *COMMON,
        "--dry-run",
        "--workers", "1",
        "--workspace", str(tmp_path),
        "--log-dir", str(tmp_path / "logs"),
    ])
    assert result.exit_code == 0, result.output
    assert "BUILD SUCCESS" in result.output


def test_run_rejects_zero_workers(runner, sample_file, tmp_path):
    result = runner.invoke(cli, [
        "run", str(sample_file), *COMMON,
        "--dry-run",
        "--workers", "0",
        "--log-dir", str(tmp_path / "logs"),
    ])
    assert result.exit_code == 2


def test_run_rejects_bad_substitution_flag(runner, sample_file, tmp_path):
    result = runner.invoke(cli, [
        "run", str(sample_file), *COMMON,
        "--dry-run",
        "--log-dir", str(tmp_path / "logs"),
        "--substitutions", "NOT_A_PAIR",
    ])
    assert result.exit_code != 0


def test_parse_substitutions():
    assert parse_substitutions(("_A=1,_B=x=y", "_C=")) == {"_A": "1", "_B": "x=y", "_C": ""}
