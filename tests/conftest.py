"""Shared test fixtures."""
from __future__ import annotations

import textwrap

import pytest

from buildrun.schema import BuildConfig
from buildrun.substitutions import build_builtins, resolve_config
from buildrun.ui.console import Console, set_console

SAMPLE_CONFIG = textwrap.dedent(
    """\
    steps:
      - name: gcr.io/cloud-builders/git
        args: [ submodule, update, --init, --recursive ]
        id: fetch-git-submodules
      - name: gcr.io/cloud-builders/docker
        args: [ pull, "${_BUILD_IMAGE_TAG}" ]
        id: pull-build-image
      - name: us-docker.pkg.dev/$PROJECT_ID/ci/make-docker
        dir: ./build
        args:
          - BUILD_IMAGE_TAG=${_BUILD_IMAGE_TAG}
          - BUILD_IMAGE_ARG=--cache-from ${_BUILD_IMAGE_TAG}
          - test
        id: test
    options:
      env:
        - "CARGO_HOME=/workspace/.cargo"
      machineType: E2_HIGHCPU_8
      dynamic_substitutions: true
    timeout: 1800s
    substitutions:
      _BUILD_IMAGE_TAG: us-docker.pkg.dev/${PROJECT_ID}/ci/build-image
    logsBucket: "gs://example-build-logs"
    """
)


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def sample_text() -> str:
    return SAMPLE_CONFIG


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "cloudbuild.yaml"
    path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def builtins():
    return build_builtins(project_id="my-proj", build_id="build-123", use_git=False)


@pytest.fixture
def make_build(builtins):
    """Resolve a raw config mapping into a Build with fixed built-ins."""
    def _make(data, overrides=None):
        config = BuildConfig.from_mapping(data)
        return resolve_config(config, builtins, overrides)
    return _make
