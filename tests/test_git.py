import subprocess

import pytest

from buildrun.git_facts import git
from buildrun.git_facts.git import repo_facts, repo_names


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://github.com/acme/widgets.git", ("widgets", "acme/widgets")),
        ("https://github.com/acme/widgets/", ("widgets", "acme/widgets")),
        ("git@github.com:acme/widgets.git", ("widgets", "acme/widgets")),
        ("widgets", ("widgets", "widgets")),
    ],
)
def test_repo_names(url, expected):
    assert repo_names(url) == expected


def test_repo_facts_outside_a_repository(monkeypatch):
    def fake_git(args, cwd=None):
        raise subprocess.CalledProcessError(128, ["git", *args])

    monkeypatch.setattr(git, "_git", fake_git)
    assert repo_facts() == {}


def test_repo_facts_from_git(monkeypatch):
    answers = {
        ("rev-parse", "HEAD"): "0123456789abcdef",
        ("rev-parse", "--abbrev-ref", "HEAD"): "main",
        ("describe", "--tags", "--exact-match"): "v1.0.0",
        ("remote", "get-url", "origin"): "git@github.com:acme/widgets.git",
    }
    monkeypatch.setattr(git, "_git", lambda args, cwd=None: answers[tuple(args)])

    assert repo_facts() == {
        "COMMIT_SHA": "0123456789abcdef",
        "BRANCH_NAME": "main",
        "TAG_NAME": "v1.0.0",
        "REPO_NAME": "widgets",
        "REPO_FULL_NAME": "acme/widgets",
    }


def test_detached_head_has_no_branch(monkeypatch):
    monkeypatch.setattr(git, "_git", lambda args, cwd=None: "HEAD")
    assert git.current_branch() == ""
