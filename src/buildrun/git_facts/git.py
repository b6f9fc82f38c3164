# git.py
# Small wrapper around the Git CLI.
# The rest of the package never calls subprocess("git ...") directly; the
# facts gathered here feed the git-derived built-in substitutions.

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises CalledProcessError on a non-zero exit and FileNotFoundError
    when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """Branch name, or "" on a detached HEAD."""
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return "" if name == "HEAD" else name


def exact_tag(cwd: Optional[str | Path] = None) -> str:
    """Tag pointing exactly at HEAD, or "" when there is none."""
    try:
        return _git(["describe", "--tags", "--exact-match"], cwd=cwd)
    except subprocess.CalledProcessError:
        return ""


def remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def repo_names(url: str) -> tuple[str, str]:
    """
    ("name", "owner/name") from a remote URL.

    Handles https and scp-style (git@host:owner/name.git) URLs.
    """
    path = url.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    if "://" in path:
        path = path.split("://", 1)[1].split("/", 1)[-1]
    elif ":" in path:
        path = path.split(":", 1)[1]
    parts = [p for p in path.split("/") if p]
    name = parts[-1] if parts else ""
    full = "/".join(parts[-2:]) if len(parts) >= 2 else name
    return name, full


def repo_facts(cwd: Optional[str | Path] = None) -> Dict[str, str]:
    """
    Git facts for built-in substitutions, keyed by substitution name.

    Outside a repository (or without git) this returns only what could
    be found, possibly nothing.
    """
    facts: Dict[str, str] = {}
    try:
        facts["COMMIT_SHA"] = head_sha(cwd)
        facts["BRANCH_NAME"] = current_branch(cwd)
        facts["TAG_NAME"] = exact_tag(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        logger.debug("No git facts available: %s", exc)
        return facts

    try:
        facts["REPO_NAME"], facts["REPO_FULL_NAME"] = repo_names(remote_url(cwd=cwd))
    except subprocess.CalledProcessError:
        # no remote configured, fall back to the checkout directory name
        root = Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))
        facts["REPO_NAME"] = root.name
        facts["REPO_FULL_NAME"] = root.name
    return facts
