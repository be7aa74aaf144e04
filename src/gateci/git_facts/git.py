# git.py
# Small, focused wrapper around the Git CLI.
# Used only to fill in a default PipelineContext when the invoker did not
# supply one (local runs outside a hosted CI environment).

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str] = None) -> str:
    """
    Fully qualified ref of HEAD, e.g. "refs/heads/main".

    On a detached HEAD there is no branch; fall back to the exact tag
    pointing at HEAD, then to the bare commit SHA.
    """
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        pass
    try:
        tag = _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd)
        return f"refs/tags/{tag}"
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL of a configured remote."""
    return _git(["remote", "get-url", remote], cwd=cwd)
