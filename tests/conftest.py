"""Pytest configuration and fixtures."""
from __future__ import annotations

import itertools
from typing import Dict, List, Optional, Tuple

import pytest

from gateci.artifacts import ArtifactStore
from gateci.errors import ReleaseAPIError
from gateci.model import EventKind, PipelineContext
from gateci.publish import Publisher, ReleaseRecord


class FakeReleaseHost:
    """In-memory release API. `fail[op] = n` makes the next n calls of op raise."""

    def __init__(self):
        self.releases: Dict[str, ReleaseRecord] = {}
        self.blobs: Dict[Tuple[str, str], bytes] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail: Dict[str, int] = {}
        self._ids = itertools.count(100)

    def _maybe_fail(self, op: str) -> None:
        remaining = self.fail.get(op, 0)
        if remaining:
            self.fail[op] = remaining - 1
            raise ReleaseAPIError(f"{op}: 502 Bad Gateway", status=502)

    def seed(self, tag: str, title: str = "old", assets: Optional[List[str]] = None) -> str:
        rid = str(next(self._ids))
        self.releases[rid] = ReleaseRecord(id=rid, tag=tag, title=title, assets=list(assets or []))
        return rid

    def releases_for(self, tag: str) -> List[ReleaseRecord]:
        return [r for r in self.releases.values() if r.tag == tag]

    # ---- ReleaseHost ----

    def find_release(self, tag):
        self.calls.append(("find", tag))
        self._maybe_fail("find")
        matches = self.releases_for(tag)
        return matches[0] if matches else None

    def delete_release(self, release_id):
        self.calls.append(("delete", release_id))
        self._maybe_fail("delete")
        del self.releases[release_id]

    def create_release(self, tag, title, prerelease, *, body="", commitish=None):
        self.calls.append(("create", tag))
        self._maybe_fail("create")
        rid = str(next(self._ids))
        self.releases[rid] = ReleaseRecord(id=rid, tag=tag, title=title, prerelease=prerelease, body=body)
        return rid

    def upload_asset(self, release_id, filename, data):
        self.calls.append(("upload", filename))
        self._maybe_fail("upload")
        self.releases[release_id].assets.append(filename)
        self.blobs[(release_id, filename)] = data


@pytest.fixture
def host():
    return FakeReleaseHost()


@pytest.fixture
def publisher(host):
    return Publisher(host, attempts=3, sleep=lambda _s: None)


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def workspace_root(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def main_push():
    return PipelineContext(ref="refs/heads/main", event=EventKind.PUSH, sha="abc123")


@pytest.fixture
def feature_push():
    return PipelineContext(ref="refs/heads/feature-x", event=EventKind.PUSH)
