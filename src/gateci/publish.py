# publish.py
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple

from .errors import PublishFailure, ReleaseAPIError
from .model import PublishResult, PublishStatus, ReleaseTarget
from .ui.console import get_console

# ---------------------------------------------------------------------
# Floating-tag protocol
# ---------------------------------------------------------------------
# A tag such as "latest" is a pointer, not a version. Every publish runs:
#
#   1. find_release(tag)        -> delete it if present (absent = first publish)
#   2. create_release(tag, ...) -> new id
#   3. upload_asset(id, ...)    for every mapped file
#
# Once step 1 deleted something, the previous release is gone for good, so
# a failure in 2 or 3 is reported as RETRYABLE. Re-running the protocol
# deletes whatever half-finished release an earlier attempt left behind,
# so repeated publishes converge on exactly one complete release.
# ---------------------------------------------------------------------


@dataclass
class ReleaseRecord:
    id: str
    tag: str
    title: str
    prerelease: bool = False
    body: str = ""
    assets: List[str] = field(default_factory=list)


class ReleaseHost(Protocol):
    """The release-hosting API, as seen by the publisher."""

    def find_release(self, tag: str) -> Optional[ReleaseRecord]: ...

    def delete_release(self, release_id: str) -> None: ...

    def create_release(
        self,
        tag: str,
        title: str,
        prerelease: bool,
        *,
        body: str = "",
        commitish: str | None = None,
    ) -> str: ...

    def upload_asset(self, release_id: str, filename: str, data: bytes) -> None: ...


class Publisher:
    """Idempotent create-or-replace of a release under a floating tag."""

    def __init__(
        self,
        host: ReleaseHost,
        *,
        attempts: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.host = host
        self.attempts = attempts
        self.backoff = backoff
        self._sleep = sleep

    def publish(
        self,
        target: ReleaseTarget,
        source_dir: str | Path,
        *,
        commitish: str | None = None,
    ) -> PublishResult:
        """
        Publish `target`, reading the mapped files relative to `source_dir`.

        Raises PublishFailure (carrying the final PublishResult) when the
        release could not be published.
        """
        files = self._collect(target, Path(source_dir))
        console = get_console()

        # the release this publish replaced, and whether any attempt touched remote state;
        # a later attempt cannot see what an earlier one already deleted
        replaced: str | None = None
        altered = False
        attempt = 1
        while True:
            try:
                result = self._publish_once(target, files, commitish)
            except PublishFailure as e:
                if not e.transient:
                    raise
                replaced = replaced or e.result.replaced_release_id
                altered = altered or e.result.status is PublishStatus.RETRYABLE
                console.print_info(
                    f"[publish] attempt {attempt}/{self.attempts} for '{target.tag}' failed "
                    f"at {e.stage} ({e.result.status.value}): {e.reason}"
                )
                if attempt >= self.attempts:
                    e.result = replace(
                        e.result,
                        status=PublishStatus.RETRYABLE if altered else e.result.status,
                        replaced_release_id=replaced or e.result.replaced_release_id,
                        attempts=attempt,
                    )
                    raise
                self._sleep(self.backoff * attempt)
                attempt += 1
                continue

            return replace(
                result,
                replaced_release_id=replaced or result.replaced_release_id,
                attempts=attempt,
            )

    def _collect(self, target: ReleaseTarget, source_dir: Path) -> List[Tuple[str, bytes]]:
        files: List[Tuple[str, bytes]] = []
        missing: List[str] = []
        for mapping in target.files:
            p = source_dir / mapping.path
            if not p.is_file():
                missing.append(mapping.path)
                continue
            files.append((mapping.remote_name, p.read_bytes()))

        if missing:
            result = PublishResult(
                tag=target.tag,
                status=PublishStatus.FAILED,
                error=f"release files not found: {', '.join(missing)}",
            )
            raise PublishFailure(result=result, stage="collect", reason=result.error, transient=False)

        names = [n for n, _ in files]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            result = PublishResult(
                tag=target.tag,
                status=PublishStatus.FAILED,
                error=f"duplicate asset names: {', '.join(dupes)}",
            )
            raise PublishFailure(result=result, stage="collect", reason=result.error, transient=False)

        return files

    def _publish_once(
        self,
        target: ReleaseTarget,
        files: List[Tuple[str, bytes]],
        commitish: str | None,
    ) -> PublishResult:
        tag = target.tag
        replaced: str | None = None

        def fail(stage: str, status: PublishStatus, err: Exception, release_id: str | None = None,
                 uploaded: Tuple[str, ...] = ()) -> PublishFailure:
            result = PublishResult(
                tag=tag,
                status=status,
                release_id=release_id,
                replaced_release_id=replaced,
                assets=uploaded,
                error=str(err),
            )
            return PublishFailure(result=result, stage=stage, reason=str(err))

        # 1. resolve + remove the previous release under this tag
        try:
            existing = self.host.find_release(tag)
        except ReleaseAPIError as e:
            raise fail("find", PublishStatus.FAILED, e) from e

        if existing is not None:
            try:
                self.host.delete_release(existing.id)
            except ReleaseAPIError as e:
                # the delete may or may not have happened remotely
                raise fail("delete", PublishStatus.RETRYABLE, e) from e
            replaced = existing.id

        # 2. create the new release
        try:
            release_id = self.host.create_release(
                tag,
                target.title,
                target.prerelease,
                body=target.body,
                commitish=commitish,
            )
        except ReleaseAPIError as e:
            status = PublishStatus.RETRYABLE if replaced else PublishStatus.FAILED
            raise fail("create", status, e) from e

        # 3. attach assets
        uploaded: List[str] = []
        for name, data in files:
            try:
                self.host.upload_asset(release_id, name, data)
            except ReleaseAPIError as e:
                raise fail("upload", PublishStatus.RETRYABLE, e, release_id, tuple(uploaded)) from e
            uploaded.append(name)

        return PublishResult(
            tag=tag,
            status=PublishStatus.PUBLISHED,
            release_id=release_id,
            replaced_release_id=replaced,
            assets=tuple(uploaded),
        )
