# artifacts.py
from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .errors import DuplicateArtifactError
from .model import Artifact

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Content-addressed artifact store:
#
#   root/
#     blobs/<digest[:2]>/<digest>          raw bytes, named by sha256
#     index/<job>/<artifact>.json          Artifact record (write-once)
#
# put() is exclusive per (job, name): the first writer wins and any later
# write of the same key raises DuplicateArtifactError. Reads take no lock
# and verify the digest on the way out.
# ---------------------------------------------------------------------


DEFAULT_ARTIFACT_DIR = ".gateci/artifacts"


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _check_name(value: str, what: str) -> None:
    if not value or "/" in value or "\\" in value or value in (".", ".."):
        raise ValueError(f"Invalid {what} name: {value!r}")


class ArtifactStore:
    """File-based, content-addressed store for job artifacts."""

    def __init__(self, root: str | Path = DEFAULT_ARTIFACT_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _blob_path(self, digest: str) -> Path:
        return self.root / "blobs" / digest[:2] / digest

    def _index_path(self, job_name: str, name: str) -> Path:
        return self.root / "index" / job_name / f"{name}.json"

    # ---- write path ----

    def put(self, job_name: str, name: str, data: bytes, filename: Optional[str] = None) -> Artifact:
        _check_name(job_name, "job")
        _check_name(name, "artifact")

        digest = _sha256_bytes(data)
        artifact = Artifact(
            job=job_name,
            name=name,
            digest=digest,
            size=len(data),
            filename=filename or name,
        )

        index = self._index_path(job_name, name)
        with self._lock:
            if index.exists():
                raise DuplicateArtifactError(job=job_name, name=name)

            blob = self._blob_path(digest)
            if not blob.exists():
                blob.parent.mkdir(parents=True, exist_ok=True)
                tmp = blob.with_suffix(f".tmp{threading.get_ident()}")
                try:
                    tmp.write_bytes(data)
                    tmp.replace(blob)
                finally:
                    tmp.unlink(missing_ok=True)

            # index record last: the artifact is not visible until it is complete
            index.parent.mkdir(parents=True, exist_ok=True)
            index.write_text(json.dumps(asdict(artifact), sort_keys=True, indent=2), encoding="utf-8")

        return artifact

    def put_file(self, job_name: str, name: str, path: str | Path) -> Artifact:
        p = Path(path)
        return self.put(job_name, name, p.read_bytes(), filename=p.name)

    # ---- read path ----

    def get(self, handle: str | Artifact) -> bytes:
        digest = handle.digest if isinstance(handle, Artifact) else handle
        blob = self._blob_path(digest)
        if not blob.exists():
            raise KeyError(f"No artifact blob for handle {digest}")
        data = blob.read_bytes()
        if _sha256_bytes(data) != digest:
            raise ValueError(f"Artifact blob {digest} is corrupt (checksum mismatch)")
        return data

    def lookup(self, job_name: str, name: str) -> Artifact | None:
        index = self._index_path(job_name, name)
        if not index.exists():
            return None
        return Artifact(**json.loads(index.read_text(encoding="utf-8")))

    def list(self, job_name: str) -> List[str]:
        d = self.root / "index" / job_name
        if not d.is_dir():
            return []
        return sorted(p.stem for p in d.glob("*.json"))

    def materialize(self, artifact: Artifact, dest_dir: str | Path) -> Path:
        """Write the artifact's bytes to dest_dir/<filename> and return that path."""
        dest = Path(dest_dir) / artifact.filename
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.get(artifact))
        # build outputs are usually executables; keep them runnable after download
        os.chmod(dest, 0o755)
        return dest
