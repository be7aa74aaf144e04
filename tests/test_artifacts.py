import threading

import pytest

from gateci.artifacts import ArtifactStore
from gateci.errors import DuplicateArtifactError


def test_put_get_list_roundtrip(store):
    artifact = store.put("build", "binary", b"\x7fELF...", filename="eyebright")

    assert artifact.size == 7
    assert artifact.filename == "eyebright"
    assert store.get(artifact.handle) == b"\x7fELF..."
    assert store.list("build") == ["binary"]
    assert store.list("unknown") == []
    assert store.lookup("build", "binary") == artifact
    assert store.lookup("build", "missing") is None


def test_second_write_of_same_key_is_rejected(store):
    store.put("build", "binary", b"first")
    with pytest.raises(DuplicateArtifactError):
        store.put("build", "binary", b"second")
    assert store.get(store.lookup("build", "binary")) == b"first"


def test_same_name_under_different_jobs_is_allowed(store):
    a = store.put("build-linux", "binary", b"linux")
    b = store.put("build-mac", "binary", b"mac")
    assert a.digest != b.digest


def test_identical_content_shares_a_blob(store):
    a = store.put("one", "x", b"same")
    b = store.put("two", "y", b"same")
    assert a.handle == b.handle
    assert store.get(a) == store.get(b) == b"same"


def test_concurrent_writers_first_wins(tmp_path):
    store = ArtifactStore(tmp_path / "a")
    start = threading.Barrier(8)
    outcomes = []
    lock = threading.Lock()

    def writer(i):
        start.wait()
        try:
            store.put("build", "binary", f"writer-{i}".encode())
            result = "ok"
        except DuplicateArtifactError:
            result = "dup"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("dup") == 7


def test_materialize_writes_original_filename(store, tmp_path):
    src = tmp_path / "eyebright"
    src.write_bytes(b"binary-bytes")
    artifact = store.put_file("build", "eyebright", src)

    dest = store.materialize(artifact, tmp_path / "ws" / "eyebright")

    assert dest == tmp_path / "ws" / "eyebright" / "eyebright"
    assert dest.read_bytes() == b"binary-bytes"


def test_corrupt_blob_is_detected(store):
    artifact = store.put("build", "binary", b"good")
    blob = store.root / "blobs" / artifact.digest[:2] / artifact.digest
    blob.write_bytes(b"evil")

    with pytest.raises(ValueError, match="checksum mismatch"):
        store.get(artifact)


@pytest.mark.parametrize("job_name,name", [("", "x"), ("a/b", "x"), ("build", ".."), ("build", "x/y")])
def test_invalid_keys_rejected(store, job_name, name):
    with pytest.raises(ValueError):
        store.put(job_name, name, b"")
