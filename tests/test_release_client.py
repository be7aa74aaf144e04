import io
import json
import urllib.error

import pytest

from gateci.errors import ReleaseAPIError
from gateci.release_client import GitHubReleaseClient, repo_slug_from_url


class _Response:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode() if payload is not None else b""

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeGitHub:
    """Records requests; replies from a {(method, path): payload | status} table."""

    def __init__(self):
        self.requests = []
        self.routes = {}

    def __call__(self, req, timeout=None):
        path = req.full_url.split("github.com", 1)[1]
        self.requests.append((req.get_method(), req.full_url, req.data, dict(req.header_items())))
        reply = self.routes.get((req.get_method(), path), {})
        if isinstance(reply, int):
            raise urllib.error.HTTPError(req.full_url, reply, "error", {}, io.BytesIO(b'{"message": "x"}'))
        return _Response(reply)


@pytest.fixture
def github(monkeypatch):
    fake = FakeGitHub()
    monkeypatch.setattr("urllib.request.urlopen", fake)
    return fake


@pytest.fixture
def client():
    return GitHubReleaseClient("octo/eyebright", "t0ken")


def test_find_release_returns_record(github, client):
    github.routes[("GET", "/repos/octo/eyebright/releases/tags/latest")] = {
        "id": 42,
        "tag_name": "latest",
        "name": "Latest development build",
        "prerelease": True,
        "assets": [{"name": "eyebright"}],
    }

    record = client.find_release("latest")

    assert record.id == "42"
    assert record.prerelease is True
    assert record.assets == ["eyebright"]
    method, url, _, headers = github.requests[0]
    assert url == "https://api.github.com/repos/octo/eyebright/releases/tags/latest"
    assert headers["Authorization"] == "Bearer t0ken"


def test_find_missing_release_returns_none(github, client):
    github.routes[("GET", "/repos/octo/eyebright/releases/tags/latest")] = 404
    assert client.find_release("latest") is None


def test_server_error_is_raised_with_status(github, client):
    github.routes[("GET", "/repos/octo/eyebright/releases/tags/latest")] = 502
    with pytest.raises(ReleaseAPIError) as exc:
        client.find_release("latest")
    assert exc.value.status == 502


def test_delete_also_removes_the_tag(github, client):
    github.routes[("GET", "/repos/octo/eyebright/releases/tags/latest")] = {"id": 7, "tag_name": "latest"}
    github.routes[("DELETE", "/repos/octo/eyebright/git/refs/tags/latest")] = 422

    client.delete_release(client.find_release("latest").id)

    assert [(m, u.split("github.com")[1]) for m, u, _, _ in github.requests[1:]] == [
        ("DELETE", "/repos/octo/eyebright/releases/7"),
        ("DELETE", "/repos/octo/eyebright/git/refs/tags/latest"),
    ]


def test_delete_keeps_tag_when_disabled(github):
    client = GitHubReleaseClient("octo/eyebright", "t0ken", move_tag=False)
    github.routes[("GET", "/repos/octo/eyebright/releases/tags/latest")] = {"id": 7, "tag_name": "latest"}

    client.delete_release(client.find_release("latest").id)

    assert len(github.requests) == 2


def test_create_release_payload(github, client):
    github.routes[("POST", "/repos/octo/eyebright/releases")] = {"id": 99}

    rid = client.create_release("latest", "Latest development build", True, commitish="abc123")

    assert rid == "99"
    payload = json.loads(github.requests[0][2])
    assert payload == {
        "tag_name": "latest",
        "name": "Latest development build",
        "body": "",
        "prerelease": True,
        "draft": False,
        "target_commitish": "abc123",
    }


def test_create_release_without_id_is_an_error(github, client):
    with pytest.raises(ReleaseAPIError, match="no id"):
        client.create_release("latest", "x", False)


def test_upload_goes_to_uploads_host(github, client):
    client.upload_asset("99", "eyebright", b"\x7fELF")

    method, url, data, headers = github.requests[0]
    assert method == "POST"
    assert url == "https://uploads.github.com/repos/octo/eyebright/releases/99/assets?name=eyebright"
    assert data == b"\x7fELF"
    assert headers["Content-type"] == "application/octet-stream"


def test_repo_format_is_validated():
    with pytest.raises(ValueError):
        GitHubReleaseClient("eyebright", "t0ken")


@pytest.mark.parametrize(
    "url,slug",
    [
        ("git@github.com:octo/eyebright.git", "octo/eyebright"),
        ("https://github.com/octo/eyebright", "octo/eyebright"),
        ("https://github.com/octo/eyebright.git/", "octo/eyebright"),
        ("not a url", None),
    ],
)
def test_repo_slug_from_url(url, slug):
    assert repo_slug_from_url(url) == slug
