# release_client.py
from __future__ import annotations

import json
import re
import urllib.error
import urllib.request
from typing import Dict, Optional
from urllib.parse import quote, urljoin

from .errors import ReleaseAPIError
from .publish import ReleaseRecord

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_UPLOADS_URL = "https://uploads.github.com"


class GitHubReleaseClient:
    """HTTP client for the GitHub releases API (a ReleaseHost)."""

    def __init__(
        self,
        repo: str,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        uploads_url: str = DEFAULT_UPLOADS_URL,
        move_tag: bool = True,
        timeout: float = 60.0,
    ):
        """
        Initialize release client.

        Args:
            repo: "owner/name" of the repository releases are published to
            token: API token, passed through untouched
            api_url: Base URL of the REST API
            uploads_url: Base URL for asset uploads
            move_tag: Also delete the git tag when deleting a release, so the
                recreated release points at the new commit
            timeout: Per-request timeout in seconds
        """
        if not re.fullmatch(r"[\w.-]+/[\w.-]+", repo or ""):
            raise ValueError(f"repo must look like 'owner/name', got {repo!r}")
        self.repo = repo
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.uploads_url = uploads_url.rstrip("/")
        self.move_tag = move_tag
        self.timeout = timeout
        # release id -> tag, remembered from find_release for tag deletion
        self._tags: Dict[str, str] = {}

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        *,
        body: Optional[bytes] = None,
        base_url: Optional[str] = None,
        content_type: str = "application/json",
    ) -> dict:
        """
        Make an HTTP request to the API.

        Raises:
            ReleaseAPIError: If the request fails (status is set for HTTP errors)
        """
        url = urljoin((base_url or self.api_url) + "/", path.lstrip("/"))

        req_headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "gateci",
            "Content-Type": content_type,
        }

        req_data = body
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise ReleaseAPIError(
                f"{method} {url} failed: {e.code} {e.reason}. {error_body}".strip(),
                status=e.code,
            ) from e
        except urllib.error.URLError as e:
            raise ReleaseAPIError(f"Network error: {e.reason}") from e
        except json.JSONDecodeError as e:
            raise ReleaseAPIError(f"Invalid JSON response from {url}: {e}") from e

    # ---- ReleaseHost ----

    def find_release(self, tag: str) -> Optional[ReleaseRecord]:
        try:
            data = self._request("GET", f"/repos/{self.repo}/releases/tags/{quote(tag, safe='')}")
        except ReleaseAPIError as e:
            if e.status == 404:
                return None
            raise

        record = ReleaseRecord(
            id=str(data["id"]),
            tag=data.get("tag_name", tag),
            title=data.get("name") or "",
            prerelease=bool(data.get("prerelease", False)),
            body=data.get("body") or "",
            assets=[a["name"] for a in data.get("assets", [])],
        )
        self._tags[record.id] = record.tag
        return record

    def delete_release(self, release_id: str) -> None:
        self._request("DELETE", f"/repos/{self.repo}/releases/{release_id}")

        tag = self._tags.pop(release_id, None)
        if self.move_tag and tag:
            try:
                self._request("DELETE", f"/repos/{self.repo}/git/refs/tags/{quote(tag, safe='')}")
            except ReleaseAPIError as e:
                # 404/422: the tag is already gone
                if e.status not in (404, 422):
                    raise

    def create_release(
        self,
        tag: str,
        title: str,
        prerelease: bool,
        *,
        body: str = "",
        commitish: str | None = None,
    ) -> str:
        payload = {
            "tag_name": tag,
            "name": title,
            "body": body,
            "prerelease": prerelease,
            "draft": False,
        }
        if commitish:
            payload["target_commitish"] = commitish
        data = self._request("POST", f"/repos/{self.repo}/releases", data=payload)
        if "id" not in data:
            raise ReleaseAPIError(f"Release creation for {tag!r} returned no id")
        return str(data["id"])

    def upload_asset(self, release_id: str, filename: str, data: bytes) -> None:
        self._request(
            "POST",
            f"/repos/{self.repo}/releases/{release_id}/assets?name={quote(filename)}",
            body=data,
            base_url=self.uploads_url,
            content_type="application/octet-stream",
        )


def repo_slug_from_url(url: str) -> str | None:
    """
    "git@github.com:owner/repo.git" / "https://github.com/owner/repo" -> "owner/repo"
    """
    m = re.search(r"[:/]([\w.-]+)/([\w.-]+?)(?:\.git)?/?$", url.strip())
    if not m:
        return None
    return f"{m.group(1)}/{m.group(2)}"
