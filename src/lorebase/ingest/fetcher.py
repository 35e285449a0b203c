"""GitHub source fetcher: recursive tree listing and raw file download.

- Tree: GET {api_base}/repos/{owner}/{repo}/git/trees/{ref}?recursive=1
- Raw content: the entry's download URL, or a constructed
  raw.githubusercontent.com URL when the listing does not provide one.
- GITHUB_TOKEN (optional) is sent as a bearer credential; it is never logged
  and never included in error messages.
- Non-2xx responses raise FetchError carrying the status code; transport
  failures raise FetchError with ``status=None``.

Filtering (extension allow-list, size cap, ignored directories) is the
caller's job, see ``filter_files()``.
"""

from __future__ import annotations

import json
import re
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass
from http.client import HTTPResponse
from pathlib import PurePosixPath

from loguru import logger

_USER_AGENT = "lorebase/0.1"
_API_BASE = "https://api.github.com"
_RAW_BASE = "https://raw.githubusercontent.com"
_MAX_FILE_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds

_GITHUB_URL_RE = re.compile(
    r"github\.com[/:](?P<owner>[^/\s]+)/(?P<repo>[^/\s#?]+?)(?:\.git)?(?:[/#?]|$)",
    re.IGNORECASE,
)
_SHORTHAND_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?$")


class InvalidOriginError(ValueError):
    """Raised when a repository URL cannot be parsed into owner/repo."""


class FetchError(RuntimeError):
    """Raised when a remote listing or download fails.

    Attributes:
        status: HTTP status code, or None when the transport itself failed.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class Origin:
    """A repository at a specific branch or commit."""

    owner: str
    repo: str
    branch: str = "main"

    @property
    def repo_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


@dataclass(frozen=True)
class FileEntry:
    """One entry of a recursive tree listing."""

    path: str
    kind: str  # "blob" for files, "tree" for directories, "commit" for submodules
    size: int = 0
    download_url: str | None = None
    sha: str = ""


def parse_origin(url: str, branch: str | None = None, default_branch: str = "main") -> Origin:
    """Parse a GitHub URL (or ``owner/repo`` shorthand) into an Origin.

    Raises:
        InvalidOriginError: If *url* is not a recognisable GitHub repository.
    """
    candidate = url.strip()
    match = _GITHUB_URL_RE.search(candidate) or _SHORTHAND_RE.match(candidate)
    if not match:
        raise InvalidOriginError(
            f"Invalid GitHub repository URL: '{url}'. "
            "Expected https://github.com/<owner>/<repo> or <owner>/<repo>."
        )
    return Origin(
        owner=match.group("owner"),
        repo=match.group("repo"),
        branch=branch or default_branch,
    )


def filter_files(
    entries: Iterable[FileEntry],
    max_size: int,
    ignored_dirs: Iterable[str],
    allowed_extensions: Iterable[str],
) -> list[FileEntry]:
    """Keep only indexable files.

    Drops non-file entries, files above *max_size* bytes, files below any
    directory named in *ignored_dirs*, and files whose extension is not in
    *allowed_extensions*.
    """
    ignored = set(ignored_dirs)
    allowed = tuple(ext.lower() for ext in allowed_extensions)
    kept: list[FileEntry] = []
    for entry in entries:
        if entry.kind != "blob":
            continue
        if entry.size > max_size:
            continue
        if any(part in ignored for part in PurePosixPath(entry.path).parts[:-1]):
            continue
        if not entry.path.lower().endswith(allowed):
            continue
        kept.append(entry)
    return kept


class GitHubFetcher:
    """Read a repository's file tree and raw file contents over HTTPS."""

    def __init__(
        self,
        token: str | None = None,
        api_base: str = _API_BASE,
        timeout: int = _TIMEOUT,
    ) -> None:
        self._token = token or None
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    def list_files(self, origin: Origin) -> list[FileEntry]:
        """Return the full recursive file tree of *origin* at its branch.

        Raises:
            FetchError: On a non-2xx response or a transport failure.
        """
        url = (
            f"{self._api_base}/repos/{urllib.parse.quote(origin.owner)}/"
            f"{urllib.parse.quote(origin.repo)}/git/trees/"
            f"{urllib.parse.quote(origin.branch, safe='')}?recursive=1"
        )
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        body = self._get(url, headers, max_bytes=None)
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise FetchError(f"Invalid tree response for {origin.repo_name}: {exc}") from exc

        if data.get("truncated"):
            logger.warning("Tree listing for {} was truncated by the API", origin.repo_name)

        return [
            FileEntry(
                path=item["path"],
                kind=item.get("type", ""),
                size=int(item.get("size") or 0),
                download_url=item.get("download_url"),
                sha=item.get("sha", ""),
            )
            for item in data.get("tree", [])
            if "path" in item
        ]

    def read_file(self, url: str) -> bytes:
        """Download raw file bytes from *url*.

        Raises:
            FetchError: On a non-2xx response, a transport failure, or a body
                larger than 5 MB.
        """
        return self._get(url, {}, max_bytes=_MAX_FILE_BYTES)

    @staticmethod
    def download_url(entry: FileEntry, origin: Origin) -> str:
        """Return the entry's download URL, constructing a raw URL if missing."""
        if entry.download_url:
            return entry.download_url
        path = urllib.parse.quote(entry.path)
        return f"{_RAW_BASE}/{origin.owner}/{origin.repo}/{origin.branch}/{path}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get(self, url: str, headers: dict[str, str], max_bytes: int | None) -> bytes:
        all_headers = {"User-Agent": _USER_AGENT, **headers}
        if self._token:
            all_headers["Authorization"] = f"Bearer {self._token}"
        request = urllib.request.Request(url, headers=all_headers)

        try:
            response: HTTPResponse = urllib.request.urlopen(request, timeout=self._timeout)
        except urllib.error.HTTPError as exc:
            logger.debug("GET {} failed with HTTP {}", url, exc.code)
            raise FetchError(f"GitHub request failed: HTTP {exc.code} for {url}", status=exc.code) from None
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise FetchError(f"GitHub request failed for {url}: {exc}") from exc

        with response:
            if max_bytes is None:
                return response.read()
            body = response.read(max_bytes + 1)
        if len(body) > max_bytes:
            raise FetchError(
                f"Response body exceeds {max_bytes // (1024 * 1024)} MB limit for {url}"
            )
        return body
