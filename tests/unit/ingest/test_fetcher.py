"""Tests for the GitHub source fetcher (HTTP mocked)."""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import patch

import pytest

from lorebase.ingest.fetcher import (
    FetchError,
    FileEntry,
    GitHubFetcher,
    InvalidOriginError,
    Origin,
    filter_files,
    parse_origin,
)

_URLOPEN = "lorebase.ingest.fetcher.urllib.request.urlopen"


class _FakeResponse(io.BytesIO):
    """Minimal stand-in for http.client.HTTPResponse."""

    status = 200


def _http_error(url: str, code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(url, code, "error", hdrs=None, fp=None)


# ------------------------------------------------------------------
# parse_origin
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/acme/docs",
        "https://github.com/acme/docs.git",
        "https://github.com/acme/docs/tree/main/guide",
        "http://www.github.com/acme/docs/",
        "git@github.com:acme/docs.git",
        "acme/docs",
    ],
)
def test_parse_origin_variants(url):
    origin = parse_origin(url)
    assert (origin.owner, origin.repo, origin.branch) == ("acme", "docs", "main")


def test_parse_origin_branch_override():
    origin = parse_origin("https://github.com/acme/docs", branch="dev")
    assert origin.branch == "dev"
    assert origin.repo_name == "acme/docs"
    assert origin.url == "https://github.com/acme/docs"


def test_parse_origin_default_branch():
    assert parse_origin("acme/docs", default_branch="master").branch == "master"


@pytest.mark.parametrize("url", ["", "not a url", "https://gitlab.com/acme/docs", "acme"])
def test_parse_origin_invalid(url):
    with pytest.raises(InvalidOriginError):
        parse_origin(url)


# ------------------------------------------------------------------
# filter_files
# ------------------------------------------------------------------

def test_filter_files():
    entries = [
        FileEntry("README.md", "blob", 100),
        FileEntry("docs/guide.MD", "blob", 200),
        FileEntry("docs", "tree", 0),
        FileEntry("node_modules/pkg/README.md", "blob", 100),
        FileEntry("big.md", "blob", 600_000),
        FileEntry("src/main.py", "blob", 100),
        FileEntry("vendor.md", "blob", 100),
    ]
    kept = filter_files(entries, 500_000, ["node_modules", "vendor"], [".md"])
    assert [e.path for e in kept] == ["README.md", "docs/guide.MD", "vendor.md"]


# ------------------------------------------------------------------
# list_files
# ------------------------------------------------------------------

def test_list_files_parses_tree_and_sends_headers():
    body = json.dumps(
        {
            "tree": [
                {"path": "README.md", "type": "blob", "size": 12, "sha": "s1",
                 "download_url": "https://raw.example/README.md"},
                {"path": "docs", "type": "tree", "sha": "s2"},
            ],
            "truncated": False,
        }
    ).encode()
    with patch(_URLOPEN, return_value=_FakeResponse(body)) as mock_open:
        entries = GitHubFetcher(token="ghp_secret").list_files(Origin("acme", "docs", "dev"))

    assert entries == [
        FileEntry("README.md", "blob", 12, "https://raw.example/README.md", "s1"),
        FileEntry("docs", "tree", 0, None, "s2"),
    ]
    request = mock_open.call_args.args[0]
    assert request.full_url == "https://api.github.com/repos/acme/docs/git/trees/dev?recursive=1"
    assert request.get_header("Accept") == "application/vnd.github+json"
    assert request.get_header("X-github-api-version") == "2022-11-28"
    assert request.get_header("Authorization") == "Bearer ghp_secret"


def test_list_files_without_token_sends_no_auth():
    with patch(_URLOPEN, return_value=_FakeResponse(b'{"tree": []}')) as mock_open:
        GitHubFetcher().list_files(Origin("acme", "docs"))
    assert mock_open.call_args.args[0].get_header("Authorization") is None


def test_list_files_http_error_carries_status():
    url = "https://api.github.com/repos/acme/docs/git/trees/main?recursive=1"
    with patch(_URLOPEN, side_effect=_http_error(url, 404)):
        with pytest.raises(FetchError) as exc_info:
            GitHubFetcher(token="ghp_secret").list_files(Origin("acme", "docs"))
    assert exc_info.value.status == 404
    assert "ghp_secret" not in str(exc_info.value)


def test_list_files_invalid_json():
    with patch(_URLOPEN, return_value=_FakeResponse(b"<html>")):
        with pytest.raises(FetchError):
            GitHubFetcher().list_files(Origin("acme", "docs"))


# ------------------------------------------------------------------
# read_file
# ------------------------------------------------------------------

def test_read_file_returns_bytes():
    with patch(_URLOPEN, return_value=_FakeResponse(b"# Title\n")):
        assert GitHubFetcher().read_file("https://raw.example/README.md") == b"# Title\n"


def test_read_file_transport_error_has_no_status():
    with patch(_URLOPEN, side_effect=urllib.error.URLError("connection refused")):
        with pytest.raises(FetchError) as exc_info:
            GitHubFetcher().read_file("https://raw.example/README.md")
    assert exc_info.value.status is None


def test_read_file_http_error():
    url = "https://raw.example/README.md"
    with patch(_URLOPEN, side_effect=_http_error(url, 500)):
        with pytest.raises(FetchError) as exc_info:
            GitHubFetcher().read_file(url)
    assert exc_info.value.status == 500


def test_read_file_size_cap():
    with patch(_URLOPEN, return_value=_FakeResponse(b"x" * (5 * 1024 * 1024 + 10))):
        with pytest.raises(FetchError, match="5 MB"):
            GitHubFetcher().read_file("https://raw.example/huge.md")


# ------------------------------------------------------------------
# download_url
# ------------------------------------------------------------------

def test_download_url_prefers_entry_url():
    entry = FileEntry("README.md", "blob", 1, "https://raw.example/README.md")
    assert GitHubFetcher.download_url(entry, Origin("acme", "docs")) == "https://raw.example/README.md"


def test_download_url_constructed_fallback():
    entry = FileEntry("docs/my guide.md", "blob", 1)
    url = GitHubFetcher.download_url(entry, Origin("acme", "docs", "dev"))
    assert url == "https://raw.githubusercontent.com/acme/docs/dev/docs/my%20guide.md"
