"""Tests for the crates.io registry client."""

from __future__ import annotations

import io
import json
from typing import List
from urllib.error import HTTPError, URLError

import pytest

from modernity.config import RegistryConfig
from modernity.errors import LibraryNotFound, RegistryUnavailable
from modernity.registry import CratesIoRegistry, parse_timestamp
from tests._fixtures.crate_builder import utc


class _FakeOpener:
    """Replays queued responses; exceptions in the queue are raised."""

    def __init__(self, responses) -> None:
        self._responses = list(responses)
        self.urls: List[str] = []
        self.headers: List[dict] = []

    def __call__(self, request, timeout=None):
        self.urls.append(request.full_url)
        self.headers.append(dict(request.header_items()))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, bytes):
            return io.BytesIO(response)
        return io.BytesIO(json.dumps(response).encode("utf-8"))


def _version(number: str, created_at: str, yanked: bool = False) -> dict:
    return {
        "num": number,
        "created_at": created_at,
        "yanked": yanked,
        "dl_path": f"/api/v1/crates/demo/{number}/download",
    }


def _http_error(code: int) -> HTTPError:
    return HTTPError("https://crates.io/api/v1/crates/demo/versions", code, "error", None, None)


def _registry(opener, sleeps=None, retries: int = 3) -> CratesIoRegistry:
    config = RegistryConfig(retries=retries, backoff=2.0)
    return CratesIoRegistry(config, opener=opener, sleep=(sleeps.append if sleeps is not None else lambda _: None))


def test_releases_follow_pagination() -> None:
    opener = _FakeOpener(
        [
            {
                "versions": [_version("1.1.0", "2021-03-01T10:00:00.123456+00:00")],
                "meta": {"next_page": "?page=2&per_page=100"},
            },
            {
                "versions": [_version("1.0.0", "2020-01-01T00:00:00Z", yanked=True)],
                "meta": {"next_page": None},
            },
        ]
    )

    releases = _registry(opener).releases("demo")

    assert opener.urls == [
        "https://crates.io/api/v1/crates/demo/versions",
        "https://crates.io/api/v1/crates/demo/versions?page=2&per_page=100",
    ]
    assert [release.version for release in releases] == ["1.1.0", "1.0.0"]
    assert releases[1].yanked is True
    assert releases[1].published_at == utc(2020)
    assert releases[0].archive_url == "https://crates.io/api/v1/crates/demo/1.1.0/download"
    assert opener.headers[0]["User-agent"] == RegistryConfig().user_agent


def test_releases_ignore_malformed_entries() -> None:
    opener = _FakeOpener(
        [
            {
                "versions": [
                    _version("1.0.0", "2020-01-01T00:00:00Z"),
                    {"num": "broken", "created_at": "yesterday"},
                    "not-a-dict",
                ]
            }
        ]
    )

    releases = _registry(opener).releases("demo")

    assert [release.version for release in releases] == ["1.0.0"]


def test_unknown_crate_raises_library_not_found() -> None:
    opener = _FakeOpener([_http_error(404)])

    with pytest.raises(LibraryNotFound) as excinfo:
        _registry(opener).releases("no-such-crate")

    assert excinfo.value.exit_code == 3


def test_transient_errors_are_retried_with_backoff() -> None:
    sleeps: List[float] = []
    opener = _FakeOpener([_http_error(503), URLError("reset"), {"versions": []}])

    releases = _registry(opener, sleeps).releases("demo")

    assert releases == []
    assert sleeps == [2.0, 4.0]


def test_retries_are_bounded() -> None:
    sleeps: List[float] = []
    opener = _FakeOpener([URLError("down")] * 3)

    with pytest.raises(RegistryUnavailable):
        _registry(opener, sleeps).releases("demo")

    assert len(opener.urls) == 3
    assert sleeps == [2.0, 4.0]


def test_client_errors_are_not_retried() -> None:
    sleeps: List[float] = []
    opener = _FakeOpener([_http_error(400)])

    with pytest.raises(RegistryUnavailable):
        _registry(opener, sleeps).releases("demo")

    assert sleeps == []


@pytest.mark.parametrize("body", [b"<html>maintenance</html>", b"[1, 2]", b"{\"meta\": {}}"])
def test_unusable_documents_raise_registry_unavailable(body: bytes) -> None:
    with pytest.raises(RegistryUnavailable):
        _registry(_FakeOpener([body])).releases("demo")


def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2020-01-01T02:00:00+02:00") == utc(2020)
    assert parse_timestamp("2020-01-01T00:00:00") == utc(2020)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
