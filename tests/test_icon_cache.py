from __future__ import annotations

import threading

import pytest
import requests

from icon_cache import (
    USER_AGENT,
    CatalogCache,
    CatalogUnavailable,
    LocalIconIndex,
    app_tag_catalog,
    icon_catalog,
)
from records import AppTagEntry, IconCatalogEntry


class StubResponse:
    def __init__(self, payload, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class StubSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


ICONS = [
    {"Reference": "plex-requests", "Name": "Plex Requests", "SVG": "No", "PNG": "Yes"},
    {"Reference": "plex", "Name": "Plex", "SVG": "Yes", "PNG": "Yes"},
    {"Reference": "", "Name": "broken"},
    "not-a-dict",
]


def _cache(session, clock, ttl=60.0) -> CatalogCache:
    return CatalogCache("icons", "https://example.test/index.json", ttl, IconCatalogEntry.from_api,
                        session=session, clock=clock)


def test_fetch_sorts_shortest_first_and_drops_bad_items() -> None:
    session = StubSession(StubResponse(ICONS))
    snap = _cache(session, Clock()).get_or_refresh()
    assert snap.references == ("plex", "plex-requests")
    assert snap.get("plex").svg is True
    assert session.calls[0][1] == {"User-Agent": USER_AGENT}


def test_fresh_cache_is_not_refetched_until_ttl_passes() -> None:
    session = StubSession(StubResponse(ICONS))
    clock = Clock()
    cache = _cache(session, clock, ttl=60)
    cache.get_or_refresh()
    clock.now += 59
    cache.get_or_refresh()
    assert len(session.calls) == 1
    clock.now += 2
    cache.get_or_refresh()
    assert len(session.calls) == 2


def test_empty_catalog_is_never_fresh() -> None:
    session = StubSession(StubResponse([]))
    cache = _cache(session, Clock())
    assert len(cache.get_or_refresh()) == 0
    cache.get_or_refresh()
    assert len(session.calls) == 2


def test_failed_refresh_serves_stale_copy() -> None:
    session = StubSession(StubResponse(ICONS), requests.ConnectionError("down"))
    clock = Clock()
    cache = _cache(session, clock, ttl=10)
    first = cache.get_or_refresh()
    clock.now += 100
    assert cache.get_or_refresh() is first


def test_stale_copy_is_not_refetched_while_upstream_is_down() -> None:
    session = StubSession(StubResponse(ICONS), requests.ConnectionError("down"))
    clock = Clock()
    cache = _cache(session, clock, ttl=10)
    first = cache.get_or_refresh()
    clock.now += 100

    results = []
    threads = [threading.Thread(target=lambda: results.append(cache.get_or_refresh())) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(session.calls) == 2
    assert all(r is first for r in results)


def test_refresh_is_retried_after_backoff() -> None:
    session = StubSession(StubResponse(ICONS), requests.ConnectionError("down"))
    clock = Clock()
    cache = _cache(session, clock, ttl=10)
    cache.get_or_refresh()
    clock.now += 100
    cache.get_or_refresh()
    clock.now += cache.retry_after - 1
    cache.get_or_refresh()
    assert len(session.calls) == 2
    clock.now += 2
    cache.get_or_refresh()
    assert len(session.calls) == 3


def test_failure_without_cache_raises() -> None:
    with pytest.raises(CatalogUnavailable):
        _cache(StubSession(StubResponse([], status_code=503)), Clock()).get_or_refresh()
    with pytest.raises(CatalogUnavailable):
        _cache(StubSession(StubResponse(ValueError("bad json"))), Clock()).get_or_refresh()
    with pytest.raises(CatalogUnavailable):
        _cache(StubSession(StubResponse({"not": "a list"})), Clock()).get_or_refresh()


def test_concurrent_callers_share_one_download() -> None:
    session = StubSession(StubResponse(ICONS))
    cache = _cache(session, Clock())
    threads = [threading.Thread(target=cache.get_or_refresh) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(session.calls) == 1


def test_catalog_factories_use_their_parsers() -> None:
    tags = app_tag_catalog(StubSession(StubResponse([{"reference": "plex", "tags": ["media", 3]}])))
    entry = tags.get_or_refresh().get("plex")
    assert isinstance(entry, AppTagEntry)
    assert entry.tags == ("media",)
    icons = icon_catalog(StubSession(StubResponse(ICONS)))
    assert icons.ttl == 3600 and tags.ttl == 86400


def test_local_icon_index(tmp_path) -> None:
    (tmp_path / "Jellyfin.PNG").write_bytes(b"x")
    nested = tmp_path / "more"
    nested.mkdir()
    (nested / "sonarr.svg").write_text("<svg/>")
    (tmp_path / "notes.txt").write_text("ignored")

    index = LocalIconIndex(str(tmp_path))
    assert index.scan() == 2
    assert index.names() == ["sonarr", "jellyfin"]
    assert index.find("Jellyfin") == str(tmp_path / "Jellyfin.PNG")
    assert index.find("snr") == str(nested / "sonarr.svg")
    assert index.find("radarr") == ""


def test_missing_icon_directory_is_empty(tmp_path) -> None:
    index = LocalIconIndex(str(tmp_path / "absent"))
    assert index.scan() == 0
    assert index.find("anything") == ""
