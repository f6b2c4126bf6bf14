# icon_cache.py
from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import requests

from fuzzy import best_match
from records import AppTagEntry, IconCatalogEntry, shortest_first

log = logging.getLogger(__name__)

USER_AGENT = "TraLa-Dashboard-App"

ICON_INDEX_URL = "https://raw.githubusercontent.com/selfhst/icons/refs/heads/main/index.json"
APP_TAGS_URL = "https://raw.githubusercontent.com/selfhst/cdn/refs/heads/main/directory/integrations/trala.json"

ICON_INDEX_TTL_S = 60 * 60
APP_TAGS_TTL_S = 24 * 60 * 60

# after a failed refresh the stale copy is served this long before retrying
RETRY_BACKOFF_S = 60

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".svg", ".webp", ".gif"}


class CatalogUnavailable(RuntimeError):
    """A remote catalog could not be fetched and nothing is cached yet."""


class RWLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CatalogSnapshot:
    """Immutable view of one catalog refresh: sorted entries plus lookups."""

    def __init__(self, entries: Tuple[Any, ...] = ()) -> None:
        self.entries = entries
        self.references: Tuple[str, ...] = tuple(e.reference for e in entries)
        self._by_ref: Dict[str, Any] = {}
        for e in entries:
            self._by_ref.setdefault(e.reference, e)

    def get(self, reference: str) -> Optional[Any]:
        return self._by_ref.get(reference)

    def __len__(self) -> int:
        return len(self.entries)


EMPTY_SNAPSHOT = CatalogSnapshot()


class CatalogCache:
    """
    A remote JSON catalog kept in memory for `ttl` seconds.

    get_or_refresh() checks freshness under the read lock, then takes the write
    lock and checks again before fetching, so concurrent callers trigger one
    download. A failed refresh keeps the previous snapshot; callers get the stale
    copy if there is one and CatalogUnavailable otherwise. The stale copy is then
    served without refetching for `retry_after` seconds.
    """

    def __init__(
        self,
        name: str,
        url: str,
        ttl: float,
        parse: Callable[[Dict[str, Any]], Any],
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        retry_after: float = RETRY_BACKOFF_S,
    ) -> None:
        self.name = name
        self.url = url
        self.ttl = ttl
        self.retry_after = retry_after
        self._parse = parse
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock
        self._lock = RWLock()
        self._snapshot: CatalogSnapshot = EMPTY_SNAPSHOT
        self._refreshed_at: Optional[float] = None
        self._failed_at: Optional[float] = None

    def _fresh(self) -> bool:
        if not len(self._snapshot):
            return False
        now = self._clock()
        if self._refreshed_at is not None and now - self._refreshed_at < self.ttl:
            return True
        return self._failed_at is not None and now - self._failed_at < self.retry_after

    def get_or_refresh(self) -> CatalogSnapshot:
        with self._lock.read():
            if self._fresh():
                return self._snapshot

        with self._lock.write():
            if self._fresh():
                return self._snapshot
            try:
                self._snapshot = self._fetch()
                self._refreshed_at = self._clock()
                self._failed_at = None
            except CatalogUnavailable as e:
                if len(self._snapshot):
                    self._failed_at = self._clock()
                    log.warning("[ICONS] %s refresh failed, serving stale copy for %ss: %s",
                                self.name, self.retry_after, e)
                    return self._snapshot
                raise
            log.info("[ICONS] cached %d %s entries", len(self._snapshot), self.name)
            return self._snapshot

    def _fetch(self) -> CatalogSnapshot:
        log.info("[ICONS] refreshing %s from %s", self.name, self.url)
        try:
            resp = self._session.get(self.url, headers={"User-Agent": USER_AGENT}, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise CatalogUnavailable(f"{self.name}: {e}") from e

        if not isinstance(payload, list):
            raise CatalogUnavailable(f"{self.name}: expected a JSON array, got {type(payload).__name__}")

        entries = [self._parse(item) for item in payload if isinstance(item, dict)]
        entries = [e for e in entries if e.reference]
        entries.sort(key=lambda e: shortest_first(e.reference))
        return CatalogSnapshot(tuple(entries))


def icon_catalog(session: Optional[requests.Session] = None, url: str = ICON_INDEX_URL,
                 timeout: float = 5.0) -> CatalogCache:
    return CatalogCache("icon index", url, ICON_INDEX_TTL_S, IconCatalogEntry.from_api,
                        session=session, timeout=timeout)


def app_tag_catalog(session: Optional[requests.Session] = None, url: str = APP_TAGS_URL,
                    timeout: float = 5.0) -> CatalogCache:
    return CatalogCache("app tags", url, APP_TAGS_TTL_S, AppTagEntry.from_api,
                        session=session, timeout=timeout)


class LocalIconIndex:
    """User-supplied icons found under a mounted directory, keyed by lowercase stem."""

    def __init__(self, directory: str) -> None:
        self.directory = directory
        self._lock = RWLock()
        self._paths: Dict[str, str] = {}
        self._names: Tuple[str, ...] = ()

    def scan(self) -> int:
        """
        Walk the directory once and rebuild the index.
        A missing directory leaves the index empty.
        """
        paths: Dict[str, str] = {}
        if not os.path.isdir(self.directory):
            log.debug("[ICONS] user icons directory does not exist: %s", self.directory)
        else:
            log.info("[ICONS] scanning user icons in %s", self.directory)
            for root, _, files in os.walk(self.directory):
                for fn in files:
                    stem, ext = os.path.splitext(fn)
                    if ext.lower() not in IMAGE_EXTS:
                        continue
                    paths[stem.lower()] = os.path.join(root, fn)
                    log.debug("[ICONS] user icon %s -> %s", stem.lower(), paths[stem.lower()])

        names = tuple(sorted(paths, key=shortest_first))
        with self._lock.write():
            self._paths = paths
            self._names = names
        log.info("[ICONS] found %d user icons", len(paths))
        return len(paths)

    def names(self) -> List[str]:
        with self._lock.read():
            return list(self._names)

    def find(self, name: str) -> str:
        """Path of the best fuzzy match for name, or "" when nothing matches."""
        with self._lock.read():
            if not self._paths:
                return ""
            hit = best_match(name, self._names)
            return self._paths.get(hit, "") if hit else ""
