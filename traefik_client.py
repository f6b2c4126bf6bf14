# traefik_client.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config_loader import TraefikSettings
from records import EntryPoint, RoutingRecord

log = logging.getLogger(__name__)

ENTRYPOINTS_PATH = "/api/entrypoints"
ROUTERS_PATH = "/api/http/routers"
MAX_PAGES = 1000


class TraefikAPIError(RuntimeError):
    """The Traefik admin API could not be reached or answered badly."""


def _with_page(url: str, page: str) -> str:
    u = urlparse(url)
    query = dict(parse_qsl(u.query, keep_blank_values=True))
    query["page"] = page
    return urlunparse(u._replace(query=urlencode(query)))


def build_session(traefik: TraefikSettings) -> requests.Session:
    sess = requests.Session()
    retry = Retry(
        total=2,
        connect=2,
        read=2,
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_maxsize=10)
    sess.mount("https://", adapter)
    sess.mount("http://", adapter)

    if traefik.enable_basic_auth:
        log.debug("[TRAEFIK] using basic auth as %s", traefik.username)
        sess.auth = (traefik.username, traefik.password)
    if traefik.insecure_skip_verify:
        log.warning("[TRAEFIK] SSL certificate verification is disabled for Traefik API connections")
        sess.verify = False
    return sess


class TraefikClient:
    """Reads routers and entrypoints from the Traefik admin API."""

    def __init__(self, traefik: TraefikSettings, session: Optional[requests.Session] = None,
                 timeout: float = 5.0) -> None:
        self.base_url = traefik.api_host.rstrip("/")
        self._session = session or build_session(traefik)
        self._timeout = timeout

    def _get(self, url: str) -> requests.Response:
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            raise TraefikAPIError(f"could not fetch {url}: {e}") from e
        if resp.status_code != 200:
            raise TraefikAPIError(f"{url} returned HTTP {resp.status_code}")
        return resp

    def fetch_all_pages(self, path: str) -> List[Dict[str, Any]]:
        """
        GET a list endpoint and follow X-Next-Page until it is empty or "1".
        """
        items: List[Dict[str, Any]] = []
        url = self.base_url + path
        for _ in range(MAX_PAGES):
            resp = self._get(url)
            try:
                page = resp.json()
            except ValueError as e:
                raise TraefikAPIError(f"invalid JSON from {url}: {e}") from e
            if not isinstance(page, list):
                raise TraefikAPIError(f"expected a JSON array from {url}")
            items.extend(p for p in page if isinstance(p, dict))

            next_page = (resp.headers.get("X-Next-Page") or "").strip()
            if not next_page or next_page == "1":
                break
            url = _with_page(url, next_page)
        else:
            log.warning("[TRAEFIK] stopped paging %s after %d pages", path, MAX_PAGES)
        return items

    def fetch_entrypoints(self) -> Dict[str, EntryPoint]:
        eps = [EntryPoint.from_api(item) for item in self.fetch_all_pages(ENTRYPOINTS_PATH)]
        log.debug("[TRAEFIK] fetched %d entrypoints", len(eps))
        return {ep.name: ep for ep in eps}

    def fetch_routers(self) -> List[RoutingRecord]:
        routers = [RoutingRecord.from_api(item) for item in self.fetch_all_pages(ROUTERS_PATH)]
        log.debug("[TRAEFIK] fetched %d routers", len(routers))
        return routers

    def ping(self) -> bool:
        try:
            self._get(self.base_url + ENTRYPOINTS_PATH)
        except TraefikAPIError as e:
            log.error("[TRAEFIK] health check failed: %s", e)
            return False
        return True
