# icon_agent.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from fuzzy import best_match
from icon_cache import CatalogCache, CatalogSnapshot, CatalogUnavailable, EMPTY_SNAPSHOT, LocalIconIndex

log = logging.getLogger(__name__)

# no icon found; the frontend draws a placeholder
NO_ICON = ""

OVERRIDE_EXTS = (".png", ".svg", ".webp")
LINK_SELECTORS = ("link[rel='apple-touch-icon']", "link[rel='icon']")


def catalog_icon_url(base_url: str, value: str) -> str:
    """
    Turn a configured icon value into a URL.
      - absolute http(s) URL -> as is
      - name.png / name.svg / name.webp -> <base><ext>/<name.ext>
      - anything else -> <base>png/<value>.png
    """
    if value.startswith(("http://", "https://")):
        return value
    ext = os.path.splitext(value)[1]
    if ext in OVERRIDE_EXTS:
        return f"{base_url}{ext[1:]}/{value.lower()}"
    return f"{base_url}png/{value.lower()}.png"


@dataclass(frozen=True)
class IconQuery:
    identifier: str
    service_url: str
    display_name: str
    reference: str


class IconResolver:
    """
    Picks an icon for a service by trying, in order:
      1. a configured override
      2. the user icon directory (fuzzy)
      3. the selfh.st catalog (pre-resolved reference)
      4. <origin>/favicon.ico
      5. <link rel="apple-touch-icon"> / <link rel="icon"> in the service's HTML
    The first non-empty answer wins.
    """

    def __init__(
        self,
        icon_base_url: str,
        icons: CatalogCache,
        app_tags: CatalogCache,
        user_icons: LocalIconIndex,
        icon_override: Callable[[str], str] = lambda _name: "",
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
    ) -> None:
        self.icon_base_url = icon_base_url
        self.icons = icons
        self.app_tags = app_tags
        self.user_icons = user_icons
        self._icon_override = icon_override
        self._session = session or requests.Session()
        self._timeout = timeout
        self.strategies: Tuple[Tuple[str, Callable[[IconQuery], str]], ...] = (
            ("override", self._from_override),
            ("user icons", self._from_user_icons),
            ("selfh.st", self._from_catalog),
            ("favicon", self._from_favicon),
            ("html", self._from_html),
        )

    # ========== Catalog lookups ==========

    def _snapshot(self, cache: CatalogCache) -> CatalogSnapshot:
        try:
            return cache.get_or_refresh()
        except CatalogUnavailable as e:
            log.error("[ICONS] could not load %s: %s", cache.name, e)
            return EMPTY_SNAPSHOT

    def resolve_reference(self, name: str) -> str:
        """Best catalog reference for a normalized display name, or ""."""
        refs = self._snapshot(self.icons).references
        return best_match(name, refs) or ""

    def reference_icon_url(self, reference: str) -> str:
        if not reference:
            return ""
        entry = self._snapshot(self.icons).get(reference)
        if entry is None:
            return ""
        if entry.svg:
            return f"{self.icon_base_url}svg/{entry.reference}.svg"
        return f"{self.icon_base_url}png/{entry.reference}.png"

    def resolve_tags(self, identifier: str, reference: str) -> List[str]:
        if not reference:
            log.debug("[ICONS] [%s] no tags found", identifier)
            return []
        entry = self._snapshot(self.app_tags).get(reference)
        tags = list(entry.tags) if entry is not None else []
        log.debug("[ICONS] [%s] tags via %s: %s", identifier, reference, tags)
        return tags

    # ========== Cascade ==========

    def resolve_icon(self, identifier: str, service_url: str, display_name: str, reference: str) -> str:
        q = IconQuery(identifier, service_url, display_name, reference)
        for label, strategy in self.strategies:
            icon = strategy(q)
            if icon:
                log.debug("[ICONS] [%s] icon via %s: %s", identifier, label, icon)
                return icon
        log.debug("[ICONS] [%s] no icon found, frontend will use a fallback", identifier)
        return NO_ICON

    def _from_override(self, q: IconQuery) -> str:
        value = self._icon_override(q.identifier)
        return catalog_icon_url(self.icon_base_url, value) if value else ""

    def _from_user_icons(self, q: IconQuery) -> str:
        return self.user_icons.find(q.display_name)

    def _from_catalog(self, q: IconQuery) -> str:
        return self.reference_icon_url(q.reference)

    def _from_favicon(self, q: IconQuery) -> str:
        return self.find_favicon(q.service_url)

    def _from_html(self, q: IconQuery) -> str:
        return self.find_html_icon(q.service_url)

    # ========== Probes ==========

    def is_valid_image_url(self, url: str) -> bool:
        """HEAD the URL; a 200 with an image/* content type counts."""
        try:
            resp = self._session.head(url, timeout=self._timeout, allow_redirects=True)
        except requests.RequestException:
            return False
        ctype = resp.headers.get("Content-Type", "") or ""
        return resp.status_code == 200 and ctype.startswith("image/")

    def find_favicon(self, service_url: str) -> str:
        u = urlparse(service_url or "")
        if not u.scheme or not u.netloc:
            return ""
        favicon = f"{u.scheme}://{u.netloc}/favicon.ico"
        return favicon if self.is_valid_image_url(favicon) else ""

    def find_html_icon(self, service_url: str) -> str:
        if not service_url:
            return ""
        try:
            resp = self._session.get(service_url, timeout=self._timeout)
        except requests.RequestException:
            return ""
        if resp.status_code != 200:
            return ""

        soup = BeautifulSoup(resp.text or "", "html.parser")
        # relative hrefs resolve against where the redirects ended
        final_url = resp.url or service_url
        for selector in LINK_SELECTORS:
            link = soup.select_one(selector)
            href = link.get("href") if link is not None else None
            if not href:
                continue
            icon_url = urljoin(final_url, href)
            if self.is_valid_image_url(icon_url):
                return icon_url
        return ""
