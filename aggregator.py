# aggregator.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from fnmatch import fnmatchcase
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from config_loader import Settings, is_valid_url
from icon_agent import IconResolver, catalog_icon_url
from records import EntryPoint, ManualService, ResolvedService, RoutingRecord
from router import reconstruct_url

log = logging.getLogger(__name__)

DEFAULT_MANUAL_PRIORITY = 50


def matches_any(name: str, patterns: Iterable[str]) -> Optional[str]:
    for pat in patterns:
        if fnmatchcase(name, pat):
            return pat
    return None


def extract_service_name_from_url(url: str) -> str:
    """Second-level domain of a URL: "https://www.google.com/search?q=" -> "google"."""
    try:
        host = urlparse(url or "").hostname or ""
    except ValueError:
        return ""
    if not host:
        return ""
    parts = host.split(".")
    if len(parts) < 2:
        return host
    return parts[-2]


class Aggregator:
    """Turns routing records (plus manual entries) into ResolvedService objects."""

    def __init__(self, settings: Settings, resolver: IconResolver, max_workers: Optional[int] = None) -> None:
        self.settings = settings
        self.resolver = resolver
        self.max_workers = max(1, max_workers or settings.max_workers)

    # ========== Exclusions ==========

    def is_excluded(self, identifier: str) -> bool:
        return matches_any(identifier, self.settings.exclude.routers) is not None

    def is_entrypoint_excluded(self, entry_points: Sequence[str]) -> bool:
        for ep in entry_points:
            pat = matches_any(ep, self.settings.exclude.entrypoints)
            if pat is not None:
                log.debug("[CATALOG] entrypoint %s matched exclude pattern %s", ep, pat)
                return True
        return False

    def is_traefik_api(self, service_url: str) -> bool:
        host = self.settings.traefik.api_host
        if not host:
            return False
        if not host.startswith("http"):
            host = "http://" + host
        return service_url == host.rstrip("/") + "/api"

    # ========== Per record ==========

    def _enrich(self, identifier: str, display_name: str, service_url: str) -> Tuple[str, List[str]]:
        slug = display_name.replace(" ", "-")
        reference = self.resolver.resolve_reference(slug)
        icon = self.resolver.resolve_icon(identifier, service_url, slug, reference)
        tags = self.resolver.resolve_tags(identifier, reference)
        return icon, tags

    def process_router(self, record: RoutingRecord, entry_points: Mapping[str, EntryPoint]) -> Optional[ResolvedService]:
        """One routing record -> one service, or None when it is dropped."""
        identifier = self.settings.name_rules.identifier(record)

        service_url = reconstruct_url(record, entry_points)
        if not service_url:
            log.debug("[CATALOG] could not reconstruct URL for %s from rule: %s", identifier, record.rule)
            return None
        if self.is_excluded(identifier):
            log.debug("[CATALOG] excluding router %s", identifier)
            return None
        if self.is_entrypoint_excluded(record.entry_points):
            log.debug("[CATALOG] excluding router %s due to entrypoint exclusion", identifier)
            return None
        if self.is_traefik_api(service_url):
            log.debug("[CATALOG] excluding router %s: it is the Traefik API", identifier)
            return None

        display_name = self.settings.display_name_override(identifier) or identifier.replace("-", " ")
        log.debug("[CATALOG] processing %s (display: %s), URL: %s", identifier, display_name, service_url)

        icon, tags = self._enrich(identifier, display_name, service_url)
        return ResolvedService(
            name=display_name,
            url=service_url,
            priority=record.priority,
            icon=icon,
            tags=tags,
            group=self.settings.group_override(identifier),
        )

    def manual_services(self, manual: Optional[Sequence[ManualService]] = None) -> List[ResolvedService]:
        out: List[ResolvedService] = []
        for m in self.settings.manual if manual is None else manual:
            if not is_valid_url(m.url):
                log.warning("[CATALOG] invalid URL for manual service %r: %r", m.name, m.url)
                continue

            slug = m.name.replace(" ", "-")
            reference = self.resolver.resolve_reference(slug)
            if m.icon:
                icon = catalog_icon_url(self.resolver.icon_base_url, m.icon)
            else:
                icon = self.resolver.resolve_icon(m.name, m.url, slug, reference)

            svc = ResolvedService(
                name=m.name,
                url=m.url,
                priority=m.priority or DEFAULT_MANUAL_PRIORITY,
                icon=icon,
                tags=self.resolver.resolve_tags(m.name, reference),
                group=m.group,
            )
            log.debug("[CATALOG] added manual service %s (URL: %s, icon: %s, priority: %d, group: %s)",
                      svc.name, svc.url, svc.icon, svc.priority, svc.group)
            out.append(svc)
        return out

    # ========== Fan-out / join ==========

    def aggregate(
        self,
        records: Sequence[RoutingRecord],
        entry_points: Mapping[str, EntryPoint],
        manual: Optional[Sequence[ManualService]] = None,
    ) -> List[ResolvedService]:
        """
        Process every record on the worker pool and collect results as they
        finish, then append the manual services. Output order is unspecified.
        """
        discovered: List[ResolvedService] = []
        if records:
            workers = min(self.max_workers, len(records))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="catalog") as pool:
                futures = {pool.submit(self.process_router, r, entry_points): r for r in records}
                for fut in as_completed(futures):
                    try:
                        svc = fut.result()
                    except Exception:
                        log.exception("[CATALOG] failed to process router %s", futures[fut].name)
                        continue
                    if svc is not None:
                        discovered.append(svc)

        return discovered + self.manual_services(manual)
