#!/usr/bin/env python3
"""
MCP server for the Traefik service catalog.

Tools
- list_services()
    -> {"services": [{"Name", "url", "priority", "icon", "tags", "group"}, ...]}
- status()
    -> {"version": {...}, "config": {...}, "frontend": {...}}
- health()
    -> {"ok": bool, "error"?: str}

Config comes from CONFIG_PATH (YAML) plus environment variables; see config_loader.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from aggregator import Aggregator, extract_service_name_from_url
from config_loader import ConfigError, Settings, is_valid_url, load_settings
from grouping import assign_groups
from icon_agent import IconResolver
from icon_cache import LocalIconIndex, app_tag_catalog, icon_catalog
from records import ResolvedService
from traefik_client import TraefikAPIError, TraefikClient

load_dotenv()

VERSION = os.getenv("TRALA_VERSION", "dev")
COMMIT = os.getenv("TRALA_COMMIT", "")
BUILD_TIME = os.getenv("TRALA_BUILD_TIME", "")

LOG_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING,
              "warning": logging.WARNING, "error": logging.ERROR}

log = logging.getLogger(__name__)

app = FastMCP("trala-catalog")


def configure_logging(level_name: str = "info") -> None:
    """Configure root logging once; later calls only adjust the level."""
    level = LOG_LEVELS.get((level_name or "").lower(), logging.INFO)
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class Catalog:
    """Wires settings, the Traefik client, caches and the resolver together."""

    def __init__(self, settings: Settings, traefik: Optional[TraefikClient] = None,
                 resolver: Optional[IconResolver] = None) -> None:
        self.settings = settings
        self.traefik = traefik or TraefikClient(settings.traefik, timeout=settings.http_timeout)
        if resolver is None:
            external = requests.Session()
            resolver = IconResolver(
                settings.selfhst_icon_url,
                icons=icon_catalog(external, timeout=settings.http_timeout),
                app_tags=app_tag_catalog(external, timeout=settings.http_timeout),
                user_icons=LocalIconIndex(settings.user_icons_dir),
                icon_override=settings.icon_override,
                session=external,
                timeout=settings.http_timeout,
            )
        self.resolver = resolver
        self.aggregator = Aggregator(settings, resolver)

    def prewarm(self) -> List[threading.Thread]:
        """Scan user icons now; fill both remote catalogs in the background."""
        self.resolver.user_icons.scan()
        jobs = (
            ("icon-index", self.resolver.icons.get_or_refresh, ()),
            ("app-tags", self.resolver.app_tags.get_or_refresh, ()),
        )
        threads = []
        for name, fn, args in jobs:
            t = threading.Thread(target=self._run_quietly, args=(name, fn, args), name=name, daemon=True)
            t.start()
            threads.append(t)
        return threads

    @staticmethod
    def _run_quietly(name: str, fn, args) -> None:
        try:
            fn(*args)
        except Exception:
            log.exception("[BOOT] %s warm-up failed", name)

    def services(self) -> List[ResolvedService]:
        entry_points = self.traefik.fetch_entrypoints()
        routers = self.traefik.fetch_routers()
        services = self.aggregator.aggregate(routers, entry_points)
        g = self.settings.grouping
        services = assign_groups(services, g.enabled, g.tag_frequency_threshold, g.min_services_per_group)
        return sorted(services, key=lambda s: s.priority, reverse=True)

    def search_engine_icon(self) -> str:
        url = self.settings.search_engine_url
        name = extract_service_name_from_url(url)
        if not name:
            return ""
        slug = name.replace(" ", "-")
        reference = self.resolver.resolve_reference(slug)
        return self.resolver.resolve_icon(name, url, slug, reference)

    def status(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "version": {"version": VERSION, "commit": COMMIT, "buildTime": BUILD_TIME},
            "config": s.status.to_dict() if s.status else {},
            "frontend": {
                "searchEngineURL": s.search_engine_url,
                "searchEngineIconURL": self.search_engine_icon(),
                "refreshIntervalSeconds": s.refresh_interval_seconds,
                "groupingEnabled": s.grouping.enabled,
                "groupingColumns": s.grouping.columns,
            },
        }

    def health(self) -> Dict[str, Any]:
        s = self.settings
        if not s.traefik.api_host:
            return {"ok": False, "error": "Traefik API host is not set"}
        if not is_valid_url(s.search_engine_url):
            return {"ok": False, "error": "Search Engine URL is invalid"}
        if not is_valid_url(s.selfhst_icon_url):
            return {"ok": False, "error": "Selfhst Icon URL is invalid"}
        if not self.traefik.ping():
            return {"ok": False, "error": "Could not connect to API"}
        return {"ok": True}


_CATALOG: Optional[Catalog] = None
_CATALOG_LOCK = threading.Lock()


def get_catalog() -> Catalog:
    global _CATALOG
    with _CATALOG_LOCK:
        if _CATALOG is None:
            settings = load_settings()
            configure_logging(settings.log_level)
            _CATALOG = Catalog(settings)
            _CATALOG.prewarm()
        return _CATALOG


# ---------------------------
# Tools
# ---------------------------

@app.tool()
def list_services() -> Dict[str, Any]:
    """
    All services behind Traefik plus manual entries, grouped and sorted by priority.
    """
    try:
        services = get_catalog().services()
    except TraefikAPIError as e:
        log.error("[CATALOG] %s", e)
        return {"error": f"Could not connect to API: {e}"}
    return {"services": [s.to_dict() for s in services]}


@app.tool()
def status() -> Dict[str, Any]:
    return get_catalog().status()


@app.tool()
def health() -> Dict[str, Any]:
    return get_catalog().health()


@app.tool()
def tool_manifest() -> Dict[str, Any]:
    return {
        "service": "trala-catalog",
        "tools": [
            {
                "name": "list_services",
                "description": "List services discovered from Traefik with icons, tags and groups.",
                "intents": {
                    "keywords": ["services", "dashboard", "traefik", "apps"],
                    "patterns": [r"\b(list|show)\b.*\bservices\b", r"\btraefik\b.*\b(routers|services)\b"],
                    "confidence_hint": 0.85,
                },
            },
            {
                "name": "status",
                "description": "Version, configuration compatibility and frontend settings.",
                "intents": {"keywords": ["status", "version"]},
            },
            {
                "name": "health",
                "description": "Check configuration and Traefik API reachability.",
                "intents": {"keywords": ["health", "healthy"]},
            },
        ],
    }


def main() -> None:
    configure_logging(os.getenv("LOG_LEVEL", "info"))
    try:
        get_catalog()
    except ConfigError as e:
        log.error("[BOOT] %s", e)
        raise SystemExit(1)
    log.info("[BOOT] starting trala-catalog MCP server")
    app.run()


if __name__ == "__main__":
    main()
