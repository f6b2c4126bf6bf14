# router.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from records import EntryPoint, RoutingRecord, tls_present

log = logging.getLogger(__name__)

# Host(`a.example.com`) and PathPrefix(`/app`), backtick quoted as Traefik writes them
HOST_PAT = re.compile(r"Host\(\s*`([^`]+)`\s*\)")
PATH_PAT = re.compile(r"PathPrefix\(\s*`([^`]+)`\s*\)")

DEFAULT_PORTS = {"http": "80", "https": "443"}


@dataclass(frozen=True)
class NameRules:
    """
    How a raw router name becomes the identifier used for overrides and display.

    Traefik reports routers as "<entrypoint>-<name>@<provider>" depending on the
    provider; both parts are operator habits rather than guarantees, so each one
    can be switched off.
    """
    provider_separator: str = "@"
    strip_entrypoint_prefix: bool = True

    def identifier(self, record: RoutingRecord) -> str:
        name = record.name or ""
        if self.provider_separator:
            name = name.split(self.provider_separator, 1)[0]

        if self.strip_entrypoint_prefix and record.entry_points:
            prefix = record.entry_points[0] + "-"
            if len(name) > len(prefix) and name.lower().startswith(prefix.lower()):
                name = name[len(prefix):]
                log.debug("[ROUTER] stripped entrypoint prefix %r -> %r", prefix, name)
        return name


def determine_protocol(record: RoutingRecord, entry_point: EntryPoint) -> str:
    # router-level TLS wins over the shared entrypoint
    if tls_present(record.tls):
        return "https"
    if tls_present(entry_point.tls):
        return "https"
    return "http"


def _clean_path(path: str) -> str:
    if not path:
        return ""
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/")


def _port_of(address: str) -> str:
    # ":8443", "0.0.0.0:8443" or ":8443/tcp"
    port = (address or "").rpartition(":")[2]
    return port.split("/", 1)[0].strip()


def reconstruct_url(record: RoutingRecord, entry_points: Mapping[str, EntryPoint]) -> Optional[str]:
    """
    Rebuild the public URL of a router from its rule and first entrypoint.
    Returns None when the rule has no Host() or the entrypoint cannot be resolved.
    """
    m = HOST_PAT.search(record.rule or "")
    if not m:
        return None
    hostname = m.group(1).strip()

    pm = PATH_PAT.search(record.rule or "")
    path = _clean_path(pm.group(1).strip()) if pm else ""

    if not record.entry_points:
        log.debug("[ROUTER] %s has no entrypoints; cannot determine URL", record.name)
        return None
    ep_name = record.entry_points[0]
    entry_point = entry_points.get(ep_name)
    if entry_point is None:
        log.debug("[ROUTER] %s: entrypoint %r not found", record.name, ep_name)
        return None

    protocol = determine_protocol(record, entry_point)
    port = _port_of(entry_point.address)

    if not port or port == DEFAULT_PORTS[protocol]:
        return f"{protocol}://{hostname}{path}"
    return f"{protocol}://{hostname}:{port}{path}"
