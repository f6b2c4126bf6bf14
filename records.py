# records.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


def raw_tls(payload: Dict[str, Any], key: str = "tls") -> Optional[str]:
    """
    Keep the TLS block as raw JSON text, the way the admin API sent it.
    A missing key stays None; an explicit null becomes "null".
    """
    if key not in payload:
        return None
    return json.dumps(payload.get(key), separators=(",", ":"), sort_keys=True)


def tls_present(marker: Optional[str]) -> bool:
    if marker is None:
        return False
    s = marker.strip()
    return s not in ("", "null", "{}")


# ========== Admin API input ==========

@dataclass(frozen=True)
class RoutingRecord:
    name: str
    rule: str
    priority: int = 0
    entry_points: Tuple[str, ...] = ()
    tls: Optional[str] = None
    service: str = ""

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "RoutingRecord":
        return cls(
            name=item.get("name") or "",
            rule=item.get("rule") or "",
            priority=int(item.get("priority") or 0),
            entry_points=tuple(item.get("entryPoints") or ()),
            tls=raw_tls(item),
            service=item.get("service") or "",
        )


@dataclass(frozen=True)
class EntryPoint:
    name: str
    address: str = ""
    tls: Optional[str] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "EntryPoint":
        http = item.get("http") or {}
        return cls(
            name=item.get("name") or "",
            address=item.get("address") or "",
            tls=raw_tls(http) if isinstance(http, dict) else None,
        )


# ========== Output ==========

@dataclass
class ResolvedService:
    name: str
    url: str
    priority: int = 0
    icon: str = ""
    tags: List[str] = field(default_factory=list)
    group: str = ""

    def to_dict(self) -> Dict[str, Any]:
        # key casing matches what the dashboard frontend reads
        return {
            "Name": self.name,
            "url": self.url,
            "priority": self.priority,
            "icon": self.icon,
            "tags": list(self.tags),
            "group": self.group,
        }


# ========== Remote catalogs ==========

@dataclass(frozen=True)
class IconCatalogEntry:
    reference: str
    name: str = ""
    svg: bool = False
    png: bool = False
    webp: bool = False
    category: str = ""
    tags: str = ""

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "IconCatalogEntry":
        def _yes(key: str) -> bool:
            return str(item.get(key) or "").strip().lower() == "yes"

        return cls(
            reference=item.get("Reference") or "",
            name=item.get("Name") or "",
            svg=_yes("SVG"),
            png=_yes("PNG"),
            webp=_yes("WebP"),
            category=item.get("Category") or "",
            tags=item.get("Tags") or "",
        )


@dataclass(frozen=True)
class AppTagEntry:
    reference: str
    name: str = ""
    tags: Tuple[str, ...] = ()

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "AppTagEntry":
        return cls(
            reference=item.get("reference") or "",
            name=item.get("name") or "",
            tags=tuple(t for t in (item.get("tags") or []) if isinstance(t, str)),
        )


def shortest_first(name: str) -> Tuple[int, str]:
    """Sort key: length, then lexicographic. Fuzzy matching relies on this order."""
    return len(name), name


# ========== Configuration ==========

@dataclass(frozen=True)
class ServiceOverride:
    service: str
    display_name: str = ""
    icon: str = ""
    group: str = ""


@dataclass(frozen=True)
class ManualService:
    name: str
    url: str
    icon: str = ""
    priority: int = 0
    group: str = ""


@dataclass(frozen=True)
class ExcludeRules:
    routers: Tuple[str, ...] = ()
    entrypoints: Tuple[str, ...] = ()
