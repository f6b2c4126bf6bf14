# config_loader.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

import yaml

from records import ExcludeRules, ManualService, ServiceOverride
from router import NameRules

log = logging.getLogger(__name__)

MINIMUM_CONFIG_VERSION = "3.0"
DEFAULT_CONFIG_PATH = "/config/configuration.yml"

_MULTI_PASSWORD_WARNING = (
    "Basic auth password is configured using multiple methods. Please use only one method: "
    "either password in config file, password file, or environment variable."
)


class ConfigError(RuntimeError):
    """Configuration the catalog cannot start with."""


@dataclass(frozen=True)
class TraefikSettings:
    api_host: str = ""
    enable_basic_auth: bool = False
    username: str = ""
    password: str = ""
    password_file: str = ""
    insecure_skip_verify: bool = False


@dataclass(frozen=True)
class GroupingSettings:
    enabled: bool = True
    columns: int = 3
    tag_frequency_threshold: float = 0.9
    min_services_per_group: int = 2


@dataclass(frozen=True)
class ConfigStatus:
    config_version: str
    minimum_required_version: str = MINIMUM_CONFIG_VERSION
    is_compatible: bool = True
    warning_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "configVersion": self.config_version,
            "minimumRequiredVersion": self.minimum_required_version,
            "isCompatible": self.is_compatible,
        }
        if self.warning_message:
            out["warningMessage"] = self.warning_message
        return out


@dataclass(frozen=True)
class Settings:
    version: str = ""
    selfhst_icon_url: str = "https://cdn.jsdelivr.net/gh/selfhst/icons/"
    search_engine_url: str = "https://www.google.com/search?q="
    refresh_interval_seconds: int = 30
    log_level: str = "info"
    language: str = ""
    user_icons_dir: str = "/icons"
    max_workers: int = 16
    http_timeout: float = 5.0
    traefik: TraefikSettings = field(default_factory=TraefikSettings)
    grouping: GroupingSettings = field(default_factory=GroupingSettings)
    name_rules: NameRules = field(default_factory=NameRules)
    exclude: ExcludeRules = field(default_factory=ExcludeRules)
    overrides: Mapping[str, ServiceOverride] = field(default_factory=dict)
    manual: Tuple[ManualService, ...] = ()
    status: Optional[ConfigStatus] = None

    def override_for(self, identifier: str) -> Optional[ServiceOverride]:
        return self.overrides.get(identifier)

    def icon_override(self, identifier: str) -> str:
        o = self.overrides.get(identifier)
        return o.icon if o else ""

    def display_name_override(self, identifier: str) -> str:
        o = self.overrides.get(identifier)
        return o.display_name if o else ""

    def group_override(self, identifier: str) -> str:
        o = self.overrides.get(identifier)
        return o.group if o else ""


# ========== Helpers ==========

def is_valid_url(value: str) -> bool:
    try:
        u = urlparse(value or "")
    except ValueError:
        return False
    return bool(u.scheme and u.netloc)


def compare_versions(v1: str, v2: str) -> int:
    """-1, 0 or 1 comparing major.minor.patch; missing or non-numeric parts count as 0."""
    def _norm(v: str) -> List[int]:
        parts = (v or "").split(".")
        out = []
        for i in range(3):
            try:
                out.append(int(parts[i]) if i < len(parts) else 0)
            except ValueError:
                out.append(0)
        return out

    a, b = _norm(v1), _norm(v2)
    return (a > b) - (a < b)


def validate_config_version(version: str, basic_auth_warning: str = "") -> ConfigStatus:
    compatible, message = True, ""
    if not version:
        compatible = False
        message = "No configuration version specified. Please add 'version: X.Y' to your configuration file."
    elif compare_versions(version, MINIMUM_CONFIG_VERSION) < 0:
        compatible = False
        message = (f"Configuration version {version} is below the minimum required version "
                   f"{MINIMUM_CONFIG_VERSION}. Some configuration options may be ignored.")
    if basic_auth_warning:
        message = f"{message} {basic_auth_warning}".strip()
    return ConfigStatus(config_version=version, is_compatible=compatible, warning_message=message)


def validate_basic_auth_password(traefik: TraefikSettings, env: Mapping[str, str]) -> str:
    if not traefik.enable_basic_auth:
        return ""
    sources = sum(1 for v in (
        traefik.password,
        traefik.password_file,
        env.get("TRAEFIK_BASIC_AUTH_PASSWORD", ""),
        env.get("TRAEFIK_BASIC_AUTH_PASSWORD_FILE", ""),
    ) if v)
    return _MULTI_PASSWORD_WARNING if sources > 1 else ""


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("1", "t", "true", "yes", "on"):
        return True
    if s in ("0", "f", "false", "no", "off"):
        return False
    return None


def _str_list(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value if v is not None)


# ========== File section ==========

def _read_file(path: str) -> Tuple[Dict[str, Any], bool]:
    """Returns (data, found). Unreadable or invalid files log a warning and yield {}."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        log.info("[CONFIG] no configuration file at %s; using defaults + env vars", path)
        return {}, False
    except OSError as e:
        log.warning("[CONFIG] could not read configuration file %s: %s", path, e)
        return {}, True

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        log.warning("[CONFIG] could not parse configuration file %s: %s", path, e)
        return {}, True
    if not isinstance(data, dict):
        log.warning("[CONFIG] configuration file %s is not a mapping; ignoring it", path)
        return {}, True
    return data, True


def _from_file(base: Settings, data: Dict[str, Any]) -> Settings:
    env_cfg = data.get("environment") or {}
    svc_cfg = data.get("services") or {}
    tr = env_cfg.get("traefik") or {}
    auth = tr.get("basic_auth") or {}
    grp = env_cfg.get("grouping") or {}
    names = env_cfg.get("router_names") or {}
    exclude = svc_cfg.get("exclude") or {}

    traefik = TraefikSettings(
        api_host=str(tr.get("api_host") or base.traefik.api_host),
        enable_basic_auth=bool(tr.get("enable_basic_auth", base.traefik.enable_basic_auth)),
        username=str(auth.get("username") or ""),
        password=str(auth.get("password") or ""),
        password_file=str(auth.get("password_file") or ""),
        insecure_skip_verify=bool(tr.get("insecure_skip_verify", base.traefik.insecure_skip_verify)),
    )
    grouping = GroupingSettings(
        enabled=bool(grp.get("enabled", base.grouping.enabled)),
        columns=int(grp.get("columns", base.grouping.columns)),
        tag_frequency_threshold=float(grp.get("tag_frequency_threshold", base.grouping.tag_frequency_threshold)),
        min_services_per_group=int(grp.get("min_services_per_group", base.grouping.min_services_per_group)),
    )
    name_rules = NameRules(
        provider_separator=str(names.get("provider_separator", base.name_rules.provider_separator) or ""),
        strip_entrypoint_prefix=bool(names.get("strip_entrypoint_prefix", base.name_rules.strip_entrypoint_prefix)),
    )

    overrides: Dict[str, ServiceOverride] = {}
    for o in svc_cfg.get("overrides") or []:
        if not isinstance(o, dict) or not o.get("service"):
            continue
        overrides[str(o["service"])] = ServiceOverride(
            service=str(o["service"]),
            display_name=str(o.get("display_name") or ""),
            icon=str(o.get("icon") or ""),
            group=str(o.get("group") or ""),
        )

    manual: List[ManualService] = []
    for m in svc_cfg.get("manual") or []:
        if not isinstance(m, dict):
            continue
        manual.append(ManualService(
            name=str(m.get("name") or ""),
            url=str(m.get("url") or ""),
            icon=str(m.get("icon") or ""),
            priority=int(m.get("priority") or 0),
            group=str(m.get("group") or ""),
        ))

    return replace(
        base,
        version=str(data.get("version") or ""),
        selfhst_icon_url=str(env_cfg.get("selfhst_icon_url") or base.selfhst_icon_url),
        search_engine_url=str(env_cfg.get("search_engine_url") or base.search_engine_url),
        refresh_interval_seconds=int(env_cfg.get("refresh_interval_seconds") or base.refresh_interval_seconds),
        log_level=str(env_cfg.get("log_level") or base.log_level),
        language=str(env_cfg.get("language") or base.language),
        traefik=traefik,
        grouping=grouping,
        name_rules=name_rules,
        exclude=ExcludeRules(routers=_str_list(exclude.get("routers")),
                             entrypoints=_str_list(exclude.get("entrypoints"))),
        overrides=overrides,
        manual=tuple(manual),
    )


# ========== Environment section ==========

def _from_env(s: Settings, env: Mapping[str, str]) -> Settings:
    def _get(key: str) -> str:
        return (env.get(key) or "").strip()

    def _int(key: str, current: int, ok) -> int:
        v = _get(key)
        if not v:
            return current
        try:
            num = int(v)
        except ValueError:
            num = None
        if num is None or not ok(num):
            log.warning("[CONFIG] invalid %s %r, using %s", key, v, current)
            return current
        return num

    def _bool(key: str, current: bool) -> bool:
        v = _get(key)
        if not v:
            return current
        b = _parse_bool(v)
        if b is None:
            log.warning("[CONFIG] invalid %s %r, using %s", key, v, current)
            return current
        return b

    tr = s.traefik
    tr = replace(
        tr,
        api_host=_get("TRAEFIK_API_HOST") or tr.api_host,
        username=_get("TRAEFIK_BASIC_AUTH_USERNAME") or tr.username,
        password=_get("TRAEFIK_BASIC_AUTH_PASSWORD") or tr.password,
        password_file=_get("TRAEFIK_BASIC_AUTH_PASSWORD_FILE") or tr.password_file,
        insecure_skip_verify=_bool("TRAEFIK_INSECURE_SKIP_VERIFY", tr.insecure_skip_verify),
    )

    g = s.grouping
    threshold = g.tag_frequency_threshold
    raw = _get("GROUPING_TAG_FREQUENCY_THRESHOLD")
    if raw:
        try:
            num = float(raw)
        except ValueError:
            num = -1.0
        if 0 < num <= 1:
            threshold = num
        else:
            log.warning("[CONFIG] invalid GROUPING_TAG_FREQUENCY_THRESHOLD %r, using %s", raw, threshold)
    g = replace(
        g,
        enabled=_bool("GROUPING_ENABLED", g.enabled),
        tag_frequency_threshold=threshold,
        min_services_per_group=_int("GROUPING_MIN_SERVICES_PER_GROUP", g.min_services_per_group, lambda n: n >= 1),
        columns=_int("GROUPED_COLUMNS", g.columns, lambda n: 1 <= n <= 6),
    )

    return replace(
        s,
        selfhst_icon_url=_get("SELFHST_ICON_URL") or s.selfhst_icon_url,
        search_engine_url=_get("SEARCH_ENGINE_URL") or s.search_engine_url,
        refresh_interval_seconds=_int("REFRESH_INTERVAL_SECONDS", s.refresh_interval_seconds, lambda n: n > 0),
        log_level=_get("LOG_LEVEL") or s.log_level,
        language=_get("LANGUAGE") or s.language,
        user_icons_dir=_get("USER_ICONS_DIR") or s.user_icons_dir,
        max_workers=_int("CATALOG_MAX_WORKERS", s.max_workers, lambda n: n >= 1),
        traefik=tr,
        grouping=g,
    )


# ========== Post-processing ==========

def _finalize(s: Settings) -> Settings:
    tr = s.traefik
    if not tr.api_host:
        raise ConfigError("Traefik API host is not set. Provide TRAEFIK_API_HOST or environment.traefik.api_host.")
    api_host = tr.api_host
    if not api_host.startswith(("http://", "https://")):
        api_host = "http://" + api_host
    api_host = api_host.rstrip("/")

    icon_url = s.selfhst_icon_url
    if not icon_url.endswith("/"):
        icon_url += "/"

    password = tr.password
    if tr.enable_basic_auth:
        if not tr.username or not (tr.password or tr.password_file):
            raise ConfigError("Basic auth is enabled, but username, password or password file is not set.")
        if tr.password and tr.password_file:
            log.warning("[CONFIG] basic auth password and password file are both set; the file takes precedence")
        if tr.password_file:
            try:
                with open(tr.password_file, "r", encoding="utf-8") as f:
                    password = f.read()
            except FileNotFoundError as e:
                raise ConfigError(f"No password file found at {tr.password_file} for basic auth.") from e
            except OSError as e:
                raise ConfigError(f"Could not read password file at {tr.password_file}: {e}") from e

    return replace(s, selfhst_icon_url=icon_url, traefik=replace(tr, api_host=api_host, password=password))


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Defaults, then the YAML file, then environment variables, then validation.
    Raises ConfigError for settings the catalog cannot run without.
    """
    env = os.environ if env is None else env
    path = path or env.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH

    settings = Settings()
    data, found = _read_file(path)
    if data:
        try:
            settings = _from_file(settings, data)
        except (TypeError, ValueError) as e:
            log.warning("[CONFIG] invalid value in configuration file %s: %s; using defaults", path, e)
    elif not found:
        settings = replace(settings, version=MINIMUM_CONFIG_VERSION)

    basic_auth_warning = validate_basic_auth_password(settings.traefik, env)
    if basic_auth_warning:
        log.warning("[CONFIG] %s", basic_auth_warning)

    settings = _finalize(_from_env(settings, env))

    log.info("[CONFIG] loaded %d router excludes, %d entrypoint excludes, %d overrides, %d manual services",
             len(settings.exclude.routers), len(settings.exclude.entrypoints),
             len(settings.overrides), len(settings.manual))

    status = validate_config_version(settings.version, basic_auth_warning)
    if not status.is_compatible:
        log.warning("[CONFIG] %s", status.warning_message)
    return replace(settings, status=status)
