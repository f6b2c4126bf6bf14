from __future__ import annotations

from records import EntryPoint, RoutingRecord
from router import NameRules, determine_protocol, reconstruct_url


def _eps(**kwargs) -> dict:
    return {name: ep for name, ep in kwargs.items()}


def test_host_only_on_plain_http() -> None:
    record = RoutingRecord(name="web-app@docker", rule="Host(`app.example.com`)", entry_points=("web",))
    eps = _eps(web=EntryPoint("web", ":80"))
    assert reconstruct_url(record, eps) == "http://app.example.com"


def test_host_and_path_prefix_with_tls_entrypoint() -> None:
    record = RoutingRecord(
        name="files",
        rule="Host(`nas.example.com`) && PathPrefix(`/files/`)",
        entry_points=("websecure",),
    )
    eps = _eps(websecure=EntryPoint("websecure", ":443", tls='{"certResolver":"le"}'))
    assert reconstruct_url(record, eps) == "https://nas.example.com/files"


def test_non_default_port_goes_after_host() -> None:
    record = RoutingRecord(name="r", rule="Host(`a.example.com`) && PathPrefix(`/x`)", entry_points=("alt",))
    eps = _eps(alt=EntryPoint("alt", "0.0.0.0:8443", tls='{"x":1}'))
    assert reconstruct_url(record, eps) == "https://a.example.com:8443/x"


def test_default_https_port_is_omitted() -> None:
    record = RoutingRecord(name="r", rule="Host(`a.example.com`)", entry_points=("websecure",), tls='{"x":1}')
    eps = _eps(websecure=EntryPoint("websecure", ":443"))
    assert reconstruct_url(record, eps) == "https://a.example.com"


def test_protocol_suffix_on_address_is_ignored() -> None:
    record = RoutingRecord(name="r", rule="Host(`a.example.com`)", entry_points=("websecure",), tls='{"x":1}')
    assert reconstruct_url(record, _eps(websecure=EntryPoint("websecure", ":443/tcp"))) == "https://a.example.com"
    alt = _eps(websecure=EntryPoint("websecure", "0.0.0.0:8443/udp"))
    assert reconstruct_url(record, alt) == "https://a.example.com:8443"


def test_port_80_on_https_is_kept() -> None:
    record = RoutingRecord(name="r", rule="Host(`a.example.com`)", entry_points=("web",), tls='{"x":1}')
    eps = _eps(web=EntryPoint("web", ":80"))
    assert reconstruct_url(record, eps) == "https://a.example.com:80"


def test_missing_host_or_entrypoint_gives_none() -> None:
    eps = _eps(web=EntryPoint("web", ":80"))
    assert reconstruct_url(RoutingRecord(name="r", rule="PathPrefix(`/x`)", entry_points=("web",)), eps) is None
    assert reconstruct_url(RoutingRecord(name="r", rule="Host(`a.b`)", entry_points=()), eps) is None
    assert reconstruct_url(RoutingRecord(name="r", rule="Host(`a.b`)", entry_points=("nope",)), eps) is None


def test_reconstruct_is_idempotent() -> None:
    record = RoutingRecord(name="r", rule="Host(`a.example.com`) && PathPrefix(`/p`)", entry_points=("alt",))
    eps = _eps(alt=EntryPoint("alt", ":8080"))
    first = reconstruct_url(record, eps)
    assert first == reconstruct_url(record, eps) == "http://a.example.com:8080/p"


def test_router_tls_takes_precedence_over_entrypoint() -> None:
    ep = EntryPoint("web", ":80")
    assert determine_protocol(RoutingRecord(name="r", rule="", tls='{"options":"x"}'), ep) == "https"
    assert determine_protocol(RoutingRecord(name="r", rule="", tls="{}"), ep) == "http"
    assert determine_protocol(RoutingRecord(name="r", rule="", tls="null"), ep) == "http"
    assert determine_protocol(RoutingRecord(name="r", rule=""), EntryPoint("ws", ":443", tls='{"a":1}')) == "https"


def test_tls_from_api_payload() -> None:
    record = RoutingRecord.from_api({"name": "r", "rule": "Host(`a.b`)", "entryPoints": ["web"], "tls": {}})
    assert determine_protocol(record, EntryPoint("web", ":80")) == "http"
    ep = EntryPoint.from_api({"name": "websecure", "address": ":443", "http": {"tls": {"certResolver": "le"}}})
    assert determine_protocol(RoutingRecord(name="r", rule=""), ep) == "https"


def test_identifier_strips_provider_and_entrypoint_prefix() -> None:
    rules = NameRules()
    assert rules.identifier(RoutingRecord(name="websecure-jellyfin@docker", rule="", entry_points=("websecure",))) == "jellyfin"
    assert rules.identifier(RoutingRecord(name="WebSecure-Sonarr@file", rule="", entry_points=("websecure",))) == "Sonarr"
    # name equal to the prefix is left alone
    assert rules.identifier(RoutingRecord(name="web-@docker", rule="", entry_points=("web",))) == "web-"


def test_identifier_rules_can_be_disabled() -> None:
    rules = NameRules(provider_separator="", strip_entrypoint_prefix=False)
    record = RoutingRecord(name="web-app@docker", rule="", entry_points=("web",))
    assert rules.identifier(record) == "web-app@docker"
