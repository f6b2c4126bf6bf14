from __future__ import annotations

import copy

from grouping import assign_groups, select_best_tag, tag_frequencies, valid_tags
from records import ResolvedService


def _svc(name: str, *tags: str, group: str = "") -> ResolvedService:
    return ResolvedService(name=name, url=f"https://{name.lower()}.test", tags=list(tags), group=group)


def _groups(services) -> dict:
    return {s.name: s.group for s in services}


def test_four_service_scenario() -> None:
    services = [_svc("A", "x", "y"), _svc("B", "x"), _svc("C", "y", "z"), _svc("D", "z")]
    assign_groups(services, True, 0.9, 2)
    assert _groups(services) == {"A": "x", "B": "x", "C": "z", "D": "z"}


def test_grouping_is_deterministic() -> None:
    services = [
        _svc("plex", "media", "streaming"),
        _svc("jellyfin", "media", "streaming"),
        _svc("sonarr", "arr", "media"),
        _svc("radarr", "arr", "media"),
        _svc("grafana", "monitoring"),
        _svc("prometheus", "monitoring"),
        _svc("wiki"),
    ]
    first = assign_groups(copy.deepcopy(services), True, 0.9, 2)
    second = assign_groups(copy.deepcopy(services), True, 0.9, 2)
    assert _groups(first) == _groups(second)
    assert _groups(first)["wiki"] == ""


def test_disabled_grouping_clears_all_labels() -> None:
    services = [_svc("A", "x", group="pinned"), _svc("B", "x")]
    out = assign_groups(services, False, 0.9, 2)
    assert out is services
    assert [s.group for s in services] == ["", ""]


def test_prelabelled_services_are_left_alone() -> None:
    services = [_svc("A", "x", group="mine"), _svc("B", "x"), _svc("C", "x")]
    assign_groups(services, True, 0.9, 2)
    assert _groups(services) == {"A": "mine", "B": "x", "C": "x"}


def test_singleton_tag_needs_a_service_defined_by_it() -> None:
    services = [_svc("A", "solo"), _svc("B", "other", "rare")]
    counts = tag_frequencies(services)
    assert valid_tags(services, counts, 0.9, 2) == ["solo"]
    assert valid_tags(services, counts, 0.9, 1) == ["other", "rare", "solo"]


def test_common_tag_survives_when_big_enough() -> None:
    services = [_svc(n, "all") for n in "ABCD"]
    counts = tag_frequencies(services)
    # 4 is not below 0.9 * 4 but meets the minimum group size
    assert valid_tags(services, counts, 0.9, 2) == ["all"]
    assert valid_tags(services, counts, 0.9, 5) == []


def test_duplicate_tags_count_once() -> None:
    assert tag_frequencies([_svc("A", "x", "x"), _svc("B", "x")]) == {"x": 2}


def test_select_best_tag_breaks_ties_by_name() -> None:
    counts = {"b": 3, "a": 1, "c": 2}
    assert select_best_tag(["a", "b", "c"], counts, 2.0) == "c"
    assert select_best_tag(["a", "b"], counts, 2.0) == "a"
    assert select_best_tag([], counts, 2.0) == ""


def test_no_tags_means_no_groups() -> None:
    services = [_svc("A"), _svc("B")]
    assign_groups(services)
    assert _groups(services) == {"A": "", "B": ""}
