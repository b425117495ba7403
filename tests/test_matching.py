"""Unit tests for the match filter."""

from __future__ import annotations

import pytest

from facesearch.interfaces import MatchCandidate
from facesearch.matching import MatchFilter, MatchFilterSettings


@pytest.fixture
def match_filter():
    """Create a MatchFilter with the default margin and hard cap."""
    return MatchFilter(MatchFilterSettings(margin=0.08, hard_cap=0.25))


def candidates(*pairs):
    return [MatchCandidate(photo_id=pid, distance=d) for pid, d in pairs]


def test_relative_threshold_anchors_to_best(match_filter):
    """Test that candidates beyond best + margin are dropped."""
    result = match_filter.apply(candidates(("a", 0.05), ("b", 0.09), ("c", 0.20)))

    assert result.photo_ids == ["a", "b"]
    assert [m.distance for m in result] == [0.05, 0.09]


def test_no_real_match_returns_empty(match_filter):
    """Test that a poor best distance yields no results."""
    result = match_filter.apply(candidates(("a", 0.26), ("b", 0.27)))

    assert len(result) == 0
    assert result.photo_ids == []


def test_hard_cap_limits_wide_relative_window(match_filter):
    """Test that the hard cap still applies when best + margin exceeds it."""
    result = match_filter.apply(candidates(("a", 0.22), ("b", 0.24), ("c", 0.26)))

    assert result.photo_ids == ["a", "b"]


def test_distance_equal_to_relative_limit_is_kept():
    """Test that the relative limit is inclusive."""
    f = MatchFilter(MatchFilterSettings(margin=0.125, hard_cap=0.5))

    result = f.apply(candidates(("a", 0.125), ("b", 0.25), ("c", 0.375)))

    assert result.photo_ids == ["a", "b"]


def test_distance_equal_to_hard_cap_is_rejected():
    """Test that the hard cap is exclusive."""
    f = MatchFilter(MatchFilterSettings(margin=0.5, hard_cap=0.25))

    result = f.apply(candidates(("a", 0.125), ("b", 0.25)))

    assert result.photo_ids == ["a"]


def test_duplicate_photos_keep_min_distance(match_filter):
    """Test that a photo with several matching faces appears once."""
    result = match_filter.apply(
        candidates(("group", 0.07), ("solo", 0.06), ("group", 0.05))
    )

    assert result.photo_ids == ["group", "solo"]
    assert [m.distance for m in result] == [0.05, 0.06]


def test_unsorted_candidates_are_sorted(match_filter):
    """Test that the best candidate is found even in unsorted input."""
    result = match_filter.apply(candidates(("c", 0.20), ("b", 0.09), ("a", 0.05)))

    assert result.photo_ids == ["a", "b"]


def test_ties_ordered_by_photo_id(match_filter):
    """Test a stable order for equal distances."""
    result = match_filter.apply(candidates(("z", 0.1), ("m", 0.1), ("a", 0.1)))

    assert result.photo_ids == ["a", "m", "z"]


def test_empty_candidates(match_filter):
    """Test that no candidates gives an empty result."""
    assert len(match_filter.apply([])) == 0


def test_lowering_hard_cap_never_adds_results():
    """Test that results under a lower cap are a subset of a higher cap."""
    pool = candidates(("a", 0.04), ("b", 0.08), ("c", 0.11), ("d", 0.14), ("e", 0.19))

    previous = None
    for cap in (0.3, 0.2, 0.12, 0.09, 0.05, 0.01):
        ids = set(MatchFilter(MatchFilterSettings(margin=0.2, hard_cap=cap)).apply(pool).photo_ids)
        if previous is not None:
            assert ids <= previous
        previous = ids

    assert previous == set()


@pytest.mark.parametrize(
    "base",
    [
        [],
        [("a", 0.05), ("b", 0.09), ("c", 0.20)],
        [("a", 0.12), ("a", 0.15), ("b", 0.19)],
        [("a", 0.22), ("b", 0.24)],
    ],
)
@pytest.mark.parametrize("extra", [("z", 0.26), ("a", 0.3), ("b", 0.9)])
def test_candidate_above_hard_cap_changes_nothing(match_filter, base, extra):
    """Test that an extra candidate beyond the hard cap leaves the result as is."""
    before = match_filter.apply(candidates(*base))
    after = match_filter.apply(candidates(*base, extra))

    assert after.matches == before.matches


def test_settings_validation():
    """Test that negative constants are rejected."""
    with pytest.raises(ValueError):
        MatchFilterSettings(margin=-0.1)

    with pytest.raises(ValueError):
        MatchFilterSettings(limit=0)


def test_settings_from_config(config_factory):
    """Test that filter constants come from configuration."""
    settings = MatchFilterSettings.from_config(
        config_factory(match_margin=0.05, match_hard_cap=0.3, match_limit=10, search_ceiling=0.4)
    )

    assert settings == MatchFilterSettings(limit=10, search_ceiling=0.4, margin=0.05, hard_cap=0.3)
