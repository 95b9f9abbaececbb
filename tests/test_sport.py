import pytest

from services.analytics.sport import (
    DEFAULT_SPORT,
    Sport,
    is_pace_sport,
    normalize_sport,
    sport_labels,
    try_normalize_sport,
)


@pytest.mark.parametrize("label", ["Trail Run", "trail_run", "TrailRun", "trail-run", "  TRAIL RUN  "])
def test_separator_and_case_insensitive(label):
    assert normalize_sport(label) is Sport.RUNNING


@pytest.mark.parametrize(
    "label,expected",
    [
        ("Run", Sport.RUNNING),
        ("Hike", Sport.RUNNING),
        ("Treadmill", Sport.RUNNING),
        ("Ride", Sport.CYCLING),
        ("VirtualRide", Sport.CYCLING),
        ("E-Mountain-Bike Ride", Sport.CYCLING),
        ("Gravel Ride", Sport.CYCLING),
        ("Swim", Sport.SWIMMING),
        ("Open Water Swim", Sport.SWIMMING),
        ("lap_swimming", Sport.SWIMMING),
    ],
)
def test_alias_table(label, expected):
    assert normalize_sport(label) is expected


def test_unknown_and_empty_labels_use_default_bucket():
    assert DEFAULT_SPORT is Sport.CYCLING
    assert normalize_sport("Yoga") is Sport.CYCLING
    assert normalize_sport("") is Sport.CYCLING
    assert normalize_sport(None) is Sport.CYCLING


def test_try_normalize_keeps_missing_labels_missing():
    assert try_normalize_sport(None) is None
    assert try_normalize_sport("   ") is None
    assert try_normalize_sport("Kayaking") is Sport.CYCLING
    assert try_normalize_sport(Sport.SWIMMING) is Sport.SWIMMING


def test_pace_sports():
    assert is_pace_sport("run")
    assert is_pace_sport(Sport.SWIMMING)
    assert not is_pace_sport("ride")


def test_every_label_maps_back_to_its_sport():
    for sport in Sport:
        for label in sport_labels(sport):
            assert normalize_sport(label) is sport, label
