import math

import pytest

from checkin_svc.core.geo import Coordinates, haversine_m, is_valid_lat_lng, parse_coordinate_text

POINTS = [
    (0.0, 0.0),
    (37.8719, -122.2585),
    (1.3521, 103.8198),
    (-33.8688, 151.2093),
    (89.9, 179.9),
    (-90.0, -180.0),
]


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_distance_is_symmetric(a, b):
    assert haversine_m(*a, *b) == pytest.approx(haversine_m(*b, *a), abs=1e-6)


@pytest.mark.parametrize("p", POINTS)
def test_distance_to_self_is_zero(p):
    assert haversine_m(*p, *p) == pytest.approx(0.0, abs=1e-6)


def test_one_degree_of_latitude():
    expected = 2 * math.pi * 6_371_000 / 360  # ~111,195 m
    assert haversine_m(10.0, 20.0, 11.0, 20.0) == pytest.approx(expected, rel=1e-3)


def test_validity_bounds():
    assert is_valid_lat_lng(90, -180)
    assert not is_valid_lat_lng(90.0001, 0)
    assert not is_valid_lat_lng(0, 180.5)
    assert not is_valid_lat_lng(float("nan"), 0)
    assert not is_valid_lat_lng(0, float("inf"))
    assert not is_valid_lat_lng("1", 2)
    assert not is_valid_lat_lng(True, 2)
    assert not is_valid_lat_lng(None, 2)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("37.8719,-122.2585", Coordinates(37.8719, -122.2585)),
        ("  1.5,2  ", Coordinates(1.5, 2.0)),
        ("-33,151.", Coordinates(-33.0, 151.0)),
    ],
)
def test_parse_literal_coordinates(text, expected):
    assert parse_coordinate_text(text) == expected


@pytest.mark.parametrize(
    "text",
    [None, "", "Main Hall", "37.8719, -122.2585", "95,10", "10,190", "1,2,3", ".5,1"],
)
def test_parse_rejects_non_literals(text):
    assert parse_coordinate_text(text) is None
