"""Tests for geo_math: distances, envelopes and coordinate cache keys."""

import json

import pytest

from geo_math import (
    Envelope,
    bounding_envelope,
    coordinate_key,
    haversine_miles,
    miles_to_meters,
    rounded_distance,
)

# 1122 Vasquez Ave, Sunnyvale
LAT, LNG = 37.37608, -122.05227


class TestHaversine:

    def test_same_point_is_zero(self):
        assert haversine_miles(LAT, LNG, LAT, LNG) == 0

    def test_symmetric(self):
        a = haversine_miles(LAT, LNG, 37.7749, -122.4194)
        b = haversine_miles(37.7749, -122.4194, LAT, LNG)
        assert a == pytest.approx(b)

    def test_one_degree_latitude(self):
        """One degree of latitude is ~69.1 miles on a 3959 mi sphere."""
        d = haversine_miles(37.0, -122.0, 38.0, -122.0)
        assert d == pytest.approx(69.09, abs=0.05)

    def test_one_mile_offset(self):
        """A point one mile due north measures 1.0 mi within 1%."""
        d = haversine_miles(LAT, LNG, LAT + 1 / 69.09, LNG)
        assert d == pytest.approx(1.0, rel=0.01)

    def test_sunnyvale_to_san_francisco(self):
        """Known pair, ~35 miles apart."""
        d = haversine_miles(LAT, LNG, 37.7749, -122.4194)
        assert 33 < d < 37

    def test_rounded_distance_one_decimal(self):
        d = rounded_distance(LAT, LNG, 37.38, -122.05)
        assert d == round(d, 1)


class TestMilesToMeters:

    def test_five_miles(self):
        assert miles_to_meters(5) == 8047

    def test_ten_miles(self):
        assert miles_to_meters(10) == 16093

    def test_returns_int(self):
        assert isinstance(miles_to_meters(31), int)


class TestEnvelope:

    def test_contains_center(self):
        env = bounding_envelope(LAT, LNG, 500)
        assert env.contains(LAT, LNG)

    def test_half_width_in_degrees(self):
        """500 m is ~0.0045 degrees of latitude."""
        env = bounding_envelope(LAT, LNG, 500)
        assert (env.ymax - LAT) == pytest.approx(500 / 111320)
        # Longitude degrees are wider than latitude degrees away from the equator
        assert (env.xmax - LNG) > (env.ymax - LAT)

    def test_excludes_far_point(self):
        env = bounding_envelope(LAT, LNG, 500)
        assert not env.contains(LAT + 0.01, LNG)

    def test_esri_json_shape(self):
        env = Envelope(xmin=-122.1, ymin=37.3, xmax=-122.0, ymax=37.4)
        payload = json.loads(env.to_esri_json())
        assert payload["spatialReference"] == {"wkid": 4326}
        assert payload["xmin"] == -122.1
        assert payload["ymax"] == 37.4


class TestCoordinateKey:

    def test_six_decimal_format(self):
        assert coordinate_key(37.3775, -122.0285) == "37.377500,-122.028500"

    def test_float_noise_collapses(self):
        """Coordinates that differ below the 6th decimal share a key."""
        assert coordinate_key(37.37750001, -122.02850001) == coordinate_key(37.3775, -122.0285)

    def test_distinct_points_differ(self):
        assert coordinate_key(37.3775, -122.0285) != coordinate_key(37.3776, -122.0285)

    def test_extra_parts_appended(self):
        assert coordinate_key(37.3775, -122.0285, 5.0) == "37.377500,-122.028500,5.0"
        assert coordinate_key(37.3775, -122.0285, 5.0) != coordinate_key(37.3775, -122.0285, 10.0)
