"""Unit tests for distance helpers."""

import pytest

from workmatch.domain.models import Coordinates
from workmatch.matching.exceptions import InvalidCoordinatesError
from workmatch.matching.geo import coordinates_from, degree_distance, haversine_miles

NEW_YORK = Coordinates(latitude=40.7128, longitude=-74.0060)
LOS_ANGELES = Coordinates(latitude=34.0522, longitude=-118.2437)


class TestHaversine:
    """Tests for haversine_miles."""

    def test_same_point_is_zero(self):
        assert haversine_miles(NEW_YORK, NEW_YORK) == 0

    def test_known_city_pair(self):
        assert haversine_miles(NEW_YORK, LOS_ANGELES) == pytest.approx(2445, rel=0.01)

    def test_is_symmetric(self):
        assert haversine_miles(NEW_YORK, LOS_ANGELES) == pytest.approx(
            haversine_miles(LOS_ANGELES, NEW_YORK)
        )

    def test_one_degree_of_latitude(self):
        a = Coordinates(latitude=0, longitude=0)
        b = Coordinates(latitude=1, longitude=0)

        assert haversine_miles(a, b) == pytest.approx(69.1, abs=0.1)


class TestDegreeDistance:
    """Tests for degree_distance."""

    def test_euclidean_in_degree_space(self):
        a = Coordinates(latitude=0, longitude=0)
        b = Coordinates(latitude=3, longitude=4)

        assert degree_distance(a, b) == 5

    def test_disagrees_with_haversine_at_high_latitude(self):
        """A degree of longitude near the pole counts the same as one at the equator."""
        origin = Coordinates(latitude=70, longitude=0)
        east = Coordinates(latitude=70, longitude=2)
        north = Coordinates(latitude=71.5, longitude=0)

        assert degree_distance(origin, east) > degree_distance(origin, north)
        assert haversine_miles(origin, east) < haversine_miles(origin, north)


class TestCoordinatesFrom:
    """Tests for coordinates_from."""

    def test_both_missing_returns_none(self):
        assert coordinates_from(None, None) is None

    def test_valid_pair(self):
        assert coordinates_from(40.0, -75.0) == Coordinates(latitude=40.0, longitude=-75.0)

    @pytest.mark.parametrize("latitude,longitude", [(40.0, None), (None, -75.0)])
    def test_partial_pair_rejected(self, latitude, longitude):
        with pytest.raises(InvalidCoordinatesError, match="together"):
            coordinates_from(latitude, longitude)

    @pytest.mark.parametrize(
        "latitude,longitude", [(95.0, 0.0), (0.0, -200.0), ("north", 0.0), (float("nan"), 0.0)]
    )
    def test_malformed_pair_rejected(self, latitude, longitude):
        with pytest.raises(InvalidCoordinatesError):
            coordinates_from(latitude, longitude)

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            coordinates_from(100.0, 0.0)
