"""Tests for atlas_registry.algorithms.locality."""

from atlas_registry.algorithms.locality import (
    derive_city_country,
    normalize_city,
    normalize_country,
    split_location,
)


class TestAliases:
    def test_country_aliases(self):
        assert normalize_country("USA") == "United States"
        assert normalize_country(" u.k. ") == "United Kingdom"
        assert normalize_country("Россия") == "Russia"

    def test_unknown_country_kept(self):
        assert normalize_country(" Portugal ") == "Portugal"

    def test_city_aliases(self):
        assert normalize_city("Wien") == "Vienna"
        assert normalize_city("Москва") == "Moscow"

    def test_empty(self):
        assert normalize_city(None) == ""
        assert normalize_country("") == ""


class TestSplitLocation:
    def test_first_and_last_parts(self):
        assert split_location("New York, NY, USA") == ("New York", "USA")

    def test_single_part_yields_nothing(self):
        assert split_location("Berlin") == ("", "")
        assert split_location(None) == ("", "")

    def test_blank_parts_ignored(self):
        assert split_location("Vienna, , Austria,") == ("Vienna", "Austria")


class TestDeriveCityCountry:
    def test_fills_both_from_location(self):
        assert derive_city_country("Wien, Österreich", "", "") == ("Vienna", "Österreich")

    def test_existing_fields_kept(self):
        assert derive_city_country("Chicago, IL, USA", "Evanston", "") == ("Evanston", "United States")

    def test_nothing_to_derive(self):
        assert derive_city_country("", None, None) == ("", "")
