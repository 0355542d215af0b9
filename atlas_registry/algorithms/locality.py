"""
Atlas Building Registry — City / Country Normalization

The discovery model and manual edits spell places inconsistently
("USA", "U.S.A.", "Wien", "Moskva").  These helpers fold the common aliases
onto one spelling and derive city/country from a free-text location when
the structured fields are missing.
"""

from __future__ import annotations


COUNTRY_ALIASES: dict[str, str] = {
    # United States variants
    "usa": "United States",
    "u.s.a.": "United States",
    "u.s.a": "United States",
    "us": "United States",
    "u.s.": "United States",
    "united states of america": "United States",
    "america": "United States",
    # United Kingdom
    "uk": "United Kingdom",
    "u.k.": "United Kingdom",
    "great britain": "United Kingdom",
    "england": "United Kingdom",
    # Others
    "gdr": "Germany",
    "deutschland": "Germany",
    "россия": "Russia",
    "russian federation": "Russia",
}

CITY_ALIASES: dict[str, str] = {
    "köln": "Cologne",
    "koln": "Cologne",
    "wien": "Vienna",
    "warschau": "Warsaw",
    "warszawa": "Warsaw",
    "moskva": "Moscow",
    "moskou": "Moscow",
    "москва": "Moscow",
}


def normalize_country(country: str | None) -> str:
    if not country:
        return ""
    key = country.strip().lower()
    return COUNTRY_ALIASES.get(key, country.strip())


def normalize_city(city: str | None) -> str:
    if not city:
        return ""
    key = city.strip().lower()
    return CITY_ALIASES.get(key, city.strip())


def split_location(location: str | None) -> tuple[str, str]:
    """
    Guess (city, country) from a comma-separated address.

    The first part is taken as the city and the last as the country; a
    location with fewer than two parts yields nothing.
    """
    parts = [p.strip() for p in (location or "").split(",") if p.strip()]
    if len(parts) < 2:
        return "", ""
    return parts[0], parts[-1]


def derive_city_country(
    location: str | None,
    city: str | None,
    country: str | None,
) -> tuple[str, str]:
    """Fill whichever of city/country is missing from the location, then normalize."""
    city = (city or "").strip()
    country = (country or "").strip()

    if not city or not country:
        loc_city, loc_country = split_location(location)
        city = city or loc_city
        country = country or loc_country

    return normalize_city(city), normalize_country(country)
