#!/usr/bin/env python3
"""
Atlas Building Registry — Command Line

Usage:
    export BASEROW_TOKEN="..." BASEROW_TABLE_ID="772747"
    export GOOGLE_MAPS_API_KEY="AIza..." GEMINI_API_KEY="..."

    # Merge duplicate buildings (preview first):
    atlas-registry dedupe --dry-run --report output/dedupe.json
    atlas-registry dedupe

    # Re-resolve place ids that point at bare street addresses:
    atlas-registry repair-place-ids

    # Fill missing place ids and photos:
    atlas-registry backfill
    atlas-registry backfill --photos-only

    # Discover and insert buildings near a point:
    atlas-registry discover "brutalist libraries in Berlin" --lat 52.52 --lng 13.405
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .algorithms.geo_proximity import Coordinates
from .config import RegistryConfig, load_config
from .discovery import GeminiDiscoveryClient
from .errors import RegistryError
from .geocoding import GeocodeCache, ReverseGeocoder
from .models import validate_coordinates
from .pipeline import RegistryPipeline
from .places import GooglePlacesClient
from .repository import BaserowRepository

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="atlas-registry",
        description="Maintain the Atlas building registry: dedupe, repair and enrich records.",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="FILE",
        help="YAML config file (default: config/registry.yaml)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_mutating(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would change without writing to the store.",
        )
        p.add_argument(
            "--report",
            default=None,
            metavar="FILE",
            help="Write the run summary as JSON to this file.",
        )

    add_mutating(sub.add_parser("dedupe", help="Merge duplicate buildings"))
    add_mutating(sub.add_parser(
        "repair-place-ids", help="Replace address-only place ids with the building's POI",
    ))

    backfill = sub.add_parser("backfill", help="Fill missing place ids and photos")
    add_mutating(backfill)
    only = backfill.add_mutually_exclusive_group()
    only.add_argument("--place-ids-only", action="store_true")
    only.add_argument("--photos-only", action="store_true")

    discover = sub.add_parser("discover", help="Discover buildings and insert new ones")
    add_mutating(discover)
    discover.add_argument("query", help="Free-text search, e.g. 'art deco towers in Chicago'")
    discover.add_argument("--lat", type=float, default=None, help="Search origin latitude")
    discover.add_argument("--lng", type=float, default=None, help="Search origin longitude")
    discover.add_argument(
        "--no-geocode",
        action="store_true",
        help="Do not reverse-geocode candidates that arrive without a location.",
    )

    return parser.parse_args(argv)


def build_pipeline(config: RegistryConfig, args: argparse.Namespace) -> RegistryPipeline:
    """Construct the collaborators the chosen command needs."""
    config.require("baserow.token", "baserow.table_id")
    repository = BaserowRepository(config.baserow)

    places = None
    if args.command in ("repair-place-ids", "backfill") or config.places.api_key:
        config.require("places.api_key")
        places = GooglePlacesClient(config.places)

    discovery = None
    geocoder = None
    if args.command == "discover":
        config.require("gemini.api_key")
        discovery = GeminiDiscoveryClient(config.gemini)
        if not args.no_geocode:
            geocoder = ReverseGeocoder(
                config.nominatim,
                cache=GeocodeCache(max_entries=config.geocode_cache_size),
            )

    return RegistryPipeline(
        config,
        repository,
        places=places,
        discovery=discovery,
        geocoder=geocoder,
        dry_run=args.dry_run,
    )


def write_report(path: str | None, payload: dict[str, Any]) -> None:
    if not path:
        return
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
    logger.info("Wrote report to %s", out_path)


def run(args: argparse.Namespace) -> dict[str, Any]:
    config = load_config(args.config)
    pipeline = build_pipeline(config, args)

    if args.command == "dedupe":
        return pipeline.dedupe().to_dict()

    if args.command == "repair-place-ids":
        return pipeline.repair_place_ids().to_dict()

    if args.command == "backfill":
        summaries = pipeline.backfill(
            place_ids=not args.photos_only,
            photos=not args.place_ids_only,
        )
        return {"sweeps": [s.to_dict() for s in summaries]}

    origin = None
    if args.lat is not None or args.lng is not None:
        if args.lat is None or args.lng is None:
            raise RegistryError("--lat and --lng must be given together")
        origin = validate_coordinates(Coordinates(lat=args.lat, lng=args.lng), name="search origin")
    return pipeline.ingest(args.query, origin).to_dict()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        payload = run(args)
    except RegistryError as exc:
        logger.error("%s: %s", exc.error_code, exc)
        return 1

    write_report(args.report, payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
