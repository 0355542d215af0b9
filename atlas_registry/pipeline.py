"""
Atlas Building Registry — Batch Pipeline

The four entry points the CLI exposes:

    ingest              discovery → reconcile → resolve id → existence check → insert
    dedupe              group the whole registry, keep the best of each group
    repair_place_ids    re-resolve stored ids that point at bare addresses
    backfill            fill missing place ids and photos

Every sweep processes one record or group at a time, catches RegistryError
per item, and reports failures in its summary instead of stopping.  All
sweeps are idempotent, so an interrupted run is resumed by running it again.

Writes are read-modify-write against the store without versioning; only one
writer (this job or a manual edit) should touch the registry at a time.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .algorithms.duplicate_grouper import DuplicateGrouper, ReviewPair
from .algorithms.geo_proximity import Coordinates, distance_meters
from .config import RegistryConfig
from .errors import ConfigError, RegistryError, TransientProviderError, ValidationError
from .merge_engine import MergeDecision, MergeSummary, RegistryMergeEngine
from .models import Record, record_from_row, row_from_record, row_patch, validate_coordinates, visible
from .place_resolver import PlaceResolver, RepairResult, reconcile_candidate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


@dataclass
class IngestSummary:
    query: str
    candidates: int = 0
    inserted: int = 0
    existing: int = 0
    invalid: int = 0
    out_of_range: int = 0
    failed: list[str] = field(default_factory=list)
    inserted_names: list[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "candidates": self.candidates,
            "inserted": self.inserted,
            "existing": self.existing,
            "invalid": self.invalid,
            "out_of_range": self.out_of_range,
            "failed": list(self.failed),
            "inserted_names": list(self.inserted_names),
            "dry_run": self.dry_run,
        }


@dataclass
class DedupeReport:
    records: int
    decisions: list[MergeDecision]
    merge: MergeSummary
    review: list[ReviewPair]

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": self.records,
            "groups": [d.to_dict() for d in self.decisions],
            "merge": self.merge.to_dict(),
            "review_candidates": [p.to_dict() for p in self.review],
        }


@dataclass
class SweepSummary:
    name: str
    processed: int = 0
    changed: int = 0
    statuses: Counter = field(default_factory=Counter)
    failed: list[str | None] = field(default_factory=list)
    results: list[RepairResult] = field(default_factory=list)
    dry_run: bool = False

    def record(self, result: RepairResult) -> None:
        self.processed += 1
        self.statuses[result.status] += 1
        self.results.append(result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep": self.name,
            "processed": self.processed,
            "changed": self.changed,
            "statuses": dict(self.statuses),
            "failed": list(self.failed),
            "changes": [r.to_dict() for r in self.results if r.changed],
            "dry_run": self.dry_run,
        }


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class RegistryPipeline:
    def __init__(
        self,
        config: RegistryConfig,
        repository,
        *,
        places=None,
        discovery=None,
        geocoder=None,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.repository = repository
        self.places = places
        self.discovery = discovery
        self.geocoder = geocoder
        self.sleep = sleep
        self.dry_run = dry_run
        self.grouper = DuplicateGrouper(
            thresholds=config.thresholds,
            exception_rules=config.exception_rules,
        )
        self.resolver = PlaceResolver(places) if places is not None else None

    def _require_resolver(self) -> PlaceResolver:
        if self.resolver is None:
            raise ConfigError("A place-search client is required for this operation")
        return self.resolver

    def load_records(self) -> list[Record]:
        """Every record in the store, hidden ones included."""
        records = [record_from_row(row) for row in self.repository.list_all()]
        logger.info("Loaded %d records (%d hidden)", len(records), len(records) - len(visible(records)))
        return records

    def _write(self, record: Record, changes: dict[str, Any]) -> None:
        fields = row_patch(changes, name=record.name)
        if self.dry_run:
            logger.info("  [dry-run] would update %s: %s", record.id, sorted(fields))
            return
        self.repository.patch(record.id, fields)
        self.sleep(self.config.mutation_delay_s)

    # ------------------------------------------------------------------
    # Discovery ingestion
    # ------------------------------------------------------------------

    def ingest(self, query: str, origin: Coordinates | None = None) -> IngestSummary:
        """
        Discover buildings for ``query`` and insert the ones not yet in the
        registry.  The existence check sees hidden records and everything
        inserted earlier in the same run.
        """
        if self.discovery is None:
            raise ConfigError("A discovery client is required for ingestion")

        summary = IngestSummary(query=query, dry_run=self.dry_run)
        result = self.discovery.discover(query, origin)
        summary.candidates = len(result.candidates)
        if not result.candidates:
            logger.info("No candidates for %r", query)
            return summary

        snapshot = self.load_records()

        for item in result.candidates:
            candidate = reconcile_candidate(item, result.evidence)

            try:
                candidate.coordinates = validate_coordinates(candidate.coordinates, name=candidate.name)
            except ValidationError as exc:
                logger.warning("Skipping \"%s\": %s", candidate.name, exc)
                summary.invalid += 1
                continue

            if origin is not None:
                dist = distance_meters(origin, candidate.coordinates)
                if dist > self.config.origin_radius_m:
                    logger.info(
                        "Skipping \"%s\": %.1f km from the search origin",
                        candidate.name, dist / 1000,
                    )
                    summary.out_of_range += 1
                    continue

            if self.resolver is not None:
                candidate = self.resolver.resolve_identifier(candidate)
                self.sleep(self.config.lookup_delay_s)

            record = candidate.to_record()
            if not record.location and self.geocoder is not None:
                try:
                    record.location = self.geocoder.reverse(record.coordinates) or ""
                except TransientProviderError as exc:
                    logger.warning("Reverse geocoding failed for \"%s\": %s", record.name, exc)

            existing = self.grouper.find_existing(record, snapshot)
            if existing is not None:
                logger.info("Skipped \"%s\": already in registry as %s", record.name, existing.id)
                summary.existing += 1
                continue

            try:
                fields = row_from_record(record)
                if self.dry_run:
                    logger.info("  [dry-run] would insert \"%s\"", record.name)
                else:
                    created = self.repository.create(fields)
                    record = record_from_row(created)
                    self.sleep(self.config.mutation_delay_s)
            except RegistryError as exc:
                logger.warning("Failed to insert \"%s\": %s", record.name, exc)
                summary.failed.append(record.name)
                continue

            snapshot.append(record)
            summary.inserted += 1
            summary.inserted_names.append(record.name)
            logger.info("Inserted \"%s\" (%s)", record.name, candidate.state.value)

        logger.info(
            "Ingest %r: %d candidates, %d inserted, %d existing, %d invalid, %d out of range, %d failed",
            query, summary.candidates, summary.inserted, summary.existing,
            summary.invalid, summary.out_of_range, len(summary.failed),
        )
        return summary

    # ------------------------------------------------------------------
    # Deduplication sweep
    # ------------------------------------------------------------------

    def dedupe(self) -> DedupeReport:
        records = self.load_records()
        groups = self.grouper.group(records)
        logger.info("Found %d duplicate groups", len(groups))

        engine = RegistryMergeEngine(
            self.repository,
            delay_s=self.config.mutation_delay_s,
            sleep=self.sleep,
            dry_run=self.dry_run,
        )
        decisions = [engine.resolve(g) for g in groups]
        merge = engine.apply(decisions)

        review = self.grouper.review_candidates(records)
        if review:
            logger.info("%d pair(s) flagged for manual review", len(review))

        return DedupeReport(records=len(records), decisions=decisions, merge=merge, review=review)

    # ------------------------------------------------------------------
    # Place id repair / backfill sweeps
    # ------------------------------------------------------------------

    def _sweep(
        self,
        summary: SweepSummary,
        records: list[Record],
        step: Callable[[Record], RepairResult],
    ) -> SweepSummary:
        for index, record in enumerate(records):
            if index:
                self.sleep(self.config.repair_delay_s)
            try:
                result = step(record)
                if result.changed:
                    self._write(record, result.changes)
                    summary.changed += 1
                    logger.info("Updated \"%s\" (%s): %s", record.name, record.id, result.changes)
            except RegistryError as exc:
                logger.warning("Skipping \"%s\" (%s): %s", record.name, record.id, exc)
                summary.failed.append(record.id)
                continue
            summary.record(result)

        logger.info(
            "%s: %d processed, %d changed, %d failed %s",
            summary.name, summary.processed, summary.changed,
            len(summary.failed), dict(summary.statuses),
        )
        return summary

    def repair_place_ids(self) -> SweepSummary:
        resolver = self._require_resolver()
        records = [r for r in visible(self.load_records()) if r.place_id]
        summary = SweepSummary(name="repair-place-ids", dry_run=self.dry_run)
        return self._sweep(summary, records, resolver.validate_existing)

    def backfill(self, *, place_ids: bool = True, photos: bool = True) -> list[SweepSummary]:
        resolver = self._require_resolver()
        summaries = []
        if place_ids:
            records = [r for r in visible(self.load_records()) if not r.place_id]
            summary = SweepSummary(name="backfill-place-ids", dry_run=self.dry_run)
            summaries.append(self._sweep(summary, records, resolver.backfill_place_id))
        if photos:
            # Reload so ids found above are visible to the photo pass
            records = [
                r for r in visible(self.load_records())
                if r.place_id and not r.image_url
            ]
            summary = SweepSummary(name="backfill-photos", dry_run=self.dry_run)
            summaries.append(self._sweep(summary, records, resolver.backfill_photo))
        return summaries
