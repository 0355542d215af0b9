"""
Atlas Building Registry — Duplicate Group Resolution

For each duplicate group: keep the most complete record, backfill its empty
fields from the records being removed, then delete those records.

Order per group is patch first, deletes second.  If the patch fails the
group's deletions are skipped, so no donor data is lost; the next sweep
retries the group.  A failed delete is logged and counted but never stops
the batch.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .algorithms.completeness import score
from .errors import RegistryError
from .models import Record, row_patch

logger = logging.getLogger(__name__)


# Record attributes copied onto the survivor when it has none
BACKFILL_FIELDS = (
    "place_id",
    "map_url",
    "image_url",
    "description",
    "architect",
    "city",
    "country",
    "location",
    "style",
)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in ("", "0")
    return not value


@dataclass
class MergeDecision:
    keep: Record
    delete: list[Record]
    backfill: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "keep_id": self.keep.id,
            "keep_name": self.keep.name,
            "delete_ids": [r.id for r in self.delete],
            "backfill": dict(self.backfill),
        }


@dataclass
class MergeSummary:
    groups: int = 0
    patched: int = 0
    deleted: int = 0
    failed_groups: list[str | None] = field(default_factory=list)
    failed_deletes: list[str | None] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed(self) -> int:
        return len(self.failed_groups) + len(self.failed_deletes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": self.groups,
            "patched": self.patched,
            "deleted": self.deleted,
            "failed": self.failed,
            "failed_groups": list(self.failed_groups),
            "failed_deletes": list(self.failed_deletes),
            "dry_run": self.dry_run,
        }


class RegistryMergeEngine:
    def __init__(
        self,
        repository,
        *,
        delay_s: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ) -> None:
        self.repository = repository
        self.delay_s = delay_s
        self.sleep = sleep
        self.dry_run = dry_run
        self._mutations = 0

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def resolve(self, group: list[Record]) -> MergeDecision:
        """
        Rank members by completeness score (highest first, first seen wins
        ties), keep the top one and collect backfill from the rest.
        """
        if len(group) < 2:
            raise ValueError("A duplicate group needs at least two records")

        # sorted() is stable, so equal scores keep input order
        ranked = sorted(group, key=score, reverse=True)
        keep, losers = ranked[0], ranked[1:]
        return MergeDecision(keep=keep, delete=losers, backfill=self._backfill(keep, losers))

    @staticmethod
    def _backfill(keep: Record, donors: list[Record]) -> dict[str, Any]:
        backfill: dict[str, Any] = {}
        for name in BACKFILL_FIELDS:
            if not _is_empty(getattr(keep, name)):
                continue
            for donor in donors:
                value = getattr(donor, name)
                if _is_empty(value):
                    continue
                # A map URL only travels with the place it points at
                if name == "map_url" and keep.place_id and donor.place_id != keep.place_id:
                    continue
                backfill[name] = value
                break
        return backfill

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _pause(self) -> None:
        if self._mutations:
            self.sleep(self.delay_s)
        self._mutations += 1

    def apply(self, decisions: Iterable[MergeDecision]) -> MergeSummary:
        summary = MergeSummary(dry_run=self.dry_run)

        for decision in decisions:
            summary.groups += 1
            keep = decision.keep
            logger.info(
                "Keeping \"%s\" (%s, score %d); removing %d duplicate(s)",
                keep.name, keep.id, score(keep), len(decision.delete),
            )

            if decision.backfill:
                if self.dry_run:
                    logger.info("  [dry-run] would backfill %s", sorted(decision.backfill))
                else:
                    try:
                        fields = row_patch(decision.backfill, name=keep.name)
                        self._pause()
                        self.repository.patch(keep.id, fields)
                    except RegistryError as exc:
                        logger.warning(
                            "  Backfill of %s failed, leaving group intact: %s", keep.id, exc,
                        )
                        summary.failed_groups.append(keep.id)
                        continue
                summary.patched += 1

            for loser in decision.delete:
                if self.dry_run:
                    logger.info("  [dry-run] would delete \"%s\" (%s)", loser.name, loser.id)
                    summary.deleted += 1
                    continue
                try:
                    self._pause()
                    self.repository.delete(loser.id)
                except RegistryError as exc:
                    logger.warning("  Failed to delete %s: %s", loser.id, exc)
                    summary.failed_deletes.append(loser.id)
                    continue
                summary.deleted += 1

        logger.info(
            "Merge complete: %d groups, %d patched, %d deleted, %d failed",
            summary.groups, summary.patched, summary.deleted, summary.failed,
        )
        return summary
