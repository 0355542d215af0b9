"""
Atlas Building Registry — Baserow Record Store

Rows are addressed by user field names.  ``list_all`` pages through the
table until the store reports no next page; nothing else is cached.

Usage:
    repo = BaserowRepository(config.baserow)
    for row in repo.list_all():
        record = record_from_row(row)

Dependencies:
    pip install requests
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from .config import BaserowSettings
from .errors import ConfigError
from .http import JsonHttpClient

logger = logging.getLogger(__name__)


class BaserowRepository(JsonHttpClient):
    provider = "baserow"

    def __init__(self, settings: BaserowSettings) -> None:
        if not settings.token or not settings.table_id:
            raise ConfigError("Baserow token and table id are required (BASEROW_TOKEN, BASEROW_TABLE_ID)")
        super().__init__(
            timeout=settings.timeout_s,
            headers={
                "Authorization": f"Token {settings.token}",
                "Content-Type": "application/json",
            },
        )
        self.settings = settings
        self.rows_url = (
            f"{settings.base_url.rstrip('/')}/api/database/rows/table/{settings.table_id}/"
        )

    def _row_url(self, row_id: str | int) -> str:
        return f"{self.rows_url}{row_id}/"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_all(self) -> Iterator[dict[str, Any]]:
        """Yield every raw row, following ``next`` links until exhausted."""
        url: str | None = self.rows_url
        params: dict[str, Any] | None = {
            "user_field_names": "true",
            "size": self.settings.page_size,
            "page": 1,
        }
        pages = 0
        while url:
            data = self.request_json("GET", url, params=params)
            pages += 1
            for row in data.get("results", []):
                yield row
            next_url = data.get("next")
            # The store sometimes hands back plain-http next links
            if next_url and next_url.startswith("http:"):
                next_url = "https:" + next_url[len("http:"):]
            url = next_url
            params = None
        logger.debug("Read %d page(s) from Baserow table %s", pages, self.settings.table_id)

    def get(self, row_id: str | int) -> dict[str, Any]:
        return self.request_json("GET", self._row_url(row_id), params={"user_field_names": "true"})

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, fields: dict[str, Any]) -> dict[str, Any]:
        return self.request_json(
            "POST", self.rows_url, params={"user_field_names": "true"}, json=fields,
        )

    def patch(self, row_id: str | int, fields: dict[str, Any]) -> dict[str, Any]:
        """Partial update; fields not sent are retained."""
        return self.request_json(
            "PATCH", self._row_url(row_id), params={"user_field_names": "true"}, json=fields,
        )

    def delete(self, row_id: str | int) -> bool:
        """Delete a row.  A row that is already gone counts as deleted."""
        url = self._row_url(row_id)
        response = self._send("DELETE", url, params={"user_field_names": "true"})
        if response.status_code == 404:
            logger.info("Row %s already absent", row_id)
            return True
        self._raise_for_status(response, "DELETE", url)
        return True

