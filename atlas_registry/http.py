"""Shared requests session handling for the registry's HTTP collaborators."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import requests

from .errors import TransientProviderError

logger = logging.getLogger(__name__)

USER_AGENT = "atlas-registry/0.1"


class JsonHttpClient:
    """
    Thin wrapper over one ``requests.Session``.

    Every transport failure and non-2xx status becomes a
    TransientProviderError; 429 is flagged as rate limited.  No retries:
    re-running the batch is the retry.
    """

    provider = "http"

    def __init__(self, *, timeout: float = 30.0, headers: dict[str, str] | None = None) -> None:
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        if headers:
            self.session.headers.update(headers)

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        allow_redirects: bool = True,
    ) -> requests.Response:
        try:
            return self.session.request(
                method=method,
                url=url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=allow_redirects,
            )
        except requests.exceptions.RequestException as exc:
            raise TransientProviderError(
                f"{self.provider} {method} request failed: {exc}",
                provider=self.provider,
            ) from exc

    def _raise_for_status(self, response: requests.Response, method: str, url: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        body = (getattr(response, "text", "") or "")[:200]
        if status == 429:
            logger.warning("Rate limited (429) by %s on %s", self.provider, method)
        raise TransientProviderError(
            f"{self.provider} {method} {url} returned HTTP {status}: {body}",
            provider=self.provider,
            status_code=status,
            rate_limited=status == 429,
        )

    def request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = self._send(method, url, params=params, json=json, headers=headers)
        self._raise_for_status(response, method, url)
        try:
            return response.json()
        except ValueError as exc:
            raise TransientProviderError(
                f"Invalid JSON payload from {self.provider}",
                provider=self.provider,
                status_code=response.status_code,
            ) from exc
