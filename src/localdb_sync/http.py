"""Minimal HTTP client for fetching settings text and binary archives."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .constants import USER_AGENT
from .errors import HttpError, ParseError

logger = logging.getLogger("localdb_sync.http")


class HttpClient:
    """GET-only client on top of requests.

    Args:
        session: Optional requests session (tests pass a mock).
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30):
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, url: str) -> requests.Response:
        try:
            resp = self.session.get(
                url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise HttpError(f"Request to {url} failed: {exc}", url=url) from exc

        if resp.status_code != 200:
            raise HttpError(
                f"Request to {url} failed with status {resp.status_code}",
                url=url,
                status=resp.status_code,
            )
        return resp

    def fetch_text(self, url: str) -> str:
        """Fetch ``url`` and decode it as UTF-8.

        Raises:
            HttpError: On a transport error or non-200 status.
            ParseError: If the body is not valid UTF-8.
        """
        resp = self._get(url)
        try:
            return resp.content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Response from {url} is not valid UTF-8: {exc}") from exc

    def fetch_binary(self, url: str) -> bytes:
        resp = self._get(url)
        logger.debug("Fetched %d bytes from %s", len(resp.content), url)
        return resp.content
