"""Client for a remote analytics aggregation endpoint."""

from __future__ import annotations

import logging

import requests

from sipsafe.analytics import AnalyticsResult, normalize_range
from sipsafe.errors import CollaboratorError

logger = logging.getLogger(__name__)

ANALYTICS_PATH = "/api/drinklogs/analytics"


class RemoteAnalyticsClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        token: str = "",
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self.http = session or requests.Session()

    def __call__(self, range_key: str) -> AnalyticsResult:
        return self.fetch(range_key)

    def fetch(self, range_key: str) -> AnalyticsResult:
        range_key = normalize_range(range_key)
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = self.http.get(
                self.base_url + ANALYTICS_PATH,
                params={"range": range_key},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise CollaboratorError(f"analytics request failed: {exc}") from exc
        if not response.ok:
            raise CollaboratorError(f"analytics endpoint returned {response.status_code}")

        try:
            return AnalyticsResult.from_dict(response.json(), range_key=range_key)
        except (KeyError, TypeError, ValueError) as exc:
            raise CollaboratorError(f"analytics payload was malformed: {exc}") from exc
