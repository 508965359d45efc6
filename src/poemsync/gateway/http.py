"""HTTP/JSON client for a remote record store.

Endpoints:
- POST /records/batch        {"records": [...], "force": bool}
                             -> {"results": {id: {"ok": bool, "error": str}}}
- GET  /changes?since=TOKEN  -> {"changed": [...], "deleted": [...], "new_token": str}
- GET  /records/{id}         -> record
- POST /records/delete       {"ids": [...]} -> {"results": {...}}
- GET  /health               -> 200 when the account can be used
"""

import logging
from typing import Any, Optional

import requests

from ..db.schemas import ChangeSet, RemoteRecord
from .base import (
    ChangeTokenExpiredError,
    GatewayError,
    PushOutcome,
    RecordNotFoundError,
    RemoteGateway,
    RemoteUnavailableError,
    TransportError,
)

logger = logging.getLogger(__name__)


class HttpRemoteGateway(RemoteGateway):
    """Client for a remote record store over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize client.

        Args:
            base_url: Root URL of the remote store API
            token: Bearer token for the account
            timeout: Request timeout in seconds
            session: Optional preconfigured session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": "poemsync/0.1",
            "Accept": "application/json",
        })
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        record_id: Optional[str] = None,
    ) -> Any:
        """Make a request with error handling."""
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise TransportError("Request timed out")
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"Connection failed: {e}")
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            if status in (401, 403):
                raise RemoteUnavailableError(f"Remote account unavailable (HTTP {status})")
            if status == 503:
                raise RemoteUnavailableError("Remote store temporarily unavailable")
            if status == 404 and record_id is not None:
                raise RecordNotFoundError(record_id)
            if status == 410:
                raise ChangeTokenExpiredError("Change token expired")
            raise TransportError(f"HTTP error: {status}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"Invalid response body: {e}")

    @staticmethod
    def _parse_outcomes(data: Any, ids: list[str]) -> dict[str, PushOutcome]:
        if not isinstance(data, dict):
            raise GatewayError("Invalid response body: expected an object")
        results = data.get("results", {})
        if not isinstance(results, dict):
            raise GatewayError("Invalid response body: 'results' must be an object")
        outcomes = {}
        for record_id in ids:
            result = results.get(record_id)
            if result is None:
                outcomes[record_id] = PushOutcome.failure("No result returned for record")
            elif not isinstance(result, dict):
                outcomes[record_id] = PushOutcome.failure("Invalid result for record")
            elif result.get("ok"):
                outcomes[record_id] = PushOutcome.success()
            else:
                outcomes[record_id] = PushOutcome.failure(result.get("error") or "Rejected")
        return outcomes

    # ========================================================================
    # RemoteGateway
    # ========================================================================

    def push_batch(
        self, records: list[RemoteRecord], force: bool = False
    ) -> dict[str, PushOutcome]:
        if not records:
            return {}
        payload = {
            "records": [r.model_dump(mode="json") for r in records],
            "force": force,
        }
        data = self._request("POST", "/records/batch", payload=payload)
        return self._parse_outcomes(data, [r.id for r in records])

    def pull_changes(self, since: Optional[str]) -> ChangeSet:
        params = {"since": since} if since else None
        data = self._request("GET", "/changes", params=params)
        try:
            return ChangeSet.model_validate(data)
        except ValueError as e:
            raise GatewayError(f"Invalid change set: {e}")

    def fetch_one(self, record_id: str) -> RemoteRecord:
        data = self._request("GET", f"/records/{record_id}", record_id=record_id)
        try:
            return RemoteRecord.model_validate(data)
        except ValueError as e:
            raise GatewayError(f"Invalid record: {e}")

    def delete(self, record_ids: list[str]) -> dict[str, PushOutcome]:
        if not record_ids:
            return {}
        data = self._request("POST", "/records/delete", payload={"ids": record_ids})
        return self._parse_outcomes(data, record_ids)

    def check_availability(self) -> None:
        self._request("GET", "/health")
        logger.debug("Remote store at %s is available", self.base_url)
