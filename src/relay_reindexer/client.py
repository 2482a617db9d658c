"""HTTP client for the Relay API.

The client is a thin, validated wrapper over the endpoints used to re-index a
transaction and follow its progress.  It never retries; callers decide what a
failure means for them.  Construct one per configuration and pass it to the
components that need it so tests can substitute a double.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Type

import requests

from .config import settings
from .errors import IndexingError, UpstreamError
from .models import Chain, StatusDetails, TrackingRequest

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


def _error_message(response: requests.Response) -> str:
    """Pick the most useful message out of an error response.

    Checked in order: ``message``, ``error`` and ``details`` fields of a JSON
    object, a JSON string body, the raw body text and finally
    ``"<status> <reason>"``.
    """
    body = response.text or ""
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("message", "error", "details"):
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value)
    elif isinstance(payload, str) and payload:
        return payload

    if body.strip():
        return body.strip()
    return f"{response.status_code} {response.reason or ''}".strip()


class RelayClient:
    """Relay API operations used by the re-indexer."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or settings.relay_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._session = session or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        *,
        error_cls: Type[UpstreamError] = UpstreamError,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Non-2xx responses raise ``error_cls``.  A successful response that is not
        JSON yields ``{"success": True}``.
        """
        url = f"{self.base_url}{path}"
        logger.debug("relay request %s %s", method, url)
        try:
            response = self._session.request(
                method, url, headers=JSON_HEADERS, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            logger.error("relay request failed %s %s", method, url, exc_info=exc)
            raise error_cls(f"Network error: {exc}") from exc

        logger.debug("relay response %s %s status %s", method, url, response.status_code)
        if not response.ok:
            message = _error_message(response)
            logger.warning(
                "relay error %s %s status %s: %s", method, url, response.status_code, message
            )
            raise error_cls(
                message,
                status_code=response.status_code,
                reason=response.reason or "",
                body=response.text or "",
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return {"success": True}
        try:
            return response.json()
        except ValueError:
            return {"success": True}

    def list_chains(self) -> List[Chain]:
        """Return every chain the Relay API knows about."""
        data = self._request("GET", "/chains")
        entries = data.get("chains", []) if isinstance(data, dict) else data
        chains: List[Chain] = []
        for entry in entries or []:
            try:
                chains.append(Chain.model_validate(entry))
            except ValueError:
                logger.warning("skipping malformed chain entry %r", entry)
        return chains

    def submit_for_indexing(self, tx_hash: str, chain_id: int) -> None:
        """Ask Relay to (re-)index a transaction.

        Submitting a hash that is already indexed is expected and harmless.

        Raises
        ------
        ValueError
            If the hash or chain id is malformed; nothing is sent.
        IndexingError
            If the upstream rejects the request or cannot be reached.
        """
        if not isinstance(tx_hash, str) or not TX_HASH_RE.match(tx_hash):
            raise ValueError(
                f"Invalid hash format: {tx_hash}. Expected 0x followed by 64 hex characters."
            )
        if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
            raise ValueError(f"Invalid chainId: {chain_id}. Expected a positive integer.")

        logger.info("submitting tx=%s chain=%s for indexing", tx_hash, chain_id)
        self._request(
            "POST",
            "/transactions/index",
            json={"txHash": tx_hash, "chainId": chain_id},
            error_cls=IndexingError,
        )

    def list_requests_by_hash(self, tx_hash: str) -> List[TrackingRequest]:
        """Return the tracking requests recorded for ``tx_hash``.

        An empty list means Relay has not picked the transaction up yet.
        """
        data = self._request("GET", "/requests", params={"hash": tx_hash})
        if not isinstance(data, dict):
            return []
        return [TrackingRequest.model_validate(r) for r in data.get("requests") or []]

    def fetch_status(self, request_id: str) -> StatusDetails:
        """Return the status of a request.

        The endpoint omits the request id, so it is added back here.
        """
        data = self._request("GET", "/intents/status/v3", params={"requestId": request_id})
        payload: Dict[str, Any] = dict(data) if isinstance(data, dict) else {}
        payload.pop("success", None)
        payload["requestId"] = request_id
        return StatusDetails.model_validate(payload)
