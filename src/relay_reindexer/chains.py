"""Cached directory of the chains supported by the Relay API."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Set

from prometheus_client import Counter

from .client import RelayClient
from .models import Chain, normalize_host

logger = logging.getLogger(__name__)

CHAIN_FETCH_COUNTER = Counter(
    "chain_directory_fetches_total",
    "Chain directory fetches by outcome",
    ["outcome"],
)

# Shown to the user when the chain list cannot be fetched at all.
FALLBACK_DISPLAY_NAMES: List[str] = [
    "Arbitrum",
    "Base",
    "BNB Chain",
    "Ethereum",
    "Optimism",
    "Polygon",
]


class ChainDirectory:
    """Fetches the chain list once and serves lookups from the snapshot.

    A failed refresh keeps the previous snapshot.  Until one fetch succeeds
    every lookup misses.
    """

    def __init__(self, client: RelayClient) -> None:
        self._client = client
        self._chains: Optional[List[Chain]] = None
        self._lock = threading.Lock()

    def refresh(self) -> List[Chain]:
        """Re-fetch the chain list, falling back to the last good snapshot."""
        with self._lock:
            try:
                chains = self._client.list_chains()
            except Exception:
                CHAIN_FETCH_COUNTER.labels(outcome="failed").inc()
                logger.warning("chain list fetch failed, keeping previous snapshot", exc_info=True)
                return list(self._chains or [])
            CHAIN_FETCH_COUNTER.labels(outcome="success").inc()
            logger.info("loaded %d chains", len(chains))
            self._chains = chains
            return list(chains)

    def list_supported_chains(self) -> List[Chain]:
        """Return the snapshot, fetching it first if none has been loaded."""
        if self._chains is None:
            return self.refresh()
        return list(self._chains)

    def supported_ids(self) -> Set[int]:
        return {chain.id for chain in self._chains or []}

    def chain_for_host(self, host: str) -> Optional[Chain]:
        """Return the chain whose explorer serves ``host``.

        An exact match wins; otherwise the longest explorer host that ``host``
        is a subdomain of is used, so ``sepolia.etherscan.io`` does not resolve
        to a chain registered as ``etherscan.io`` when Sepolia itself is listed.
        Lookups only read the loaded snapshot.
        """
        host = normalize_host(host)
        if not host:
            return None
        best: Optional[Chain] = None
        for chain in self._chains or []:
            explorer = chain.explorer_host
            if not explorer:
                continue
            if explorer == host:
                return chain
            if not host.endswith("." + explorer):
                continue
            if best is None or len(explorer) > len(best.explorer_host or ""):
                best = chain
        return best

    def supported_display_names(self) -> List[str]:
        """Sorted display names of chains open for deposits, for user hints."""
        if self._chains is None:
            self.refresh()
        if self._chains is None:
            return list(FALLBACK_DISPLAY_NAMES)
        return sorted(chain.display_name for chain in self._chains if chain.is_depositable)
