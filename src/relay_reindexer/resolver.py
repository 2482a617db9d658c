"""Turn user input (a hash or an explorer URL) into a hash and chain id.

Resolution depends on the chain directory's current snapshot, so the same input
can resolve differently after the directory is refreshed.
"""

from __future__ import annotations

import logging
import re
from typing import List, NamedTuple, Optional, Pattern, Tuple

from .chains import ChainDirectory
from .errors import ChainNotFound, NoHashFound
from .models import normalize_host

logger = logging.getLogger(__name__)

HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
_CAPTURE = r"/tx/(0x[a-fA-F0-9]{64})"


def _explorer(host: str) -> Pattern[str]:
    return re.compile(re.escape(host) + _CAPTURE)


# First match wins.
EXPLORER_PATTERNS: List[Pattern[str]] = [
    # Ethereum mainnet and testnets
    _explorer("etherscan.io"),
    _explorer("sepolia.etherscan.io"),
    _explorer("goerli.etherscan.io"),
    # Polygon
    _explorer("polygonscan.com"),
    _explorer("mumbai.polygonscan.com"),
    # Arbitrum
    _explorer("arbiscan.io"),
    _explorer("nova.arbiscan.io"),
    _explorer("testnet.arbiscan.io"),
    # Optimism
    _explorer("optimistic.etherscan.io"),
    _explorer("goerli-optimism.etherscan.io"),
    # Base
    _explorer("basescan.org"),
    _explorer("goerli.basescan.org"),
    # BSC
    _explorer("bscscan.com"),
    _explorer("testnet.bscscan.com"),
]

STATIC_EXPLORER_CHAIN_IDS = {
    "etherscan.io": 1,
    "sepolia.etherscan.io": 11155111,
    "goerli.etherscan.io": 5,
    "polygonscan.com": 137,
    "mumbai.polygonscan.com": 80001,
    "arbiscan.io": 42161,
    "nova.arbiscan.io": 42170,
    "testnet.arbiscan.io": 421613,
    "optimistic.etherscan.io": 10,
    "goerli-optimism.etherscan.io": 420,
    "basescan.org": 8453,
    "goerli.basescan.org": 84531,
    "bscscan.com": 56,
    "testnet.bscscan.com": 97,
}

CHAIN_PATH_RE = re.compile(r"/chain/(\d+)/")


class ResolvedTransaction(NamedTuple):
    tx_hash: str
    chain_id: int


def is_tx_hash(value: str) -> bool:
    return bool(HASH_RE.match(value.strip()))


class IdentifierResolver:
    """Resolve free-form input against explorer patterns and the chain directory."""

    def __init__(self, directory: ChainDirectory) -> None:
        self.directory = directory

    def extract_tx_hash(self, raw_input: str) -> Optional[str]:
        """Return the transaction hash contained in ``raw_input``, if any."""
        value = raw_input.strip()
        if is_tx_hash(value):
            return value

        for pattern in EXPLORER_PATTERNS:
            match = pattern.search(value)
            if match:
                return match.group(1)

        # Explorers listed by the directory but missing from the table above.
        host = normalize_host(value)
        if host and self.directory.chain_for_host(host):
            match = re.search(_CAPTURE, value)
            if match:
                return match.group(1)
        return None

    def chain_id_for_url(self, url: str) -> Optional[int]:
        """Determine the chain id for an explorer URL.

        Tried in order: the directory's explorer hosts, the static explorer
        table and a ``/chain/<id>/`` path segment.  The last two only count when
        the id is one the directory supports.  A directory hit on a parent
        domain gives way to a more specific static entry, so
        ``goerli.basescan.org`` is never taken for Base mainnet.
        """
        host = normalize_host(url)
        supported = self.directory.supported_ids()
        static = _static_match(host) if host else None

        if host:
            chain = self.directory.chain_for_host(host)
            if chain is not None:
                if static is None or len(static[0]) <= len(chain.explorer_host or ""):
                    logger.debug("chain %s matched explorer host %s", chain.id, host)
                    return chain.id
                logger.debug("static entry %s overrides explorer %s", static[0], chain.explorer_host)

        if static is not None and static[1] in supported:
            logger.debug("chain %s matched static explorer table for %s", static[1], host)
            return static[1]

        match = CHAIN_PATH_RE.search(url)
        if match:
            path_id = int(match.group(1))
            if path_id in supported:
                logger.debug("chain %s taken from URL path", path_id)
                return path_id
        return None

    def resolve(self, raw_input: str) -> ResolvedTransaction:
        """Return the hash and chain id for ``raw_input``.

        Raises
        ------
        NoHashFound
            No hash could be found in the input.
        ChainNotFound
            The hash was found but the chain could not be determined.  A bare
            hash always ends up here since it carries no chain information.
        """
        value = raw_input.strip()
        self.directory.list_supported_chains()
        tx_hash = self.extract_tx_hash(value)
        if tx_hash is None:
            raise NoHashFound(f"No transaction hash found in {value!r}")

        if is_tx_hash(value):
            raise ChainNotFound("A bare transaction hash does not identify a chain", tx_hash)

        chain_id = self.chain_id_for_url(value)
        if chain_id is None:
            raise ChainNotFound(f"Could not determine chain for {value!r}", tx_hash)

        logger.info("resolved tx=%s chain=%s", tx_hash, chain_id)
        return ResolvedTransaction(tx_hash, chain_id)


def _static_match(host: str) -> Optional[Tuple[str, int]]:
    """Return the static explorer entry serving ``host`` as ``(domain, chain_id)``."""
    if host in STATIC_EXPLORER_CHAIN_IDS:
        return host, STATIC_EXPLORER_CHAIN_IDS[host]
    # Most specific suffix first, e.g. sepolia.etherscan.io before etherscan.io.
    for domain in sorted(STATIC_EXPLORER_CHAIN_IDS, key=len, reverse=True):
        if host.endswith("." + domain):
            return domain, STATIC_EXPLORER_CHAIN_IDS[domain]
    return None
