"""Exception types raised while resolving, indexing and polling transactions.

Start-time failures (:class:`ResolutionError`, :class:`IndexingError`) are fatal
to the attempt and get turned into a user-facing message by
:func:`describe_start_error`.  :class:`PollError` is transient and never shown to
the user.
"""

from __future__ import annotations

from typing import Optional


class ResolutionError(Exception):
    """The input could not be turned into a ``(tx_hash, chain_id)`` pair."""


class NoHashFound(ResolutionError):
    """No transaction hash could be extracted from the input."""


class ChainNotFound(ResolutionError):
    """A hash was found but the chain it belongs to could not be determined."""

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class UpstreamError(Exception):
    """A Relay API call failed.

    ``status_code`` is ``None`` when the request never produced a response
    (connection error, timeout).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reason: str = "",
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.body = body

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


class IndexingError(UpstreamError):
    """The force-index request was rejected or could not be sent."""


class PollError(Exception):
    """A status check failed; the monitoring session keeps running."""


INVALID_URL_MESSAGE = (
    "Invalid transaction URL. Please provide a valid blockchain explorer URL "
    "(e.g. Etherscan, Polygonscan, Arbiscan) or transaction hash."
)
CHAIN_NOT_FOUND_MESSAGE = (
    "Could not determine chain ID from URL. Please use a supported blockchain "
    "explorer (Etherscan, Arbiscan, Polygonscan, etc.) or check that the URL is correct."
)
NOT_FOUND_MESSAGE = (
    "Transaction not found. Please ensure the transaction URL is correct and the "
    "transaction exists on the blockchain."
)
BAD_REQUEST_MESSAGE = (
    "Invalid request. Please check that the transaction URL is from a supported "
    "blockchain explorer."
)
UNAVAILABLE_MESSAGE = (
    "Relay service is temporarily unavailable. Please try again in a few minutes."
)
NETWORK_MESSAGE = "Network error. Please check your internet connection and try again."
GENERIC_MESSAGE = "An error occurred while processing the transaction"


def describe_start_error(exc: Exception) -> str:
    """Return the message shown to the user when starting a session fails."""

    if isinstance(exc, NoHashFound):
        return INVALID_URL_MESSAGE
    if isinstance(exc, ChainNotFound):
        return CHAIN_NOT_FOUND_MESSAGE
    if isinstance(exc, UpstreamError):
        if exc.is_network_error:
            return NETWORK_MESSAGE
        if exc.status_code == 404:
            return NOT_FOUND_MESSAGE
        if exc.status_code == 400:
            return BAD_REQUEST_MESSAGE
        if exc.status_code >= 500:
            return UNAVAILABLE_MESSAGE
        return exc.message or GENERIC_MESSAGE
    return str(exc) or GENERIC_MESSAGE
