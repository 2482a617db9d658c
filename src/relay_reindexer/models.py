"""Pydantic models for Relay API records and the monitoring session."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def normalize_host(value: Optional[str]) -> Optional[str]:
    """Reduce a URL or bare host to a lowercase host without ``www.``.

    ``"https://www.Etherscan.io/tx/0x.."`` and ``"etherscan.io"`` both become
    ``"etherscan.io"``.  Returns ``None`` for empty input.
    """
    if not value:
        return None
    value = value.strip()
    if "://" not in value:
        value = f"//{value}"
    host = (urlparse(value).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


class Chain(BaseModel):
    """A chain supported by the Relay API."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    display_name: str = Field("", validation_alias=AliasChoices("displayName", "display_name"))
    explorer_host: Optional[str] = Field(None, validation_alias=AliasChoices("explorerUrl", "explorer_host"))
    deposit_enabled: bool = Field(True, validation_alias=AliasChoices("depositEnabled", "deposit_enabled"))
    disabled: bool = False

    @model_validator(mode="before")
    @classmethod
    def default_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("displayName") and not data.get("display_name"):
            data = {**data, "displayName": data.get("name", "")}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, value: Any) -> int:
        # Upstream variants send the id as either a string or an integer.
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"Invalid chain id: {value!r}")
        if isinstance(value, str):
            value = value.strip()
            if not value.isdigit():
                raise ValueError(f"Invalid chain id: {value!r}")
        return int(value)

    @field_validator("explorer_host", mode="before")
    @classmethod
    def reduce_to_host(cls, value: Any) -> Optional[str]:
        return normalize_host(value) if isinstance(value, str) else None

    @property
    def is_depositable(self) -> bool:
        return self.deposit_enabled and not self.disabled


class TrackingRequest(BaseModel):
    """Upstream record correlating a submitted hash to a request id."""

    id: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("updatedAt", "updated_at"))


class StatusKind(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    OTHER = "other"


_STATUS_KINDS = {
    "pending": StatusKind.PENDING,
    "waiting": StatusKind.PENDING,
    "success": StatusKind.SUCCESS,
    "failure": StatusKind.FAILED,
    "failed": StatusKind.FAILED,
}


class StatusDetails(BaseModel):
    """Snapshot of a request's cross-chain status."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(..., validation_alias=AliasChoices("requestId", "request_id"))
    status: str = "unknown"
    inbound_hashes: List[str] = Field(default_factory=list, validation_alias=AliasChoices("inTxHashes", "inbound_hashes"))
    outbound_hashes: List[str] = Field(default_factory=list, validation_alias=AliasChoices("txHashes", "outbound_hashes"))
    updated_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("updatedAt", "updated_at"))
    origin_chain_id: Optional[int] = Field(None, validation_alias=AliasChoices("originChainId", "origin_chain_id"))
    destination_chain_id: Optional[int] = Field(None, validation_alias=AliasChoices("destinationChainId", "destination_chain_id"))

    @property
    def kind(self) -> StatusKind:
        return _STATUS_KINDS.get((self.status or "").lower(), StatusKind.OTHER)


class MonitorPhase(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    CHECKING = "checking"
    POLLING = "polling"
    RESOLVED = "resolved"
    FAILED = "failed"
    STOPPED = "stopped"


class MonitoringSession(BaseModel):
    """State of the one transaction currently being watched.

    Only :class:`~relay_reindexer.monitor.TransactionMonitor` mutates a session;
    everyone else reads copies obtained through ``snapshot()``.
    """

    transaction_hash: str
    chain_id: int
    generation: int
    started_at: datetime
    is_active: bool = True
    request_id: Optional[str] = None
    latest_status: Optional[StatusDetails] = None
    last_checked_at: Optional[datetime] = None
    consecutive_polls: int = 0

    def fold_result(self, details: StatusDetails, checked_at: datetime) -> None:
        """Apply a newly obtained status and end the watch."""
        self.request_id = details.request_id
        self.latest_status = details
        self.is_active = False
        self.consecutive_polls = 0
        self.last_checked_at = checked_at

    def mark_checked(self, checked_at: datetime) -> None:
        self.last_checked_at = checked_at

    def record_missed_poll(self) -> None:
        self.consecutive_polls += 1


class MonitorSnapshot(BaseModel):
    """Read-only view of the monitor handed to the view layer."""

    phase: MonitorPhase
    session: Optional[MonitoringSession] = None
    poll_count: int = 0
    is_loading: bool = False
    error: Optional[str] = None
