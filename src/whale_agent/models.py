"""
Pydantic models used throughout the Whale Deep-Dive Agent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Job input
# ---------------------------------------------------------------------------
class WhaleTransaction(BaseModel):
    """A detected large on-chain transfer submitted for analysis."""

    tx_hash: str = Field(..., min_length=1, description="Transaction hash")
    blockchain: str = Field("bitcoin", description="Chain the transfer happened on")
    asset: str = Field("BTC", description="Ticker of the transferred asset")
    amount: float = Field(..., gt=0, description="Amount in native units")
    amount_usd: Optional[float] = Field(
        None, ge=0, description="USD value at detection time, if known"
    )
    from_address: str = Field(..., min_length=1, description="Source address")
    to_address: str = Field(..., min_length=1, description="Destination address")
    timestamp: Optional[datetime] = Field(None, description="Block / detection time")
    type: str = Field("", description="Upstream classification hint, e.g. exchange_deposit")
    description: str = Field("", description="Free-form description from the detector")
    model_preference: Optional[str] = Field(
        None,
        description="Optional provider preference: fast, deep, a provider name or provider:model",
    )

    @field_validator("tx_hash", "from_address", "to_address")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("asset")
    @classmethod
    def normalise_asset(cls, value: str) -> str:
        return value.strip().upper() or "BTC"


def subject_key_for(tx: WhaleTransaction) -> str:
    """Stable de-duplication fingerprint for a transaction."""
    return f"{tx.blockchain.lower()}:{tx.tx_hash.lower()}"


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------
class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class Job(BaseModel):
    """Durable record of one analysis request and its outcome."""

    id: str
    subject_key: str
    analysis_kind: str
    status: JobStatus = JobStatus.PENDING
    input: dict[str, Any] = Field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_terminal_fields(self) -> "Job":
        if self.result is not None and self.status != JobStatus.COMPLETED:
            raise ValueError("result is only allowed on completed jobs")
        if self.failure_reason is not None and self.status != JobStatus.FAILED:
            raise ValueError("failure_reason is only allowed on failed jobs")
        if self.status == JobStatus.COMPLETED and self.result is None:
            raise ValueError("completed jobs must carry a result")
        if self.status == JobStatus.FAILED and not self.failure_reason:
            raise ValueError("failed jobs must carry a failure_reason")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobStatusView(BaseModel):
    """What a polling client sees for one job."""

    job_id: str
    analysis_kind: str
    status: JobStatus
    result: Optional[dict[str, Any]] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    likely_abandoned: bool = Field(
        False, description="Running for longer than the worst-case pipeline duration"
    )


# ---------------------------------------------------------------------------
# API request / response
# ---------------------------------------------------------------------------
class SubmitJobRequest(BaseModel):
    """Request body for ``POST /jobs``."""

    analysis_kind: str = Field("whale_analysis", description="Registered analysis kind")
    subject_key: Optional[str] = Field(
        None, description="De-duplication key; derived from chain + tx hash when omitted"
    )
    transaction: dict[str, Any] = Field(..., description="WhaleTransaction payload")


class SubmitJobResponse(BaseModel):
    job_id: str
    status: JobStatus


# ---------------------------------------------------------------------------
# Context records (ephemeral)
# ---------------------------------------------------------------------------
class Unavailable(BaseModel):
    """Explicit "no data" marker returned by data sources instead of raising."""

    source: str
    reason: str


class RecentTransaction(BaseModel):
    hash: str = ""
    time: Optional[datetime] = None
    inputs: int = 0
    outputs: int = 0
    total_value: float = 0.0


class AddressHistory(BaseModel):
    """Lifetime totals and recent activity for one address (native units)."""

    address: str
    total_received: float = 0.0
    total_sent: float = 0.0
    final_balance: float = 0.0
    transaction_count: int = 0
    recent_transactions: list[RecentTransaction] = Field(default_factory=list)


EntityType = Literal[
    "exchange", "custodian", "miner", "government", "fund", "mixer", "individual", "unknown"
]


class EntityLabel(BaseModel):
    """Who (probably) controls an address."""

    address: str
    name: str = ""
    entity_type: EntityType = "unknown"
    source: str = "static"


class PriceQuote(BaseModel):
    asset: str
    usd: float = Field(..., gt=0)
    source: str
    is_fallback: bool = False


class AggregatedContext(BaseModel):
    """Auxiliary facts gathered for one job's prompt.

    Built and discarded by a single worker run; only ``limitations`` survive
    into the stored result.
    """

    source_history: Union[AddressHistory, Unavailable, None] = None
    destination_history: Union[AddressHistory, Unavailable, None] = None
    source_entity: Union[EntityLabel, Unavailable, None] = None
    destination_entity: Union[EntityLabel, Unavailable, None] = None
    price: Optional[PriceQuote] = None
    inferred_transaction_type: str = "unknown"
    data_sources_used: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)

    def max_transaction_count(self) -> int:
        """Highest activity count among the counterpart addresses, 0 if unknown."""
        counts = [
            h.transaction_count
            for h in (self.source_history, self.destination_history)
            if isinstance(h, AddressHistory)
        ]
        return max(counts, default=0)


# ---------------------------------------------------------------------------
# Provider attempts (ephemeral)
# ---------------------------------------------------------------------------
@dataclass
class ProviderAttempt:
    """One call to one provider, kept for backoff decisions and metadata."""

    provider: str
    model: str
    attempt: int
    duration_ms: float
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    def summary(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "attempt": self.attempt,
            "duration_ms": round(self.duration_ms, 1),
            "error_kind": self.error_kind,
        }
