from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def _lower(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value.lower() if value else None


class RiskTag(str, Enum):
    BRIDGE = "BRIDGE"
    MIXER = "MIXER"
    DEX_INTERACTION = "DEX_INTERACTION"
    RISKY_ADDRESS = "RISKY_ADDRESS"
    CONTRACT_INTERACTION = "CONTRACT_INTERACTION"
    HIGH_GAS_USAGE = "HIGH_GAS_USAGE"
    ZERO_VALUE = "ZERO_VALUE"
    SELF_TRANSACTION = "SELF_TRANSACTION"
    CONTRACT_CREATION = "CONTRACT_CREATION"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# ─── Data source records ──────────────────────────────────────────────────────

class Transaction(BaseModel):
    hash: str
    from_address: str
    to_address: Optional[str] = None  # None for contract creation
    value: int = 0  # smallest native unit (wei)
    input: str = "0x"
    block_number: Optional[int] = None
    timestamp: Optional[int] = None

    @field_validator("hash", "from_address", "to_address")
    @classmethod
    def normalize_addresses(cls, value: Optional[str]) -> Optional[str]:
        return _lower(value)


class Receipt(BaseModel):
    transaction_hash: str
    gas_used: Optional[int] = None
    contract_address: Optional[str] = None
    to_address: Optional[str] = None
    status: Optional[int] = None

    @field_validator("transaction_hash", "contract_address", "to_address")
    @classmethod
    def normalize_addresses(cls, value: Optional[str]) -> Optional[str]:
        return _lower(value)


class TokenTransfer(BaseModel):
    transaction_hash: str
    token_address: str
    token_symbol: Optional[str] = None
    from_address: str
    to_address: Optional[str] = None
    value: int = 0
    token_decimals: Optional[int] = None
    token_id: Optional[int] = None
    block_number: Optional[int] = None

    @field_validator("transaction_hash", "token_address", "from_address", "to_address")
    @classmethod
    def normalize_addresses(cls, value: Optional[str]) -> Optional[str]:
        return _lower(value)


# ─── Trace output ─────────────────────────────────────────────────────────────

class Edge(BaseModel):
    hash: str
    from_address: str
    to_address: Optional[str] = None
    amount: Decimal = Decimal("0")
    token: str
    chain: str
    chain_name: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[int] = None
    direction: Literal["in", "out"] = "out"
    depth: int = 0
    risk_tags: List[RiskTag] = Field(default_factory=list)
    risk_score: int = 0
    is_cross_chain: bool = False
    bridge_name: Optional[str] = None
    via_contract: bool = False
    contract_interaction: Optional[str] = None
    token_transfers: List[TokenTransfer] = Field(default_factory=list)
    nft_transfers: List[TokenTransfer] = Field(default_factory=list)
    gas_used: Optional[int] = None

    def addresses(self) -> List[str]:
        return [a for a in (self.from_address, self.to_address) if a]


class TraceNode(BaseModel):
    edge: Edge
    children: List["TraceNode"] = Field(default_factory=list)

    def iter_edges(self):
        yield self.edge
        for child in self.children:
            yield from child.iter_edges()


class SkippedNode(BaseModel):
    hash: Optional[str] = None
    address: Optional[str] = None
    depth: int
    reason: str


class RiskSummary(BaseModel):
    overall_risk_level: int = 0
    risk_distribution: Dict[str, int] = Field(
        default_factory=lambda: {"low": 0, "medium": 0, "high": 0}
    )
    high_risk_transactions: int = 0
    bridge_interactions: int = 0
    mixer_interactions: int = 0
    dex_interactions: int = 0
    total_volume: Decimal = Decimal("0")
    suspicious_addresses: List[str] = Field(default_factory=list)


class TraceStats(BaseModel):
    total_transactions: int = 0
    visited_addresses: int = 0
    max_depth_reached: int = 0
    chains: List[str] = Field(default_factory=list)
    skipped_count: int = 0
    duration_seconds: float = 0.0


class TraceResult(BaseModel):
    seed: str
    chain: str
    max_depth: int
    tree: Optional[TraceNode] = None
    roots: List[TraceNode] = Field(default_factory=list)
    flat: List[Edge] = Field(default_factory=list)
    summary: RiskSummary = Field(default_factory=RiskSummary)
    stats: TraceStats = Field(default_factory=TraceStats)
    skipped: List[SkippedNode] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


# ─── Jobs ─────────────────────────────────────────────────────────────────────

class FailureFlag(BaseModel):
    type: Literal["TRACE_FAILED", "TRACE_CANCELLED"]
    severity: Literal["LOW", "MEDIUM", "HIGH"] = "LOW"
    description: str
    details: Dict[str, Any] = Field(default_factory=dict)


class TraceJob(BaseModel):
    job_id: str
    seed: str
    seed_kind: Literal["address", "transaction"]
    chain: str
    max_depth: int
    status: JobStatus = JobStatus.PENDING
    requested_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempts: int = 0
    cancelled: bool = False
    risk_level: Optional[int] = None
    result: Optional[TraceResult] = None
    failure_flags: Optional[List[FailureFlag]] = None
