"""
Pydantic models for option chains, snapshots, history and engine results
"""

from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import Optional, List
from uuid import UUID, uuid4


class Option(BaseModel):
    """Single option contract as returned by the provider"""
    strike: float
    option_type: str  # 'call' or 'put'
    open_interest: int = Field(0, ge=0)
    gamma: float = 0.0
    expiration_date: Optional[date] = None
    expiration_type: Optional[str] = None

    class Config:
        frozen = True


class OptionChainSnapshot(BaseModel):
    """Latest option chain for one (symbol, expiry)"""
    symbol: str
    expiry_date: date
    expiry_type: str = "standard"
    option_chain: str  # raw provider JSON
    spot_price: float
    gex_value: Optional[float] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class ExpiryDateSet(BaseModel):
    """Known expiration dates for a symbol, ascending"""
    symbol: str
    dates: List[date]
    updated_at: datetime

    class Config:
        from_attributes = True


class GexHistoryRecord(BaseModel):
    """Append-only audit record written on every fresh collection"""
    id: UUID = Field(default_factory=uuid4)
    symbol: str
    expiry_date: date
    expiry_type: str = "standard"
    option_chain: str
    gex_value: float
    spot_price: float
    recorded_at: Optional[datetime] = None  # stamped by the store

    class Config:
        from_attributes = True


class SymbolResult(BaseModel):
    """Outcome of one symbol's pipeline within a cycle"""
    symbol: str
    success: bool
    cached: bool = False
    expiry_date: Optional[date] = None
    spot_price: Optional[float] = None
    total_gex: Optional[float] = None
    error: Optional[str] = None


class CycleSummary(BaseModel):
    """Counts and per-symbol results of one collection cycle"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped_reason: Optional[str] = None
    results: List[SymbolResult] = Field(default_factory=list)
    timed_out: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success) + len(self.timed_out)

    @property
    def cache_hits(self) -> int:
        return sum(1 for r in self.results if r.success and r.cached)

    @property
    def fetched(self) -> int:
        return sum(1 for r in self.results if r.success and not r.cached)


class GexScanItem(BaseModel):
    """Period-over-period GEX change for one symbol"""
    symbol: str
    current_gex: float
    previous_gex: float
    gex_change: float
    gex_change_pct: float
    current_price: float = 0.0
    expiry_date: Optional[date] = None
    direction: str = "neutral"  # 'up', 'down' or 'neutral'
    z_score: float = 0.0
