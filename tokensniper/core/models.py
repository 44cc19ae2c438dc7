"""
Domain types shared by the scanner, controller, ledger and coordinator
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple


NEUTRAL_RUG_SCORE = 50


class BotMode(Enum):
    """Operational mode of the bot session"""
    IDLE = "idle"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class TransactionStatus(Enum):
    """Status of one transaction log entry"""
    PENDING = "pending"
    BUYING = "buying"
    BOUGHT = "bought"
    SELLING = "selling"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.BOUGHT, TransactionStatus.SUCCESS, TransactionStatus.ERROR)


# Allowed next statuses within one trade attempt
STATUS_TRANSITIONS = {
    TransactionStatus.PENDING: {
        TransactionStatus.BUYING,
        TransactionStatus.SELLING,
        TransactionStatus.BOUGHT,
        TransactionStatus.SUCCESS,
        TransactionStatus.ERROR,
    },
    TransactionStatus.BUYING: {TransactionStatus.BOUGHT, TransactionStatus.ERROR},
    TransactionStatus.SELLING: {TransactionStatus.SUCCESS, TransactionStatus.ERROR},
    TransactionStatus.BOUGHT: set(),
    TransactionStatus.SUCCESS: set(),
    TransactionStatus.ERROR: set(),
}


class TradeSide(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class TokenRecord:
    """Newly discovered token as supplied by the metadata source"""
    mint: str
    name: str = "Unknown"
    symbol: str = "N/A"
    price_usd: float = 0.0
    price_sol: float = 0.0
    market_cap_sol: float = 0.0
    liquidity_sol: float = 0.0
    price_change_24h: float = 0.0
    website: Optional[str] = None
    twitter: Optional[str] = None
    telegram: Optional[str] = None
    created_at: Optional[float] = None


@dataclass(frozen=True)
class TopHolder:
    """Single entry of a token's holder distribution"""
    address: str
    percentage: float
    amount: float = 0.0


@dataclass(frozen=True)
class Verification:
    """Verification flags reported by the rug analysis service"""
    verified: bool = False
    source: str = ""


@dataclass(frozen=True)
class RiskReport:
    """Per-token risk report from the rug analysis service"""
    score: float = NEUTRAL_RUG_SCORE
    liquidity_usd: float = 0.0
    verification: Optional[Verification] = None
    top_holders: Tuple[TopHolder, ...] = ()
    risks: Tuple[str, ...] = ()
    is_rugged: bool = False

    @classmethod
    def neutral(cls) -> "RiskReport":
        """Report substituted when a lookup fails"""
        return cls()


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of classifying one token against its risk report"""
    liquidity_locked: bool
    is_verified: bool
    top_holder_concentration: float
    is_high_risk: bool
    social_media_count: int
    rug_score: float
    market_cap_usd: float
    is_rugged: bool = False


@dataclass(frozen=True)
class TokenScanResult:
    """Discovered token together with its classification"""
    mint: str
    name: str
    symbol: str
    price_usd: float
    market_cap_usd: float
    liquidity_usd: float
    liquidity_locked: bool
    rug_score: float
    top_holder_concentration: float
    is_verified: bool
    is_rugged: bool
    social_media_count: int
    is_high_risk: bool
    price_change_24h: float = 0.0
    has_website: bool = False
    has_twitter: bool = False
    has_telegram: bool = False
    rug_risks: Tuple[str, ...] = ()
    scan_time: float = 0.0


@dataclass
class Position:
    """Open, partially liquidatable holding acquired via a buy"""
    mint: str
    symbol: str
    amount: float
    buy_time: float
    cost_basis_sol: float
    current_value_sol: float = 0.0

    @property
    def average_price_sol(self) -> float:
        """Weighted average entry price per token"""
        return self.cost_basis_sol / self.amount if self.amount > 0 else 0.0

    @property
    def pnl_sol(self) -> float:
        return self.current_value_sol - self.cost_basis_sol

    def copy(self) -> "Position":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "mint": self.mint,
            "symbol": self.symbol,
            "amount": self.amount,
            "buy_time": self.buy_time,
            "cost_basis_sol": self.cost_basis_sol,
            "current_value_sol": self.current_value_sol,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(
            mint=data["mint"],
            symbol=data.get("symbol", "N/A"),
            amount=data["amount"],
            buy_time=data["buy_time"],
            cost_basis_sol=data.get("cost_basis_sol", 0.0),
            current_value_sol=data.get("current_value_sol", 0.0),
        )


@dataclass(frozen=True)
class Transaction:
    """Append-only transaction log entry"""
    mint: str
    status: TransactionStatus
    details: str
    timestamp: float
    attempt_id: str = ""
    signature: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, float]:
        """Composite deduplication key"""
        return (self.mint, self.status.value, self.timestamp)

    def to_dict(self) -> dict:
        return {
            "mint": self.mint,
            "status": self.status.value,
            "details": self.details,
            "timestamp": self.timestamp,
            "attempt_id": self.attempt_id,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            mint=data["mint"],
            status=TransactionStatus(data["status"]),
            details=data.get("details", ""),
            timestamp=data["timestamp"],
            attempt_id=data.get("attempt_id", ""),
            signature=data.get("signature"),
        )


@dataclass(frozen=True)
class TradeReceipt:
    """Result of a trade submitted to the execution service"""
    signature: str
    mint: str
    side: TradeSide
    token_amount: float
    sol_amount: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class BotStats:
    """Derived session statistics"""
    scans_completed: int = 0
    rules_active: int = 0
    success_rate: float = 0.0
    triggered_buys: int = 0
    trade_attempts: int = 0
    successful_trades: int = 0

    def to_dict(self) -> dict:
        return {
            "scans_completed": self.scans_completed,
            "rules_active": self.rules_active,
            "success_rate": self.success_rate,
            "triggered_buys": self.triggered_buys,
            "trade_attempts": self.trade_attempts,
            "successful_trades": self.successful_trades,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BotStats":
        return cls(
            scans_completed=int(data.get("scans_completed", 0)),
            rules_active=int(data.get("rules_active", 0)),
            success_rate=float(data.get("success_rate", 0.0)),
            triggered_buys=int(data.get("triggered_buys", 0)),
            trade_attempts=int(data.get("trade_attempts", 0)),
            successful_trades=int(data.get("successful_trades", 0)),
        )


@dataclass(frozen=True)
class TradeOutcome:
    """Payload of the trade-complete event"""
    mint: str
    side: TradeSide
    success: bool
    attempt_id: str
    signature: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ScanOutcome:
    """Result of one scan cycle as seen by the caller"""
    generation: int
    results: Tuple[TokenScanResult, ...]
    new_mints: Tuple[str, ...] = ()
    applied: bool = True
    started_at: float = 0.0
    completed_at: float = 0.0

    @property
    def tokens(self) -> List[TokenScanResult]:
        return list(self.results)
