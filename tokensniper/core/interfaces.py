"""Collaborator interfaces consumed by the sniper core."""

from typing import List, Optional, Protocol

from tokensniper.core.models import Position, RiskReport, TokenRecord, TradeReceipt, Transaction


class TokenMetadataSource(Protocol):
    """Supplies discovered tokens and per-token rug reports."""

    async def get_discovered_tokens(self) -> List[TokenRecord]:
        ...

    async def check_rug_score(self, mint: str) -> RiskReport:
        ...


class TradingExecutionService(Protocol):
    """Submits buys and sells on behalf of the wallet."""

    async def initialize(self) -> None:
        ...

    async def execute_buy(self, mint: str, amount_sol: float) -> Optional[TradeReceipt]:
        ...

    async def execute_sell(self, mint: str, amount: float) -> Optional[TradeReceipt]:
        ...


class WalletSource(Protocol):
    """Read-only view of the connected wallet."""

    @property
    def is_connected(self) -> bool:
        ...

    @property
    def address(self) -> str:
        ...

    async def get_balance_sol(self) -> float:
        ...

    async def get_sol_price_usd(self) -> float:
        ...


class PriceSource(Protocol):
    """Current token price in SOL, used to revalue positions."""

    async def get_token_price_sol(self, mint: str) -> Optional[float]:
        ...


class PositionSource(Protocol):
    """Authoritative position snapshot (e.g. on-chain balances)."""

    async def fetch_positions(self) -> List[Position]:
        ...


class TransactionSource(Protocol):
    """External transaction history merged into the local log."""

    async def fetch_transactions(self, limit: int) -> List[Transaction]:
        ...
