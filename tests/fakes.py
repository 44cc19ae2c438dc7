"""
Fake collaborators and builders shared by the unit tests
"""

import asyncio
from typing import Dict, List, Optional

from tokensniper.core.models import (
    RiskReport,
    TokenRecord,
    TopHolder,
    TradeReceipt,
    TradeSide,
    Verification,
)


SOL_PRICE_USD = 150.0


class FakeWallet:
    """Connected wallet with a fixed SOL price"""

    def __init__(self, address: str = "WALLET1", connected: bool = True, sol_price_usd: float = SOL_PRICE_USD):
        self._address = address
        self.connected = connected
        self.sol_price_usd = sol_price_usd
        self.balance_sol = 10.0

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def address(self) -> str:
        return self._address

    async def get_balance_sol(self) -> float:
        return self.balance_sol

    async def get_sol_price_usd(self) -> float:
        return self.sol_price_usd


class FakeMetadataSource:
    """
    Token source with scripted tokens and reports

    Set `gate` to an asyncio.Event to hold discovery until the test releases it.
    """

    def __init__(self, tokens: Optional[List[TokenRecord]] = None, reports: Optional[Dict[str, RiskReport]] = None):
        self.tokens = list(tokens or [])
        self.reports = dict(reports or {})
        self.failing_mints: set = set()
        self.fail_discovery: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.discovery_calls = 0
        self.lookups: List[str] = []

    async def get_discovered_tokens(self) -> List[TokenRecord]:
        self.discovery_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_discovery is not None:
            raise self.fail_discovery
        return list(self.tokens)

    async def check_rug_score(self, mint: str) -> RiskReport:
        self.lookups.append(mint)
        if mint in self.failing_mints:
            raise ConnectionError(f"rug service unavailable for {mint}")
        return self.reports.get(mint, RiskReport(score=20, liquidity_usd=50_000))


class FakeTradingService:
    """
    Execution service filling every order at a fixed token price

    `gate` holds orders and `init_gate` holds initialize() until released.
    """

    def __init__(self, tokens_per_sol: float = 1_000.0):
        self.tokens_per_sol = tokens_per_sol
        self.initialized = False
        self.fail_initialize: Optional[Exception] = None
        self.fail_next: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.init_gate: Optional[asyncio.Event] = None
        self.initialize_calls = 0
        self.buys: List[tuple] = []
        self.sells: List[tuple] = []

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.init_gate is not None:
            await self.init_gate.wait()
        if self.fail_initialize is not None:
            raise self.fail_initialize
        self.initialized = True

    async def execute_buy(self, mint: str, amount_sol: float) -> Optional[TradeReceipt]:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        self.buys.append((mint, amount_sol))
        return TradeReceipt(
            signature=f"sig-buy-{len(self.buys)}",
            mint=mint,
            side=TradeSide.BUY,
            token_amount=amount_sol * self.tokens_per_sol,
            sol_amount=amount_sol
        )

    async def execute_sell(self, mint: str, amount: float) -> Optional[TradeReceipt]:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        self.sells.append((mint, amount))
        return TradeReceipt(
            signature=f"sig-sell-{len(self.sells)}",
            mint=mint,
            side=TradeSide.SELL,
            token_amount=amount,
            sol_amount=amount / self.tokens_per_sol
        )


def make_token(mint: str, market_cap_sol: float = 2_000.0, **overrides) -> TokenRecord:
    """Token worth $300k at the default SOL price"""
    fields = dict(
        mint=mint,
        name=f"Token {mint}",
        symbol=mint[:4].upper(),
        price_usd=0.0003,
        price_sol=0.000002,
        market_cap_sol=market_cap_sol,
        liquidity_sol=40.0,
        twitter="https://x.com/" + mint,
    )
    fields.update(overrides)
    return TokenRecord(**fields)


def make_report(score: float = 20, top_pct: float = 10.0, liquidity_usd: float = 50_000, **overrides) -> RiskReport:
    fields = dict(
        score=score,
        liquidity_usd=liquidity_usd,
        verification=Verification(verified=True, source="jupiter"),
        top_holders=(TopHolder(address="HOLDER1", percentage=top_pct, amount=1_000),),
        risks=(),
        is_rugged=False,
    )
    fields.update(overrides)
    return RiskReport(**fields)


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    """Poll until predicate() is true, failing the test after timeout"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
