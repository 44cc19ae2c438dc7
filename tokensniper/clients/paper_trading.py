"""
Paper trading: simulated wallet and fills
"""

import time
import uuid
from typing import Dict, Optional

from tokensniper.core.errors import TransactionError
from tokensniper.core.interfaces import PriceSource
from tokensniper.core.logger import get_logger
from tokensniper.core.models import TradeReceipt, TradeSide
from tokensniper.core.scan_events import ScanCompleteEvent


logger = get_logger(__name__)


class PaperWallet:
    """Simulated wallet with a SOL balance and a fixed SOL/USD price"""

    def __init__(self, address: str = "paper-wallet", balance_sol: float = 10.0, sol_price_usd: float = 150.0):
        self._address = address or "paper-wallet"
        self.balance_sol = balance_sol
        self.sol_price_usd = sol_price_usd
        self.connected = True

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


class ScanPriceBook:
    """
    Last known SOL price per mint, fed from scan-complete events

    Falls back to an upstream price source for mints it has not seen.
    """

    def __init__(self, wallet: PaperWallet, upstream: Optional[PriceSource] = None):
        self.wallet = wallet
        self.upstream = upstream
        self._prices: Dict[str, float] = {}

    def on_scan_complete(self, event: ScanCompleteEvent) -> None:
        sol_price = self.wallet.sol_price_usd
        if sol_price <= 0:
            return
        for result in event.results:
            if result.price_usd > 0:
                self._prices[result.mint] = result.price_usd / sol_price

    def set_price(self, mint: str, price_sol: float) -> None:
        self._prices[mint] = price_sol

    async def get_token_price_sol(self, mint: str) -> Optional[float]:
        if mint in self._prices:
            return self._prices[mint]
        if self.upstream is not None:
            return await self.upstream.get_token_price_sol(mint)
        return None


class PaperTradingService:
    """
    Fills buys and sells against the last known price with slippage and fees

    Fee model: DEX fee in bps on the SOL notional plus a flat network fee
    per transaction.
    """

    def __init__(
        self,
        wallet: PaperWallet,
        prices: PriceSource,
        slippage_bps: int = 500,
        dex_fee_bps: int = 30,
        network_fee_sol: float = 0.002005
    ):
        self.wallet = wallet
        self.prices = prices
        self.slippage_bps = slippage_bps
        self.dex_fee_bps = dex_fee_bps
        self.network_fee_sol = network_fee_sol

        self.holdings: Dict[str, float] = {}
        self.initialized = False

    async def initialize(self) -> None:
        if not self.wallet.is_connected:
            raise TransactionError("Paper wallet not connected")
        self.initialized = True
        logger.info(
            "paper_trading_initialized",
            wallet=self.wallet.address,
            balance_sol=self.wallet.balance_sol,
            slippage_bps=self.slippage_bps
        )

    async def execute_buy(self, mint: str, amount_sol: float) -> TradeReceipt:
        price = await self._price(mint)

        total_cost = amount_sol + self.network_fee_sol
        if total_cost > self.wallet.balance_sol:
            raise TransactionError(
                f"Insufficient paper balance: {self.wallet.balance_sol:.4f} SOL < {total_cost:.4f} SOL",
                mint=mint
            )

        fill_price = price * (1 + self.slippage_bps / 10_000)
        net_sol = amount_sol * (1 - self.dex_fee_bps / 10_000)
        tokens = net_sol / fill_price

        self.wallet.balance_sol -= total_cost
        self.holdings[mint] = self.holdings.get(mint, 0.0) + tokens

        logger.info("paper_buy_filled", mint=mint, tokens=tokens, fill_price_sol=fill_price, spent_sol=amount_sol)
        return TradeReceipt(
            signature=f"paper-{uuid.uuid4().hex}",
            mint=mint,
            side=TradeSide.BUY,
            token_amount=tokens,
            sol_amount=amount_sol,
            timestamp=time.time()
        )

    async def execute_sell(self, mint: str, amount: float) -> TradeReceipt:
        held = self.holdings.get(mint, 0.0)
        if amount > held:
            raise TransactionError(f"Insufficient paper holdings: {held} < {amount}", mint=mint)

        price = await self._price(mint)
        fill_price = price * (1 - self.slippage_bps / 10_000)
        gross_sol = amount * fill_price
        received = max(0.0, gross_sol * (1 - self.dex_fee_bps / 10_000) - self.network_fee_sol)

        remaining = held - amount
        if remaining > 0:
            self.holdings[mint] = remaining
        else:
            self.holdings.pop(mint, None)
        self.wallet.balance_sol += received

        logger.info("paper_sell_filled", mint=mint, tokens=amount, fill_price_sol=fill_price, received_sol=received)
        return TradeReceipt(
            signature=f"paper-{uuid.uuid4().hex}",
            mint=mint,
            side=TradeSide.SELL,
            token_amount=amount,
            sol_amount=received,
            timestamp=time.time()
        )

    async def _price(self, mint: str) -> float:
        price = await self.prices.get_token_price_sol(mint)
        if not price or price <= 0:
            raise TransactionError("Could not get price", mint=mint)
        return price
