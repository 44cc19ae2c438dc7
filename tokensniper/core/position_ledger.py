"""
Position Ledger
Current open positions, updated by trades and refreshed from external sources
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional

from tokensniper.core.errors import ValidationError
from tokensniper.core.interfaces import PositionSource, PriceSource
from tokensniper.core.logger import get_logger
from tokensniper.core.metrics import MetricsCollector
from tokensniper.core.models import Position


logger = get_logger(__name__)


class PositionLedger:
    """
    Sole writer of the open position set

    Features:
    - Buys upsert a position with a weighted average cost basis
    - Sells decrement a position and remove it at zero
    - refresh() is single-flight: overlapping calls share one pass
    - Refresh results are applied by mint, so repeated refreshes converge

    Readers always get copies, never the ledger's own objects.

    Usage:
        ledger = PositionLedger(metrics, price_source=prices)
        ledger.upsert_buy("MINT", "SYM", amount=1_000, cost_sol=0.5)
        ledger.apply_sell("MINT", 400)
        await ledger.refresh()
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        price_source: Optional[PriceSource] = None,
        position_source: Optional[PositionSource] = None,
        clock: Callable[[], float] = time.time
    ):
        self.metrics = metrics
        self.price_source = price_source
        self.position_source = position_source
        self._clock = clock

        self._positions: Dict[str, Position] = {}
        # Bumped by every local mutation; a refresh snapshot taken under an
        # older version must not overwrite newer trades
        self._version = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self.last_refreshed: float = 0.0

    @property
    def positions(self) -> List[Position]:
        """Open positions, most recent buy first"""
        ordered = sorted(self._positions.values(), key=lambda p: (-p.buy_time, p.mint))
        return [p.copy() for p in ordered]

    @property
    def total_cost_sol(self) -> float:
        return sum(p.cost_basis_sol for p in self._positions.values())

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, mint: str) -> bool:
        return mint in self._positions

    def get(self, mint: str) -> Optional[Position]:
        position = self._positions.get(mint)
        return position.copy() if position else None

    def upsert_buy(
        self,
        mint: str,
        symbol: str,
        amount: float,
        cost_sol: float,
        timestamp: Optional[float] = None
    ) -> Position:
        """
        Record a filled buy

        Args:
            mint: Token mint
            symbol: Token symbol
            amount: Tokens received
            cost_sol: SOL spent
            timestamp: Fill time (defaults to now)

        Returns:
            Copy of the updated position

        Raises:
            ValidationError: Non-positive amount or negative cost
        """
        if amount <= 0:
            raise ValidationError(f"Buy amount must be positive, got {amount}")
        if cost_sol < 0:
            raise ValidationError(f"Buy cost must be non-negative, got {cost_sol}")

        timestamp = timestamp if timestamp is not None else self._clock()
        existing = self._positions.get(mint)

        if existing is None:
            position = Position(
                mint=mint,
                symbol=symbol,
                amount=amount,
                buy_time=timestamp,
                cost_basis_sol=cost_sol,
                current_value_sol=cost_sol
            )
        else:
            # Total cost over total amount is the amount-weighted mean entry price
            position = Position(
                mint=mint,
                symbol=existing.symbol or symbol,
                amount=existing.amount + amount,
                buy_time=max(existing.buy_time, timestamp),
                cost_basis_sol=existing.cost_basis_sol + cost_sol,
                current_value_sol=existing.current_value_sol + cost_sol
            )

        self._positions[mint] = position
        self._version += 1

        logger.info(
            "position_upserted",
            mint=mint,
            amount=position.amount,
            cost_basis_sol=position.cost_basis_sol,
            average_price_sol=position.average_price_sol,
            added=existing is not None
        )
        self.metrics.set_gauge("open_positions", len(self._positions))

        return position.copy()

    def apply_sell(self, mint: str, amount: float) -> Optional[Position]:
        """
        Record a filled sell

        Returns:
            Copy of the remaining position, or None if it was closed

        Raises:
            ValidationError: Unknown mint or amount outside (0, held]
        """
        existing = self._positions.get(mint)
        if existing is None:
            raise ValidationError(f"No open position for {mint}")
        if not 0 < amount <= existing.amount:
            raise ValidationError(
                f"Sell amount must be within (0, {existing.amount}], got {amount}"
            )

        remaining = existing.amount - amount
        self._version += 1

        if remaining <= 0:
            del self._positions[mint]
            logger.info("position_closed", mint=mint, sold=amount)
            self.metrics.set_gauge("open_positions", len(self._positions))
            return None

        fraction_left = remaining / existing.amount
        position = Position(
            mint=mint,
            symbol=existing.symbol,
            amount=remaining,
            buy_time=existing.buy_time,
            cost_basis_sol=existing.cost_basis_sol * fraction_left,
            current_value_sol=existing.current_value_sol * fraction_left
        )
        self._positions[mint] = position

        logger.info("position_reduced", mint=mint, sold=amount, remaining=remaining)
        return position.copy()

    def load(self, positions: List[Position]) -> None:
        """Replace the whole set (used for session restore)"""
        self._positions = {p.mint: p.copy() for p in positions if p.amount > 0}
        self._version += 1

    async def refresh(self) -> List[Position]:
        """
        Refresh positions from the external sources

        Overlapping calls join the refresh already in flight.

        Returns:
            Positions after the refresh
        """
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self._do_refresh())
            self._refresh_task = task
        await asyncio.shield(task)
        return self.positions

    async def _do_refresh(self) -> None:
        if self.position_source is not None:
            version = self._version
            snapshot = await self.position_source.fetch_positions()
            if version == self._version:
                self._positions = {p.mint: p.copy() for p in snapshot if p.amount > 0}
            else:
                logger.info("position_snapshot_skipped", reason="local_trade_during_fetch")

        if self.price_source is not None and self._positions:
            mints = list(self._positions.keys())
            prices = await asyncio.gather(
                *(self.price_source.get_token_price_sol(mint) for mint in mints),
                return_exceptions=True
            )
            self._apply_prices(zip(mints, prices))

        self.last_refreshed = self._clock()
        self.metrics.set_gauge("open_positions", len(self._positions))
        logger.debug("positions_refreshed", count=len(self._positions))

    def _apply_prices(self, prices) -> None:
        """Revalue positions still open, by mint"""
        for mint, price in prices:
            if isinstance(price, BaseException):
                logger.warning("position_price_lookup_failed", mint=mint, error=str(price))
                continue
            position = self._positions.get(mint)
            if position is None or price is None:
                continue
            revalued = position.copy()
            revalued.current_value_sol = position.amount * price
            self._positions[mint] = revalued
