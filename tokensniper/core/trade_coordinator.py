"""
Trade Coordinator
Buy/sell execution with per-mint locking and downstream refresh
"""

import asyncio
import time
import uuid
from typing import Callable, Optional

from tokensniper.core.errors import (
    PreconditionError,
    TransactionError,
    ValidationError,
)
from tokensniper.core.interfaces import TradingExecutionService, WalletSource
from tokensniper.core.keyed_lock import KeyedLock
from tokensniper.core.logger import get_logger
from tokensniper.core.metrics import LatencyTimer, MetricsCollector
from tokensniper.core.models import (
    Position,
    TradeOutcome,
    TradeReceipt,
    TradeSide,
    Transaction,
    TransactionStatus,
)
from tokensniper.core.position_ledger import PositionLedger
from tokensniper.core.scan_events import EventTopic, ScanEventBus
from tokensniper.core.transaction_history import TransactionAggregator


logger = get_logger(__name__)


class TradeCoordinator:
    """
    Executes trades without ever running two for the same wallet and mint

    Features:
    - Fail-fast keyed lock per (wallet, mint): a duplicate raises ConcurrencyError
    - BUYING/SELLING entry before submission, BOUGHT/SUCCESS or ERROR after
    - Position changes only after a confirmed fill, never on failure
    - trade-complete published for every attempt that reached the service
    - Ledger and history refreshed after each trade

    Usage:
        coordinator = TradeCoordinator(
            trading, wallet, lambda: controller.is_initialized, ledger, history, bus, metrics
        )
        signature = await coordinator.execute_buy(mint, 0.1)
        await coordinator.sell_position(position, amount=400, percentage=40)
    """

    def __init__(
        self,
        trading: TradingExecutionService,
        wallet: WalletSource,
        bot_ready: Callable[[], bool],
        ledger: PositionLedger,
        history: TransactionAggregator,
        bus: ScanEventBus,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize trade coordinator

        Args:
            trading: Execution service
            wallet: Wallet connection status (read only)
            bot_ready: Returns True while the bot session is initialized
            ledger: Position ledger
            history: Transaction log
            bus: Event bus for trade-complete
            metrics: Metrics collector
            clock: Timestamp source for log entries
        """
        self.trading = trading
        self.wallet = wallet
        self.bot_ready = bot_ready
        self.ledger = ledger
        self.history = history
        self.bus = bus
        self.metrics = metrics
        self._clock = clock

        self.locks = KeyedLock("trade")
        self._symbols: dict = {}

    def remember_symbol(self, mint: str, symbol: str) -> None:
        """Symbol to use when a buy opens a new position"""
        self._symbols[mint] = symbol

    def is_trading(self, mint: str) -> bool:
        return self.locks.is_held((self.wallet.address, mint))

    async def execute_buy(self, mint: str, amount_sol: float) -> str:
        """
        Buy a token

        Args:
            mint: Token mint
            amount_sol: SOL to spend

        Returns:
            Transaction signature

        Raises:
            PreconditionError: Wallet disconnected or bot not initialized
            ValidationError: Non-positive amount
            ConcurrencyError: A trade for this mint is already in flight
            TransactionError: Execution failed (logged as an ERROR entry)
        """
        self._check_ready()
        if not mint:
            raise ValidationError("Mint is required")
        if amount_sol <= 0:
            raise ValidationError(f"Buy amount must be positive, got {amount_sol}")

        async with self.locks.hold((self.wallet.address, mint)):
            attempt_id = self._new_attempt(mint, TransactionStatus.BUYING, f"Buying {amount_sol} SOL")

            try:
                with LatencyTimer(self.metrics, "buy_execution"):
                    receipt = await self.trading.execute_buy(mint, amount_sol)
                self._check_receipt(receipt, mint, TradeSide.BUY)
            except asyncio.CancelledError:
                self._finish(mint, attempt_id, TransactionStatus.ERROR, "Buy cancelled")
                self._publish(mint, TradeSide.BUY, False, attempt_id, error="cancelled")
                raise
            except Exception as e:
                self._fail(mint, attempt_id, TradeSide.BUY, e)
                raise TransactionError(f"Buy failed for {mint}: {e}", mint=mint, attempt_id=attempt_id) from e

            position = self.ledger.upsert_buy(
                mint=mint,
                symbol=self._symbols.get(mint, "N/A"),
                amount=receipt.token_amount,
                cost_sol=receipt.sol_amount or amount_sol,
                timestamp=receipt.timestamp
            )
            self._finish(
                mint,
                attempt_id,
                TransactionStatus.BOUGHT,
                f"Bought {receipt.token_amount} tokens for {receipt.sol_amount or amount_sol} SOL",
                signature=receipt.signature
            )
            self._publish(mint, TradeSide.BUY, True, attempt_id, signature=receipt.signature)

            logger.info(
                "buy_executed",
                mint=mint,
                amount_sol=amount_sol,
                tokens=receipt.token_amount,
                position_amount=position.amount,
                signature=receipt.signature
            )

        await self._refresh_after_trade()
        return receipt.signature

    async def sell_position(
        self,
        position: Position,
        amount: Optional[float] = None,
        percentage: Optional[float] = None
    ) -> bool:
        """
        Sell part or all of a position

        Args:
            position: Position to sell (the ledger's current amount is authoritative)
            amount: Tokens to sell
            percentage: Share of the position to sell, used when amount is None

        Returns:
            True once the sell is filled and applied

        Raises:
            PreconditionError: Wallet disconnected or bot not initialized
            ValidationError: Amount/percentage out of range or no such position
            ConcurrencyError: A trade for this mint is already in flight
            TransactionError: Execution failed (logged as an ERROR entry)
        """
        self._check_ready()
        mint = position.mint

        async with self.locks.hold((self.wallet.address, mint)):
            current = self.ledger.get(mint)
            if current is None:
                raise ValidationError(f"No open position for {mint}")
            sell_amount = self._resolve_sell_amount(current, amount, percentage)

            attempt_id = self._new_attempt(mint, TransactionStatus.SELLING, f"Selling {sell_amount} tokens")

            try:
                with LatencyTimer(self.metrics, "sell_execution"):
                    receipt = await self.trading.execute_sell(mint, sell_amount)
                self._check_receipt(receipt, mint, TradeSide.SELL)
            except asyncio.CancelledError:
                self._finish(mint, attempt_id, TransactionStatus.ERROR, "Sell cancelled")
                self._publish(mint, TradeSide.SELL, False, attempt_id, error="cancelled")
                raise
            except Exception as e:
                self._fail(mint, attempt_id, TradeSide.SELL, e)
                raise TransactionError(f"Sell failed for {mint}: {e}", mint=mint, attempt_id=attempt_id) from e

            remaining = self.ledger.apply_sell(mint, sell_amount)
            self._finish(
                mint,
                attempt_id,
                TransactionStatus.SUCCESS,
                f"Sold {sell_amount} tokens for {receipt.sol_amount} SOL",
                signature=receipt.signature
            )
            self._publish(mint, TradeSide.SELL, True, attempt_id, signature=receipt.signature)

            logger.info(
                "sell_executed",
                mint=mint,
                sold=sell_amount,
                remaining=remaining.amount if remaining else 0,
                sol_received=receipt.sol_amount,
                signature=receipt.signature
            )

        await self._refresh_after_trade()
        return True

    def _check_ready(self) -> None:
        if not self.wallet.is_connected:
            raise PreconditionError("Wallet not connected")
        if not self.bot_ready():
            raise PreconditionError("Bot not initialized")

    @staticmethod
    def _resolve_sell_amount(
        position: Position,
        amount: Optional[float],
        percentage: Optional[float]
    ) -> float:
        if percentage is not None and not 0 < percentage <= 100:
            raise ValidationError(f"Sell percentage must be within (0, 100], got {percentage}")

        if amount is None:
            if percentage is None:
                raise ValidationError("Either amount or percentage is required")
            # Selling 100% must clear the position exactly
            amount = position.amount if percentage == 100 else position.amount * percentage / 100

        if not 0 < amount <= position.amount:
            raise ValidationError(
                f"Sell amount must be within (0, {position.amount}], got {amount}"
            )
        return amount

    @staticmethod
    def _check_receipt(receipt: Optional[TradeReceipt], mint: str, side: TradeSide) -> None:
        if receipt is None or not receipt.signature:
            raise RuntimeError("Transaction failed: no signature returned")
        if receipt.mint != mint or receipt.side != side:
            raise RuntimeError(f"Receipt mismatch: {receipt.side.value} {receipt.mint}")
        if side == TradeSide.BUY and receipt.token_amount <= 0:
            raise RuntimeError("Transaction failed: no tokens received")

    def _new_attempt(self, mint: str, status: TransactionStatus, details: str) -> str:
        attempt_id = uuid.uuid4().hex
        self.history.record(Transaction(
            mint=mint,
            status=status,
            details=details,
            timestamp=self._clock(),
            attempt_id=attempt_id
        ))
        return attempt_id

    def _finish(
        self,
        mint: str,
        attempt_id: str,
        status: TransactionStatus,
        details: str,
        signature: Optional[str] = None
    ) -> None:
        self.history.record(Transaction(
            mint=mint,
            status=status,
            details=details,
            timestamp=self._clock(),
            attempt_id=attempt_id,
            signature=signature
        ))

    def _fail(self, mint: str, attempt_id: str, side: TradeSide, error: Exception) -> None:
        self._finish(mint, attempt_id, TransactionStatus.ERROR, f"{side.value.capitalize()} failed: {error}")
        self._publish(mint, side, False, attempt_id, error=str(error))
        logger.error("trade_failed", mint=mint, side=side.value, attempt_id=attempt_id, error=str(error))

    def _publish(
        self,
        mint: str,
        side: TradeSide,
        success: bool,
        attempt_id: str,
        signature: Optional[str] = None,
        error: Optional[str] = None
    ) -> None:
        outcome = "success" if success else "error"
        self.metrics.increment_counter("trades", labels={"side": side.value, "outcome": outcome})
        self.bus.publish(
            EventTopic.TRADE_COMPLETE,
            TradeOutcome(
                mint=mint,
                side=side,
                success=success,
                attempt_id=attempt_id,
                signature=signature,
                error=error
            )
        )

    async def _refresh_after_trade(self) -> None:
        """Refresh ledger and history; failures here never fail the trade"""
        results = await asyncio.gather(
            self.ledger.refresh(),
            self.history.refresh(),
            return_exceptions=True
        )
        for name, result in zip(("positions", "transactions"), results):
            if isinstance(result, Exception):
                logger.warning("post_trade_refresh_failed", target=name, error=str(result))
