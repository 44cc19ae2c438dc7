"""
Unit tests for trade execution
Tests locking, the transaction log lifecycle and position updates
"""

import asyncio

import pytest

from tokensniper.core.errors import (
    ConcurrencyError,
    PreconditionError,
    TransactionError,
    ValidationError,
)
from tokensniper.core.models import Position, TradeSide, TransactionStatus
from tokensniper.core.scan_events import EventTopic

from tests.fakes import wait_until


# =============================================================================
# BUY
# =============================================================================

@pytest.mark.asyncio
async def test_buy_opens_position_and_logs_attempt(coordinator, ledger, history, trading):
    coordinator.remember_symbol("MINT1", "MEME")

    signature = await coordinator.execute_buy("MINT1", 0.1)

    assert signature == "sig-buy-1"
    assert trading.buys == [("MINT1", 0.1)]

    position = ledger.get("MINT1")
    assert position.amount == pytest.approx(100)
    assert position.cost_basis_sol == pytest.approx(0.1)
    assert position.symbol == "MEME"

    statuses = [tx.status for tx in history.for_mint("MINT1")]
    assert set(statuses) == {TransactionStatus.BUYING, TransactionStatus.BOUGHT}
    bought = next(tx for tx in history.transactions if tx.status == TransactionStatus.BOUGHT)
    assert bought.signature == "sig-buy-1"
    assert history.attempt_status(bought.attempt_id) == TransactionStatus.BOUGHT


@pytest.mark.asyncio
async def test_second_buy_averages_position(coordinator, ledger):
    await coordinator.execute_buy("MINT1", 0.1)
    await coordinator.execute_buy("MINT1", 0.3)

    position = ledger.get("MINT1")
    assert position.amount == pytest.approx(400)
    assert position.cost_basis_sol == pytest.approx(0.4)
    assert position.average_price_sol == pytest.approx(0.001)
    assert position.symbol == "N/A"


@pytest.mark.asyncio
async def test_buy_publishes_trade_outcome(coordinator, bus, ready_controller, metrics_collector):
    outcomes = []
    bus.subscribe(EventTopic.TRADE_COMPLETE, outcomes.append)

    await coordinator.execute_buy("MINT1", 0.1)

    assert len(outcomes) == 1
    assert outcomes[0].side == TradeSide.BUY
    assert outcomes[0].success is True
    assert ready_controller.stats.triggered_buys == 1
    assert ready_controller.stats.success_rate == 100.0
    assert metrics_collector.get_counter("trades", labels={"side": "buy", "outcome": "success"}) == 1


@pytest.mark.asyncio
async def test_buy_requires_connected_wallet(coordinator, wallet, trading):
    wallet.connected = False

    with pytest.raises(PreconditionError, match="Wallet not connected"):
        await coordinator.execute_buy("MINT1", 0.1)
    assert trading.buys == []


@pytest.mark.asyncio
async def test_buy_requires_initialized_bot(coordinator, ready_controller, history):
    await ready_controller.stop()

    with pytest.raises(PreconditionError, match="Bot not initialized"):
        await coordinator.execute_buy("MINT1", 0.1)
    assert len(history) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("mint,amount", [("MINT1", 0), ("MINT1", -1), ("", 0.1)])
async def test_buy_rejects_bad_parameters(coordinator, history, mint, amount):
    with pytest.raises(ValidationError):
        await coordinator.execute_buy(mint, amount)
    assert len(history) == 0


@pytest.mark.asyncio
async def test_buy_failure_logs_error_and_keeps_position(coordinator, ledger, history, trading, ready_controller):
    trading.fail_next = RuntimeError("slippage exceeded")

    with pytest.raises(TransactionError) as exc_info:
        await coordinator.execute_buy("MINT1", 0.1)

    assert exc_info.value.mint == "MINT1"
    assert "MINT1" not in ledger
    assert history.transactions[0].status == TransactionStatus.ERROR
    assert history.attempt_status(exc_info.value.attempt_id) == TransactionStatus.ERROR
    assert ready_controller.stats.trade_attempts == 1
    assert ready_controller.stats.success_rate == 0.0
    assert not coordinator.is_trading("MINT1")


@pytest.mark.asyncio
async def test_buy_without_signature_is_a_failure(coordinator, trading, ledger):
    async def no_receipt(mint, amount_sol):
        return None

    trading.execute_buy = no_receipt

    with pytest.raises(TransactionError, match="no signature"):
        await coordinator.execute_buy("MINT1", 0.1)
    assert len(ledger) == 0


@pytest.mark.asyncio
async def test_concurrent_buys_for_same_mint(coordinator, trading, ledger):
    trading.gate = asyncio.Event()

    first = asyncio.create_task(coordinator.execute_buy("MINT1", 0.1))
    await wait_until(lambda: coordinator.is_trading("MINT1"))

    with pytest.raises(ConcurrencyError):
        await coordinator.execute_buy("MINT1", 0.1)

    trading.gate.set()
    await first

    assert len(trading.buys) == 1
    assert ledger.get("MINT1").amount == pytest.approx(100)


@pytest.mark.asyncio
async def test_concurrent_buys_for_different_mints(coordinator, trading, ledger):
    trading.gate = asyncio.Event()

    tasks = [
        asyncio.create_task(coordinator.execute_buy("MINT1", 0.1)),
        asyncio.create_task(coordinator.execute_buy("MINT2", 0.2)),
    ]
    await wait_until(lambda: coordinator.is_trading("MINT1") and coordinator.is_trading("MINT2"))
    trading.gate.set()
    await asyncio.gather(*tasks)

    assert len(ledger) == 2


@pytest.mark.asyncio
async def test_cancelled_buy_counts_as_failed_attempt(coordinator, trading, ledger, history, bus, ready_controller):
    outcomes = []
    bus.subscribe(EventTopic.TRADE_COMPLETE, outcomes.append)
    trading.gate = asyncio.Event()

    buy = asyncio.create_task(coordinator.execute_buy("MINT1", 0.1))
    await wait_until(lambda: coordinator.is_trading("MINT1"))
    buy.cancel()
    with pytest.raises(asyncio.CancelledError):
        await buy

    assert [(o.side, o.success, o.error) for o in outcomes] == [(TradeSide.BUY, False, "cancelled")]
    assert ready_controller.stats.trade_attempts == 1
    assert ready_controller.stats.triggered_buys == 0
    assert history.transactions[0].status == TransactionStatus.ERROR
    assert "MINT1" not in ledger
    assert not coordinator.is_trading("MINT1")


# =============================================================================
# SELL
# =============================================================================

@pytest.fixture
def abc_position(ledger) -> Position:
    return ledger.upsert_buy("ABC", "ABC", amount=100, cost_sol=0.1, timestamp=1_000.0)


@pytest.mark.asyncio
async def test_partial_sell(coordinator, ledger, history, abc_position, trading):
    result = await coordinator.sell_position(abc_position, amount=40, percentage=40)

    assert result is True
    assert trading.sells == [("ABC", 40)]
    remaining = ledger.get("ABC")
    assert remaining.amount == pytest.approx(60)
    assert remaining.cost_basis_sol == pytest.approx(0.06)

    success = [tx for tx in history.for_mint("ABC") if tx.status == TransactionStatus.SUCCESS]
    assert len(success) == 1
    assert success[0].signature == "sig-sell-1"


@pytest.mark.asyncio
async def test_full_sell_closes_position(coordinator, ledger, abc_position):
    await coordinator.sell_position(abc_position, percentage=100)

    assert "ABC" not in ledger
    assert ledger.positions == []


@pytest.mark.asyncio
async def test_percentage_sell(coordinator, ledger, abc_position, trading):
    await coordinator.sell_position(abc_position, percentage=25)

    assert trading.sells == [("ABC", 25)]
    assert ledger.get("ABC").amount == pytest.approx(75)


@pytest.mark.asyncio
async def test_sell_uses_ledger_amount_not_callers_copy(coordinator, ledger, abc_position, trading):
    ledger.apply_sell("ABC", 50)

    await coordinator.sell_position(abc_position, percentage=100)

    assert trading.sells == [("ABC", 50)]
    assert "ABC" not in ledger


@pytest.mark.asyncio
@pytest.mark.parametrize("amount,percentage", [
    (0, None),
    (101, None),
    (None, 0),
    (None, 150),
    (None, None),
    (-5, 50),
])
async def test_sell_rejects_out_of_range(coordinator, ledger, history, abc_position, trading, amount, percentage):
    with pytest.raises(ValidationError):
        await coordinator.sell_position(abc_position, amount=amount, percentage=percentage)

    assert trading.sells == []
    assert ledger.get("ABC").amount == 100
    assert len(history) == 0


@pytest.mark.asyncio
async def test_sell_unknown_position(coordinator):
    ghost = Position(mint="GHOST", symbol="G", amount=10, buy_time=0, cost_basis_sol=0.01)

    with pytest.raises(ValidationError, match="No open position"):
        await coordinator.sell_position(ghost, percentage=100)


@pytest.mark.asyncio
async def test_sell_failure_keeps_position(coordinator, ledger, history, abc_position, trading):
    trading.fail_next = RuntimeError("rpc timeout")

    with pytest.raises(TransactionError):
        await coordinator.sell_position(abc_position, percentage=50)

    assert ledger.get("ABC").amount == 100
    statuses = [tx.status for tx in history.for_mint("ABC")]
    assert set(statuses) == {TransactionStatus.SELLING, TransactionStatus.ERROR}


@pytest.mark.asyncio
async def test_cancelled_sell_publishes_failure(coordinator, ledger, history, abc_position, trading, bus, metrics_collector):
    outcomes = []
    bus.subscribe(EventTopic.TRADE_COMPLETE, outcomes.append)
    trading.gate = asyncio.Event()

    sell = asyncio.create_task(coordinator.sell_position(abc_position, percentage=50))
    await wait_until(lambda: coordinator.is_trading("ABC"))
    sell.cancel()
    with pytest.raises(asyncio.CancelledError):
        await sell

    assert [(o.side, o.success) for o in outcomes] == [(TradeSide.SELL, False)]
    assert metrics_collector.get_counter("trades", labels={"side": "sell", "outcome": "error"}) == 1
    assert ledger.get("ABC").amount == 100
    assert TransactionStatus.ERROR in {tx.status for tx in history.for_mint("ABC")}


@pytest.mark.asyncio
async def test_sell_blocked_while_buy_in_flight(coordinator, trading, abc_position):
    trading.gate = asyncio.Event()
    buy = asyncio.create_task(coordinator.execute_buy("ABC", 0.1))
    await wait_until(lambda: coordinator.is_trading("ABC"))

    with pytest.raises(ConcurrencyError):
        await coordinator.sell_position(abc_position, percentage=50)

    trading.gate.set()
    await buy


@pytest.mark.asyncio
async def test_refresh_failure_does_not_fail_trade(coordinator, history):
    class BrokenSource:
        async def fetch_transactions(self, limit):
            raise ConnectionError("history api down")

    history.source = BrokenSource()

    signature = await coordinator.execute_buy("MINT1", 0.1)

    assert signature == "sig-buy-1"
    assert isinstance(history.last_error, ConnectionError)
