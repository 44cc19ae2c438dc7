"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import pytest
import pytest_asyncio

from tokensniper.core.bot_controller import BotController
from tokensniper.core.config import ScannerConfig
from tokensniper.core.metrics import MetricsCollector
from tokensniper.core.position_ledger import PositionLedger
from tokensniper.core.scan_events import ScanEventBus
from tokensniper.core.token_scanner import TokenScanner
from tokensniper.core.trade_coordinator import TradeCoordinator
from tokensniper.core.transaction_history import TransactionAggregator

from tests.fakes import (
    FakeMetadataSource,
    FakeTradingService,
    FakeWallet,
    make_report,
    make_token,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """
    Create fresh metrics collector for each test

    Returns clean MetricsCollector instance
    """
    collector = MetricsCollector(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def metadata_source() -> FakeMetadataSource:
    return FakeMetadataSource(
        tokens=[make_token("SAFE1"), make_token("RISKY1")],
        reports={"SAFE1": make_report(score=20), "RISKY1": make_report(score=75)}
    )


@pytest.fixture
def trading() -> FakeTradingService:
    return FakeTradingService()


@pytest.fixture
def bus() -> ScanEventBus:
    return ScanEventBus()


@pytest.fixture
def scanner_config() -> ScannerConfig:
    return ScannerConfig(
        min_liquidity_sol=5,
        max_rug_score=70,
        max_top_holder_pct=80,
        scan_interval_ms=15_000,
        auto_scan=True
    )


@pytest.fixture
def scanner(metadata_source, wallet, metrics_collector) -> TokenScanner:
    return TokenScanner(metadata_source, wallet, metrics_collector)


@pytest.fixture
def controller(scanner, bus, wallet, trading, metrics_collector, scanner_config) -> BotController:
    return BotController(scanner, bus, wallet, trading, metrics_collector, config=scanner_config)


@pytest_asyncio.fixture
async def ready_controller(controller):
    """Initialized controller, stopped after the test"""
    await controller.initialize()
    yield controller
    await controller.stop()


@pytest.fixture
def ledger(metrics_collector) -> PositionLedger:
    return PositionLedger(metrics_collector)


@pytest.fixture
def history(metrics_collector) -> TransactionAggregator:
    return TransactionAggregator(metrics_collector, limit=100)


@pytest.fixture
def coordinator(ready_controller, wallet, trading, ledger, history, bus, metrics_collector) -> TradeCoordinator:
    return TradeCoordinator(
        trading=trading,
        wallet=wallet,
        bot_ready=lambda: ready_controller.is_initialized,
        ledger=ledger,
        history=history,
        bus=bus,
        metrics=metrics_collector
    )


def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>5 seconds)"
    )
