"""
Sniper Session
Wires the sniper components together and owns their lifecycle
"""

from typing import List, Optional

from tokensniper.clients.moralis_client import MoralisClient
from tokensniper.clients.paper_trading import PaperTradingService, PaperWallet, ScanPriceBook
from tokensniper.clients.rugcheck_client import RugCheckClient
from tokensniper.clients.token_source import MoralisTokenSource
from tokensniper.core.bot_controller import BotController
from tokensniper.core.config import BotConfig, ScannerConfig
from tokensniper.core.errors import PreconditionError
from tokensniper.core.interfaces import (
    PositionSource,
    PriceSource,
    TokenMetadataSource,
    TradingExecutionService,
    TransactionSource,
    WalletSource,
)
from tokensniper.core.logger import get_logger
from tokensniper.core.metrics import MetricsCollector
from tokensniper.core.periodic import PeriodicTask
from tokensniper.core.position_ledger import PositionLedger
from tokensniper.core.scan_events import EventTopic, ScanEventBus, Subscription
from tokensniper.core.session_store import SessionStore
from tokensniper.core.token_scanner import TokenScanner
from tokensniper.core.trade_coordinator import TradeCoordinator
from tokensniper.core.transaction_history import TransactionAggregator


logger = get_logger(__name__)


class SniperSession:
    """
    Explicit container for one bot session

    Every collaborator is passed in; nothing is looked up globally. The
    caller owns init() and teardown().

    Usage:
        session = SniperSession(config, metadata_source, trading, wallet)
        await session.init()
        await session.controller.start()
        ...
        await session.teardown()
    """

    def __init__(
        self,
        config: BotConfig,
        metadata_source: TokenMetadataSource,
        trading: TradingExecutionService,
        wallet: WalletSource,
        price_source: Optional[PriceSource] = None,
        position_source: Optional[PositionSource] = None,
        transaction_source: Optional[TransactionSource] = None,
        store: Optional[SessionStore] = None
    ):
        self.config = config
        self.metadata_source = metadata_source
        self.trading = trading
        self.wallet = wallet
        self.store = store

        self.metrics = MetricsCollector(
            enable_histogram=config.metrics_config.enable_histogram,
            max_samples=config.metrics_config.max_samples
        )
        self.bus = ScanEventBus()

        self.scanner = TokenScanner(metadata_source, wallet, self.metrics)
        self.controller = BotController(
            scanner=self.scanner,
            bus=self.bus,
            wallet=wallet,
            trading=trading,
            metrics=self.metrics,
            config=config.scanner_config
        )

        self.ledger = PositionLedger(self.metrics, price_source=price_source, position_source=position_source)
        self.history = TransactionAggregator(
            self.metrics,
            limit=config.history_config.transaction_limit,
            source=transaction_source
        )
        self.coordinator = TradeCoordinator(
            trading=trading,
            wallet=wallet,
            bot_ready=lambda: self.controller.is_initialized,
            ledger=self.ledger,
            history=self.history,
            bus=self.bus,
            metrics=self.metrics
        )

        self._refresh_tasks: List[PeriodicTask] = []
        self._subscriptions: List[Subscription] = []
        self._closeables: list = []
        self._torn_down = False
        self.initialized = False

    @classmethod
    def from_config(cls, config: BotConfig) -> "SniperSession":
        """
        Build a paper-trading session backed by Moralis discovery and RugCheck

        Raises:
            ValueError: Live trading requested (no live execution service is configured)
        """
        if not config.trading_config.paper_mode:
            raise ValueError("Only paper_mode trading is supported by this build")

        api = config.api_config
        moralis = MoralisClient(
            api.moralis_api_key,
            base_url=api.moralis_base_url,
            timeout_s=api.request_timeout_s,
            max_concurrent_requests=api.max_concurrent_requests
        )
        rugcheck = RugCheckClient(base_url=api.rugcheck_base_url, timeout_s=api.request_timeout_s)
        token_source = MoralisTokenSource(moralis, rugcheck, discovery_limit=api.discovery_limit)

        trading_config = config.trading_config
        wallet = PaperWallet(
            address=trading_config.wallet_address,
            balance_sol=trading_config.paper_starting_balance_sol,
            sol_price_usd=trading_config.paper_sol_price_usd
        )
        prices = ScanPriceBook(wallet, upstream=token_source)
        trading = PaperTradingService(wallet, prices, slippage_bps=trading_config.slippage_bps)

        store = SessionStore(config.storage_config.session_cache_path) \
            if config.storage_config.session_cache_path else None

        session = cls(
            config=config,
            metadata_source=token_source,
            trading=trading,
            wallet=wallet,
            price_source=prices,
            store=store
        )
        session._subscriptions.append(session.bus.subscribe(EventTopic.SCAN_COMPLETE, prices.on_scan_complete))
        session._closeables.append(token_source)
        return session

    async def init(self) -> None:
        """
        Restore the cached session, initialize the bot and start auto-refresh

        Raises:
            InitializationError: Wallet or trading service unavailable
            PreconditionError: Session already torn down
        """
        if self._torn_down:
            raise PreconditionError("Session was torn down; build a new one")
        if self.initialized:
            logger.debug("session_already_initialized")
            return

        if self.store is not None:
            snapshot = self.store.load()
            self.controller.restore(config=snapshot.scanner_config, stats=snapshot.stats)
            if snapshot.positions:
                self.ledger.load(snapshot.positions)

        await self.controller.initialize()

        history_config = self.config.history_config
        if history_config.auto_refresh:
            self._refresh_tasks = [
                PeriodicTask("positions_refresh", self.ledger.refresh, history_config.position_refresh_interval_s),
                PeriodicTask(
                    "transactions_refresh",
                    self.history.refresh,
                    history_config.transaction_refresh_interval_s
                ),
            ]
            for task in self._refresh_tasks:
                task.start()

        if self.config.metrics_config.export_interval_s > 0:
            exporter = PeriodicTask("metrics_export", self._export_metrics, self.config.metrics_config.export_interval_s)
            exporter.start()
            self._refresh_tasks.append(exporter)

        self.initialized = True
        logger.info(
            "session_initialized",
            wallet=self.wallet.address,
            positions=len(self.ledger),
            auto_refresh=history_config.auto_refresh
        )

    async def update_scanner_config(self, config: ScannerConfig) -> ScannerConfig:
        """Apply a new scanner config and persist it"""
        applied = await self.controller.update_scanner_config(config)
        self.save()
        return applied

    async def buy(self, mint: str, amount_sol: Optional[float] = None) -> str:
        """Buy with the configured default amount unless one is given"""
        if amount_sol is None:
            amount_sol = self.config.trading_config.default_buy_amount_sol
        scanned = next((r for r in self.controller.scan_results if r.mint == mint), None)
        if scanned is not None:
            self.coordinator.remember_symbol(mint, scanned.symbol)
        return await self.coordinator.execute_buy(mint, amount_sol)

    async def _export_metrics(self) -> None:
        logger.info("metrics_snapshot", **self.metrics.export_metrics())

    def save(self) -> bool:
        if self.store is None:
            return False
        return self.store.save(self.controller.scanner_config, self.controller.stats, self.ledger.positions)

    async def teardown(self) -> None:
        """Stop everything, persist the cache and close clients. Safe to call more than once."""
        await self.controller.stop()

        for task in self._refresh_tasks:
            await task.stop()
        self._refresh_tasks = []

        for subscription in self._subscriptions:
            subscription()
        self._subscriptions = []

        self.save()

        for closeable in self._closeables:
            try:
                await closeable.close()
            except Exception as e:
                logger.warning("session_close_error", error=str(e))
        self._closeables = []

        self._torn_down = True
        self.initialized = False
        logger.info("session_torn_down", metrics=self.metrics.export_metrics())
