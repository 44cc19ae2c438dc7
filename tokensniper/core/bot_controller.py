"""
Bot Controller
Owns the bot session: operational mode, scanner config, scan scheduling and stats
"""

import asyncio
import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from tokensniper.core.config import ScannerConfig
from tokensniper.core.errors import InitializationError, PreconditionError, ValidationError
from tokensniper.core.interfaces import TradingExecutionService, WalletSource
from tokensniper.core.logger import get_logger
from tokensniper.core.metrics import MetricsCollector
from tokensniper.core.models import (
    BotMode,
    BotStats,
    ScanOutcome,
    TokenScanResult,
    TradeOutcome,
    TradeSide,
)
from tokensniper.core.risk_classifier import count_active_rules, high_risk, low_risk, passes_filters
from tokensniper.core.scan_events import (
    EventTopic,
    NewTokenEvent,
    ScanCompleteEvent,
    ScanEventBus,
    Subscription,
)
from tokensniper.core.token_scanner import ScanPass, TokenScanner


logger = get_logger(__name__)


@dataclass(frozen=True)
class BotSession:
    """Read-only snapshot of the bot session"""
    mode: BotMode
    config: ScannerConfig
    active_since: Optional[float]
    stats: BotStats
    initialized: bool
    generation: int


class BotController:
    """
    State machine for the bot session

    States:
        IDLE -> INITIALIZING -> IDLE (initialized) -> ACTIVE <-> PAUSED -> STOPPED

    Every scan cycle is tagged with the generation current when it started.
    pause() and stop() bump the generation, and results of an older generation
    are discarded before they can touch session state.

    Usage:
        controller = BotController(scanner, bus, wallet, trading, metrics)
        await controller.initialize()
        await controller.start()
        outcome = await controller.trigger_manual_scan()
        await controller.pause()
        await controller.stop()
    """

    def __init__(
        self,
        scanner: TokenScanner,
        bus: ScanEventBus,
        wallet: WalletSource,
        trading: TradingExecutionService,
        metrics: MetricsCollector,
        config: Optional[ScannerConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize bot controller

        Args:
            scanner: Scan pipeline
            bus: Event bus for scan and trade notifications
            wallet: Wallet connection status (read only)
            trading: Trading service, initialized alongside the bot
            metrics: Metrics collector
            config: Initial scanner config (defaults if omitted)
            clock: Wall clock used for active time accounting
        """
        config = config or ScannerConfig()
        config.validate()

        self.scanner = scanner
        self.bus = bus
        self.wallet = wallet
        self.trading = trading
        self.metrics = metrics
        self._clock = clock

        self._mode = BotMode.IDLE
        self._initialized = False
        self._config = config
        self._stats = BotStats(rules_active=count_active_rules(config))

        self._active_since: Optional[float] = None
        self._accumulated_active_s = 0.0

        self._generation = 0
        self._scan_task: Optional[asyncio.Task] = None
        self._scan_generation = 0
        self._pending_scans: set = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._reschedule: Optional[asyncio.Event] = None
        self._last_deadline: Optional[float] = None

        self._subscriptions: List[Subscription] = []
        self._scan_results: Dict[str, TokenScanResult] = {}
        self._seen_mints: set = set()
        self._last_sol_price_usd = 0.0
        self._last_scan_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def mode(self) -> BotMode:
        return self._mode

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_active(self) -> bool:
        return self._mode == BotMode.ACTIVE

    @property
    def is_paused(self) -> bool:
        return self._mode == BotMode.PAUSED

    @property
    def is_scanning(self) -> bool:
        return self._scan_task is not None and not self._scan_task.done()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def scanner_config(self) -> ScannerConfig:
        return self._config

    @property
    def stats(self) -> BotStats:
        return replace(self._stats)

    @property
    def last_scan_at(self) -> Optional[float]:
        return self._last_scan_at

    @property
    def session(self) -> BotSession:
        return BotSession(
            mode=self._mode,
            config=self._config,
            active_since=self._active_since,
            stats=self.stats,
            initialized=self._initialized,
            generation=self._generation
        )

    @property
    def status_text(self) -> str:
        if self._mode == BotMode.ACTIVE:
            return "Active"
        if self._mode == BotMode.PAUSED:
            return "Paused"
        if self._mode == BotMode.INITIALIZING:
            return "Initializing..."
        if self._mode == BotMode.STOPPED:
            return "Stopped"
        return "Ready" if self._initialized else "Not initialized"

    @property
    def active_seconds(self) -> float:
        """Total time spent ACTIVE, including the current stretch"""
        total = self._accumulated_active_s
        if self._active_since is not None:
            total += max(0.0, self._clock() - self._active_since)
        return total

    @property
    def formatted_active_time(self) -> str:
        seconds = int(self.active_seconds)
        hours, remainder = divmod(seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    @property
    def scan_results(self) -> List[TokenScanResult]:
        return list(self._scan_results.values())

    @property
    def low_risk_tokens(self) -> List[TokenScanResult]:
        return low_risk(self._scan_results.values())

    @property
    def high_risk_tokens(self) -> List[TokenScanResult]:
        return high_risk(self._scan_results.values())

    @property
    def matching_tokens(self) -> List[TokenScanResult]:
        """Scan results passing the current scanner filters"""
        return [
            r for r in self._scan_results.values()
            if passes_filters(r, self._config, self._last_sol_price_usd)
        ]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Prepare the bot for trading without starting it

        Raises:
            InitializationError: Wallet not connected or trading service unavailable
            PreconditionError: Already initialized and running, initializing,
                or stopped while the trading service was starting
        """
        if self._mode == BotMode.INITIALIZING:
            raise PreconditionError("Initialization already in progress")
        if self._mode in (BotMode.ACTIVE, BotMode.PAUSED):
            raise PreconditionError(f"Cannot initialize while {self._mode.value}")
        if self._initialized:
            logger.debug("bot_already_initialized")
            return

        generation = self._generation
        self._mode = BotMode.INITIALIZING
        logger.info("bot_initializing")

        try:
            if not self.wallet.is_connected:
                raise InitializationError("Wallet not connected")
            await self.trading.initialize()
        except InitializationError as e:
            self._abort_initialize(generation)
            logger.error("bot_initialization_failed", error=str(e))
            raise
        except asyncio.CancelledError:
            self._abort_initialize(generation)
            raise
        except Exception as e:
            self._abort_initialize(generation)
            logger.error("bot_initialization_failed", error=str(e), exc_info=True)
            raise InitializationError(f"Trading service unavailable: {e}") from e

        # stop() bumps the generation; it must win over a late initialize
        if generation != self._generation:
            logger.info("bot_initialize_superseded", generation=self._generation)
            raise PreconditionError("Bot was stopped during initialization")

        self._subscribe_handlers()
        self._initialized = True
        self._mode = BotMode.IDLE

        logger.info("bot_initialized", wallet=self.wallet.address, rules_active=self._stats.rules_active)

    async def start(self) -> None:
        """
        Enter ACTIVE from an initialized IDLE or PAUSED session

        Raises:
            PreconditionError: Not initialized, or stopped
        """
        if self._mode == BotMode.ACTIVE:
            logger.warning("bot_already_active")
            return
        if self._mode == BotMode.STOPPED:
            raise PreconditionError("Bot is stopped; initialize() again before starting")
        if not self._initialized or self._mode not in (BotMode.IDLE, BotMode.PAUSED):
            raise PreconditionError("Bot must be initialized before starting")

        self._mode = BotMode.ACTIVE
        self._active_since = self._clock()
        self._last_deadline = None

        if self._config.auto_scan:
            self._start_loop()

        logger.info(
            "bot_started",
            auto_scan=self._config.auto_scan,
            scan_interval_ms=self._config.scan_interval_ms
        )

    async def pause(self) -> None:
        """
        Leave ACTIVE, keeping accumulated stats

        Raises:
            PreconditionError: Bot is not active
        """
        if self._mode == BotMode.PAUSED:
            logger.warning("bot_already_paused")
            return
        if self._mode != BotMode.ACTIVE:
            raise PreconditionError(f"Cannot pause while {self._mode.value}")

        self._mode = BotMode.PAUSED
        self._accumulate_active_time()
        self._generation += 1

        await self._stop_loop()

        logger.info(
            "bot_paused",
            generation=self._generation,
            active_seconds=round(self.active_seconds, 1)
        )

    async def stop(self) -> None:
        """Enter STOPPED from any state, cancelling scans and releasing subscriptions"""
        if self._mode == BotMode.STOPPED:
            return

        self._accumulate_active_time()
        self._mode = BotMode.STOPPED
        self._initialized = False
        self._generation += 1
        self._release_subscriptions()

        await self._stop_loop()

        for scan_task in list(self._pending_scans):
            if scan_task.done():
                continue
            scan_task.cancel()
            try:
                await scan_task
            except asyncio.CancelledError:
                pass

        logger.info("bot_stopped", generation=self._generation, scans_completed=self._stats.scans_completed)

    async def update_scanner_config(self, config: ScannerConfig) -> ScannerConfig:
        """
        Replace the scanner config atomically

        Args:
            config: Complete new config

        Returns:
            The config now in effect

        Raises:
            ValidationError: If config breaks an invariant (nothing applied)
        """
        if not isinstance(config, ScannerConfig):
            raise ValidationError(f"Expected ScannerConfig, got {type(config).__name__}")
        config.validate()

        previous = self._config
        self._config = config
        self._stats.rules_active = count_active_rules(config)

        if self._mode == BotMode.ACTIVE:
            loop_running = self._loop_task is not None and not self._loop_task.done()
            if config.auto_scan and not loop_running:
                self._start_loop()
            elif not config.auto_scan and loop_running:
                await self._stop_loop()
            elif config.scan_interval_ms != previous.scan_interval_ms and self._reschedule:
                self._reschedule.set()

        logger.info("scanner_config_updated", **config.to_dict())
        return config

    async def trigger_manual_scan(self) -> ScanOutcome:
        """
        Run a scan now, or join the one already in flight

        Returns:
            ScanOutcome of the (possibly shared) scan cycle

        Raises:
            PreconditionError: Bot stopped or not initialized
        """
        if self._mode == BotMode.STOPPED:
            raise PreconditionError("Cannot scan while stopped")
        if not self._initialized:
            raise PreconditionError("Bot must be initialized before scanning")

        return await self._run_scan("manual")

    def restore(self, config: Optional[ScannerConfig] = None, stats: Optional[BotStats] = None) -> None:
        """
        Apply cached config and cumulative stats before the session starts

        Raises:
            PreconditionError: Session already running
            ValidationError: Cached config is invalid
        """
        if self._mode != BotMode.IDLE:
            raise PreconditionError(f"Cannot restore while {self._mode.value}")

        if config is not None:
            config.validate()
            self._config = config
        if stats is not None:
            self._stats = replace(stats)
        self._stats.rules_active = count_active_rules(self._config)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def _run_scan(self, origin: str) -> ScanOutcome:
        task = self._scan_task
        # A pass started under an older generation is discarded on completion, never joined
        if task is not None and not task.done() and self._scan_generation == self._generation:
            logger.info("scan_already_in_flight", origin=origin, generation=self._generation)
            self.metrics.increment_counter("scan_requests_joined", labels={"origin": origin})
            return await asyncio.shield(task)

        task = asyncio.create_task(self._execute_scan(self._generation, origin))
        task.add_done_callback(self._on_scan_task_done)
        self._pending_scans.add(task)
        self._scan_task = task
        self._scan_generation = self._generation
        return await asyncio.shield(task)

    async def _execute_scan(self, generation: int, origin: str) -> ScanOutcome:
        started_at = self._clock()
        logger.info("scan_cycle_started", generation=generation, origin=origin)

        try:
            scan_pass = await self.scanner.scan()
        except asyncio.CancelledError:
            logger.info("scan_cycle_cancelled", generation=generation)
            return ScanOutcome(generation=generation, results=(), applied=False,
                               started_at=started_at, completed_at=self._clock())
        except Exception as e:
            self.metrics.increment_counter("scan_cycles_failed", labels={"origin": origin})
            logger.error("scan_cycle_failed", generation=generation, origin=origin, error=str(e))
            raise

        if generation != self._generation:
            self.metrics.increment_counter("stale_scan_cycles_discarded")
            logger.info(
                "stale_scan_discarded",
                generation=generation,
                current_generation=self._generation,
                tokens=len(scan_pass.results)
            )
            return ScanOutcome(generation=generation, results=scan_pass.results, applied=False,
                               started_at=started_at, completed_at=self._clock())

        new_mints = self._commit_scan(scan_pass)
        completed_at = self._clock()

        for mint in new_mints:
            self.bus.publish(
                EventTopic.NEW_TOKEN,
                NewTokenEvent(generation=generation, token=self._scan_results[mint])
            )
        self.bus.publish(
            EventTopic.SCAN_COMPLETE,
            ScanCompleteEvent(
                generation=generation,
                results=scan_pass.results,
                new_mints=new_mints,
                completed_at=completed_at
            )
        )

        logger.info(
            "scan_cycle_completed",
            generation=generation,
            origin=origin,
            tokens=len(scan_pass.results),
            new_tokens=len(new_mints)
        )
        return ScanOutcome(
            generation=generation,
            results=scan_pass.results,
            new_mints=new_mints,
            applied=True,
            started_at=started_at,
            completed_at=completed_at
        )

    def _commit_scan(self, scan_pass: ScanPass) -> Tuple[str, ...]:
        """Replace per-mint results and return first-seen mints passing the filters"""
        self._last_sol_price_usd = scan_pass.sol_price_usd
        new_mints = []

        for result in scan_pass.results:
            self._scan_results[result.mint] = result
            if result.mint in self._seen_mints:
                continue
            self._seen_mints.add(result.mint)
            if passes_filters(result, self._config, scan_pass.sol_price_usd):
                new_mints.append(result.mint)

        return tuple(new_mints)

    def _on_scan_task_done(self, task: asyncio.Task) -> None:
        self._pending_scans.discard(task)
        # Retrieve the exception so an unawaited failure is not reported as lost
        if not task.cancelled() and task.exception() is not None:
            logger.debug("scan_task_finished_with_error", error=str(task.exception()))

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    def _start_loop(self) -> None:
        self._reschedule = asyncio.Event()
        self._loop_task = asyncio.create_task(self._scan_loop())

    async def _stop_loop(self) -> None:
        task = self._loop_task
        self._loop_task = None
        if task is None or task.done():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _next_deadline(self, now: float) -> float:
        """Next scan time on the grid anchored at the previous deadline"""
        if self._last_deadline is None:
            return now

        interval = self._config.scan_interval_s
        deadline = self._last_deadline + interval
        if deadline < now:
            deadline += math.ceil((now - deadline) / interval) * interval
        return deadline

    async def _scan_loop(self) -> None:
        """Scheduled scans while ACTIVE with auto_scan enabled"""
        loop = asyncio.get_running_loop()

        while self._mode == BotMode.ACTIVE and self._config.auto_scan:
            try:
                deadline = self._next_deadline(loop.time())
                delay = deadline - loop.time()

                if delay > 0:
                    self._reschedule.clear()
                    try:
                        await asyncio.wait_for(self._reschedule.wait(), timeout=delay)
                        logger.debug("scan_rescheduled", interval_ms=self._config.scan_interval_ms)
                        continue
                    except asyncio.TimeoutError:
                        pass

                self._last_deadline = deadline
                await self._run_scan("scheduled")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("scheduled_scan_error", error=str(e), exc_info=True)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _subscribe_handlers(self) -> None:
        self._release_subscriptions()
        self._subscriptions = [
            self.bus.subscribe(EventTopic.SCAN_COMPLETE, self._on_scan_complete),
            self.bus.subscribe(EventTopic.TRADE_COMPLETE, self._on_trade_complete),
        ]

    def _release_subscriptions(self) -> None:
        for subscription in self._subscriptions:
            subscription()
        self._subscriptions = []

    def _on_scan_complete(self, event: ScanCompleteEvent) -> None:
        if event.generation != self._generation:
            logger.debug("stale_scan_event_ignored", generation=event.generation)
            return

        self._stats.scans_completed += 1
        self._last_scan_at = event.completed_at
        self.metrics.set_gauge("scans_completed", self._stats.scans_completed)

    def _on_trade_complete(self, outcome: TradeOutcome) -> None:
        self._stats.trade_attempts += 1
        if outcome.success:
            self._stats.successful_trades += 1
            if outcome.side == TradeSide.BUY:
                self._stats.triggered_buys += 1

        self._stats.success_rate = round(
            self._stats.successful_trades / self._stats.trade_attempts * 100, 2
        )

    def _abort_initialize(self, generation: int) -> None:
        if generation == self._generation:
            self._mode = BotMode.IDLE

    def _accumulate_active_time(self) -> None:
        if self._active_since is not None:
            self._accumulated_active_s += max(0.0, self._clock() - self._active_since)
            self._active_since = None
