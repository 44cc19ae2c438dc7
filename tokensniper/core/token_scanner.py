"""
Token Scanner
Runs one discovery pass: fetch new tokens, look up rug reports concurrently, classify
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Tuple

from tokensniper.core.interfaces import TokenMetadataSource, WalletSource
from tokensniper.core.logger import get_logger
from tokensniper.core.metrics import LatencyTimer, MetricsCollector
from tokensniper.core.models import RiskReport, TokenRecord, TokenScanResult
from tokensniper.core.risk_classifier import build_scan_result


logger = get_logger(__name__)


@dataclass(frozen=True)
class ScanPass:
    """Classified tokens of one pass and the SOL price they were valued at"""
    results: Tuple[TokenScanResult, ...]
    sol_price_usd: float
    started_at: float
    finished_at: float


class TokenScanner:
    """
    Stateless scan pipeline

    The scanner owns no session state. It returns classified results and
    leaves it to the caller to decide whether they are still current.

    Usage:
        scanner = TokenScanner(metadata_source, wallet, metrics)
        scan_pass = await scanner.scan()
    """

    def __init__(
        self,
        metadata_source: TokenMetadataSource,
        wallet: WalletSource,
        metrics: MetricsCollector
    ):
        self.metadata_source = metadata_source
        self.wallet = wallet
        self.metrics = metrics

    async def scan(self) -> ScanPass:
        """
        Run one scan pass

        Returns only after every per-token lookup has resolved. A failed
        lookup is replaced by the neutral report rather than failing the pass.

        Returns:
            ScanPass with classified tokens in discovery order, one per mint

        Raises:
            Exception: If discovery itself or the SOL price lookup fails
        """
        started_at = time.time()

        with LatencyTimer(self.metrics, "scan_pass"):
            tokens = self._unique_by_mint(await self.metadata_source.get_discovered_tokens())
            sol_price_usd = await self.wallet.get_sol_price_usd()

            reports = await asyncio.gather(*(self._lookup_report(token) for token in tokens))

            scan_time = time.time()
            results = tuple(
                build_scan_result(token, report, sol_price_usd, scan_time)
                for token, report in zip(tokens, reports)
            )

        self.metrics.increment_counter("tokens_classified", value=len(results))
        logger.debug(
            "scan_pass_finished",
            tokens=len(results),
            high_risk=sum(1 for r in results if r.is_high_risk),
            sol_price_usd=sol_price_usd
        )
        return ScanPass(
            results=results,
            sol_price_usd=sol_price_usd,
            started_at=started_at,
            finished_at=scan_time
        )

    async def _lookup_report(self, token: TokenRecord) -> RiskReport:
        try:
            return await self.metadata_source.check_rug_score(token.mint)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.increment_counter("rug_lookup_failures")
            logger.warning("rug_lookup_failed", mint=token.mint, error=str(e))
            return RiskReport.neutral()

    @staticmethod
    def _unique_by_mint(tokens: List[TokenRecord]) -> List[TokenRecord]:
        """Keep the last record per mint, in first-seen order"""
        by_mint: Dict[str, TokenRecord] = {}
        for token in tokens:
            by_mint[token.mint] = token
        return list(by_mint.values())
