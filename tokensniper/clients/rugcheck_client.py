"""
RugCheck client: per-token risk reports
"""

from typing import Any, Dict, Optional

import aiohttp

from tokensniper.core.logger import get_logger
from tokensniper.core.models import NEUTRAL_RUG_SCORE, RiskReport, TopHolder, Verification


logger = get_logger(__name__)


class RugCheckClient:
    """
    Fetches /{mint}/report and parses it into a RiskReport

    Unlike the Moralis client this one raises on failure; the scanner
    decides what a failed lookup means.
    """

    def __init__(
        self,
        base_url: str = "https://api.rugcheck.xyz/v1/tokens",
        timeout_s: float = 10.0
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
                timeout=self.timeout
            )
        return self.session

    async def get_report(self, mint: str) -> RiskReport:
        """
        Raises:
            aiohttp.ClientError: Transport failure or non-2xx status
        """
        session = await self._get_session()
        url = f"{self.base_url}/{mint}/report"

        async with session.get(url) as response:
            response.raise_for_status()
            data = await response.json()

        report = parse_report(data)
        logger.debug("rugcheck_report", mint=mint, score=report.score, rugged=report.is_rugged)
        return report

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None


def parse_report(data: Dict[str, Any]) -> RiskReport:
    """Map a raw report to RiskReport; missing fields fall back to neutral values"""
    if not isinstance(data, dict):
        return RiskReport.neutral()

    score = data.get("score")
    try:
        score = float(score) if score is not None else float(NEUTRAL_RUG_SCORE)
    except (TypeError, ValueError):
        score = float(NEUTRAL_RUG_SCORE)

    verification = None
    raw_verification = data.get("verification")
    if isinstance(raw_verification, dict):
        verified = bool(raw_verification.get("jup_verified") or raw_verification.get("jupVerified"))
        verification = Verification(verified=verified, source="jupiter" if verified else "")

    holders = []
    for holder in data.get("topHolders") or []:
        if not isinstance(holder, dict):
            continue
        pct = holder.get("pct", holder.get("percentage", 0.0))
        holders.append(TopHolder(
            address=str(holder.get("owner") or holder.get("address") or ""),
            percentage=float(pct or 0.0),
            amount=float(holder.get("uiAmount") or holder.get("amount") or 0.0)
        ))

    risks = tuple(
        str(risk.get("name")) if isinstance(risk, dict) else str(risk)
        for risk in data.get("risks") or []
    )

    liquidity = data.get("totalMarketLiquidity", data.get("liquidityUSD", 0.0))

    return RiskReport(
        score=score,
        liquidity_usd=float(liquidity or 0.0),
        verification=verification,
        top_holders=tuple(holders),
        risks=risks,
        is_rugged=bool(data.get("rugged", data.get("isRugged", False)))
    )
