"""
Token metadata source backed by Moralis discovery and RugCheck reports
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from tokensniper.clients.moralis_client import MoralisClient
from tokensniper.clients.rugcheck_client import RugCheckClient
from tokensniper.core.logger import get_logger
from tokensniper.core.models import RiskReport, TokenRecord


logger = get_logger(__name__)


class MoralisTokenSource:
    """
    Discovery and risk lookups for the token scanner

    Also serves as the price source for position revaluation.
    """

    def __init__(self, moralis: MoralisClient, rugcheck: RugCheckClient, discovery_limit: int = 100):
        self.moralis = moralis
        self.rugcheck = rugcheck
        self.discovery_limit = discovery_limit

    async def get_discovered_tokens(self) -> List[TokenRecord]:
        raw_tokens = await self.moralis.get_new_pumpfun_tokens(self.discovery_limit)

        tokens = []
        for raw in raw_tokens:
            token = to_token_record(raw)
            if token is not None:
                tokens.append(token)

        logger.info("tokens_discovered", count=len(tokens), skipped=len(raw_tokens) - len(tokens))
        return tokens

    async def check_rug_score(self, mint: str) -> RiskReport:
        return await self.rugcheck.get_report(mint)

    async def get_token_price_sol(self, mint: str) -> Optional[float]:
        price = await self.moralis.get_token_price(mint)
        return price["sol"] or None

    async def close(self) -> None:
        await self.moralis.close()
        await self.rugcheck.close()


def to_token_record(raw: Dict[str, Any]) -> Optional[TokenRecord]:
    """
    Map a pump.fun gateway record to a TokenRecord

    The gateway quotes USD values; SOL figures are derived from the
    priceUsd/priceNative ratio of the same record.
    """
    mint = raw.get("tokenAddress") or raw.get("mint")
    if not mint:
        return None

    price_usd = _float(raw.get("priceUsd"))
    price_sol = _float(raw.get("priceNative"))
    sol_usd = price_usd / price_sol if price_sol > 0 else 0.0

    def in_sol(usd_value: float) -> float:
        return usd_value / sol_usd if sol_usd > 0 else 0.0

    return TokenRecord(
        mint=mint,
        name=raw.get("name") or "Unknown",
        symbol=raw.get("symbol") or "N/A",
        price_usd=price_usd,
        price_sol=price_sol,
        market_cap_sol=in_sol(_float(raw.get("fullyDilutedValuation"))),
        liquidity_sol=in_sol(_float(raw.get("liquidity"))),
        price_change_24h=_float(raw.get("priceChange24h")),
        website=raw.get("website") or None,
        twitter=raw.get("twitter") or None,
        telegram=raw.get("telegram") or None,
        created_at=_timestamp(raw.get("createdAt"))
    )


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _timestamp(value: Any) -> Optional[float]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None
