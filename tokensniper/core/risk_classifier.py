"""
Rug risk classification for discovered tokens

All functions here are pure: identical inputs always produce equal outputs,
so re-scanning a token never changes its classification unless its data did.

Market cap is compared in USD. Token records carry SOL-denominated market cap
and liquidity; the caller supplies the SOL/USD price used for the conversion.
"""

from typing import Iterable, List, Optional

from tokensniper.core.config import ScannerConfig
from tokensniper.core.models import (
    RiskAssessment,
    RiskReport,
    TokenRecord,
    TokenScanResult,
)


HIGH_RISK_SCORE = 65
HIGH_RISK_TOP_HOLDER_PCT = 80
MIN_SAFE_MARKET_CAP_USD = 100_000


def count_social_links(token: TokenRecord) -> int:
    """Number of non-empty links among website, twitter and telegram"""
    return sum(1 for link in (token.website, token.twitter, token.telegram) if link)


def market_cap_usd(token: TokenRecord, sol_price_usd: float) -> float:
    return token.market_cap_sol * sol_price_usd


def classify(
    token: TokenRecord,
    report: Optional[RiskReport],
    sol_price_usd: float
) -> RiskAssessment:
    """
    Classify a token against its rug report

    Rules, in order:
    1. liquidity is locked when the report shows any USD liquidity
    2. verified only if the report says so (False when report missing)
    3. top holder concentration is the first holder's percentage, else 0
    4. high risk when score > 65, top holder > 80% or market cap < $100k
    5. social media count over website, twitter, telegram

    Args:
        token: Discovered token record
        report: Rug report, or None when the lookup failed
        sol_price_usd: SOL/USD price used to convert market cap

    Returns:
        RiskAssessment
    """
    if report is None:
        report = RiskReport.neutral()

    liquidity_locked = report.liquidity_usd > 0
    is_verified = bool(report.verification and report.verification.verified)
    top_holder_concentration = report.top_holders[0].percentage if report.top_holders else 0.0
    cap_usd = market_cap_usd(token, sol_price_usd)

    is_high_risk = (
        report.score > HIGH_RISK_SCORE
        or top_holder_concentration > HIGH_RISK_TOP_HOLDER_PCT
        or cap_usd < MIN_SAFE_MARKET_CAP_USD
    )

    return RiskAssessment(
        liquidity_locked=liquidity_locked,
        is_verified=is_verified,
        top_holder_concentration=top_holder_concentration,
        is_high_risk=is_high_risk,
        social_media_count=count_social_links(token),
        rug_score=report.score,
        market_cap_usd=cap_usd,
        is_rugged=report.is_rugged,
    )


def build_scan_result(
    token: TokenRecord,
    report: Optional[RiskReport],
    sol_price_usd: float,
    scan_time: float
) -> TokenScanResult:
    """Combine a token record and its assessment into a scan result"""
    assessment = classify(token, report, sol_price_usd)
    report = report or RiskReport.neutral()

    liquidity_usd = report.liquidity_usd or token.liquidity_sol * sol_price_usd

    return TokenScanResult(
        mint=token.mint,
        name=token.name or "Unknown",
        symbol=token.symbol or "N/A",
        price_usd=token.price_usd,
        market_cap_usd=assessment.market_cap_usd,
        liquidity_usd=liquidity_usd,
        liquidity_locked=assessment.liquidity_locked,
        rug_score=assessment.rug_score,
        top_holder_concentration=assessment.top_holder_concentration,
        is_verified=assessment.is_verified,
        is_rugged=assessment.is_rugged,
        social_media_count=assessment.social_media_count,
        is_high_risk=assessment.is_high_risk,
        price_change_24h=token.price_change_24h,
        has_website=bool(token.website),
        has_twitter=bool(token.twitter),
        has_telegram=bool(token.telegram),
        rug_risks=tuple(report.risks),
        scan_time=scan_time,
    )


def passes_filters(result: TokenScanResult, config: ScannerConfig, sol_price_usd: float) -> bool:
    """Check a scan result against the scanner's liquidity, score, holder and verification filters"""
    if result.is_rugged:
        return False
    if result.liquidity_usd < config.min_liquidity_sol * sol_price_usd:
        return False
    if result.rug_score > config.max_rug_score:
        return False
    if result.top_holder_concentration > config.max_top_holder_pct:
        return False
    if config.only_verified and not result.is_verified:
        return False
    return True


def count_active_rules(config: ScannerConfig) -> int:
    """Number of scanner filters that can reject a token"""
    rules = [
        config.min_liquidity_sol > 0,
        config.max_rug_score < 100,
        config.max_top_holder_pct < 100,
        config.only_verified,
    ]
    return sum(1 for active in rules if active)


def low_risk(results: Iterable[TokenScanResult]) -> List[TokenScanResult]:
    return [r for r in results if not r.is_high_risk]


def high_risk(results: Iterable[TokenScanResult]) -> List[TokenScanResult]:
    return [r for r in results if r.is_high_risk]
