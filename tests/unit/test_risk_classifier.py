"""
Unit tests for rug risk classification
"""

import pytest

from tokensniper.core.config import ScannerConfig
from tokensniper.core.models import RiskReport, TopHolder, Verification
from tokensniper.core.risk_classifier import (
    build_scan_result,
    classify,
    count_active_rules,
    count_social_links,
    high_risk,
    low_risk,
    passes_filters,
)

from tests.fakes import SOL_PRICE_USD, make_report, make_token


# =============================================================================
# CLASSIFY
# =============================================================================

def test_low_risk_token():
    assessment = classify(make_token("A"), make_report(score=20, top_pct=10), SOL_PRICE_USD)

    assert assessment.is_high_risk is False
    assert assessment.liquidity_locked is True
    assert assessment.is_verified is True
    assert assessment.top_holder_concentration == 10
    assert assessment.market_cap_usd == pytest.approx(300_000)


def test_score_above_threshold_is_high_risk():
    assert classify(make_token("A"), make_report(score=65), SOL_PRICE_USD).is_high_risk is False
    assert classify(make_token("A"), make_report(score=65.01), SOL_PRICE_USD).is_high_risk is True


def test_top_holder_concentration_above_80_is_high_risk():
    assert classify(make_token("A"), make_report(top_pct=80), SOL_PRICE_USD).is_high_risk is False
    assert classify(make_token("A"), make_report(top_pct=80.5), SOL_PRICE_USD).is_high_risk is True


def test_market_cap_below_100k_usd_is_high_risk():
    # 600 SOL * $150 = $90k
    small = make_token("A", market_cap_sol=600)
    assert classify(small, make_report(), SOL_PRICE_USD).is_high_risk is True

    # Same token is safe at a higher SOL price: the threshold is in USD
    assert classify(small, make_report(), 200.0).is_high_risk is False


def test_missing_report_defaults():
    assessment = classify(make_token("A"), None, SOL_PRICE_USD)

    assert assessment.is_verified is False
    assert assessment.liquidity_locked is False
    assert assessment.top_holder_concentration == 0
    assert assessment.rug_score == 50


def test_zero_score_is_kept():
    assessment = classify(make_token("A"), make_report(score=0), SOL_PRICE_USD)
    assert assessment.rug_score == 0


def test_first_top_holder_is_used():
    report = make_report(top_holders=(
        TopHolder(address="H1", percentage=30),
        TopHolder(address="H2", percentage=90),
    ))
    assert classify(make_token("A"), report, SOL_PRICE_USD).top_holder_concentration == 30


def test_unverified_report():
    report = make_report(verification=Verification(verified=False))
    assert classify(make_token("A"), report, SOL_PRICE_USD).is_verified is False

    report = make_report(verification=None)
    assert classify(make_token("A"), report, SOL_PRICE_USD).is_verified is False


def test_classify_is_idempotent():
    token = make_token("A", website="https://a.io", telegram="https://t.me/a")
    report = make_report(score=42, top_pct=33)

    first = classify(token, report, SOL_PRICE_USD)
    second = classify(token, report, SOL_PRICE_USD)

    assert first == second


@pytest.mark.parametrize("links,expected", [
    ({}, 0),
    ({"website": "https://a.io"}, 1),
    ({"website": "https://a.io", "telegram": "https://t.me/a"}, 2),
    ({"website": "https://a.io", "telegram": "https://t.me/a", "twitter": "https://x.com/a"}, 3),
    ({"website": "", "telegram": None}, 0),
])
def test_social_media_count(links, expected):
    fields = {"twitter": None}
    fields.update(links)
    assert count_social_links(make_token("A", **fields)) == expected


# =============================================================================
# SCAN RESULTS AND FILTERS
# =============================================================================

def test_build_scan_result_uses_report_liquidity():
    result = build_scan_result(make_token("A"), make_report(liquidity_usd=12_345), SOL_PRICE_USD, 1.0)

    assert result.liquidity_usd == 12_345
    assert result.market_cap_usd == pytest.approx(300_000)
    assert result.has_twitter is True
    assert result.has_website is False
    assert result.scan_time == 1.0


def test_build_scan_result_falls_back_to_token_liquidity():
    result = build_scan_result(make_token("A", liquidity_sol=10), make_report(liquidity_usd=0), SOL_PRICE_USD, 1.0)

    assert result.liquidity_usd == pytest.approx(1_500)
    assert result.liquidity_locked is False


def test_passes_filters():
    config = ScannerConfig(min_liquidity_sol=5, max_rug_score=70, max_top_holder_pct=80)

    ok = build_scan_result(make_token("A"), make_report(score=30), SOL_PRICE_USD, 0)
    assert passes_filters(ok, config, SOL_PRICE_USD) is True

    risky = build_scan_result(make_token("B"), make_report(score=71), SOL_PRICE_USD, 0)
    assert passes_filters(risky, config, SOL_PRICE_USD) is False

    concentrated = build_scan_result(make_token("C"), make_report(top_pct=85), SOL_PRICE_USD, 0)
    assert passes_filters(concentrated, config, SOL_PRICE_USD) is False

    # 5 SOL minimum = $750
    illiquid = build_scan_result(make_token("D"), make_report(liquidity_usd=700), SOL_PRICE_USD, 0)
    assert passes_filters(illiquid, config, SOL_PRICE_USD) is False

    rugged = build_scan_result(make_token("E"), make_report(is_rugged=True), SOL_PRICE_USD, 0)
    assert passes_filters(rugged, config, SOL_PRICE_USD) is False


def test_only_verified_filter():
    config = ScannerConfig(only_verified=True)
    unverified = build_scan_result(
        make_token("A"), make_report(verification=Verification(verified=False)), SOL_PRICE_USD, 0
    )
    assert passes_filters(unverified, config, SOL_PRICE_USD) is False


def test_count_active_rules():
    assert count_active_rules(ScannerConfig()) == 3
    assert count_active_rules(ScannerConfig(only_verified=True)) == 4
    assert count_active_rules(ScannerConfig(min_liquidity_sol=0, max_rug_score=100, max_top_holder_pct=100)) == 0


def test_low_and_high_risk_views_partition_results():
    results = [
        build_scan_result(make_token("A"), make_report(score=10), SOL_PRICE_USD, 0),
        build_scan_result(make_token("B"), make_report(score=75), SOL_PRICE_USD, 0),
        build_scan_result(make_token("C"), RiskReport.neutral(), SOL_PRICE_USD, 0),
    ]

    assert [r.mint for r in low_risk(results)] == ["A", "C"]
    assert [r.mint for r in high_risk(results)] == ["B"]
