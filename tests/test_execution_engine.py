"""Tests for execution.execution_engine."""
import pytest

from execution.execution_engine import (
    analyze,
    fee_cost,
    liquidity_tier,
    slippage_cost,
    spread_cost,
)
from shared.schemas import ExecutionDecision, LiquidityTier


def test_cost_components():
    assert fee_cost(5.0) == pytest.approx(0.05)
    assert fee_cost(-2.0) == 0.0
    assert spread_cost(600_000) == 0.5
    assert spread_cost(5_000) == 3.0
    assert slippage_cost(100, 1_000_000) == 0.2
    assert slippage_cost(100, 0) == 3.0


def test_liquidity_tiers():
    assert liquidity_tier(150_000) == LiquidityTier.HIGH
    assert liquidity_tier(60_000) == LiquidityTier.MEDIUM
    assert liquidity_tier(10_000) == LiquidityTier.LOW
    assert liquidity_tier(9_999) == LiquidityTier.INSUFFICIENT


def test_insufficient_liquidity_never_bets():
    analysis = analyze(raw_edge=50.0, volume=5_000, stake=100)
    assert analysis.decision == ExecutionDecision.NO_BET
    assert analysis.liquidity_tier == LiquidityTier.INSUFFICIENT


def test_strong_bet():
    # 8 - (0.08 + 0.5 + 0.2) = 7.22
    analysis = analyze(raw_edge=8.0, volume=600_000, stake=100)
    assert analysis.net_edge == pytest.approx(7.22)
    assert analysis.decision == ExecutionDecision.STRONG_BET
    assert analysis.max_stake_without_impact == 6000.0


def test_bet():
    # 3.5 - (0.035 + 1.0 + 0.2) = 2.265
    analysis = analyze(raw_edge=3.5, volume=120_000, stake=100)
    assert analysis.net_edge == pytest.approx(2.265)
    assert analysis.decision == ExecutionDecision.BET


def test_marginal_only_on_high_liquidity():
    # 2 - (0.02 + 0.5 + 0.2) = 1.28
    high = analyze(raw_edge=2.0, volume=600_000, stake=100)
    assert high.decision == ExecutionDecision.MARGINAL
    # 2.9 - (0.029 + 1.5 + 0.2) = 1.171 on medium liquidity
    medium = analyze(raw_edge=2.9, volume=60_000, stake=10)
    assert medium.decision == ExecutionDecision.NO_BET


def test_negative_edge_no_bet():
    analysis = analyze(raw_edge=-3.0, volume=600_000, stake=100)
    assert analysis.fee_cost == 0.0
    assert analysis.net_edge < 0
    assert analysis.decision == ExecutionDecision.NO_BET
