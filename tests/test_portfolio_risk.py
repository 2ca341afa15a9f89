"""Tests for the portfolio risk aggregator."""
import pytest
from loguru import logger

from gamma_paper.paper_trading.models import ExitReason, OptionsGreeks
from gamma_paper.risk.portfolio_risk import PortfolioRiskAggregator, RiskMetrics

from conftest import NOW, make_position, make_request, make_settings


@pytest.fixture
def aggregator():
    return PortfolioRiskAggregator(max_portfolio_heat=0.20)


def test_empty_portfolio(aggregator):
    metrics = aggregator.calculate([], 100000.0)

    assert metrics == RiskMetrics()


def test_metrics_for_mixed_book(aggregator):
    greeks = OptionsGreeks(delta=0.5, gamma=0.02, theta=-0.05, vega=0.1, rho=0.01)
    positions = [
        make_position("a", "SPY", entry_price=2.00, quantity=10, greeks=greeks),   # 2,000
        make_position("b", "SPY", entry_price=3.00, quantity=10, greeks=greeks),   # 3,000
        make_position("c", "QQQ", entry_price=5.00, quantity=10, greeks=greeks),   # 5,000
    ]

    metrics = aggregator.calculate(positions, 100000.0)

    assert metrics.total_notional == pytest.approx(10000.0)
    assert metrics.portfolio_heat == pytest.approx(0.10)
    assert metrics.position_count == 3
    assert metrics.ticker_count == 2
    assert metrics.concentration_risk == pytest.approx(0.5 ** 2 + 0.5 ** 2)
    assert metrics.correlation_risk == pytest.approx(1 - 2 / 3)
    assert metrics.value_at_risk == pytest.approx(10000.0 * 0.02 * 1.645)
    assert metrics.expected_shortfall == pytest.approx(metrics.value_at_risk * 1.3)
    assert metrics.risk_score == pytest.approx(50.0)
    assert metrics.heat_by_ticker == pytest.approx({"SPY": 0.05, "QQQ": 0.05})

    assert metrics.greeks.delta == pytest.approx(0.5 * 3000)
    assert metrics.greeks.theta == pytest.approx(-0.05 * 3000)
    assert metrics.greeks.net_exposure == pytest.approx(10000.0)


def test_single_ticker_is_fully_concentrated(aggregator):
    positions = [make_position("a", "SPY"), make_position("b", "SPY")]

    metrics = aggregator.calculate(positions, 100000.0)

    assert metrics.concentration_risk == pytest.approx(1.0)
    assert metrics.correlation_risk == pytest.approx(0.5)


def test_uneven_concentration(aggregator):
    positions = [
        make_position("a", "SPY", entry_price=3.00, quantity=1),
        make_position("b", "QQQ", entry_price=1.00, quantity=1),
    ]

    metrics = aggregator.calculate(positions, 100000.0)

    assert metrics.concentration_risk == pytest.approx(0.75 ** 2 + 0.25 ** 2)


def test_worthless_positions_count_as_equal_weight(aggregator):
    positions = [make_position("a", "SPY"), make_position("b", "QQQ")]
    for p in positions:
        p.update_price(0.0, NOW)

    metrics = aggregator.calculate(positions, 100000.0)

    assert metrics.total_notional == 0.0
    assert metrics.concentration_risk == pytest.approx(0.5)


def test_closed_positions_are_ignored(aggregator):
    open_position = make_position("a", "SPY")
    closed = make_position("b", "QQQ")
    closed.close(2.50, ExitReason.MANUAL, NOW)

    metrics = aggregator.calculate([open_position, closed], 100000.0)

    assert metrics.position_count == 1
    assert metrics.ticker_count == 1


def test_heat_with_exhausted_balance():
    assert PortfolioRiskAggregator.portfolio_heat(0.0, 0.0) == 0.0
    assert PortfolioRiskAggregator.portfolio_heat(100.0, 0.0) == float("inf")


def test_risk_score_is_capped(aggregator):
    assert aggregator.risk_score(0.40) == 100.0
    assert aggregator.risk_score(0.0) == 0.0


def test_from_settings_uses_risk_constants():
    aggregator = PortfolioRiskAggregator.from_settings(
        make_settings(var_daily_volatility=0.03, var_z_score=2.33, expected_shortfall_multiplier=1.5)
    )

    assert aggregator.daily_volatility == 0.03
    assert aggregator.z_score == 2.33
    assert aggregator.expected_shortfall_multiplier == 1.5


def test_engine_logs_risk_summary_after_trade(engine):
    messages = []
    sink_id = logger.add(messages.append, level="DEBUG", format="{message}")
    try:
        engine.execute_trade(make_request(position_size=4))
    finally:
        logger.remove(sink_id)

    summary = [m for m in messages if m.startswith(f"Risk [{engine.account.account_id}]")]
    assert summary
    assert "heat 1.0%" in summary[-1]
