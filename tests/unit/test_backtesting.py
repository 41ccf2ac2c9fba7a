"""
Unit tests for the backtest engine, strategy, portfolio, metrics and bar loading.
"""

from datetime import date
from decimal import Decimal
from typing import List

import pytest

from daytrader.backtesting import (
    BacktestEngine,
    BarVoter,
    DayTradingBacktestStrategy,
    SyntheticPortfolio,
    VoterSettings,
    default_voters,
    load_bars,
    load_bars_csv,
)
from daytrader.backtesting.metrics import (
    calculate_monthly_returns,
    calculate_performance_metrics,
    conditional_value_at_risk,
    value_at_risk,
)
from daytrader.config import BacktestConfig
from daytrader.exceptions import BacktestError
from daytrader.models.backtest import DailyReturn, ExitReason
from daytrader.models.signals import SignalAction

COST_FREE = BacktestConfig(initial_capital=Decimal("100000"), commission=Decimal("0"), slippage=Decimal("0"))


class FixedVoter(BarVoter):
    """Votes the same way every day, with or without history."""

    def __init__(self, name: str, action: SignalAction = SignalAction.BUY):
        self.name = name
        self.action = action

    def vote(self, symbol, history, day):
        return self._signal(symbol, day, self.action, 80, "fixed")


def always(action: SignalAction) -> List[BarVoter]:
    return [FixedVoter(f"fixed_{i}", action) for i in range(3)]


class DayBarVoter(BarVoter):
    """Votes BUY before the open and SELL once the day's own bar is in its history."""

    def __init__(self, name: str):
        self.name = name

    def vote(self, symbol, history, day):
        if history and history[-1].date == day:
            return self._signal(symbol, day, SignalAction.SELL, 80, "day bar")
        return self._signal(symbol, day, SignalAction.BUY, 80, "pre-open")


class TestBacktestEngine:
    """Test the day-by-day replay."""

    @pytest.mark.asyncio
    async def test_flat_series_has_zero_pnl_and_sharpe(self, make_bars):
        engine = BacktestEngine(BacktestConfig())
        strategy = DayTradingBacktestStrategy()

        result = await engine.run_backtest(strategy, {"AAPL": make_bars()})

        assert result.trades == []
        assert result.final_capital == result.initial_capital
        assert result.net_pnl == 0
        assert result.performance.total_return == 0.0
        assert result.performance.sharpe_ratio == 0.0
        assert result.performance.sortino_ratio == 0.0
        assert result.performance.max_drawdown == 0.0
        assert result.risk_metrics.volatility == 0.0
        assert len(result.daily_returns) == 30
        assert all(d.daily_return == 0.0 for d in result.daily_returns)

    @pytest.mark.asyncio
    async def test_unconfirmed_take_profit_closes_at_bar_close(self, make_bars, risk_config):
        engine = BacktestEngine(COST_FREE)
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=always(SignalAction.BUY))
        bars = make_bars(days=5, open_="100", high="106", low="99", close="101")

        result = await engine.run_backtest(strategy, {"AAPL": bars})

        assert len(result.trades) == 5
        for trade in result.trades:
            assert trade.exit_reason == ExitReason.FORCED_CLOSE
            assert trade.quantity == 100
            assert trade.entry_price == Decimal("100")
            assert trade.exit_price == Decimal("101")
            assert trade.net_pnl == Decimal("100")
            assert trade.entry_date == trade.exit_date
        assert result.final_capital == Decimal("100500")
        assert result.performance.win_rate == 100.0

    @pytest.mark.asyncio
    async def test_stop_loss_exits_at_threshold(self, make_bars, risk_config):
        engine = BacktestEngine(COST_FREE)
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=always(SignalAction.BUY))

        result = await engine.run_backtest(
            strategy, {"AAPL": make_bars(days=1, open_="100", high="101", low="96", close="98")}
        )

        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.exit_price == Decimal("97.00")
        assert trade.pnl == Decimal("-300")

    @pytest.mark.asyncio
    async def test_emergency_stop_has_priority(self, make_bars, risk_config):
        engine = BacktestEngine(COST_FREE)
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=always(SignalAction.BUY))

        result = await engine.run_backtest(
            strategy, {"AAPL": make_bars(days=1, open_="100", high="110", low="90", close="95")}
        )

        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.EMERGENCY_STOP_LOSS
        assert trade.exit_price == Decimal("92.00")

    @pytest.mark.asyncio
    async def test_take_profit_override(self, make_bars, risk_config):
        engine = BacktestEngine(COST_FREE)
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=always(SignalAction.BUY))

        result = await engine.run_backtest(
            strategy, {"AAPL": make_bars(days=1, open_="100", high="108", low="99", close="104")}
        )

        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.TAKE_PROFIT
        assert trade.exit_price == Decimal("107.00")

    @pytest.mark.asyncio
    async def test_take_profit_confirmed_by_intraday_vote(self, make_bars, risk_config):
        engine = BacktestEngine(COST_FREE)
        voters = [DayBarVoter(f"day_bar_{i}") for i in range(3)]
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=voters)
        bars = make_bars(days=3, open_="100", high="106", low="99", close="101")

        result = await engine.run_backtest(strategy, {"AAPL": bars})

        assert len(result.trades) == 3
        for trade in result.trades:
            assert trade.exit_reason == ExitReason.TAKE_PROFIT
            assert trade.exit_price == Decimal("105.00")

    @pytest.mark.asyncio
    async def test_no_consensus_no_trades(self, make_bars, risk_config):
        engine = BacktestEngine(COST_FREE)
        voters = always(SignalAction.BUY)
        voters[0].action = SignalAction.HOLD
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=voters)

        result = await engine.run_backtest(
            strategy, {"AAPL": make_bars(days=3, open_="100", high="106", low="99", close="101")}
        )

        assert result.trades == []

    @pytest.mark.asyncio
    async def test_costs_reduce_net_pnl(self, make_bars, risk_config):
        config = BacktestConfig(commission=Decimal("0.001"), slippage=Decimal("0.0005"))
        engine = BacktestEngine(config)
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=always(SignalAction.BUY))

        result = await engine.run_backtest(
            strategy, {"AAPL": make_bars(days=1, open_="100", high="100", low="100", close="100")}
        )

        trade = result.trades[0]
        assert trade.pnl == 0
        assert trade.commission == Decimal("20.000")
        assert trade.slippage == Decimal("10.0000")
        assert trade.net_pnl == Decimal("-30")
        assert result.final_capital == config.initial_capital - Decimal("30")

    @pytest.mark.asyncio
    async def test_date_range_selection(self, make_bars):
        engine = BacktestEngine()

        result = await engine.run_backtest(
            DayTradingBacktestStrategy(),
            {"AAPL": make_bars(days=30)},
            start_date=date(2026, 1, 10),
            end_date=date(2026, 1, 19),
        )

        assert result.start_date == date(2026, 1, 10)
        assert result.end_date == date(2026, 1, 19)
        assert len(result.daily_returns) == 10

    @pytest.mark.asyncio
    async def test_invalid_inputs_raise(self, make_bars):
        engine = BacktestEngine()
        strategy = DayTradingBacktestStrategy()

        with pytest.raises(BacktestError):
            await engine.run_backtest(strategy, {})
        with pytest.raises(BacktestError):
            await engine.run_backtest(
                strategy, {"AAPL": make_bars()}, start_date=date(2026, 2, 1), end_date=date(2026, 1, 1)
            )
        with pytest.raises(BacktestError):
            await engine.run_backtest(strategy, {"AAPL": make_bars()}, start_date=date(2027, 1, 1))

    @pytest.mark.asyncio
    async def test_save_and_load_result(self, make_bars, tmp_path):
        engine = BacktestEngine(output_path=str(tmp_path))

        result = await engine.run_backtest(DayTradingBacktestStrategy(), {"AAPL": make_bars(days=5)}, save=True)

        saved = list(tmp_path.glob("backtest_day_trading_quorum_*.json"))
        assert len(saved) == 1
        loaded = BacktestEngine.load_result(str(saved[0]))
        assert loaded.backtest_id == result.backtest_id
        assert loaded.final_capital == result.final_capital

    @pytest.mark.asyncio
    async def test_analyze_performance(self, make_bars):
        engine = BacktestEngine()
        result = await engine.run_backtest(DayTradingBacktestStrategy(), {"AAPL": make_bars(days=5)})

        analysis = engine.analyze_performance(result)

        assert set(analysis) == {"summary", "risk_analysis", "trade_analysis", "recommendations"}
        assert analysis["summary"]["total_trades"] == 0
        assert any("Sharpe" in r for r in analysis["recommendations"])


class TestStrategyParameters:
    """Test parameter overrides used by the optimizer."""

    def test_with_parameters_replaces_risk_and_voter_settings(self):
        strategy = DayTradingBacktestStrategy()

        tuned = strategy.with_parameters(stop_loss=-0.02, max_daily_trades=2, momentum_lookback=10)

        assert tuned.risk.stop_loss == Decimal("-0.02")
        assert tuned.risk.max_daily_trades == 2
        assert tuned.voter_settings.momentum_lookback == 10
        assert strategy.risk.stop_loss == Decimal("-0.03")

    def test_with_parameters_validates(self):
        strategy = DayTradingBacktestStrategy()

        with pytest.raises(ValueError):
            strategy.with_parameters(unknown=1)
        with pytest.raises(ValueError):
            strategy.with_parameters(take_profit=0.2)
        with pytest.raises(ValueError):
            strategy.with_parameters(short_window=30)

    def test_custom_voters_survive_parameter_changes(self):
        voters = always(SignalAction.BUY)

        tuned = DayTradingBacktestStrategy(voters=voters).with_parameters(take_profit=0.04)

        assert tuned.voters is voters

    def test_get_parameters(self):
        params = DayTradingBacktestStrategy().get_parameters()

        assert params["stop_loss"] == "-0.03"
        assert params["momentum_lookback"] == 5
        assert params["voters"] == ["momentum", "ma_cross", "volume_surge", "range_position", "rsi"]


class TestBarVoters:
    """Test the default voter panel."""

    def test_flat_history_gives_hold_from_every_voter(self, make_bars):
        history = make_bars(days=30)

        votes = [v.vote("AAPL", history, date(2026, 3, 1)) for v in default_voters()]

        assert all(v is not None and v.signal == SignalAction.HOLD for v in votes)

    def test_short_history_abstains(self, make_bars):
        votes = [v.vote("AAPL", make_bars(days=3), date(2026, 3, 1)) for v in default_voters()]

        assert sum(1 for v in votes if v is None) == 4

    def test_voter_settings_validation(self):
        with pytest.raises(ValueError):
            VoterSettings(short_window=20, long_window=20)
        with pytest.raises(ValueError):
            VoterSettings(rsi_oversold=70, rsi_overbought=30)


class TestSyntheticPortfolio:
    """Test cash accounting."""

    def test_round_trip(self):
        portfolio = SyntheticPortfolio(Decimal("10000"), commission_rate=Decimal("0.01"))

        portfolio.open_position("AAPL", 10, Decimal("100"), date(2026, 1, 5))
        assert portfolio.cash == Decimal("8990")
        assert portfolio.market_value({"AAPL": Decimal("110")}) == Decimal("10090")

        trade = portfolio.close_position("AAPL", Decimal("110"), date(2026, 1, 5), ExitReason.FORCED_CLOSE)

        assert trade.trade_id == "T00001"
        assert trade.pnl == Decimal("100")
        assert trade.commission == Decimal("21")
        assert trade.net_pnl == Decimal("79")
        assert portfolio.cash == Decimal("10079")

    def test_affordable_quantity_includes_costs(self):
        portfolio = SyntheticPortfolio(Decimal("1000"), commission_rate=Decimal("0.01"))

        assert portfolio.affordable_quantity(Decimal("100")) == 9
        assert portfolio.affordable_quantity(Decimal("100"), budget=Decimal("500")) == 4

    def test_invalid_operations(self):
        portfolio = SyntheticPortfolio(Decimal("1000"))

        with pytest.raises(BacktestError):
            portfolio.open_position("AAPL", 20, Decimal("100"), date(2026, 1, 5))
        with pytest.raises(BacktestError):
            portfolio.close_position("AAPL", Decimal("100"), date(2026, 1, 5), ExitReason.SIGNAL)


class TestMetrics:
    """Test return and risk statistics."""

    def test_value_at_risk(self):
        returns = [-0.05, -0.02, 0.0, 0.01, 0.03] * 4

        assert value_at_risk(returns, 0.05) == -0.05
        assert value_at_risk(returns, 0.25) == -0.02
        assert conditional_value_at_risk(returns, 0.25) == pytest.approx((-0.05 * 4 - 0.02 * 2) / 6)
        assert value_at_risk([], 0.05) == 0.0

    @pytest.mark.asyncio
    async def test_performance_metrics_from_trades(self, make_bars, risk_config):
        strategy = DayTradingBacktestStrategy(risk=risk_config, voters=always(SignalAction.BUY))
        bars = make_bars(days=2, open_="100", high="101", low="96", close="98")
        result = await BacktestEngine(COST_FREE).run_backtest(strategy, {"AAPL": bars})

        perf = result.performance
        assert perf.total_trades == 2
        assert perf.losing_trades == 2
        assert perf.win_rate == 0.0
        assert perf.profit_factor == 0.0
        assert perf.largest_loss == -300.0
        assert perf.max_drawdown == pytest.approx(600.0)

    def test_zero_variance_gives_zero_ratios(self):
        daily = [
            DailyReturn(
                date=date(2026, 1, d), daily_return=0.001, cumulative_return=0.0,
                cumulative_return_percent=0.0, portfolio_value=100.0, drawdown=0.0, drawdown_percent=0.0,
            )
            for d in range(1, 6)
        ]

        perf = calculate_performance_metrics([], daily, 100.0)

        assert perf.sharpe_ratio == 0.0
        assert perf.sortino_ratio == 0.0

    def test_monthly_returns(self):
        def day(d, value):
            return DailyReturn(
                date=d, daily_return=0.0, cumulative_return=value - 1000, cumulative_return_percent=0.0,
                portfolio_value=value, drawdown=0.0, drawdown_percent=0.0,
            )

        months = calculate_monthly_returns(
            [day(date(2026, 1, 30), 1100.0), day(date(2026, 2, 2), 1050.0), day(date(2026, 2, 27), 1155.0)],
            1000.0,
        )

        assert [m.month for m in months] == ["2026-01", "2026-02"]
        assert months[0].monthly_return == pytest.approx(100.0)
        assert months[1].monthly_return_percent == pytest.approx(5.0)


class TestBarLoading:
    """Test CSV bar loading."""

    def test_load_csv_with_symbol_from_stem(self, tmp_path):
        path = tmp_path / "aapl.csv"
        path.write_text(
            "date,open,high,low,close,volume\n"
            "2026-01-06,101,102,100,101.5,1200\n"
            "2026-01-05,100,101,99,100.5,1000\n"
        )

        bars = load_bars_csv(path)

        assert list(bars) == ["AAPL"]
        assert [b.date for b in bars["AAPL"]] == [date(2026, 1, 5), date(2026, 1, 6)]
        assert bars["AAPL"][0].close == Decimal("100.5")

    def test_load_csv_with_symbol_column(self, tmp_path):
        path = tmp_path / "universe.csv"
        path.write_text(
            "Date,Symbol,Open,High,Low,Close\n"
            "2026-01-05,MSFT,400,405,398,401\n"
            "2026-01-05,AAPL,100,101,99,100\n"
        )

        bars = load_bars([path])

        assert sorted(bars) == ["AAPL", "MSFT"]
        assert bars["MSFT"][0].volume == 0
        assert bars["AAPL"][0].date == date(2026, 1, 5)

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("date,open,close\n2026-01-05,1,1\n")

        with pytest.raises(BacktestError, match="missing columns"):
            load_bars_csv(path)

    def test_invalid_row(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("date,open,high,low,close\n2026-01-05,1,1,2,1\n")

        with pytest.raises(BacktestError, match="bad.csv:2"):
            load_bars_csv(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")

        with pytest.raises(BacktestError, match="cannot parse"):
            load_bars_csv(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(BacktestError):
            load_bars_csv(tmp_path / "nope.csv")
