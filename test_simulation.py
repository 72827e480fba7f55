import math

import pytest

pd = pytest.importorskip("pandas")
np = pytest.importorskip("numpy")

from valtrend.config import ConfigError, StrategyConfig
from valtrend.dataset import DailyBar, PriceDataError
from valtrend.simulation import (
    MarketContext,
    SimulationError,
    SimulationState,
    TRADE_BUY,
    TRADE_INIT,
    TRADE_SELL,
    decide_leverage,
    initialize_position,
    rebalance_to_leverage,
    run_strategy,
    simulate_day,
)
from valtrend.valuation import valuation_leverage


def _bars(closes, start="2020-01-01"):
    dates = pd.bdate_range(start, periods=len(closes))
    return [DailyBar(date=d.date().isoformat(), close=float(c)) for d, c in zip(dates, closes)]


def _config(**overrides):
    values = dict(capital=1_000_000.0, min_cap=5.0, max_cap=15.0, total_shares=1e8, lot_size=100)
    values.update(overrides)
    return StrategyConfig(**values)


def _cash_state(prev_leverage=1.0, capital=1_000_000.0):
    return SimulationState(cash=capital, shares=0, prev_leverage=prev_leverage, peak_nav=capital)


def test_flat_prices_only_trade_on_day_zero():
    bars = _bars([10.0] * 25)
    config = _config()

    result = run_strategy(bars, config)

    assert len(result.trades) == 1
    assert result.trades[0].type == TRADE_INIT
    assert result.trades[0].volume == 58_000
    assert len(result.history) == 24
    target = valuation_leverage(1e9, config.low_mv, config.high_mv)
    for day in result.days:
        assert day.rule == "valuation"
        assert day.leverage == pytest.approx(target)
        assert not day.in_protect
    assert result.grid_lines == []


def test_history_values_are_cash_plus_holdings():
    bars = _bars(np.linspace(10.0, 11.0, 30))
    result = run_strategy(bars, _config())
    assert [p.close for p in result.history] == [b.close for b in bars[1:]]
    assert [p.date for p in result.history] == [b.date for b in bars[1:]]
    assert all(p.val > 0 for p in result.history)


def test_initial_position_rounds_down_to_lots_and_pays_fee():
    bar = DailyBar(date="2020-01-01", close=10.0)
    state, trade = initialize_position(bar, _config())
    assert state.shares == 58_000
    assert state.cash == pytest.approx(1_000_000.0 - 580_000.0 * 1.00025)
    assert state.prev_leverage == pytest.approx(valuation_leverage(1e9, 5e8, 1.5e9))
    assert state.peak_nav == 1_000_000.0
    assert not state.in_protect
    assert trade.type == TRADE_INIT and trade.price == 10.0


def test_initial_position_without_a_full_lot_logs_nothing():
    bar = DailyBar(date="2020-01-01", close=10.0)
    state, trade = initialize_position(bar, _config(capital=500.0))
    assert trade is None
    assert state.shares == 0
    assert state.cash == 500.0


def test_rebalance_floors_to_lot_boundary():
    # 150 shares worth of exposure at lot size 100 buys a single lot
    cash, shares, kind, volume = rebalance_to_leverage(10_000.0, 0, 10.0, 0.15, 100, 0.00025)
    assert (shares, kind, volume) == (100, TRADE_BUY, 100)
    assert cash == pytest.approx(10_000.0 - 1_000.0 * 1.00025)


def test_rebalance_skips_moves_smaller_than_a_lot():
    cash, shares, kind, volume = rebalance_to_leverage(10_000.0, 0, 10.0, 0.05, 100, 0.00025)
    assert (cash, shares, kind, volume) == (10_000.0, 0, None, 0)


def test_rebalance_sells_at_most_the_shares_held():
    # negative NAV asks for more than the whole position
    cash, shares, kind, volume = rebalance_to_leverage(-5_000.0, 300, 10.0, 0.5, 100, 0.0)
    assert (shares, kind, volume) == (0, TRADE_SELL, 300)
    assert cash == pytest.approx(-2_000.0)


def test_rebalance_ignores_sell_smaller_than_a_lot_after_clamp():
    cash, shares, kind, volume = rebalance_to_leverage(-2_000.0, 50, 10.0, 0.5, 100, 0.0)
    assert (cash, shares, kind, volume) == (-2_000.0, 50, None, 0)


def test_drawdown_enters_protection_with_sixty_percent_cut():
    ctx = MarketContext.build(_bars([10.0] * 25), _config())
    state = SimulationState(cash=200_000.0, shares=60_000, prev_leverage=0.75, peak_nav=1_000_000.0)

    decision = decide_leverage(state, 22, ctx)

    assert decision.rule == "protect_enter"
    assert decision.in_protect
    assert decision.drawdown == pytest.approx(0.2)
    assert decision.leverage == pytest.approx(0.3)
    assert decision.peak_nav == pytest.approx(800_000.0)


def test_protection_entry_cut_is_clamped_to_min_leverage():
    ctx = MarketContext.build(_bars([10.0] * 25), _config())
    state = SimulationState(cash=200_000.0, shares=60_000, prev_leverage=0.02, peak_nav=1_000_000.0)
    assert decide_leverage(state, 22, ctx).leverage == 0.01


def test_no_protection_near_valuation_floor():
    # mv = 5.2e8 sits within 5% of the 5e8 floor
    ctx = MarketContext.build(_bars([5.2] * 25), _config())
    state = SimulationState(cash=200_000.0, shares=100_000, prev_leverage=0.75, peak_nav=1_000_000.0)
    decision = decide_leverage(state, 22, ctx)
    assert not decision.in_protect
    assert decision.rule == "valuation"


def test_protected_flat_day_holds_previous_leverage():
    ctx = MarketContext.build(_bars([10.0] * 25), _config())
    state = SimulationState(cash=500_000.0, shares=50_000, prev_leverage=0.4, peak_nav=1_000_000.0, in_protect=True)
    decision = decide_leverage(state, 22, ctx)
    assert decision.rule == "protect_hold"
    assert decision.in_protect
    assert decision.leverage == pytest.approx(0.4)


def _rising_then_dip():
    closes = [10.0 * 1.03**k for k in range(30)]
    closes.append(closes[-1] * 0.97)
    return closes


def test_uptrend_dip_boosts_previous_leverage():
    ctx = MarketContext.build(_bars(_rising_then_dip()), _config(max_cap=30.0))
    assert ctx.signals.is_uptrend(30)
    decision = decide_leverage(_cash_state(prev_leverage=1.0), 30, ctx)
    assert decision.rule == "uptrend_dip"
    assert decision.leverage == pytest.approx(1.05)


def test_uptrend_dip_boost_is_clamped_to_max_leverage():
    ctx = MarketContext.build(_bars(_rising_then_dip()), _config(max_cap=30.0))
    decision = decide_leverage(_cash_state(prev_leverage=1.95), 30, ctx)
    assert decision.leverage == 2.0


def test_uptrend_never_delevers_on_valuation():
    ctx = MarketContext.build(_bars(_rising_then_dip()), _config(max_cap=30.0))
    decision = decide_leverage(_cash_state(prev_leverage=1.9), 29, ctx)
    assert decision.rule == "uptrend_hold"
    assert decision.target < 1.9
    assert decision.leverage == pytest.approx(1.9)

    raised = decide_leverage(_cash_state(prev_leverage=0.05), 29, ctx)
    assert raised.leverage == pytest.approx(raised.target)


def test_downtrend_ratchets_leverage_down_by_ma_gap():
    closes = [20.0 * 0.98**k for k in range(30)]
    ctx = MarketContext.build(_bars(closes), _config(max_cap=30.0))
    assert ctx.signals.is_downtrend(25)

    decision = decide_leverage(_cash_state(prev_leverage=1.2), 25, ctx)

    mid, long_ = ctx.signals.ma_mid[25], ctx.signals.ma_long[25]
    reduce = min(1.0, abs((mid - long_) / long_) * 10)
    assert decision.rule == "downtrend"
    assert decision.leverage == pytest.approx(1.2 * (1 - reduce * 0.3))
    assert decision.leverage < 1.2


def test_crash_after_rally_triggers_protection_on_first_deep_drawdown():
    closes = list(np.linspace(10.0, 12.0, 25)) + [9.6] * 6
    result = run_strategy(_bars(closes), _config(max_cap=30.0))

    entered = [i for i, d in enumerate(result.days) if d.rule == "protect_enter"]
    assert entered == [24]
    idx = entered[0]
    day, prev = result.days[idx], result.days[idx - 1]
    assert all(not d.in_protect for d in result.days[:idx])
    assert all(d.drawdown <= 0.15 for d in result.days[:idx])
    assert day.drawdown > 0.15
    assert day.in_protect
    assert day.leverage == pytest.approx(prev.leverage * 0.4)
    assert day.peak_nav < prev.peak_nav
    crash_trades = [t for t in result.trades if t.date == day.date]
    assert [t.type for t in crash_trades] == [TRADE_SELL]


def test_state_invariants_hold_every_day():
    rng = np.random.default_rng(11)
    closes = 20.0 * np.exp(np.cumsum(rng.normal(0.0, 0.025, size=250)))
    bars = _bars(closes)
    config = _config(min_cap=10.0, max_cap=40.0)
    ctx = MarketContext.build(bars, config)

    state, trade = initialize_position(bars[0], config)
    for i in range(1, len(bars)):
        before = state.shares
        state, trade, point, record = simulate_day(state, i, bars[i], ctx, config)
        assert state.shares >= 0
        assert state.shares % config.lot_size == 0
        assert 0.01 <= record.leverage <= 2.0
        assert point.val == pytest.approx(state.cash + state.shares * bars[i].close)
        if trade is None:
            assert state.shares == before
        else:
            assert trade.date == bars[i].date and trade.price == bars[i].close
            if trade.type == TRADE_BUY:
                assert state.shares == before + trade.volume
            else:
                assert state.shares == before - trade.volume


def test_run_is_deterministic():
    rng = np.random.default_rng(5)
    closes = 15.0 * np.exp(np.cumsum(rng.normal(0.0, 0.02, size=120)))
    bars = _bars(closes)
    first = run_strategy(bars, _config(min_cap=10.0, max_cap=30.0))
    second = run_strategy(bars, _config(min_cap=10.0, max_cap=30.0))
    assert first.history == second.history
    assert first.trades == second.trades


def test_run_accepts_dataframe_input():
    frame = pd.DataFrame(
        {"close": [10.0] * 5},
        index=pd.date_range("2021-03-01", periods=5, freq="D"),
    )
    result = run_strategy(frame, _config())
    assert result.start_date == "2021-03-01"
    assert len(result.history) == 4


def test_single_bar_produces_no_history():
    result = run_strategy(_bars([10.0]), _config())
    assert result.history == []
    assert len(result.trades) == 1


def test_payload_matches_front_end_shape():
    result = run_strategy(_bars([10.0] * 3), _config())
    payload = result.to_payload()
    assert set(payload) == {"history", "trades", "gridLines"}
    assert payload["gridLines"] == []
    assert set(payload["history"][0]) == {"date", "val", "close"}
    assert payload["trades"][0] == {"date": "2020-01-01", "type": "INIT", "price": 10.0}


def test_frames_have_expected_columns():
    result = run_strategy(_bars([10.0] * 3), _config())
    assert list(result.history_frame().columns) == ["date", "val", "close"]
    assert list(result.trades_frame().columns) == ["date", "type", "price", "volume"]
    assert "rule" in result.days_frame().columns


def test_invalid_inputs_fail_fast():
    with pytest.raises(ValueError):
        run_strategy([], _config())
    with pytest.raises(ConfigError):
        run_strategy(_bars([10.0] * 3), _config(min_cap=15.0, max_cap=15.0))
    with pytest.raises(ConfigError):
        run_strategy(_bars([10.0] * 3), _config(capital=0.0))
    with pytest.raises(PriceDataError):
        run_strategy(_bars([10.0, 0.0, 10.0]), _config())


def test_non_finite_leverage_raises(monkeypatch):
    import valtrend.simulation as simulation

    monkeypatch.setattr(simulation, "valuation_leverage", lambda *args, **kwargs: math.nan)
    ctx = MarketContext.build(_bars([10.0] * 3), _config())
    with pytest.raises(SimulationError):
        decide_leverage(_cash_state(), 1, ctx)
