import pytest

from polybot import engine as engine_module
from polybot.engine import DecisionEngine, compute_edges, select_entry
from polybot.ledger import PositionLedger
from polybot.models import (
    DirectionBias,
    OrderResult,
    Outcome,
    RiskPolicy,
    Side,
    TradeLog,
    TradeStatus,
    TradingContext,
)
from polybot.order_book import OrderBookCache
from polybot.price_feed import PriceFeed

from conftest import NO_TOKEN, YES_TOKEN, RecordingSubmit, make_book

CONTEXT = TradingContext(
    private_key="0xkey",
    api_key="key",
    api_secret="secret",
    api_passphrase="pass",
    funder_address="0xfunder",
)


@pytest.fixture
def model_prob(monkeypatch):
    """Pin the model output; tests set holder['value']."""
    holder = {"value": 50}
    monkeypatch.setattr(engine_module, "probability", lambda *args: holder["value"])
    return holder


def _engine(market, book_source, clock, policy=None, submit=None, ledger=None, cooldown=15, context=CONTEXT):
    eng = DecisionEngine(
        price_feed=PriceFeed(clock=clock),
        books=OrderBookCache(fetch=book_source, clock=clock),
        ledger=ledger,
        policy=policy or RiskPolicy(),
        submit_order=submit or RecordingSubmit(),
        context=context,
        clock=clock,
        cooldown_seconds=cooldown,
    )
    eng.select_market(market)
    assert eng.start()
    return eng


def _open_trade(trade_id="t1", market_id="0xmarket01", outcome=Outcome.YES, entry=0.50, size=20.0):
    return TradeLog(
        id=trade_id,
        timestamp=900.0,
        market_id=market_id,
        question="Bitcoin Up or Down",
        outcome=outcome,
        side=Side.BUY,
        entry_price=entry,
        size=size,
        btc_price_at_entry=100_000.0,
        model_prob=85,
        market_prob=entry * 100,
        volatility_at_entry=5.0,
    )


# --- pure decision rules ---


def test_compute_edges():
    yes_edge, no_edge = compute_edges(85, 0.78, 0.25)
    assert yes_edge == pytest.approx(7.0)
    assert no_edge == pytest.approx(-10.0)


def test_select_entry_yes_has_priority():
    policy = RiskPolicy(min_prob_threshold=0, edge_threshold=0)
    signal = select_entry(50, 0.40, 0.40, policy)
    assert signal.outcome is Outcome.YES
    assert signal.price == 0.40


def test_select_entry_direction_bias():
    policy = RiskPolicy(min_prob_threshold=0, edge_threshold=0, direction_bias=DirectionBias.NO_ONLY)
    signal = select_entry(50, 0.40, 0.40, policy)
    assert signal.outcome is Outcome.NO
    yes_only = RiskPolicy(min_prob_threshold=0, edge_threshold=0, direction_bias="YES_ONLY")
    assert select_entry(10, 0.95, 0.50, yes_only) is None


def test_select_entry_no_side():
    signal = select_entry(15, 0.20, 0.78, RiskPolicy())
    assert signal.outcome is Outcome.NO
    assert signal.edge == pytest.approx(7.0)


def test_select_entry_threshold_boundaries():
    policy = RiskPolicy(edge_threshold=3, min_prob_threshold=80)
    assert select_entry(80, 0.76, 0.9, policy) is not None
    assert select_entry(79, 0.70, 0.9, policy) is None
    assert select_entry(85, 0.83, 0.9, policy) is None


def test_policy_validation():
    with pytest.raises(ValueError):
        RiskPolicy(max_position_size=0)
    with pytest.raises(ValueError):
        RiskPolicy(sell_amount_pct=0)
    with pytest.raises(ValueError):
        RiskPolicy(min_prob_threshold=101)
    with pytest.raises(ValueError):
        RiskPolicy(direction_bias="SIDEWAYS")
    with pytest.raises(ValueError):
        RiskPolicy(max_buy_count_per_market=0)


# --- tick behaviour ---


def test_entry_buys_yes_one_cent_above_ask(market, book_source, clock, model_prob):
    model_prob["value"] = 85
    book_source.set(yes=make_book(bids=[(0.76, 10)], asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit)

    eng.tick()

    assert len(submit.orders) == 1
    side, token, price, size = submit.orders[0]
    assert side is Side.BUY
    assert token == YES_TOKEN
    assert price == pytest.approx(0.79)
    assert size == pytest.approx(10 / 0.78)

    [trade] = eng.history()
    assert trade.outcome is Outcome.YES
    assert trade.entry_price == 0.78
    assert trade.market_prob == pytest.approx(78)
    assert trade.model_prob == 85
    assert trade.status is TradeStatus.OPEN
    assert eng.state.trades_count == 1
    assert eng.state.last_trade_at == clock.now


def test_entry_buys_no_token(market, book_source, clock, model_prob):
    model_prob["value"] = 10
    book_source.set(yes=make_book(asks=[(0.12, 100)]), no=make_book(asks=[(0.80, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit)
    eng.tick()
    assert [(o[0], o[1]) for o in submit.orders] == [(Side.BUY, NO_TOKEN)]
    assert submit.orders[0][2] == pytest.approx(0.81)


def test_at_most_one_buy_per_tick(market, book_source, clock, model_prob):
    model_prob["value"] = 50
    book_source.set(yes=make_book(asks=[(0.40, 100)]), no=make_book(asks=[(0.40, 100)]))
    submit = RecordingSubmit()
    policy = RiskPolicy(min_prob_threshold=0, edge_threshold=0)
    eng = _engine(market, book_source, clock, policy=policy, submit=submit)
    eng.tick()
    assert len(submit.orders) == 1
    assert submit.orders[0][1] == YES_TOKEN


def test_cooldown_blocks_next_entry(market, book_source, clock, model_prob):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit, cooldown=15)

    eng.tick()
    clock.advance(5)
    eng.tick()
    assert len(submit.orders) == 1

    clock.advance(11)
    eng.tick()
    assert len(submit.orders) == 2


def test_buy_count_cap_per_market(market, book_source, clock, model_prob, log_messages):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit()
    policy = RiskPolicy(max_buy_count_per_market=2)
    eng = _engine(market, book_source, clock, policy=policy, submit=submit, cooldown=0)

    for _ in range(4):
        eng.tick()
        clock.advance(1)

    assert len(submit.orders) == 2
    assert eng.ledger.buy_count(market.id) == 2
    assert any("buy limit reached" in m for m in log_messages)


def test_take_profit_full_close(market, book_source, clock, model_prob):
    ledger = PositionLedger()
    ledger.append(_open_trade(entry=0.50, size=20.0))
    book_source.set(yes=make_book(bids=[(0.61, 50)], asks=[(0.63, 50)]), no=make_book(asks=[(0.40, 50)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, ledger=ledger, submit=submit)

    eng.tick()

    assert len(submit.orders) == 1
    side, token, price, size = submit.orders[0]
    assert side is Side.SELL
    assert token == YES_TOKEN
    assert price == pytest.approx(0.60)
    assert size == pytest.approx(20.0)
    assert ledger.get("t1").status is TradeStatus.CLOSED


def test_take_profit_partial_is_not_reevaluated(market, book_source, clock, model_prob):
    ledger = PositionLedger()
    ledger.append(_open_trade(entry=0.50, size=20.0))
    book_source.set(yes=make_book(bids=[(0.61, 50)]), no=make_book())
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, ledger=ledger, submit=submit, policy=RiskPolicy(sell_amount_pct=50))

    eng.tick()
    clock.advance(5)
    eng.tick()

    assert len(submit.orders) == 1
    assert submit.orders[0][3] == pytest.approx(10.0)
    assert ledger.get("t1").status is TradeStatus.PARTIAL


def test_take_profit_below_target_holds(market, book_source, clock, model_prob):
    ledger = PositionLedger()
    ledger.append(_open_trade(outcome=Outcome.NO, entry=0.50))
    book_source.set(yes=make_book(bids=[(0.90, 10)]), no=make_book(bids=[(0.59, 10)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, ledger=ledger, submit=submit)
    eng.tick()
    assert submit.orders == []
    assert ledger.get("t1").status is TradeStatus.OPEN


def test_empty_books_use_defaults(market, book_source, clock, model_prob):
    model_prob["value"] = 99
    ledger = PositionLedger()
    ledger.append(_open_trade())
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, ledger=ledger, submit=submit)
    eng.tick()
    # ask 1.0 leaves no edge, bid 0 never triggers take profit
    assert submit.orders == []


def test_reentrant_tick_is_skipped(market, book_source, clock, model_prob, log_messages):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit, cooldown=0)
    submit.on_submit = eng.tick

    eng.tick()

    assert len(submit.orders) == 1
    assert len(eng.history()) == 1
    assert any("Skipping tick" in m for m in log_messages)
    assert not eng.state.processing.locked()


def test_missing_context_halts_engine(market, book_source, clock, model_prob, log_messages):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit)
    eng.set_context(TradingContext(private_key="0xkey"))

    eng.tick()

    assert submit.orders == []
    assert not eng.state.is_active
    assert any("Engine halted" in m and "funder_address" in m for m in log_messages)


def test_start_refuses_without_context(market, book_source, clock):
    eng = DecisionEngine(
        price_feed=PriceFeed(clock=clock),
        books=OrderBookCache(fetch=book_source),
        clock=clock,
    )
    assert not eng.start()
    assert not eng.state.is_active


def test_inactive_or_unselected_engine_does_nothing(market, book_source, clock, model_prob):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit)
    eng.stop()
    eng.tick()
    eng.start()
    eng.select_market(None)
    eng.tick()
    assert submit.orders == []
    assert book_source.calls == []


def test_auth_failure_is_reported_with_remediation(market, book_source, clock, model_prob, log_messages):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit(OrderResult(success=False, error="Unauthorized/Invalid api key", status_code=401))
    eng = _engine(market, book_source, clock, submit=submit)

    eng.tick()

    assert eng.history() == []
    assert eng.state.last_trade_at == 0.0
    assert eng.state.is_active
    assert "AUTH ERROR: API key rejected by Polymarket." in log_messages
    assert sum(1 for m in log_messages if m.startswith("FIX:")) == 3


def test_other_failure_is_reported_plainly(market, book_source, clock, model_prob, log_messages):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit(RuntimeError("not enough balance"))
    eng = _engine(market, book_source, clock, submit=submit)

    eng.tick()

    assert eng.history() == []
    assert any(m == "Entry execution failed: not enough balance" for m in log_messages)
    assert not any(m.startswith("AUTH ERROR") for m in log_messages)
    assert not eng.state.processing.locked()


def test_failed_take_profit_keeps_position_open(market, book_source, clock, model_prob):
    ledger = PositionLedger()
    ledger.append(_open_trade())
    book_source.set(yes=make_book(bids=[(0.70, 10)]))
    submit = RecordingSubmit(OrderResult(success=False, error="order rejected"))
    eng = _engine(market, book_source, clock, ledger=ledger, submit=submit)
    eng.tick()
    assert len(submit.orders) == 1
    assert ledger.get("t1").status is TradeStatus.OPEN


def test_critical_error_keeps_engine_running(market, book_source, clock, monkeypatch, log_messages):
    def broken(*args):
        raise RuntimeError("model blew up")

    monkeypatch.setattr(engine_module, "probability", broken)
    eng = _engine(market, book_source, clock)

    eng.tick()

    assert eng.state.is_active
    assert not eng.state.processing.locked()
    assert any("Critical engine error" in m for m in log_messages)


def test_after_trade_hook(market, book_source, clock, model_prob):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    calls = []

    def hook():
        calls.append(1)
        raise RuntimeError("wallet sync down")

    eng = _engine(market, book_source, clock)
    eng.after_trade = hook
    eng.tick()
    assert calls == [1]
    assert len(eng.history()) == 1


def test_update_policy_applies_next_tick(market, book_source, clock, model_prob):
    model_prob["value"] = 85
    book_source.set(yes=make_book(asks=[(0.78, 100)]), no=make_book(asks=[(0.25, 100)]))
    submit = RecordingSubmit()
    eng = _engine(market, book_source, clock, submit=submit, policy=RiskPolicy(edge_threshold=10))
    eng.tick()
    assert submit.orders == []

    eng.update_policy(RiskPolicy(edge_threshold=5, max_position_size=20))
    eng.tick()
    assert submit.orders[0][3] == pytest.approx(20 / 0.78)

    with pytest.raises(TypeError):
        eng.update_policy({"edge_threshold": 1})


def test_model_inputs_and_status(market, book_source, clock):
    eng = _engine(market, book_source, clock)
    eng.price_feed.on_price(100_000.0, timestamp=clock.now - 900)
    eng.price_feed.on_price(101_000.0, timestamp=clock.now)

    inputs = eng.model_inputs(market)

    assert inputs.btc_price == 101_000.0
    assert inputs.lagged_price == 100_000.0
    assert inputs.strike == 101_000.0  # no $-amount in the question
    assert inputs.probability == 70
    assert inputs.minutes_to_expiry > 0

    status = eng.status()
    assert status.is_active
    assert status.market_id == market.id
    assert status.model == inputs
    assert status.open_positions == 0
