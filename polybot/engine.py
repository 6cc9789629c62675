"""
Decision engine. One tick every ENGINE_TICK_INTERVAL seconds:
  preconditions (active + market, trading context, processing lock)
  A. take-profit exits for OPEN positions of the selected market
  B. cooldown gate after the last fill
  C. entry: YES first, then NO, at most one BUY per tick
Order placement holds the processing lock for the whole submit-and-record sequence.
"""
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

from loguru import logger

from polybot.clob_client import place_limit_order
from polybot.config import COOLDOWN_SECONDS, LAG_MINUTES
from polybot.errors import AUTH_REMEDIATION, OrderSubmissionError
from polybot.ledger import PositionLedger
from polybot.models import (
  EngineRunState,
  Market,
  OrderResult,
  Outcome,
  RiskPolicy,
  Side,
  TradeLog,
  TradingContext,
)
from polybot.order_book import OrderBookCache
from polybot.price_feed import PriceFeed
from polybot.probability import parse_strike, probability

SubmitOrder = Callable[[Side, str, float, float], OrderResult]

_PRICE_STEP = 0.01  # cross the book by one cent on entries and exits


@dataclass(frozen=True)
class ModelInputs:
  btc_price: float
  strike: float
  minutes_to_expiry: float
  volatility: float
  lagged_price: float
  probability: int


@dataclass(frozen=True)
class EntrySignal:
  outcome: Outcome
  price: float  # best ask of the triggering side
  edge: float  # percentage points


@dataclass(frozen=True)
class EngineStatus:
  is_active: bool
  market_id: Optional[str]
  trades_count: int
  open_positions: int
  last_trade_at: float
  model: Optional[ModelInputs]
  policy: RiskPolicy


def compute_edges(model_prob: float, best_yes_ask: float, best_no_ask: float):
  """(yes_edge, no_edge) in percentage points."""
  yes_edge = (model_prob / 100 - best_yes_ask) * 100
  no_edge = ((100 - model_prob) / 100 - best_no_ask) * 100
  return yes_edge, no_edge


def select_entry(
  model_prob: float,
  best_yes_ask: float,
  best_no_ask: float,
  policy: RiskPolicy,
) -> Optional[EntrySignal]:
  """YES has priority; NO is only considered when YES does not trigger. Never both."""
  yes_edge, no_edge = compute_edges(model_prob, best_yes_ask, best_no_ask)
  bias = policy.direction_bias
  if (
    bias.allows(Outcome.YES)
    and model_prob >= policy.min_prob_threshold
    and yes_edge >= policy.edge_threshold
  ):
    return EntrySignal(outcome=Outcome.YES, price=best_yes_ask, edge=yes_edge)
  if (
    bias.allows(Outcome.NO)
    and (100 - model_prob) >= policy.min_prob_threshold
    and no_edge >= policy.edge_threshold
  ):
    return EntrySignal(outcome=Outcome.NO, price=best_no_ask, edge=no_edge)
  return None


class DecisionEngine:
  def __init__(
    self,
    price_feed: PriceFeed,
    books: OrderBookCache,
    ledger: Optional[PositionLedger] = None,
    policy: Optional[RiskPolicy] = None,
    submit_order: SubmitOrder = place_limit_order,
    context: Optional[TradingContext] = None,
    clock: Callable[[], float] = time.time,
    cooldown_seconds: float = COOLDOWN_SECONDS,
    lag_minutes: float = LAG_MINUTES,
    after_trade: Optional[Callable[[], None]] = None,
  ):
    self.price_feed = price_feed
    self.books = books
    self.ledger = ledger if ledger is not None else PositionLedger()
    self.state = EngineRunState()
    self.cooldown_seconds = cooldown_seconds
    self.lag_minutes = lag_minutes
    self.after_trade = after_trade
    self._policy = policy if policy is not None else RiskPolicy()
    self._submit_order = submit_order
    self._context = context
    self._clock = clock
    self._market: Optional[Market] = None
    self._last_model: Optional[ModelInputs] = None

  # --- operator controls ---

  @property
  def market(self) -> Optional[Market]:
    return self._market

  @property
  def policy(self) -> RiskPolicy:
    return self._policy

  def select_market(self, market: Optional[Market]) -> None:
    previous = self._market
    self._market = market
    if market is not None and (previous is None or previous.id != market.id):
      logger.info(f"Market selected: {market.question or market.id}")

  def update_policy(self, policy: RiskPolicy) -> None:
    """Swap the whole policy; the running tick keeps the one it started with."""
    if not isinstance(policy, RiskPolicy):
      raise TypeError(f"Expected RiskPolicy, got {type(policy).__name__}")
    self._policy = policy
    logger.info(
      f"Risk policy updated: max=${policy.max_position_size:g} | edge>={policy.edge_threshold:g}% | "
      f"prob>={policy.min_prob_threshold:g}% | bias={policy.direction_bias.value} | "
      f"TP={policy.take_profit_pct:g}% sell {policy.sell_amount_pct:g}% | max buys={policy.max_buy_count_per_market}"
    )

  def set_context(self, context: Optional[TradingContext]) -> None:
    self._context = context

  def start(self) -> bool:
    if self._context is None or not self._context.is_configured:
      logger.error("Startup aborted: wallet or credentials not configured")
      return False
    self.state.is_active = True
    policy = self._policy
    logger.success(">>> ALPHA ENGINE STARTED <<<")
    logger.info(f"Loading strategy config: MaxSize=${policy.max_position_size:g} | EdgeThreshold={policy.edge_threshold:g}%")
    return True

  def stop(self) -> None:
    """Takes effect at the next tick boundary; an order already in flight completes."""
    if self.state.is_active:
      logger.warning(">>> ENGINE SHUTDOWN <<<")
    self.state.is_active = False

  def history(self) -> List[TradeLog]:
    return self.ledger.history()

  def status(self) -> EngineStatus:
    market = self._market
    return EngineStatus(
      is_active=self.state.is_active,
      market_id=market.id if market else None,
      trades_count=self.state.trades_count,
      open_positions=len(self.ledger.open_positions(market.id)) if market else 0,
      last_trade_at=self.state.last_trade_at,
      model=self._last_model,
      policy=self._policy,
    )

  # --- model ---

  def model_inputs(self, market: Market, now: Optional[float] = None) -> ModelInputs:
    """Read the feed once and evaluate the probability model for this market."""
    now = self._clock() if now is None else now
    btc_price = self.price_feed.latest()
    lagged = self.price_feed.lagged_price(self.lag_minutes, now=now)
    volatility = self.price_feed.volatility()
    strike = parse_strike(market.question, fallback=btc_price)
    minutes_to_expiry = max(0.0, market.seconds_left(now) / 60)
    prob = probability(btc_price, strike, minutes_to_expiry, volatility, lagged)
    inputs = ModelInputs(
      btc_price=btc_price,
      strike=strike,
      minutes_to_expiry=minutes_to_expiry,
      volatility=volatility,
      lagged_price=lagged,
      probability=prob,
    )
    self._last_model = inputs
    return inputs

  # --- tick ---

  def tick(self) -> None:
    market = self._market
    if not self.state.is_active or market is None:
      return

    ctx = self._context
    if ctx is None or not ctx.is_configured:
      self.state.is_active = False
      missing = ", ".join(ctx.missing()) if ctx is not None else "trading context"
      logger.error(f"Engine halted: wallet or credentials not configured (missing {missing}).")
      return

    if self.state.processing.locked():
      logger.warning("Skipping tick: trade execution in progress.")
      return

    try:
      self._run_tick(market)
    except Exception as e:
      logger.exception(f"Critical engine error: {e}")

  def _run_tick(self, market: Market) -> None:
    policy = self._policy
    inputs = self.model_inputs(market)
    logger.info(f"[TICK] Analyzing market {market.id[:8]}... | BTC ${inputs.btc_price:,.2f} | model {inputs.probability}%")

    yes_book, no_book = self.books.refresh(market)
    best_yes_ask = yes_book.best_ask(default=1.0)
    best_no_ask = no_book.best_ask(default=1.0)
    best_yes_bid = yes_book.best_bid(default=0.0)
    best_no_bid = no_book.best_bid(default=0.0)
    logger.info(f"CLOB depth: YES ask {best_yes_ask:.2f} | NO ask {best_no_ask:.2f}")

    self._evaluate_exits(market, policy, best_yes_bid, best_no_bid)

    if self._clock() - self.state.last_trade_at < self.cooldown_seconds:
      logger.debug("Cooldown active. Skipping entry check.")
      return

    self._evaluate_entry(market, policy, inputs, best_yes_ask, best_no_ask)

  def _evaluate_exits(self, market: Market, policy: RiskPolicy, best_yes_bid: float, best_no_bid: float) -> None:
    open_trades = self.ledger.open_positions(market.id)
    if not open_trades:
      return
    logger.info(f"Checking {len(open_trades)} active positions for take profit...")
    for trade in open_trades:
      current_bid = best_yes_bid if trade.outcome is Outcome.YES else best_no_bid
      if current_bid <= 0 or trade.entry_price <= 0:
        continue
      pnl_pct = (current_bid - trade.entry_price) / trade.entry_price * 100
      if pnl_pct < policy.take_profit_pct:
        continue
      if not self.state.processing.acquire(blocking=False):
        logger.warning(f"Take profit for {trade.id} deferred: trade execution in progress.")
        return
      try:
        sell_size = trade.size * (policy.sell_amount_pct / 100)
        logger.success(f"TP TRIGGERED: +{pnl_pct:.1f}% gain. Selling {policy.sell_amount_pct:g}% of position.")
        self._submit(Side.SELL, market.token_for(trade.outcome), current_bid - _PRICE_STEP, sell_size)
        self.ledger.mark_closed(trade.id, fully_closed=policy.sell_amount_pct >= 100)
        logger.success("Take profit order executed successfully.")
        self._notify_trade()
      except OrderSubmissionError as e:
        self._report_order_failure("TP execution failed", e)
      finally:
        self.state.processing.release()

  def _evaluate_entry(
    self,
    market: Market,
    policy: RiskPolicy,
    inputs: ModelInputs,
    best_yes_ask: float,
    best_no_ask: float,
  ) -> None:
    prob = inputs.probability
    yes_edge, no_edge = compute_edges(prob, best_yes_ask, best_no_ask)
    logger.info(f"Alpha analysis: Model={prob}% | YES edge={yes_edge:.2f}% | NO edge={no_edge:.2f}%")

    signal = select_entry(prob, best_yes_ask, best_no_ask, policy)
    if signal is None:
      logger.debug("No valid edge above threshold.")
      return

    current_buys = self.ledger.buy_count(market.id)
    if current_buys >= policy.max_buy_count_per_market:
      logger.warning(f"Entry skipped: buy limit reached ({current_buys}/{policy.max_buy_count_per_market})")
      return

    if not self.state.processing.acquire(blocking=False):
      logger.warning("Entry skipped: trade execution in progress.")
      return
    try:
      units = policy.max_position_size / signal.price
      logger.success(
        f"OPPORTUNITY FOUND: buying {signal.outcome.value} @ {signal.price:.2f} "
        f"(size ${policy.max_position_size:g}, edge {signal.edge:.2f}%)"
      )
      self._submit(Side.BUY, market.token_for(signal.outcome), signal.price + _PRICE_STEP, units)
      self.ledger.append(TradeLog(
        id=uuid.uuid4().hex[:8],
        timestamp=self._clock(),
        market_id=market.id,
        question=market.question,
        outcome=signal.outcome,
        side=Side.BUY,
        entry_price=signal.price,
        size=units,
        btc_price_at_entry=inputs.btc_price,
        model_prob=prob,
        market_prob=signal.price * 100,
        volatility_at_entry=inputs.volatility,
      ))
      self.state.trades_count += 1
      self.state.last_trade_at = self._clock()
      logger.success("Order confirmed on Polygon network.")
      self._notify_trade()
    except OrderSubmissionError as e:
      self._report_order_failure("Entry execution failed", e)
    finally:
      self.state.processing.release()

  # --- execution ---

  def _submit(self, side: Side, token_id: str, price: float, size: float) -> OrderResult:
    """Call the execution collaborator; anything but a confirmed success raises OrderSubmissionError."""
    try:
      result = self._submit_order(side, token_id, price, size)
    except OrderSubmissionError:
      raise
    except Exception as e:
      raise OrderSubmissionError(str(e), getattr(e, "status_code", None)) from e
    if result is None or not result.success:
      error = result.error if result is not None else "no response"
      status_code = result.status_code if result is not None else None
      raise OrderSubmissionError(error or "order rejected", status_code)
    return result

  def _report_order_failure(self, prefix: str, err: OrderSubmissionError) -> None:
    if err.is_auth:
      logger.error("AUTH ERROR: API key rejected by Polymarket.")
      for line in AUTH_REMEDIATION:
        logger.error(line)
    else:
      logger.error(f"{prefix}: {err}")

  def _notify_trade(self) -> None:
    if self.after_trade is None:
      return
    try:
      self.after_trade()
    except Exception as e:
      logger.warning(f"Post-trade hook failed: {e}")
