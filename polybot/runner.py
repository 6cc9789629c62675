"""
Independent periodic tasks around the engine. They only meet through the shared stores
(PriceFeed, OrderBookCache, PositionLedger, engine state).
"""
import threading
import time
from typing import Callable, List, Optional, Tuple

from loguru import logger

from polybot.clob_client import get_account_balances
from polybot.config import (
  BALANCE_SYNC_INTERVAL,
  ENGINE_TICK_INTERVAL,
  EXPIRY_CHECK_INTERVAL,
  MARKET_REFRESH_INTERVAL,
  ORDERBOOK_REFRESH_INTERVAL,
)
from polybot.engine import DecisionEngine
from polybot.models import AccountBalances, Market
from polybot.scanner import fetch_btc_markets, next_market
from polybot.utils import coinbase_feed


class PeriodicTask:
  """Runs fn every interval seconds on a daemon thread. Errors are logged, the loop keeps going."""

  def __init__(self, name: str, interval: float, fn: Callable[[], None], run_immediately: bool = True):
    self.name = name
    self.interval = interval
    self.fn = fn
    self.run_immediately = run_immediately
    self._stop = threading.Event()
    self._thread: Optional[threading.Thread] = None

  def _loop(self) -> None:
    if self.run_immediately:
      self._run_once()
    while not self._stop.wait(self.interval):
      self._run_once()

  def _run_once(self) -> None:
    try:
      self.fn()
    except Exception as e:
      logger.exception(f"{self.name} failed: {e}")

  def start(self) -> None:
    if self._thread is not None and self._thread.is_alive():
      return
    self._stop.clear()
    self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
    self._thread.start()

  def stop(self, timeout: Optional[float] = 1.0) -> None:
    """timeout=None waits for the running call to finish."""
    self._stop.set()
    if self._thread:
      self._thread.join(timeout=timeout)
      self._thread = None


class BotRunner:
  def __init__(
    self,
    engine: DecisionEngine,
    fetch_markets: Callable[[], List[Market]] = fetch_btc_markets,
    get_balances: Callable[[], AccountBalances] = get_account_balances,
    clock: Callable[[], float] = time.time,
  ):
    self.engine = engine
    self._fetch_markets = fetch_markets
    self._get_balances = get_balances
    self._clock = clock
    self._lock = threading.Lock()
    self._markets: List[Market] = []
    self._balances = AccountBalances()
    self._display_probs: Tuple[int, int] = (50, 50)
    self._refreshing = threading.Lock()
    self._unsubscribe_feed: Optional[Callable[[], None]] = None
    engine.after_trade = self._sync_wallet_async
    self.tick_task = PeriodicTask("engine-tick", ENGINE_TICK_INTERVAL, engine.tick, run_immediately=False)
    self.tasks = [
      PeriodicTask("market-refresh", MARKET_REFRESH_INTERVAL, self.refresh_markets),
      PeriodicTask("orderbook-refresh", ORDERBOOK_REFRESH_INTERVAL, self.refresh_books),
      PeriodicTask("balance-sync", BALANCE_SYNC_INTERVAL, self.sync_wallet),
      PeriodicTask("expiry-watch", EXPIRY_CHECK_INTERVAL, self.check_expiry, run_immediately=False),
      self.tick_task,
    ]

  # --- tasks ---

  def refresh_markets(self, auto_select_next: bool = False) -> None:
    if not self._refreshing.acquire(blocking=False):
      return
    try:
      try:
        markets = self._fetch_markets()
      except Exception as e:
        logger.error(f"Market refresh failed: {e}")
        return
      if not markets:
        return
      with self._lock:
        self._markets = list(markets)
      current = self.engine.market
      if current is None:
        self.engine.select_market(markets[0])
      elif auto_select_next:
        self.engine.select_market(next_market(markets, current))
    finally:
      self._refreshing.release()

  def refresh_books(self) -> None:
    market = self.engine.market
    if market is None:
      return
    self.engine.books.refresh(market)
    self.engine.model_inputs(market)
    probs = self.engine.books.display_probabilities()
    with self._lock:
      self._display_probs = probs

  def sync_wallet(self) -> None:
    balances = self._get_balances()
    with self._lock:
      self._balances = balances

  def _sync_wallet_async(self) -> None:
    threading.Thread(target=self.sync_wallet, daemon=True, name="balance-sync-once").start()

  def check_expiry(self) -> None:
    """Roll over to the next market once the selected one has expired."""
    market = self.engine.market
    if market is None:
      return
    if market.seconds_left(self._clock()) <= 0:
      logger.info(f"Market {market.id[:8]} expired; selecting next")
      self.refresh_markets(auto_select_next=True)

  # --- views ---

  def markets(self) -> List[Market]:
    with self._lock:
      return list(self._markets)

  def balances(self) -> AccountBalances:
    with self._lock:
      return self._balances

  def display_probabilities(self) -> Tuple[int, int]:
    with self._lock:
      return self._display_probs

  # --- lifecycle ---

  def start(self) -> None:
    logger.info("Initializing data feed subsystems...")
    self._unsubscribe_feed = coinbase_feed.subscribe(self.engine.price_feed.on_price)
    coinbase_feed.start()
    for task in self.tasks:
      task.start()

  def stop(self) -> None:
    """Stop all tasks. An order already being submitted is allowed to finish and reach the ledger."""
    self.engine.stop()
    if self.engine.state.processing.locked():
      logger.info("Waiting for in-flight order to complete...")
    for task in reversed(self.tasks):
      task.stop(timeout=None if task is self.tick_task else 1.0)
    if self._unsubscribe_feed:
      self._unsubscribe_feed()
      self._unsubscribe_feed = None
    coinbase_feed.stop()
