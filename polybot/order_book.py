"""
CLOB order-book snapshots for the YES/NO tokens of the selected market.
Fetch failures never reach the caller: they come back as an empty book.
"""
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from polybot.config import POLYMARKET_CLOB_HOST
from polybot.models import Market, OrderBook, OrderBookLevel
from polybot.utils.logger import FailureStreak

_REQUEST_TIMEOUT = 5
_DISPLAY_DEFAULT_BID = 0.5

_fetch_failures = FailureStreak("Order book")


def _parse_levels(raw: Any) -> List[OrderBookLevel]:
  out: List[OrderBookLevel] = []
  for item in raw or []:
    try:
      p = float(item.get("price", 0))
      s = float(item.get("size", 0))
    except (AttributeError, TypeError, ValueError):
      continue
    if 0 < p < 1 and s >= 0:
      out.append(OrderBookLevel(price=p, size=s))
  return out


def normalize_book(data: Dict[str, Any]) -> OrderBook:
  """Raw /book payload -> bids descending, asks ascending."""
  bids = _parse_levels(data.get("bids", data.get("buys")))
  asks = _parse_levels(data.get("asks", data.get("sells")))
  bids.sort(key=lambda l: l.price, reverse=True)
  asks.sort(key=lambda l: l.price)
  return OrderBook(bids=bids, asks=asks)


def fetch_order_book(token_id: str) -> OrderBook:
  """GET {CLOB}/book?token_id=...; empty book on any failure."""
  if not token_id:
    return OrderBook()
  try:
    resp = requests.get(
      f"{POLYMARKET_CLOB_HOST.rstrip('/')}/book",
      params={"token_id": token_id},
      timeout=_REQUEST_TIMEOUT,
    )
    if resp.status_code != 200:
      _fetch_failures.failed(token_id, f"Order book {token_id[:10]}: HTTP {resp.status_code}")
      return OrderBook()
    data = resp.json()
    if not isinstance(data, dict):
      _fetch_failures.failed(token_id, f"Order book {token_id[:10]}: unexpected payload")
      return OrderBook()
  except (requests.exceptions.RequestException, ValueError) as e:
    _fetch_failures.failed(token_id, f"Order book fetch failed for {token_id[:10]}: {e}")
    return OrderBook()
  _fetch_failures.recovered(token_id)
  return normalize_book(data)


class OrderBookCache:
  """Latest YES/NO books for one market, replaced wholesale on every refresh."""

  def __init__(self, fetch: Callable[[str], OrderBook] = fetch_order_book, clock: Callable[[], float] = time.time):
    self._fetch = fetch
    self._clock = clock
    self._lock = threading.Lock()
    self._market_id: Optional[str] = None
    self._yes = OrderBook()
    self._no = OrderBook()
    self._refreshed_at = 0.0

  def refresh(self, market: Market) -> Tuple[OrderBook, OrderBook]:
    yes_book = self._safe_fetch(market.token_ids[0])
    no_book = self._safe_fetch(market.token_ids[1])
    with self._lock:
      self._market_id = market.id
      self._yes = yes_book
      self._no = no_book
      self._refreshed_at = self._clock()
    return yes_book, no_book

  def _safe_fetch(self, token_id: str) -> OrderBook:
    try:
      book = self._fetch(token_id)
    except Exception as e:
      _fetch_failures.failed(token_id, f"Order book source raised for {token_id[:10]}: {e}")
      return OrderBook()
    _fetch_failures.recovered(token_id)
    return book

  def snapshot(self) -> Tuple[OrderBook, OrderBook, float]:
    """(yes_book, no_book, refreshed_at). Age is the caller's concern."""
    with self._lock:
      return self._yes, self._no, self._refreshed_at

  def market_id(self) -> Optional[str]:
    with self._lock:
      return self._market_id

  def display_probabilities(self) -> Tuple[int, int]:
    """Market-implied YES/NO percentages from best bids; an empty bid side reads as 50."""
    with self._lock:
      yes_bid = self._yes.best_bid(default=_DISPLAY_DEFAULT_BID)
      no_bid = self._no.best_bid(default=_DISPLAY_DEFAULT_BID)
    return round(yes_bid * 100), round(no_bid * 100)
