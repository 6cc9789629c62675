"""Value types shared by the feed, the ledger and the decision engine."""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple


class Outcome(str, Enum):
  YES = "YES"
  NO = "NO"


class Side(str, Enum):
  BUY = "BUY"
  SELL = "SELL"


class TradeStatus(str, Enum):
  OPEN = "OPEN"
  PARTIAL = "PARTIAL"
  CLOSED = "CLOSED"


class DirectionBias(str, Enum):
  BOTH = "BOTH"
  YES_ONLY = "YES_ONLY"
  NO_ONLY = "NO_ONLY"

  def allows(self, outcome: Outcome) -> bool:
    if self is DirectionBias.BOTH:
      return True
    if self is DirectionBias.YES_ONLY:
      return outcome is Outcome.YES
    return outcome is Outcome.NO


@dataclass(frozen=True)
class Market:
  """Binary market. token_ids[0] is the YES token, token_ids[1] the NO token."""
  id: str
  question: str
  token_ids: Tuple[str, str]
  end_date: datetime
  slug: str = ""
  description: str = ""

  def __post_init__(self):
    if len(self.token_ids) != 2:
      raise ValueError(f"Market {self.id} must have exactly two outcome tokens, got {len(self.token_ids)}")
    object.__setattr__(self, "token_ids", tuple(self.token_ids))
    if self.end_date.tzinfo is None:
      object.__setattr__(self, "end_date", self.end_date.replace(tzinfo=timezone.utc))

  def token_for(self, outcome: Outcome) -> str:
    return self.token_ids[0] if outcome is Outcome.YES else self.token_ids[1]

  def seconds_left(self, now: float) -> float:
    return self.end_date.timestamp() - now


@dataclass(frozen=True)
class PriceSample:
  timestamp: float  # unix seconds
  price: float


@dataclass(frozen=True)
class OrderBookLevel:
  price: float
  size: float


@dataclass(frozen=True)
class OrderBook:
  bids: List[OrderBookLevel] = field(default_factory=list)  # descending by price
  asks: List[OrderBookLevel] = field(default_factory=list)  # ascending by price

  def best_bid(self, default: float = 0.0) -> float:
    return self.bids[0].price if self.bids else default

  def best_ask(self, default: float = 1.0) -> float:
    return self.asks[0].price if self.asks else default

  @property
  def empty(self) -> bool:
    return not self.bids and not self.asks


@dataclass(frozen=True)
class TradeLog:
  """Immutable record; the ledger swaps in a copy when the status moves."""
  id: str
  timestamp: float
  market_id: str
  question: str
  outcome: Outcome
  side: Side
  entry_price: float
  size: float
  btc_price_at_entry: float
  model_prob: float
  market_prob: float
  volatility_at_entry: float
  status: TradeStatus = TradeStatus.OPEN


@dataclass(frozen=True)
class RiskPolicy:
  """Operator-owned thresholds. Validated on construction, read-only inside a tick."""
  max_position_size: float = 10.0
  edge_threshold: float = 3.0
  min_prob_threshold: float = 80.0
  direction_bias: DirectionBias = DirectionBias.BOTH
  take_profit_pct: float = 20.0
  sell_amount_pct: float = 100.0
  max_buy_count_per_market: int = 3

  def __post_init__(self):
    try:
      bias = DirectionBias(self.direction_bias)
    except ValueError:
      raise ValueError(f"direction_bias must be one of {[b.value for b in DirectionBias]}, got {self.direction_bias!r}") from None
    object.__setattr__(self, "direction_bias", bias)
    if self.max_position_size <= 0:
      raise ValueError("max_position_size must be > 0")
    if self.edge_threshold < 0:
      raise ValueError("edge_threshold must be >= 0")
    if not 0 <= self.min_prob_threshold <= 100:
      raise ValueError("min_prob_threshold must be within [0, 100]")
    if self.take_profit_pct <= 0:
      raise ValueError("take_profit_pct must be > 0")
    if not 0 < self.sell_amount_pct <= 100:
      raise ValueError("sell_amount_pct must be within (0, 100]")
    if int(self.max_buy_count_per_market) != self.max_buy_count_per_market or self.max_buy_count_per_market < 1:
      raise ValueError("max_buy_count_per_market must be a positive integer")


@dataclass
class EngineRunState:
  is_active: bool = False
  processing: threading.Lock = field(default_factory=threading.Lock, repr=False)
  last_trade_at: float = 0.0
  trades_count: int = 0


@dataclass(frozen=True)
class TradingContext:
  """Signing key, L2 API credentials and the settlement (proxy/funder) address."""
  private_key: Optional[str] = None
  api_key: Optional[str] = None
  api_secret: Optional[str] = None
  api_passphrase: Optional[str] = None
  funder_address: Optional[str] = None

  @property
  def is_configured(self) -> bool:
    return all([
      self.private_key,
      self.api_key,
      self.api_secret,
      self.api_passphrase,
      self.funder_address,
    ])

  def missing(self) -> List[str]:
    names = ["private_key", "api_key", "api_secret", "api_passphrase", "funder_address"]
    return [n for n in names if not getattr(self, n)]


@dataclass(frozen=True)
class OrderResult:
  success: bool
  order_id: str = ""
  error: str = ""
  status_code: Optional[int] = None


@dataclass(frozen=True)
class AccountBalances:
  balance: float = 0.0  # USDC on the proxy wallet
  allowance: float = 0.0  # USDC approved for the exchange
  native: float = 0.0  # POL for gas on the EOA