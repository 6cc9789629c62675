"""
Rolling BTC reference-price history.
Written by the stream thread (on_price), read by the engine tick (volatility, lagged_price).
"""
import math
import threading
import time
from typing import Callable, List, Optional

from loguru import logger

from polybot.config import LAG_MINUTES, PRICE_WINDOW_SECONDS
from polybot.models import PriceSample

_DEFAULT_VOLATILITY = 5.0
_MIN_VOLATILITY = 1.0


class PriceFeed:
  def __init__(
    self,
    window_seconds: float = PRICE_WINDOW_SECONDS,
    clock: Callable[[], float] = time.time,
  ):
    self.window_seconds = window_seconds
    self._clock = clock
    self._lock = threading.Lock()
    self._samples: List[PriceSample] = []  # ascending timestamp
    self._latest: float = 0.0

  def record(self, sample: PriceSample) -> None:
    """Append a sample and drop everything older than the window. The newest sample always survives."""
    with self._lock:
      if self._samples and sample.timestamp < self._samples[-1].timestamp:
        # Out-of-order tick: insert in place to keep the series ascending
        idx = len(self._samples)
        while idx > 0 and self._samples[idx - 1].timestamp > sample.timestamp:
          idx -= 1
        self._samples.insert(idx, sample)
      else:
        self._samples.append(sample)
        self._latest = sample.price
      newest = self._samples[-1]
      cutoff = newest.timestamp - self.window_seconds
      kept = [s for s in self._samples if s.timestamp >= cutoff]
      self._samples = kept or [newest]

  def on_price(self, price: float, timestamp: Optional[float] = None) -> None:
    """Stream callback: (price, timestamp) -> record."""
    ts = timestamp if timestamp is not None else self._clock()
    try:
      self.record(PriceSample(timestamp=float(ts), price=float(price)))
    except (TypeError, ValueError) as e:
      logger.debug(f"Price sample rejected: {e}")

  def latest(self) -> float:
    """Most recent price, 0.0 before the first sample."""
    with self._lock:
      return self._latest

  def samples(self) -> List[PriceSample]:
    with self._lock:
      return list(self._samples)

  def volatility(self) -> float:
    """Standard deviation of retained prices, floored at 1.0; 5.0 with fewer than two samples."""
    with self._lock:
      prices = [s.price for s in self._samples]
    if len(prices) < 2:
      return _DEFAULT_VOLATILITY
    mean = sum(prices) / len(prices)
    variance = sum((p - mean) ** 2 for p in prices) / len(prices)
    return max(math.sqrt(variance), _MIN_VOLATILITY)

  def lagged_price(self, lag_minutes: float = LAG_MINUTES, now: Optional[float] = None) -> float:
    """
    Price of the retained sample nearest to now - lag_minutes.
    Ties go to the first sample in stored order. Empty history returns the latest price.
    """
    target = (now if now is not None else self._clock()) - lag_minutes * 60
    with self._lock:
      if not self._samples:
        return self._latest
      closest = self._samples[0]
      for s in self._samples[1:]:
        if abs(s.timestamp - target) < abs(closest.timestamp - target):
          closest = s
      return closest.price
