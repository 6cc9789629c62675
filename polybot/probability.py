"""Momentum + distance-to-strike heuristic for the YES probability of a BTC market."""
import math
import re

_STRIKE_RE = re.compile(r"\$(\d[\d,]*(?:\.\d+)?)")


def parse_strike(question: str, fallback: float) -> float:
  """First $-amount in the question ("$97,500" -> 97500.0); fallback when absent or not positive."""
  match = _STRIKE_RE.search(question or "")
  if not match:
    return fallback
  strike = float(match.group(1).replace(",", ""))
  return strike if strike > 0 else fallback


def probability(
  current: float,
  strike: float,
  minutes_to_expiry: float,
  volatility: float,
  lagged: float,
) -> int:
  """
  Model probability (percent, integer in [1, 99]) that the market resolves YES.

  move = (current - lagged) / lagged * 1000, weighted 2x; distance to strike
  = (current - strike) / strike * 1000, weighted 1x. minutes_to_expiry and
  volatility are accepted but not weighted.
  """
  if current == 0 or lagged == 0:
    return 50
  move = (current - lagged) / lagged * 1000
  prob = 50 + move * 2
  if strike:
    distance = (current - strike) / strike * 1000
    prob += distance * 1
  if math.isnan(prob):
    return 50
  # Clamp before rounding so overflowed inputs still land on a bound
  prob = min(99.0, max(1.0, prob))
  return int(math.floor(prob + 0.5))
