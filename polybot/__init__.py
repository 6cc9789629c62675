from polybot.engine import DecisionEngine, compute_edges, select_entry
from polybot.ledger import PositionLedger
from polybot.order_book import OrderBookCache
from polybot.price_feed import PriceFeed
from polybot.probability import parse_strike, probability

__all__ = [
  "DecisionEngine",
  "OrderBookCache",
  "PositionLedger",
  "PriceFeed",
  "compute_edges",
  "parse_strike",
  "probability",
  "select_entry",
]
