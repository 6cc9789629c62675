"""Append-only trade log. Entries are never deleted; only their status moves forward."""
import dataclasses
import threading
from typing import Dict, List, Optional

from loguru import logger

from polybot.errors import InvalidTransitionError
from polybot.models import Side, TradeLog, TradeStatus


class PositionLedger:
  def __init__(self):
    self._lock = threading.Lock()
    self._entries: Dict[str, TradeLog] = {}  # insertion order is history order

  def append(self, entry: TradeLog) -> None:
    if entry.status is not TradeStatus.OPEN:
      raise InvalidTransitionError(f"New entry {entry.id} must be OPEN, got {entry.status.value}")
    with self._lock:
      if entry.id in self._entries:
        raise ValueError(f"Duplicate trade id {entry.id}")
      self._entries[entry.id] = entry

  def open_positions(self, market_id: str) -> List[TradeLog]:
    with self._lock:
      return [e for e in self._entries.values() if e.status is TradeStatus.OPEN and e.market_id == market_id]

  def buy_count(self, market_id: str) -> int:
    """Lifetime BUY entries for the market. Closing a position does not give the slot back."""
    with self._lock:
      return sum(1 for e in self._entries.values() if e.market_id == market_id and e.side is Side.BUY)

  def mark_closed(self, trade_id: str, fully_closed: bool) -> TradeLog:
    """OPEN -> CLOSED (fully_closed) or PARTIAL; PARTIAL -> CLOSED. Nothing leaves CLOSED."""
    with self._lock:
      entry = self._entries.get(trade_id)
      if entry is None:
        raise KeyError(trade_id)
      if entry.status is TradeStatus.CLOSED:
        raise InvalidTransitionError(f"Trade {trade_id} is already CLOSED")
      if entry.status is TradeStatus.PARTIAL and not fully_closed:
        raise InvalidTransitionError(f"Trade {trade_id} is already PARTIAL")
      updated = dataclasses.replace(entry, status=TradeStatus.CLOSED if fully_closed else TradeStatus.PARTIAL)
      self._entries[trade_id] = updated
      logger.debug(f"Trade {trade_id} -> {updated.status.value}")
      return updated

  def get(self, trade_id: str) -> Optional[TradeLog]:
    with self._lock:
      return self._entries.get(trade_id)

  def history(self) -> List[TradeLog]:
    with self._lock:
      return list(self._entries.values())

  def __len__(self) -> int:
    with self._lock:
      return len(self._entries)
