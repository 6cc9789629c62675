"""Operator event log: captures loguru output into a bounded, newest-first buffer with a severity tag."""
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional

from loguru import logger

from polybot.config import EVENT_LOG_SIZE


@dataclass(frozen=True)
class SystemEvent:
  time: str
  severity: str  # INFO, WARN, SUCCESS, ERROR
  message: str


def _level_to_severity(level_name: str) -> str:
  """Map loguru level to event severity (INFO, WARN, SUCCESS, ERROR)."""
  name = (level_name or "").upper()
  if "ERROR" in name or "CRITICAL" in name:
    return "ERROR"
  if "WARN" in name:
    return "WARN"
  if "SUCCESS" in name:
    return "SUCCESS"
  return "INFO"


def _format_time(record) -> str:
  t = record.get("time")
  if hasattr(t, "strftime"):
    return t.strftime("%H:%M:%S")
  return datetime.now().strftime("%H:%M:%S")


class EventLog:
  def __init__(self, max_events: int = EVENT_LOG_SIZE, level: str = "INFO"):
    self.max_events = max_events
    self.level = level
    self._events: Deque[SystemEvent] = deque(maxlen=max_events)
    self._lock = threading.Lock()
    self._sink_id: Optional[int] = None

  def _sink(self, message) -> None:
    record = message.record
    level_obj = record.get("level")
    level_name = getattr(level_obj, "name", "INFO") if level_obj else "INFO"
    event = SystemEvent(
      time=_format_time(record),
      severity=_level_to_severity(level_name),
      message=record.get("message", ""),
    )
    with self._lock:
      self._events.append(event)

  def start(self) -> None:
    """Register the loguru sink. Idempotent."""
    if self._sink_id is not None:
      return
    self._sink_id = logger.add(self._sink, level=self.level, format="{message}")

  def stop(self) -> None:
    if self._sink_id is None:
      return
    try:
      logger.remove(self._sink_id)
    except ValueError:
      pass
    self._sink_id = None

  def events(self, severity: Optional[str] = None) -> List[SystemEvent]:
    """Newest first, optionally filtered by severity."""
    with self._lock:
      items = list(reversed(self._events))
    if severity:
      items = [e for e in items if e.severity == severity.upper()]
    return items

  def clear(self) -> None:
    with self._lock:
      self._events.clear()
