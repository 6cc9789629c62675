"""Process-wide loguru setup: coloured stderr, optional rotating file, failure-streak logging."""

import sys
import threading
from typing import Optional, Set

from loguru import logger

_STDERR_FORMAT = (
  "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
  "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
  """Replace loguru's default handler. log_file rotates at 10 MB and keeps a week."""
  logger.remove()
  logger.add(sys.stderr, format=_STDERR_FORMAT, level=level)
  if log_file:
    logger.add(
      log_file,
      level="DEBUG",
      rotation="10 MB",
      retention="7 days",
      enqueue=True,
    )


class FailureStreak:
  """
  Logs the first failure of a streak at WARNING and the repeats at DEBUG,
  so a source that stays down shows up once in the operator event log.
  """

  def __init__(self, name: str):
    self.name = name
    self._lock = threading.Lock()
    self._failing: Set[str] = set()

  def failed(self, key: str, message: str) -> None:
    with self._lock:
      first = key not in self._failing
      self._failing.add(key)
    if first:
      logger.warning(message)
    else:
      logger.debug(message)

  def recovered(self, key: str) -> None:
    with self._lock:
      if key not in self._failing:
        return
      self._failing.discard(key)
    logger.info(f"{self.name} {key} recovered")

  def is_failing(self, key: str) -> bool:
    with self._lock:
      return key in self._failing
