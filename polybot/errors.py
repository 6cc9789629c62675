"""Error taxonomy for the engine and its order-submission path."""
from typing import Optional

AUTH_REMEDIATION = [
  "FIX: 1. Check POLYMARKET_API_KEY / POLYMARKET_API_SECRET / POLYMARKET_API_PASSPHRASE, or unset them to re-derive.",
  "FIX: 2. Verify the credentials were derived from the same PRIVATE_KEY that signs orders.",
  "FIX: 3. Ensure POLYMARKET_FUNDER_ADDRESS is the proxy wallet bound to that key.",
]

_AUTH_MARKERS = ("unauthorized", "invalid api key")


class PolybotError(Exception):
  """Base class for errors raised by polybot."""


class ConfigurationError(PolybotError):
  """Signing key, API credentials or settlement address missing. Fatal for the current activation."""


class OrderSubmissionError(PolybotError):
  """Order rejected or not delivered. Never retried within the tick."""

  def __init__(self, message: str, status_code: Optional[int] = None):
    self.message = message
    self.status_code = status_code
    super().__init__(message)

  @property
  def is_auth(self) -> bool:
    return is_auth_error(self.message, self.status_code)

  def __str__(self) -> str:
    if self.status_code is not None and str(self.status_code) not in self.message:
      return f"[{self.status_code}] {self.message}"
    return self.message


class InvalidTransitionError(PolybotError, ValueError):
  """Trade status change not allowed by OPEN -> {PARTIAL, CLOSED}, PARTIAL -> CLOSED."""


def is_auth_error(message: str, status_code: Optional[int] = None) -> bool:
  """True for signature / credential rejections (HTTP 401, 'unauthorized', 'invalid api key')."""
  if status_code == 401:
    return True
  msg = (message or "").lower()
  return "401" in msg or any(m in msg for m in _AUTH_MARKERS)
