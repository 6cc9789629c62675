"""BTC up/down market lookup on the Gamma API, plus the roll-over rule for expiring markets."""
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests
from loguru import logger

from polybot.config import GAMMA_API, MARKET_ASSET
from polybot.models import Market

_REQUEST_RETRIES = 3
_REQUEST_RETRY_DELAY = 2
_WINDOW_SECONDS = 900  # 15 min
_ROLLOVER_GAP_SECONDS = 60


def _parse_list(raw: Any) -> List[str]:
  """Gamma returns some list fields as JSON-encoded strings."""
  if isinstance(raw, list):
    return [str(x).strip() for x in raw]
  if isinstance(raw, str):
    s = raw.strip()
    if s.startswith("["):
      try:
        parsed = json.loads(s)
        return [str(x).strip() for x in parsed] if isinstance(parsed, list) else []
      except (json.JSONDecodeError, TypeError):
        pass
    return [x.strip().strip('"') for x in s.split(",") if x.strip()]
  return []


def _parse_end_date(raw: Optional[str], fallback_ts: int) -> datetime:
  if raw:
    try:
      end = datetime.fromisoformat(raw.replace("Z", "+00:00"))
      return end if end.tzinfo else end.replace(tzinfo=timezone.utc)
    except ValueError:
      logger.debug(f"Failed to parse date: {raw}")
  return datetime.fromtimestamp(fallback_ts, tz=timezone.utc)


def parse_event(event: Dict[str, Any], window_ts: int) -> Optional[Market]:
  """First open market of a Gamma event -> Market, None when closed or missing tokens."""
  markets = event.get("markets") or []
  if not markets:
    return None
  m = markets[0]
  if m.get("closed"):
    return None
  token_ids = _parse_list(m.get("clobTokenIds"))
  if len(token_ids) < 2:
    return None
  end_date = _parse_end_date(m.get("endDate") or event.get("endDate"), window_ts + _WINDOW_SECONDS)
  return Market(
    id=m.get("conditionId") or m.get("questionId") or event.get("slug") or "",
    question=m.get("question") or event.get("title") or "",
    token_ids=(token_ids[0], token_ids[1]),
    end_date=end_date,
    slug=event.get("slug") or "",
    description=m.get("description") or event.get("description") or "",
  )


def _fetch_event(slug: str) -> Optional[Dict[str, Any]]:
  last_err = None
  for attempt in range(_REQUEST_RETRIES):
    try:
      resp = requests.get(f"{GAMMA_API}/events", params={"slug": slug}, timeout=10)
      break
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
      last_err = e
      if attempt < _REQUEST_RETRIES - 1:
        time.sleep(_REQUEST_RETRY_DELAY)
  else:
    logger.warning(f"Network error for {slug} after {_REQUEST_RETRIES} tries: {last_err}")
    return None
  if resp.status_code != 200:
    return None
  try:
    data = resp.json()
  except ValueError:
    return None
  return data[0] if isinstance(data, list) and data else None


def fetch_btc_markets(
  asset: str = MARKET_ASSET,
  windows: Sequence[int] = range(0, 4),
  now: Optional[float] = None,
) -> List[Market]:
  """Active 15-min up/down markets for the current and upcoming windows, ordered by end date."""
  now = time.time() if now is None else now
  base_ts = (int(now) // _WINDOW_SECONDS) * _WINDOW_SECONDS
  out: List[Market] = []
  for i in windows:
    window_ts = base_ts + i * _WINDOW_SECONDS
    slug = f"{asset}-updown-15m-{window_ts}"
    try:
      event = _fetch_event(slug)
      market = parse_event(event, window_ts) if event else None
    except (requests.exceptions.RequestException, ValueError, TypeError, AttributeError) as e:
      logger.error(f"Error processing {slug}: {e}")
      continue
    if market and market.seconds_left(now) > 0:
      out.append(market)
  out.sort(key=lambda m: m.end_date)
  return out


def next_market(markets: Sequence[Market], current: Optional[Market]) -> Optional[Market]:
  """First market ending more than 60s after the current one; else the earliest listed."""
  if not markets:
    return None
  if current is None:
    return markets[0]
  cutoff = current.end_date.timestamp() + _ROLLOVER_GAP_SECONDS
  for m in markets:
    if m.end_date.timestamp() > cutoff:
      return m
  return markets[0]
