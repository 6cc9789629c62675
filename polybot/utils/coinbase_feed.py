"""
Coinbase WebSocket client for the BTC-USD reference price.
Subscribes to the ticker channel and hands every trade price to the registered callbacks.
Reconnects on its own; consumers only see (price, timestamp) calls.
"""
import json
import threading
import time
from typing import Callable, List, Optional

import websocket
from loguru import logger

from polybot.config import COINBASE_PRODUCT_ID, COINBASE_WS_URL

PriceCallback = Callable[[float, float], None]

_PING_INTERVAL = 20
_PING_TIMEOUT = 10
_RECONNECT_DELAY = 5
_MAX_RECONNECT_DELAY = 60

_lock = threading.Lock()
_callbacks: List[PriceCallback] = []
_ws: Optional[websocket.WebSocketApp] = None
_thread: Optional[threading.Thread] = None
_stop = threading.Event()
_connected = False


def _dispatch(price: float, ts: float) -> None:
  with _lock:
    callbacks = list(_callbacks)
  for cb in callbacks:
    try:
      cb(price, ts)
    except Exception as e:
      logger.warning(f"Price callback failed: {e}")


def parse_ticker(message: str) -> Optional[float]:
  """Ticker message -> price, None for anything else."""
  if not message or not message.strip():
    return None
  try:
    data = json.loads(message)
  except ValueError:
    return None
  if not isinstance(data, dict) or data.get("type") != "ticker" or not data.get("price"):
    return None
  try:
    price = float(data["price"])
  except (TypeError, ValueError):
    return None
  return price if price > 0 else None


def _on_message(_, message: str) -> None:
  global _connected
  price = parse_ticker(message)
  if price is None:
    return
  if not _connected:
    _connected = True
    logger.success(f"Coinbase WebSocket connected: BTC @ ${price:,.2f}")
  _dispatch(price, time.time())


def _on_error(_, error: Exception) -> None:
  err_str = str(error).lower()
  if "getaddrinfo failed" in err_str or "11001" in err_str or "name or service not known" in err_str:
    logger.warning(f"Coinbase WebSocket DNS/network error: cannot resolve {COINBASE_WS_URL}")
  else:
    logger.warning(f"Coinbase WebSocket error: {error}")


def _on_close(_, close_status_code, close_msg) -> None:
  global _connected
  _connected = False
  logger.info(f"Coinbase WebSocket closed: {close_status_code} {close_msg}")


def _on_open(ws: websocket.WebSocketApp) -> None:
  sub = {
    "type": "subscribe",
    "product_ids": [COINBASE_PRODUCT_ID],
    "channels": ["ticker"],
  }
  ws.send(json.dumps(sub))
  logger.info(f"Coinbase subscribed to ticker ({COINBASE_PRODUCT_ID})")


def _run_loop() -> None:
  global _ws
  delay = _RECONNECT_DELAY
  while not _stop.is_set():
    try:
      _ws = websocket.WebSocketApp(
        COINBASE_WS_URL,
        on_message=_on_message,
        on_error=_on_error,
        on_close=_on_close,
        on_open=_on_open,
      )
      _ws.run_forever(ping_interval=_PING_INTERVAL, ping_timeout=_PING_TIMEOUT)
    except Exception as e:
      logger.warning(f"Coinbase connection failed: {e}")
    if _stop.is_set():
      break
    _stop.wait(delay)
    delay = min(delay * 1.5, _MAX_RECONNECT_DELAY)
  _ws = None


def subscribe(callback: PriceCallback) -> Callable[[], None]:
  """Register a (price, timestamp) callback. Returns an unsubscribe function."""
  with _lock:
    _callbacks.append(callback)

  def _unsubscribe() -> None:
    with _lock:
      if callback in _callbacks:
        _callbacks.remove(callback)

  return _unsubscribe


def start(callback: Optional[PriceCallback] = None) -> None:
  """Start the stream in a daemon thread (idempotent), optionally registering a callback."""
  global _thread
  if callback is not None:
    subscribe(callback)
  if _thread is not None and _thread.is_alive():
    return
  _stop.clear()
  _thread = threading.Thread(target=_run_loop, daemon=True, name="coinbase-feed")
  _thread.start()
  logger.info("Initializing BTC reference feed...")


def stop() -> None:
  """Signal the stream thread to stop and close the connection."""
  global _ws
  _stop.set()
  if _ws:
    try:
      _ws.close()
    except Exception as e:
      logger.debug(f"Coinbase close: {e}")
    _ws = None
