"""Polymarket CLOB client: trading context, limit orders, and wallet balances."""
import threading
import uuid
from typing import Any, Optional

import requests
from loguru import logger

from polybot.config import (
  PAPER_MODE,
  POLYGON_RPC,
  POLYMARKET_API_KEY,
  POLYMARKET_API_PASSPHRASE,
  POLYMARKET_API_SECRET,
  POLYMARKET_CHAIN_ID,
  POLYMARKET_CLOB_HOST,
  POLYMARKET_FUNDER_ADDRESS,
  POLYMARKET_SIGNATURE_TYPE,
  PRIVATE_KEY,
)
from polybot.errors import ConfigurationError
from polybot.models import AccountBalances, OrderResult, Side, TradingContext
from polybot.utils.logger import FailureStreak

_USDC_DECIMALS = 6
_MIN_PRICE = 0.01
_MAX_PRICE = 0.99

_balance_failures = FailureStreak("Balance source")

PAPER_CONTEXT = TradingContext(
  private_key="paper",
  api_key="paper",
  api_secret="paper",
  api_passphrase="paper",
  funder_address="paper",
)

_clob_client = None
_context: Optional[TradingContext] = None
_client_lock = threading.Lock()


def configure(context: TradingContext) -> None:
  """Install the trading context used for signing; drops any cached client."""
  global _context, _clob_client
  with _client_lock:
    _context = context
    _clob_client = None


def _get_client():
  """Lazy-init L2 CLOB client. Raises ConfigurationError without a signer or credentials."""
  global _clob_client
  ctx = _context
  if ctx is None:
    raise ConfigurationError("Trading context not configured")
  if not ctx.is_configured:
    raise ConfigurationError(f"Trading context incomplete: missing {', '.join(ctx.missing())}")
  with _client_lock:
    if _clob_client is None:
      from py_clob_client.client import ClobClient
      from py_clob_client.clob_types import ApiCreds

      client = ClobClient(
        host=POLYMARKET_CLOB_HOST,
        key=ctx.private_key,
        chain_id=POLYMARKET_CHAIN_ID,
        signature_type=POLYMARKET_SIGNATURE_TYPE,
        funder=ctx.funder_address,
      )
      client.set_api_creds(ApiCreds(
        api_key=ctx.api_key,
        api_secret=ctx.api_secret,
        api_passphrase=ctx.api_passphrase,
      ))
      _clob_client = client
    return _clob_client


def _derive_api_creds(private_key: str):
  """L1 call: create or derive the L2 API key for this signer. None on failure."""
  try:
    from py_clob_client.client import ClobClient

    kwargs = {
      "host": POLYMARKET_CLOB_HOST,
      "key": private_key,
      "chain_id": POLYMARKET_CHAIN_ID,
      "signature_type": POLYMARKET_SIGNATURE_TYPE,
    }
    if POLYMARKET_FUNDER_ADDRESS:
      kwargs["funder"] = POLYMARKET_FUNDER_ADDRESS
    return ClobClient(**kwargs).create_or_derive_api_creds()
  except Exception as e:
    logger.error(f"Failed to derive API credentials: {e}")
    return None


def load_trading_context() -> TradingContext:
  """
  Build the trading context from env. In PAPER_MODE a placeholder context is returned.
  Missing API credentials are derived from PRIVATE_KEY; missing pieces stay None.
  """
  if PAPER_MODE:
    return PAPER_CONTEXT
  if not PRIVATE_KEY:
    return TradingContext(funder_address=POLYMARKET_FUNDER_ADDRESS)

  api_key, api_secret, api_passphrase = POLYMARKET_API_KEY, POLYMARKET_API_SECRET, POLYMARKET_API_PASSPHRASE
  if not (api_key and api_secret and api_passphrase):
    logger.info("Deriving Polymarket API credentials...")
    creds = _derive_api_creds(PRIVATE_KEY)
    if creds is not None:
      api_key, api_secret, api_passphrase = creds.api_key, creds.api_secret, creds.api_passphrase
      logger.success("API credentials derived successfully.")

  if not POLYMARKET_FUNDER_ADDRESS:
    logger.warning("POLYMARKET_FUNDER_ADDRESS not set - create a proxy wallet on Polymarket and configure it.")

  return TradingContext(
    private_key=PRIVATE_KEY,
    api_key=api_key,
    api_secret=api_secret,
    api_passphrase=api_passphrase,
    funder_address=POLYMARKET_FUNDER_ADDRESS,
  )


def _clamp_price(price: float) -> float:
  return round(min(_MAX_PRICE, max(_MIN_PRICE, price)), 2)


def _status_code(e: Exception) -> Optional[int]:
  code = getattr(e, "status_code", None)
  try:
    return int(code) if code is not None else None
  except (TypeError, ValueError):
    return None


def place_limit_order(side: Side, token_id: str, price: float, size: float) -> OrderResult:
  """
  Sign and post a GTC limit order. Never raises: failures come back as OrderResult(success=False)
  with the error message and HTTP status (if any) so the engine can classify them.
  """
  side = Side(side)
  limit_price = _clamp_price(price)
  units = round(size, 2)
  if units <= 0:
    return OrderResult(success=False, error=f"Order size must be > 0 (got {size})")

  if PAPER_MODE:
    order_id = f"paper-{uuid.uuid4().hex[:10]}"
    logger.info(f"PAPER ORDER: {side.value} {units:.2f} @ {limit_price:.2f} | token {token_id[:10]}... | {order_id}")
    return OrderResult(success=True, order_id=order_id)

  try:
    client = _get_client()
    from py_clob_client.clob_types import OrderArgs, OrderType
    from py_clob_client.order_builder.constants import BUY, SELL

    args = OrderArgs(
      token_id=token_id,
      price=limit_price,
      size=units,
      side=BUY if side is Side.BUY else SELL,
    )
    signed = client.create_order(args)
    resp: Any = client.post_order(signed, OrderType.GTC)
  except ConfigurationError as e:
    return OrderResult(success=False, error=str(e))
  except Exception as e:
    err = str(e).lower()
    if "insufficient balance" in err or "not enough balance" in err:
      logger.error("Insufficient balance - fund your Polymarket wallet")
    elif "allowance" in err or "approve" in err:
      logger.error("Insufficient allowance - approve the exchange on Polymarket UI")
    logger.debug(f"place_limit_order failed: {e}")
    message = getattr(e, "error_msg", None) or str(e)
    return OrderResult(success=False, error=str(message), status_code=_status_code(e))

  if not isinstance(resp, dict):
    return OrderResult(success=True, order_id=str(resp or ""))
  if resp.get("success") is False or resp.get("errorMsg"):
    return OrderResult(success=False, error=str(resp.get("errorMsg") or "order rejected"))
  return OrderResult(success=True, order_id=str(resp.get("orderID", "")))


def _usdc(raw: Any) -> float:
  try:
    return float(raw) / 10 ** _USDC_DECIMALS
  except (TypeError, ValueError):
    return 0.0


def _native_balance(address: str) -> float:
  """POL balance of the EOA via JSON-RPC eth_getBalance. 0 on failure."""
  try:
    resp = requests.post(
      POLYGON_RPC,
      json={"jsonrpc": "2.0", "id": 1, "method": "eth_getBalance", "params": [address, "latest"]},
      timeout=10,
    )
    result = resp.json().get("result")
    native = int(result, 16) / 1e18 if result else 0.0
  except (requests.exceptions.RequestException, ValueError, TypeError, AttributeError) as e:
    _balance_failures.failed("native", f"Native balance fetch error: {e}")
    return 0.0
  _balance_failures.recovered("native")
  return native


def get_account_balances() -> AccountBalances:
  """USDC balance/allowance of the proxy wallet and native POL of the signer. Zeros on any failure."""
  if PAPER_MODE:
    return AccountBalances()
  try:
    client = _get_client()
  except ConfigurationError as e:
    logger.debug(f"Balance sync skipped: {e}")
    return AccountBalances()
  except Exception as e:
    _balance_failures.failed("client", f"Balance sync failed: {e}")
    return AccountBalances()
  _balance_failures.recovered("client")

  balance = allowance = native = 0.0
  try:
    from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

    result = client.get_balance_allowance(BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)) or {}
    balance = _usdc(result.get("balance"))
    if "allowance" in result:
      allowance = _usdc(result.get("allowance"))
    else:
      allowances = result.get("allowances") or {}
      allowance = max((_usdc(v) for v in allowances.values()), default=0.0)
    _balance_failures.recovered("usdc")
  except Exception as e:
    _balance_failures.failed("usdc", f"USDC balance fetch error: {e}")

  try:
    address = client.get_address()
  except Exception as e:
    _balance_failures.failed("address", f"Signer address unavailable: {e}")
  else:
    _balance_failures.recovered("address")
    native = _native_balance(address)

  return AccountBalances(balance=balance, allowance=allowance, native=native)
