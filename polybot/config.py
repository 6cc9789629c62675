import os
from dotenv import load_dotenv

load_dotenv(".env.local")
load_dotenv()


def _bool_env(name: str, default: bool = False) -> bool:
  raw = os.getenv(name, "").strip().lower()
  if not raw:
    return default
  return raw in ("1", "true", "yes")


# Trading
PAPER_MODE = _bool_env("PAPER_MODE", True)

# CLOB (Polymarket) - required when PAPER_MODE=False
PRIVATE_KEY = os.getenv("PRIVATE_KEY")  # EOA private key (hex, with or without 0x)
POLYMARKET_CLOB_HOST = os.getenv("POLYMARKET_CLOB_HOST", "https://clob.polymarket.com")
POLYMARKET_CHAIN_ID = int(os.getenv("POLYMARKET_CHAIN_ID", "137"))
POLYMARKET_SIGNATURE_TYPE = int(os.getenv("POLYMARKET_SIGNATURE_TYPE", "2"))  # 0=EOA, 2=proxy
POLYMARKET_FUNDER_ADDRESS = os.getenv("POLYMARKET_FUNDER_ADDRESS")  # proxy wallet that settles orders
# Optional: skip create_or_derive_api_creds if set
POLYMARKET_API_KEY = os.getenv("POLYMARKET_API_KEY")
POLYMARKET_API_SECRET = os.getenv("POLYMARKET_API_SECRET")
POLYMARKET_API_PASSPHRASE = os.getenv("POLYMARKET_API_PASSPHRASE")

# Data sources
GAMMA_API = os.getenv("GAMMA_API", "https://gamma-api.polymarket.com")
COINBASE_WS_URL = os.getenv("COINBASE_WS_URL", "wss://ws-feed.exchange.coinbase.com")
COINBASE_PRODUCT_ID = os.getenv("COINBASE_PRODUCT_ID", "BTC-USD")
POLYGON_RPC = os.getenv("POLYGON_RPC", "https://polygon.drpc.org")
MARKET_ASSET = os.getenv("MARKET_ASSET", "btc").strip().lower() or "btc"

# Timers (seconds)
ENGINE_TICK_INTERVAL = float(os.getenv("ENGINE_TICK_INTERVAL", "5"))
ORDERBOOK_REFRESH_INTERVAL = float(os.getenv("ORDERBOOK_REFRESH_INTERVAL", "4"))
BALANCE_SYNC_INTERVAL = float(os.getenv("BALANCE_SYNC_INTERVAL", "15"))
MARKET_REFRESH_INTERVAL = float(os.getenv("MARKET_REFRESH_INTERVAL", "30"))
EXPIRY_CHECK_INTERVAL = 1.0

# Engine behavior
COOLDOWN_SECONDS = float(os.getenv("COOLDOWN_SECONDS", "15"))
PRICE_WINDOW_SECONDS = 20 * 60  # retained reference-price history
LAG_MINUTES = float(os.getenv("LAG_MINUTES", "15"))
EVENT_LOG_SIZE = int(os.getenv("EVENT_LOG_SIZE", "100"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")  # e.g. logs/polybot.log; unset = stderr only

# RISK POLICY DEFAULTS (operator can replace the policy at runtime)
MAX_POSITION_SIZE = float(os.getenv("MAX_POSITION_SIZE", "10.0"))  # $ per entry
EDGE_THRESHOLD = float(os.getenv("EDGE_THRESHOLD", "3.0"))  # percentage points
MIN_PROB_THRESHOLD = float(os.getenv("MIN_PROB_THRESHOLD", "80"))
TAKE_PROFIT_PCT = float(os.getenv("TAKE_PROFIT_PCT", "20"))
SELL_AMOUNT_PCT = float(os.getenv("SELL_AMOUNT_PCT", "100"))
DIRECTION_BIAS = os.getenv("DIRECTION_BIAS", "BOTH").strip().upper()
MAX_BUY_COUNT_PER_MARKET = int(os.getenv("MAX_BUY_COUNT_PER_MARKET", "3"))


def default_risk_policy():
  """RiskPolicy built from the env defaults above. Raises ValueError if any is invalid."""
  from polybot.models import DirectionBias, RiskPolicy

  return RiskPolicy(
    max_position_size=MAX_POSITION_SIZE,
    edge_threshold=EDGE_THRESHOLD,
    min_prob_threshold=MIN_PROB_THRESHOLD,
    direction_bias=DirectionBias(DIRECTION_BIAS),
    take_profit_pct=TAKE_PROFIT_PCT,
    sell_amount_pct=SELL_AMOUNT_PCT,
    max_buy_count_per_market=MAX_BUY_COUNT_PER_MARKET,
  )
