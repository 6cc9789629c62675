import signal
import sys
import time

from loguru import logger

from polybot import clob_client
from polybot.config import LOG_FILE, LOG_LEVEL, PAPER_MODE, default_risk_policy
from polybot.engine import DecisionEngine
from polybot.event_log import EventLog
from polybot.order_book import OrderBookCache
from polybot.price_feed import PriceFeed
from polybot.runner import BotRunner
from polybot.utils.logger import setup_logging

_STATUS_INTERVAL = 30


def _status_line(runner: BotRunner) -> str:
  status = runner.engine.status()
  bal = runner.balances()
  yes_pct, no_pct = runner.display_probabilities()
  model = f"{status.model.probability}%" if status.model else "n/a"
  btc = f"${status.model.btc_price:,.2f}" if status.model and status.model.btc_price else "n/a"
  state = "ACTIVE" if status.is_active else "IDLE"
  return (
    f"{state} | market={(status.market_id or '-')[:8]} | BTC={btc} | model={model} | "
    f"market YES/NO={yes_pct}/{no_pct} | trades={status.trades_count} open={status.open_positions} | "
    f"USDC=${bal.balance:,.2f} allowance=${bal.allowance:,.2f} POL={bal.native:.3f}"
  )


def main():
  setup_logging(LOG_LEVEL, LOG_FILE)
  logger.info("=" * 60)
  logger.info(f"BTC Edge Engine ({'PAPER' if PAPER_MODE else 'LIVE'})")
  logger.info("=" * 60)

  events = EventLog()
  events.start()

  try:
    policy = default_risk_policy()
  except ValueError as e:
    logger.error(f"Invalid risk policy in environment: {e}")
    return 1

  context = clob_client.load_trading_context()
  clob_client.configure(context)
  if not context.is_configured:
    logger.error(f"Wallet or credentials not configured (missing {', '.join(context.missing())})")

  engine = DecisionEngine(
    price_feed=PriceFeed(),
    books=OrderBookCache(),
    policy=policy,
    context=context,
  )
  runner = BotRunner(engine)

  shutdown_requested = False

  def request_shutdown(*_args):
    nonlocal shutdown_requested
    shutdown_requested = True

  if hasattr(signal, "SIGTERM"):
    signal.signal(signal.SIGTERM, request_shutdown)
  signal.signal(signal.SIGINT, request_shutdown)

  runner.start()
  if not engine.start():
    runner.stop()
    events.stop()
    return 1

  last_status = 0.0
  while not shutdown_requested:
    time.sleep(0.5)
    now = time.time()
    if now - last_status >= _STATUS_INTERVAL:
      last_status = now
      logger.info(_status_line(runner))

  logger.info("Shutting down bot...")
  runner.stop()
  events.stop()
  errors = events.events(severity="ERROR")
  logger.info(f"Session events: {len(events.events())} kept, {len(errors)} errors")
  for event in errors[:5]:
    logger.info(f"  {event.time} {event.message}")
  for trade in engine.history():
    logger.info(
      f"{trade.id} | {trade.side.value} {trade.outcome.value} {trade.size:.2f} @ {trade.entry_price:.2f} | "
      f"model {trade.model_prob}% | {trade.status.value}"
    )
  return 0


if __name__ == "__main__":
  sys.exit(main())
