#!/usr/bin/env python3
"""
Inspect the live BTC market: top of book for YES/NO, model probability, edges, and
whether the current risk policy would enter. Read-only, never places orders.

  python scripts/inspect_orderbook.py                # 60s, print every 5s
  python scripts/inspect_orderbook.py -d 120 -i 2    # 120s, print every 2s
"""
import sys
import os
import time
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loguru import logger

from polybot.config import default_risk_policy


def _format_book(name: str, book, top: int = 5) -> str:
  lines = [f"{name}:"]
  bids = book.bids[:top]
  asks = book.asks[:top]
  for i, lev in enumerate(bids):
    lines.append(f"  bid {i+1}: price={lev.price:.4f} size={lev.size:.1f}")
  if not bids:
    lines.append("  (no bids)")
  for i, lev in enumerate(asks):
    lines.append(f"  ask {i+1}: price={lev.price:.4f} size={lev.size:.1f}")
  if not asks:
    lines.append("  (no asks)")
  return "\n".join(lines)


def main():
  p = argparse.ArgumentParser(description="Inspect BTC market order books and entry decision")
  p.add_argument("-d", "--duration", type=int, default=60, help="Seconds to run (default 60)")
  p.add_argument("-i", "--interval", type=float, default=5.0, help="Print every N seconds (default 5)")
  args = p.parse_args()

  from polybot.engine import DecisionEngine, compute_edges, select_entry
  from polybot.order_book import OrderBookCache
  from polybot.price_feed import PriceFeed
  from polybot.scanner import fetch_btc_markets
  from polybot.utils import coinbase_feed

  markets = fetch_btc_markets()
  market = markets[0] if markets else None
  if not market:
    logger.error("No active BTC market. Try again when a window is open.")
    return 1

  policy = default_risk_policy()
  feed = PriceFeed()
  books = OrderBookCache()
  engine = DecisionEngine(price_feed=feed, books=books, policy=policy)

  logger.info(f"Inspecting {market.slug or market.id} (duration={args.duration}s, print every {args.interval}s)")
  coinbase_feed.start(feed.on_price)

  start = time.time()
  sample_count = 0
  would_fire_count = 0
  try:
    while time.time() - start < args.duration:
      time.sleep(args.interval)
      sample_count += 1
      yes_book, no_book = books.refresh(market)
      inputs = engine.model_inputs(market)
      yes_ask = yes_book.best_ask(default=1.0)
      no_ask = no_book.best_ask(default=1.0)
      yes_edge, no_edge = compute_edges(inputs.probability, yes_ask, no_ask)
      signal = select_entry(inputs.probability, yes_ask, no_ask, policy)
      if signal:
        would_fire_count += 1

      logger.info("---")
      logger.info(
        f"Sample #{sample_count} | BTC=${inputs.btc_price:,.2f} lagged=${inputs.lagged_price:,.2f} "
        f"vol={inputs.volatility:.2f} strike=${inputs.strike:,.2f} | {inputs.minutes_to_expiry:.1f} min left"
      )
      logger.info(f"model={inputs.probability}% | YES edge={yes_edge:.2f}% | NO edge={no_edge:.2f}%")
      if signal:
        logger.info(f"  -> ENTRY WOULD FIRE: {signal.outcome.value} @ {signal.price:.2f} (edge {signal.edge:.2f}%)")
      else:
        logger.info("  -> no signal")
      logger.info(_format_book("YES", yes_book))
      logger.info(_format_book("NO", no_book))
  finally:
    coinbase_feed.stop()

  logger.info("---")
  logger.info(f"Done. Samples={sample_count} | entry would_fire={would_fire_count}")
  return 0


if __name__ == "__main__":
  sys.exit(main())
