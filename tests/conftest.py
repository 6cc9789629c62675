"""Shared fakes: a fixed market, a book source keyed by token id, a manual clock, and a log capture."""

import os
import sys
from datetime import datetime, timezone

import pytest
from loguru import logger

# Ensure polybot is on path when running tests from repo root
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from polybot.models import Market, OrderBook, OrderBookLevel, OrderResult  # noqa: E402

YES_TOKEN = "yes-token-0001"
NO_TOKEN = "no-token-0002"


def make_market(market_id="0xmarket01", question="Bitcoin Up or Down - 3:00PM ET", end_ts=2_000_000_000):
    return Market(
        id=market_id,
        question=question,
        token_ids=(YES_TOKEN, NO_TOKEN),
        end_date=datetime.fromtimestamp(end_ts, tz=timezone.utc),
        slug="btc-updown-15m-test",
    )


def make_book(bids=(), asks=()):
    """make_book(bids=[(0.77, 100)], asks=[(0.78, 50)])"""
    return OrderBook(
        bids=[OrderBookLevel(price=p, size=s) for p, s in bids],
        asks=[OrderBookLevel(price=p, size=s) for p, s in asks],
    )


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeBookSource:
    """Callable fetch(token_id) -> OrderBook, swappable per test."""

    def __init__(self):
        self.books = {YES_TOKEN: OrderBook(), NO_TOKEN: OrderBook()}
        self.calls = []

    def set(self, yes=None, no=None):
        if yes is not None:
            self.books[YES_TOKEN] = yes
        if no is not None:
            self.books[NO_TOKEN] = no

    def __call__(self, token_id):
        self.calls.append(token_id)
        return self.books.get(token_id, OrderBook())


class RecordingSubmit:
    """Order-submission fake: records every call and returns the configured result."""

    def __init__(self, result=None):
        self.result = result or OrderResult(success=True, order_id="order-1")
        self.orders = []
        self.on_submit = None

    def __call__(self, side, token_id, price, size):
        self.orders.append((side, token_id, price, size))
        if self.on_submit is not None:
            self.on_submit()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def market():
    return make_market()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def book_source():
    return FakeBookSource()


@pytest.fixture
def log_messages():
    """Messages logged through loguru during the test, oldest first."""
    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(sink_id)
