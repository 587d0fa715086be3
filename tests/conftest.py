"""
Pytest configuration and shared fixtures for FX Trader tests.

This module provides:
- FakeBroker: a scripted in-memory BrokerGateway
- Fixtures for EventBus, task stores, intents and quotes
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from fxtrader.broker.gateway import BrokerGateway
from fxtrader.core.event_bus import EventBus
from fxtrader.core.exceptions import GatewayError, OrderRejected, QuoteUnavailable
from fxtrader.core.models import OrderFill, OrderRequest, Quote, TradeIntent
from fxtrader.core.task_store import InMemoryTaskStore

pytest_plugins = ('pytest_asyncio',)


class FakeBroker(BrokerGateway):
    """
    Scripted broker for tests.

    Quotes are set per instrument; instruments without a quote raise
    QuoteUnavailable. Rejections and modify failures can be scripted.
    Every submitted order, modify and close is recorded.
    """

    def __init__(self):
        self.quotes: Dict[str, Quote] = {}
        self.rejections: Dict[str, str] = {}
        self.quote_errors: Dict[str, Exception] = {}
        self.modify_error: Optional[Exception] = None
        self.submit_delay: float = 0.0

        self.submitted: List[OrderRequest] = []
        self.modified: List[Tuple[str, Optional[float], Optional[float]]] = []
        self.modify_instruments: List[Optional[str]] = []
        self.closed: List[str] = []
        self.quote_requests: int = 0
        self.closed_gateway = False
        self._next_trade_id = 100

    def set_quote(self, instrument: str, bid: float, ask: float) -> None:
        self.quotes[instrument] = Quote(instrument=instrument, bid=bid, ask=ask)

    def reject(self, instrument: str, reason: str = "MARKET_HALTED") -> None:
        self.rejections[instrument] = reason

    async def get_quote(self, instrument: str) -> Quote:
        self.quote_requests += 1
        if instrument in self.quote_errors:
            raise self.quote_errors[instrument]
        if instrument not in self.quotes:
            raise QuoteUnavailable(f"No price available for {instrument}")
        return self.quotes[instrument]

    async def submit_order(self, order: OrderRequest) -> OrderFill:
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        self.submitted.append(order)
        if order.instrument in self.rejections:
            raise OrderRejected(self.rejections[order.instrument])

        self._next_trade_id += 1
        return OrderFill(
            trade_id=str(self._next_trade_id),
            instrument=order.instrument,
            units=order.units,
            price=order.entry_price,
        )

    async def modify_trade(self, trade_id, stop_loss=None, take_profit=None, instrument=None) -> None:
        if self.modify_error is not None:
            raise self.modify_error
        self.modified.append((trade_id, stop_loss, take_profit))
        self.modify_instruments.append(instrument)

    async def close_trade(self, trade_id: str) -> None:
        if trade_id not in {str(n) for n in range(101, self._next_trade_id + 1)}:
            raise GatewayError(f"Trade {trade_id} not found")
        self.closed.append(trade_id)

    async def aclose(self) -> None:
        self.closed_gateway = True


@pytest.fixture
def broker():
    """FakeBroker with EUR_USD, GBP_USD and USD_JPY quotes."""
    fake = FakeBroker()
    fake.set_quote("EUR_USD", 1.10000, 1.10015)
    fake.set_quote("GBP_USD", 1.25000, 1.25020)
    fake.set_quote("USD_JPY", 150.000, 150.020)
    return fake


@pytest_asyncio.fixture
async def event_bus():
    """Started EventBus, stopped after the test."""
    bus = EventBus()
    await bus.start()
    yield bus
    await bus.stop()


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def eur_quote():
    return Quote(instrument="EUR_USD", bid=1.10000, ask=1.10015)


@pytest.fixture
def long_intent():
    return TradeIntent(
        instrument="EUR_USD",
        direction="long",
        risk_amount=10.0,
        stop_loss_pips=25,
        take_profit_pips=50,
    )


@pytest.fixture
def short_intent():
    return TradeIntent(
        instrument="GBP_USD",
        direction="short",
        risk_amount=20.0,
        stop_loss_pips=30,
        take_profit_pips=60,
    )


@pytest.fixture
def break_even_intent():
    return TradeIntent(
        instrument="EUR_USD",
        direction="long",
        risk_amount=10.0,
        stop_loss_pips=25,
        take_profit_pips=50,
        move_to_break_even=True,
        break_even_pips=10,
    )
