"""
Broker gateway interface.

The execution engine talks to the broker only through this interface, so the
executor, scheduler and break-even monitor can run against OANDA in
production and against a scripted fake in tests.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from ..core.exceptions import QuoteUnavailable
from ..core.models import OrderFill, OrderRequest, Quote


class BrokerGateway(ABC):
    """
    Async broker operations used by the engine.

    Error contract:
        - QuoteUnavailable: no price for the instrument
        - OrderRejected: the broker refused an order, with its reason
        - GatewayError: network, authentication or any other broker failure
    """

    @abstractmethod
    async def get_quote(self, instrument: str) -> Quote:
        """Current bid/ask for one instrument."""

    async def get_quotes(self, instruments: Iterable[str]) -> Dict[str, Quote]:
        """
        Current quotes for several instruments.

        Instruments without a price are left out of the result. The default
        implementation calls get_quote() per instrument.
        """
        quotes = {}
        for instrument in dict.fromkeys(instruments):
            try:
                quotes[instrument] = await self.get_quote(instrument)
            except QuoteUnavailable:
                continue
        return quotes

    @abstractmethod
    async def submit_order(self, order: OrderRequest) -> OrderFill:
        """Send a bracket order; return the fill or raise OrderRejected."""

    @abstractmethod
    async def modify_trade(
        self,
        trade_id: str,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        instrument: Optional[str] = None
    ) -> None:
        """
        Replace the stop-loss and/or take-profit of an open trade.

        When instrument is given, prices are sent at its precision.
        """

    @abstractmethod
    async def close_trade(self, trade_id: str) -> None:
        """Close an open trade at market."""

    async def aclose(self) -> None:
        """Release connections. Default implementation does nothing."""
        pass
