"""
Bracket order construction.

Builds a market entry with attached stop-loss and take-profit legs from a
TradeIntent and a live quote. The entry is fill-or-kill so partial fills are
never accepted; both legs are good-till-cancelled.
"""

from typing import Optional

from ..core.exceptions import InvalidParameters, QuoteUnavailable
from ..core.models import OrderRequest, Quote, TradeIntent
from .sizing import PositionSizer


class OrderBuilder:
    """
    Derives an OrderRequest from an intent and a quote.

    Examples:
        >>> builder = OrderBuilder()
        >>> order = builder.build(intent, Quote(instrument="EUR_USD", bid=1.1, ask=1.10015))
        >>> order.stop_loss_price, order.take_profit_price
        (1.09765, 1.10515)
    """

    def __init__(self, sizer: Optional[PositionSizer] = None):
        self.sizer = sizer or PositionSizer()
        self.registry = self.sizer.registry

    def build(self, intent: TradeIntent, quote: Optional[Quote]) -> OrderRequest:
        """
        Build the bracket order for an intent.

        Args:
            intent: Validated trade intent
            quote: Current quote for intent.instrument

        Returns:
            OrderRequest: Units may be 0; the caller decides not to submit it.

        Raises:
            QuoteUnavailable: If quote is None
            InvalidParameters: If the quote is for another instrument
        """
        if quote is None:
            raise QuoteUnavailable(f"No quote for {intent.instrument}")
        if quote.instrument != intent.instrument:
            raise InvalidParameters(
                f"Quote instrument {quote.instrument} does not match "
                f"intent instrument {intent.instrument}"
            )

        units = self.sizer.compute(
            intent.direction, intent.stop_loss_pips, intent.risk_amount, quote
        )

        pip_size = self.registry.pip_size(intent.instrument)
        entry = quote.entry_price(intent.direction)
        stop_distance = intent.stop_loss_pips * pip_size
        target_distance = intent.take_profit_pips * pip_size

        if intent.direction == "long":
            stop_loss = entry - stop_distance
            take_profit = entry + target_distance
        else:
            stop_loss = entry + stop_distance
            take_profit = entry - target_distance

        if stop_loss <= 0 or take_profit <= 0:
            raise InvalidParameters(
                f"Bracket for {intent.instrument} falls below zero "
                f"(stop={stop_loss}, target={take_profit})"
            )

        return OrderRequest(
            instrument=intent.instrument,
            units=units,
            entry_price=entry,
            stop_loss_price=self.registry.round_price(intent.instrument, stop_loss),
            take_profit_price=self.registry.round_price(intent.instrument, take_profit),
        )
