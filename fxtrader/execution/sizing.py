"""
Risk-based position sizing.

Turns "how much am I willing to lose" into a signed unit count:

    spread_pips        = (ask - bid) / pip_size
    effective_stop     = stop_loss_pips + spread_pips
    risk_per_pip       = risk_amount / effective_stop
    lots               = risk_per_pip / pip_value_per_lot
    units              = floor(lots * 100000), negated for short

The spread is always added to the stop distance, whichever the direction,
since the position opens on the far side of the book.
"""

import math
from typing import Optional

from loguru import logger

from ..core.exceptions import InvalidParameters, QuoteUnavailable
from ..core.models import Direction, Quote
from .instruments import STANDARD_LOT_UNITS, InstrumentRegistry


class PositionSizer:
    """
    Computes unit size from risk parameters and a live quote.

    Pure apart from logging: the same inputs always give the same units.

    Examples:
        >>> sizer = PositionSizer()
        >>> quote = Quote(instrument="EUR_USD", bid=1.10000, ask=1.10015)
        >>> sizer.compute("long", stop_loss_pips=25, risk_amount=10, quote=quote)
        3773
        >>> sizer.compute("short", stop_loss_pips=25, risk_amount=10, quote=quote)
        -3773
    """

    def __init__(self, registry: Optional[InstrumentRegistry] = None):
        self.registry = registry or InstrumentRegistry()

    def compute(
        self,
        direction: Direction,
        stop_loss_pips: float,
        risk_amount: float,
        quote: Optional[Quote]
    ) -> int:
        """
        Compute signed units for a trade.

        Args:
            direction: 'long' or 'short'
            stop_loss_pips: Stop distance in pips, must be positive
            risk_amount: Amount to risk, must be positive
            quote: Current quote for the instrument

        Returns:
            int: Units, positive for long and negative for short. May be 0
                when the risk is too small for one unit; that case is logged.

        Raises:
            InvalidParameters: If stop_loss_pips or risk_amount is not positive,
                or direction is unknown
            QuoteUnavailable: If quote is None
        """
        self._validate(direction, stop_loss_pips, risk_amount)
        if quote is None:
            raise QuoteUnavailable("Cannot size position without a quote")

        spec = self.registry.get(quote.instrument)
        lots = self.risk_per_pip(stop_loss_pips, risk_amount, quote) / spec.pip_value_per_lot
        units = math.floor(lots * STANDARD_LOT_UNITS)

        if units == 0:
            logger.warning(
                f"Position size for {quote.instrument} rounds to 0 units "
                f"(risk={risk_amount}, stop={stop_loss_pips} pips)"
            )

        return units if direction == "long" else -units

    def risk_per_pip(self, stop_loss_pips: float, risk_amount: float, quote: Quote) -> float:
        """Account-currency risk per pip after widening the stop by the spread."""
        effective_stop = stop_loss_pips + self.spread_pips(quote)
        return risk_amount / effective_stop

    def spread_pips(self, quote: Quote) -> float:
        return self.registry.to_pips(quote.instrument, quote.ask - quote.bid)

    @staticmethod
    def _validate(direction: str, stop_loss_pips: float, risk_amount: float) -> None:
        if direction not in ("long", "short"):
            raise InvalidParameters(f"Unknown direction: {direction!r}")
        if stop_loss_pips is None or stop_loss_pips <= 0:
            raise InvalidParameters(
                f"stop_loss_pips must be positive, got {stop_loss_pips}"
            )
        if risk_amount is None or risk_amount <= 0:
            raise InvalidParameters(
                f"risk_amount must be positive, got {risk_amount}"
            )
