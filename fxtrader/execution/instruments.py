"""
Per-instrument pricing conventions.

Pip size, quoting precision and pip value per standard lot differ between
instruments. Defaults follow market convention (two-decimal quote currencies
such as JPY use a 0.01 pip) and can be overridden per instrument from
config.yaml.
"""

from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

STANDARD_LOT_UNITS = 100_000

# Quote currencies priced to two decimals, whose pip is 0.01
TWO_DECIMAL_QUOTE_CURRENCIES = frozenset({"JPY", "HUF"})


class InstrumentSpec(BaseModel):
    """
    Pricing conventions for one instrument.

    Attributes:
        pip_size: Price increment of one pip
        precision: Decimal places the broker accepts for prices
        pip_value_per_lot: Account-currency value of one pip on one standard lot
    """

    model_config = {"frozen": True}

    pip_size: float = Field(gt=0)
    precision: int = Field(ge=0, le=10)
    pip_value_per_lot: float = Field(default=10.0, gt=0)


DEFAULT_SPEC = InstrumentSpec(pip_size=0.0001, precision=5)
TWO_DECIMAL_SPEC = InstrumentSpec(pip_size=0.01, precision=3)


class InstrumentRegistry:
    """
    Lookup of InstrumentSpec by instrument symbol.

    Examples:
        >>> registry = InstrumentRegistry()
        >>> registry.pip_size("EUR_USD")
        0.0001
        >>> registry.pip_size("USD_JPY")
        0.01
        >>> registry.format_price("EUR_USD", 1.1)
        '1.10000'
    """

    def __init__(self, overrides: Optional[Mapping[str, InstrumentSpec]] = None):
        self._overrides: Dict[str, InstrumentSpec] = dict(overrides or {})

    def get(self, instrument: str) -> InstrumentSpec:
        if instrument in self._overrides:
            return self._overrides[instrument]
        quote_currency = instrument.rsplit("_", 1)[-1]
        if quote_currency in TWO_DECIMAL_QUOTE_CURRENCIES:
            return TWO_DECIMAL_SPEC
        return DEFAULT_SPEC

    def pip_size(self, instrument: str) -> float:
        return self.get(instrument).pip_size

    def round_price(self, instrument: str, price: float) -> float:
        return round(price, self.get(instrument).precision)

    def format_price(self, instrument: str, price: float) -> str:
        """Render a price as the broker expects it on the wire."""
        return f"{price:.{self.get(instrument).precision}f}"

    def to_pips(self, instrument: str, price_distance: float) -> float:
        return price_distance / self.pip_size(instrument)
