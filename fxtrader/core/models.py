"""
Trading models with comprehensive validation.

This module defines the core entities of the execution engine:
- TradeIntent: What the trader wants to trade and how much to risk
- Quote: A transient bid/ask snapshot for one instrument
- OrderRequest: A ready-to-send bracket order derived from an intent
- OrderFill / OrderOutcome / BatchResult: What happened when orders were sent
- ScheduledTask: A deferred single or batch submission
- BreakEvenWatch: Live state of a break-even stop monitor
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import InvalidParameters

Direction = Literal["long", "short"]

INSTRUMENT_PATTERN = r"^[A-Z0-9]+_[A-Z0-9]+$"


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TradeIntent(BaseModel):
    """
    Immutable description of a trade the user wants to place.

    The intent carries risk parameters only; units and prices are derived
    later from a live quote by PositionSizer and OrderBuilder.

    Attributes:
        instrument: OANDA instrument symbol (e.g. 'EUR_USD')
        direction: 'long' or 'short'
        risk_amount: Currency amount lost if the stop-loss is hit
        stop_loss_pips: Stop distance from entry, in pips
        take_profit_pips: Target distance from entry, in pips
        move_to_break_even: Move stop to entry once in profit
        break_even_pips: Profit in pips that triggers the break-even move
        notes: Free-form trader notes

    Examples:
        >>> intent = TradeIntent(
        ...     instrument="EUR_USD",
        ...     direction="long",
        ...     risk_amount=10.0,
        ...     stop_loss_pips=25,
        ...     take_profit_pips=50
        ... )
        >>> intent.move_to_break_even
        False
    """

    model_config = {"frozen": True}

    instrument: str = Field(
        min_length=3,
        pattern=INSTRUMENT_PATTERN,
        description="Instrument symbol"
    )
    direction: Direction = Field(description="Trade direction")
    risk_amount: float = Field(gt=0, description="Amount risked in account currency")
    stop_loss_pips: float = Field(gt=0, description="Stop-loss distance in pips")
    take_profit_pips: float = Field(gt=0, description="Take-profit distance in pips")
    move_to_break_even: bool = Field(
        default=False,
        description="Move stop-loss to entry once break_even_pips is reached"
    )
    break_even_pips: Optional[float] = Field(
        default=None,
        gt=0,
        description="Profit threshold in pips for the break-even move"
    )
    notes: str = Field(default="", description="Trader notes")

    @model_validator(mode="after")
    def validate_break_even(self) -> "TradeIntent":
        """Require a break-even threshold whenever the flag is set."""
        if self.move_to_break_even and self.break_even_pips is None:
            raise ValueError(
                f"Intent for {self.instrument} requests move_to_break_even "
                f"but break_even_pips is not set."
            )
        return self

    @classmethod
    def create(cls, **fields) -> "TradeIntent":
        """
        Build an intent, converting validation failures to InvalidParameters.

        Raises:
            InvalidParameters: If any field violates its constraints
        """
        try:
            return cls(**fields)
        except ValidationError as e:
            raise InvalidParameters(str(e)) from e


class Quote(BaseModel):
    """
    Immutable bid/ask snapshot. Re-fetched for every use, never persisted.

    Examples:
        >>> q = Quote(instrument="EUR_USD", bid=1.10000, ask=1.10015)
        >>> q.entry_price("long")
        1.10015
        >>> q.exit_price("long")
        1.1
    """

    model_config = {"frozen": True}

    instrument: str = Field(pattern=INSTRUMENT_PATTERN)
    bid: float = Field(gt=0)
    ask: float = Field(gt=0)
    time: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def validate_spread(self) -> "Quote":
        """Ensure the quote is not crossed."""
        if self.ask < self.bid:
            raise ValueError(
                f"Crossed quote for {self.instrument}: ask ({self.ask}) "
                f"is below bid ({self.bid})."
            )
        return self

    def entry_price(self, direction: Direction) -> float:
        """Price a new position would open at: ask for long, bid for short."""
        return self.ask if direction == "long" else self.bid

    def exit_price(self, direction: Direction) -> float:
        """Price an open position could close at: bid for long, ask for short."""
        return self.bid if direction == "long" else self.ask


class OrderRequest(BaseModel):
    """
    Ready-to-send market order with attached stop-loss and take-profit legs.

    The entry is fill-or-kill: it fills completely and immediately or is
    rejected. Both exit legs are good-till-cancelled.
    """

    model_config = {"frozen": True}

    instrument: str = Field(pattern=INSTRUMENT_PATTERN)
    units: int = Field(description="Signed units: positive long, negative short")
    entry_price: float = Field(gt=0, description="Quoted reference entry price")
    stop_loss_price: float = Field(gt=0)
    take_profit_price: float = Field(gt=0)
    order_type: Literal["MARKET"] = "MARKET"
    time_in_force: Literal["FOK"] = "FOK"
    leg_time_in_force: Literal["GTC"] = "GTC"
    position_fill: Literal["DEFAULT"] = "DEFAULT"

    @property
    def direction(self) -> Direction:
        return "short" if self.units < 0 else "long"


class OrderFill(BaseModel):
    """Broker confirmation that an order filled and opened a trade."""

    model_config = {"frozen": True}

    trade_id: str = Field(min_length=1)
    instrument: str
    units: int
    price: float = Field(gt=0, description="Fill price")
    time: datetime = Field(default_factory=utc_now)


class OrderOutcome(BaseModel):
    """
    Result of submitting a single intent.

    error_type carries the exception class name of a failure so callers can
    tell retryable QuoteUnavailable from permanent rejections.
    """

    model_config = {"frozen": True}

    intent: TradeIntent
    status: Literal["filled", "rejected"]
    trade_id: Optional[str] = None
    units: int = 0
    entry_price: Optional[float] = None
    reason: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def is_filled(self) -> bool:
        return self.status == "filled"


class BatchResult(BaseModel):
    """
    Per-intent outcomes of a batch, in input order, with aggregate counts.

    Examples:
        >>> result.succeeded, result.failed
        (3, 1)
        >>> [f.reason for f in result.failures]
        ['No price available for GBP_USD']
    """

    model_config = {"frozen": True}

    outcomes: List[OrderOutcome] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.is_filled)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def failures(self) -> List[OrderOutcome]:
        return [o for o in self.outcomes if not o.is_filled]

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0


class OrderPreview(BaseModel):
    """Everything a caller needs to confirm an intent before submitting it."""

    model_config = {"frozen": True}

    intent: TradeIntent
    quote: Quote
    order: OrderRequest
    risk_per_pip: float
    spread_pips: float


class ScheduledTask(BaseModel):
    """
    Deferred submission of one or many intents.

    Only the payload, fire time, status and creation time are persisted.
    Timer handles live in memory and are re-derived on recovery.

    Attributes:
        id: Unique task identifier
        intents: Intents to execute when the task fires (at least one)
        fire_at: UTC instant at which to execute
        status: 'pending', 'fired' or 'cancelled'
        created_at: When the task was scheduled
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    intents: List[TradeIntent] = Field(min_length=1)
    fire_at: datetime
    status: Literal["pending", "fired", "cancelled"] = "pending"
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("fire_at", "created_at")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        """Store all instants as timezone-aware UTC."""
        return as_utc(value)

    @property
    def is_batch(self) -> bool:
        return len(self.intents) > 1

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


class BreakEvenWatch(BaseModel):
    """
    Mutable state of one break-even monitor.

    Not frozen: status moves from 'active' to 'completed' or 'aborted'
    exactly once.
    """

    trade_id: str = Field(min_length=1)
    instrument: str = Field(pattern=INSTRUMENT_PATTERN)
    direction: Direction
    entry_price: float = Field(gt=0)
    threshold_pips: float = Field(gt=0)
    status: Literal["active", "completed", "aborted"] = "active"
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"
