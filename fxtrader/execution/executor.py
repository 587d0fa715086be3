"""
Trade Executor for FX Trader

This module submits risk-sized orders to the broker now:
- Quote, size, build and submit one intent
- Run a batch of intents concurrently with per-item partial failure
- Preview an intent for caller-side confirmation

Every intent is processed independently. A missing quote, a zero position
size or a broker rejection only fails that intent. On each fill an
ORDER_FILLED event is published; the break-even monitor picks it up from the
bus, so execution never waits for monitoring.
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

from loguru import logger

from ..broker.gateway import BrokerGateway
from ..core.event_bus import Event, EventBus, EventType
from ..core.exceptions import InvalidParameters, OrderRejected, TradingError
from ..core.models import BatchResult, OrderOutcome, OrderPreview, TradeIntent
from .orders import OrderBuilder


class TradeExecutor:
    """
    Submits intents to the broker and reports what happened.

    Processing flow per intent:
    1. Fetch a fresh quote
    2. Size and build the bracket order
    3. Refuse zero-unit orders with a warning
    4. Publish ORDER_SUBMITTED and submit
    5. Publish ORDER_FILLED or ORDER_REJECTED

    Examples:
        >>> executor = TradeExecutor(gateway, bus)
        >>> outcome = await executor.execute_single(intent)
        >>> outcome.status
        'filled'
        >>> result = await executor.execute_batch([intent_a, intent_b])
        >>> result.succeeded, result.failed
        (2, 0)
    """

    def __init__(
        self,
        gateway: BrokerGateway,
        event_bus: EventBus,
        builder: Optional[OrderBuilder] = None
    ):
        """
        Args:
            gateway (BrokerGateway): Broker used for quotes and submission
            event_bus (EventBus): Bus for outcome events
            builder (OrderBuilder, optional): Order builder, default conventions if omitted
        """
        self.gateway = gateway
        self.event_bus = event_bus
        self.builder = builder or OrderBuilder()
        self.sizer = self.builder.sizer

        self._orders_submitted: int = 0
        self._orders_filled: int = 0
        self._orders_rejected: int = 0

    async def preview(self, intent: TradeIntent) -> OrderPreview:
        """
        Compute what would be sent for an intent without sending it.

        Raises:
            QuoteUnavailable: If no quote can be fetched
            GatewayError: For other broker failures
            InvalidParameters: If the intent cannot be sized
        """
        quote = await self.gateway.get_quote(intent.instrument)
        order = self.builder.build(intent, quote)
        return OrderPreview(
            intent=intent,
            quote=quote,
            order=order,
            risk_per_pip=self.sizer.risk_per_pip(
                intent.stop_loss_pips, intent.risk_amount, quote
            ),
            spread_pips=self.sizer.spread_pips(quote),
        )

    async def execute_single(self, intent: TradeIntent) -> OrderOutcome:
        """
        Quote, size, build and submit one intent.

        Never raises for engine failures: they are returned as a rejected
        outcome with reason and error_type.
        """
        try:
            return await self._execute(intent)
        except TradingError as e:
            return await self._rejected(intent, e)
        except Exception as e:
            logger.opt(exception=e).error(
                f"Unexpected error executing {intent.instrument}: {e}"
            )
            return await self._rejected(intent, e)

    async def execute_batch(self, intents: Sequence[TradeIntent]) -> BatchResult:
        """
        Execute many intents concurrently.

        Outcomes are returned in input order. One intent's failure never
        prevents the others, and the batch as a whole never raises.
        """
        results = await asyncio.gather(
            *(self._execute(intent) for intent in intents),
            return_exceptions=True
        )

        outcomes = []
        for intent, result in zip(intents, results):
            if isinstance(result, OrderOutcome):
                outcomes.append(result)
            elif isinstance(result, Exception):
                if not isinstance(result, TradingError):
                    logger.opt(exception=result).error(
                        f"Unexpected error executing {intent.instrument}: {result}"
                    )
                outcomes.append(await self._rejected(intent, result))
            else:
                # BaseException such as CancelledError
                raise result

        batch = BatchResult(outcomes=outcomes)
        log = logger.info if batch.all_succeeded else logger.warning
        log(
            f"Batch complete: {batch.succeeded} of {batch.total} trades executed, "
            f"{batch.failed} failed"
        )
        await self._publish(EventType.BATCH_COMPLETED, {
            "total": batch.total,
            "succeeded": batch.succeeded,
            "failed": batch.failed,
            "failures": [
                {"instrument": o.intent.instrument, "reason": o.reason}
                for o in batch.failures
            ],
        })
        return batch

    async def _execute(self, intent: TradeIntent) -> OrderOutcome:
        quote = await self.gateway.get_quote(intent.instrument)
        order = self.builder.build(intent, quote)

        if order.units == 0:
            raise InvalidParameters(
                f"Position size for {intent.instrument} rounds to 0 units; not submitted"
            )

        await self._publish(EventType.ORDER_SUBMITTED, {
            "instrument": order.instrument,
            "units": order.units,
            "entry_price": order.entry_price,
            "stop_loss_price": order.stop_loss_price,
            "take_profit_price": order.take_profit_price,
        })
        self._orders_submitted += 1

        fill = await self.gateway.submit_order(order)
        self._orders_filled += 1

        logger.info(
            f"Filled {intent.direction} {abs(fill.units)} {fill.instrument} "
            f"@ {fill.price} (trade {fill.trade_id}, SL {order.stop_loss_price}, "
            f"TP {order.take_profit_price})"
        )

        await self._publish(EventType.ORDER_FILLED, {
            "trade_id": fill.trade_id,
            "instrument": fill.instrument,
            "direction": intent.direction,
            "units": fill.units,
            "entry_price": fill.price,
            "stop_loss_price": order.stop_loss_price,
            "take_profit_price": order.take_profit_price,
            "move_to_break_even": intent.move_to_break_even,
            "break_even_pips": intent.break_even_pips,
        })

        return OrderOutcome(
            intent=intent,
            status="filled",
            trade_id=fill.trade_id,
            units=fill.units,
            entry_price=fill.price,
        )

    async def _rejected(self, intent: TradeIntent, error: BaseException) -> OrderOutcome:
        reason = error.reason if isinstance(error, OrderRejected) else str(error)
        self._orders_rejected += 1

        logger.error(f"{intent.direction} {intent.instrument} not executed: {reason}")
        await self._publish(EventType.ORDER_REJECTED, {
            "instrument": intent.instrument,
            "direction": intent.direction,
            "reason": reason,
            "error_type": type(error).__name__,
        })

        return OrderOutcome(
            intent=intent,
            status="rejected",
            reason=reason,
            error_type=type(error).__name__,
        )

    async def _publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event; a bus failure is logged and never fails execution."""
        try:
            await self.event_bus.publish(
                Event(event_type=event_type, data=data, source="TradeExecutor")
            )
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value}: {e}")

    @property
    def orders_submitted_count(self) -> int:
        return self._orders_submitted

    @property
    def orders_filled_count(self) -> int:
        return self._orders_filled

    @property
    def orders_rejected_count(self) -> int:
        return self._orders_rejected
