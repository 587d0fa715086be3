"""
OANDA v20 REST Gateway

This module implements BrokerGateway against the OANDA v20 REST API using
httpx. It handles environment selection, credential loading, request
encoding and translation of broker responses into engine models and errors.

Security Features:
    - Credentials loaded from environment variables (or passed explicitly)
    - Placeholder credential values rejected before any request is made
    - Credentials are never logged

Wire format:
    - Prices and units are sent as strings
    - Market entries are FOK with positionFill DEFAULT
    - Stop-loss and take-profit legs are GTC
"""

import os
import re
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import httpx
from loguru import logger

from ..core.exceptions import (
    GatewayCredentialError,
    GatewayError,
    OrderRejected,
    QuoteUnavailable,
)
from ..core.models import OrderFill, OrderRequest, Quote, utc_now
from ..execution.instruments import InstrumentRegistry
from .gateway import BrokerGateway

OANDA_ENVIRONMENTS = {
    "practice": "https://api-fxpractice.oanda.com/v3",
    "live": "https://api-fxtrade.oanda.com/v3",
}

API_KEY_VAR = "OANDA_API_KEY"
ACCOUNT_ID_VAR = "OANDA_ACCOUNT_ID"

_FRACTION = re.compile(r"\.(\d{6})\d+")


def _parse_time(value: Optional[str]) -> datetime:
    """Parse an RFC3339 timestamp, trimming OANDA's nanoseconds to micros."""
    if not value:
        return utc_now()
    value = _FRACTION.sub(r".\1", value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return utc_now()


def _format_free(price: float) -> str:
    """Shortest fixed-point rendering of a price that has already been rounded."""
    return f"{price:.10f}".rstrip("0").rstrip(".")


class OandaGateway(BrokerGateway):
    """
    BrokerGateway for OANDA's v20 REST API.

    Attributes:
        environment (str): 'practice' or 'live'
        account_id (str): OANDA account identifier
        registry (InstrumentRegistry): Price formatting conventions

    Examples:
        >>> gateway = OandaGateway(environment="practice")  # credentials from env
        >>> quote = await gateway.get_quote("EUR_USD")
        >>> await gateway.aclose()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        account_id: Optional[str] = None,
        environment: str = "practice",
        registry: Optional[InstrumentRegistry] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the gateway.

        Args:
            api_key (str, optional): Bearer token. Read from OANDA_API_KEY if omitted.
            account_id (str, optional): Account id. Read from OANDA_ACCOUNT_ID if omitted.
            environment (str): 'practice' or 'live'
            registry (InstrumentRegistry, optional): Price precision lookup
            timeout (float): Per-request timeout in seconds
            transport (httpx.AsyncBaseTransport, optional): Custom transport, for tests

        Raises:
            ValueError: If environment is unknown
            GatewayCredentialError: If credentials are missing or placeholders
        """
        if environment not in OANDA_ENVIRONMENTS:
            raise ValueError(
                f"environment must be one of {sorted(OANDA_ENVIRONMENTS)}, got {environment!r}"
            )

        if api_key is None or account_id is None:
            env_key, env_account = self._load_credentials()
            api_key = api_key or env_key
            account_id = account_id or env_account
        self._check_placeholder(API_KEY_VAR, api_key)
        self._check_placeholder(ACCOUNT_ID_VAR, account_id)

        self.environment = environment
        self.account_id = account_id
        self.registry = registry or InstrumentRegistry()
        self._client = httpx.AsyncClient(
            base_url=OANDA_ENVIRONMENTS[environment],
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept-Datetime-Format": "RFC3339",
            },
            timeout=timeout,
            transport=transport,
        )

        logger.info(f"OandaGateway initialized for {environment} account")

    @staticmethod
    def _load_credentials() -> tuple[str, str]:
        """
        Load API credentials from environment variables.

        Raises:
            GatewayCredentialError: If either variable is missing
        """
        api_key = os.getenv(API_KEY_VAR)
        account_id = os.getenv(ACCOUNT_ID_VAR)

        missing_vars = []
        if not api_key:
            missing_vars.append(API_KEY_VAR)
        if not account_id:
            missing_vars.append(ACCOUNT_ID_VAR)

        if missing_vars:
            raise GatewayCredentialError(
                f"Missing required OANDA credentials: {', '.join(missing_vars)}. "
                f"Please set these environment variables in your .env file or environment."
            )

        logger.debug("Loaded OANDA credentials successfully")
        return api_key, account_id

    @staticmethod
    def _check_placeholder(var_name: str, value: str) -> None:
        placeholder_texts = ["your_", "_here", "placeholder"]
        if any(placeholder in value.lower() for placeholder in placeholder_texts):
            raise GatewayCredentialError(
                f"{var_name} appears to be a placeholder value. "
                f"Please set your actual OANDA credentials."
            )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "OandaGateway":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _account_path(self, suffix: str) -> str:
        return f"/accounts/{self.account_id}{suffix}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Raises:
            OrderRejected: If the broker answered with an order reject transaction
            GatewayError: For transport errors, non-2xx statuses or non-JSON bodies
        """
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(f"{method} {path} failed: {e}") from e

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            raise GatewayError(
                f"{method} {path} returned non-JSON body (HTTP {response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise GatewayError(
                f"{method} {path} returned an unexpected body (HTTP {response.status_code}): {data!r}"
            )

        if response.is_error:
            reject = data.get("orderRejectTransaction")
            if isinstance(reject, dict):
                raise OrderRejected(reject.get("rejectReason") or data.get("errorMessage", "rejected"))
            message = data.get("errorMessage") or response.reason_phrase
            raise GatewayError(f"{method} {path} returned HTTP {response.status_code}: {message}")

        return data

    async def get_quote(self, instrument: str) -> Quote:
        quotes = await self.get_quotes([instrument])
        if instrument not in quotes:
            raise QuoteUnavailable(f"No price available for {instrument}")
        return quotes[instrument]

    async def get_quotes(self, instruments: Iterable[str]) -> Dict[str, Quote]:
        instruments = list(dict.fromkeys(instruments))
        if not instruments:
            return {}
        data = await self._request(
            "GET",
            self._account_path("/pricing"),
            params={"instruments": ",".join(instruments)},
        )

        quotes = {}
        for price in data.get("prices") or []:
            if not isinstance(price, dict):
                continue
            bids = price.get("bids") or []
            asks = price.get("asks") or []
            if not bids or not asks:
                continue
            try:
                quotes[price["instrument"]] = Quote(
                    instrument=price["instrument"],
                    bid=float(bids[0]["price"]),
                    ask=float(asks[0]["price"]),
                    time=_parse_time(price.get("time")),
                )
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring malformed price for {price.get('instrument')}: {e}")
        return quotes

    def _order_body(self, order: OrderRequest) -> Dict[str, Any]:
        fmt = self.registry.format_price
        return {
            "order": {
                "type": order.order_type,
                "instrument": order.instrument,
                "units": str(order.units),
                "timeInForce": order.time_in_force,
                "positionFill": order.position_fill,
                "stopLossOnFill": {
                    "price": fmt(order.instrument, order.stop_loss_price),
                    "timeInForce": order.leg_time_in_force,
                },
                "takeProfitOnFill": {
                    "price": fmt(order.instrument, order.take_profit_price),
                    "timeInForce": order.leg_time_in_force,
                },
            }
        }

    async def submit_order(self, order: OrderRequest) -> OrderFill:
        data = await self._request(
            "POST", self._account_path("/orders"), json=self._order_body(order)
        )

        fill = data.get("orderFillTransaction")
        if isinstance(fill, dict) and fill.get("tradeOpened"):
            opened = fill["tradeOpened"]
            try:
                return OrderFill(
                    trade_id=str(opened["tradeID"]),
                    instrument=fill.get("instrument", order.instrument),
                    units=int(float(opened.get("units", order.units))),
                    price=float(fill.get("price", order.entry_price)),
                    time=_parse_time(fill.get("time")),
                )
            except (KeyError, ValueError) as e:
                raise GatewayError(f"Malformed fill for {order.instrument}: {e}") from e

        cancel = data.get("orderCancelTransaction")
        if isinstance(cancel, dict):
            raise OrderRejected(cancel.get("reason", "order cancelled"))

        raise GatewayError(f"Order for {order.instrument} was neither filled nor cancelled")

    async def modify_trade(
        self,
        trade_id: str,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        instrument: Optional[str] = None
    ) -> None:
        def fmt(price: float) -> str:
            if instrument is None:
                return _format_free(price)
            return self.registry.format_price(instrument, price)

        body = {}
        if stop_loss is not None:
            body["stopLoss"] = {"price": fmt(stop_loss), "timeInForce": "GTC"}
        if take_profit is not None:
            body["takeProfit"] = {"price": fmt(take_profit), "timeInForce": "GTC"}
        if not body:
            return

        await self._request("PUT", self._account_path(f"/trades/{trade_id}/orders"), json=body)
        logger.info(f"Modified trade {trade_id}: {body}")

    async def close_trade(self, trade_id: str) -> None:
        await self._request("PUT", self._account_path(f"/trades/{trade_id}/close"))
        logger.info(f"Closed trade {trade_id}")
