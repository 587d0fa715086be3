"""
Broker module for order routing and market data.

This module handles:
- The BrokerGateway interface used by the engine
- The OANDA v20 REST adapter
"""

from .gateway import BrokerGateway
from .oanda import OandaGateway, OANDA_ENVIRONMENTS

__all__ = [
    "BrokerGateway",
    "OandaGateway",
    "OANDA_ENVIRONMENTS",
]
