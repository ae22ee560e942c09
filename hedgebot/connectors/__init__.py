"""
Venue connectors.

VenueConnector is the only surface the engine talks to; ParadexConnector and
LighterConnector are the two production adapters.
"""

from hedgebot.connectors.base import OrderSigner, VenueConnector
from hedgebot.connectors.lighter import LighterConnector
from hedgebot.connectors.paradex import ParadexConnector

__all__ = [
    "OrderSigner",
    "VenueConnector",
    "LighterConnector",
    "ParadexConnector",
]
