"""Routers package."""

from . import (
    health,
    market_intelligence,
)
