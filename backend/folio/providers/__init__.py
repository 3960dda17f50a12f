"""Market data providers."""

from .alpha_vantage import AlphaVantageProvider
from .base import MarketDataProvider, PriceBar, Quote
from .static import StaticMarketData

__all__ = ["AlphaVantageProvider", "MarketDataProvider", "PriceBar", "Quote", "StaticMarketData"]
