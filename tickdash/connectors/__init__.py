"""Market data source connectors."""

from .yahoo_client import MarketDataClient, SharedClient, YahooChartClient, parse_chart_payload

__all__ = ["MarketDataClient", "SharedClient", "YahooChartClient", "parse_chart_payload"]
