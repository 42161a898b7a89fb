"""tickdash - near-real-time price charting engine for terminal dashboards."""

__version__ = "0.1.0"
