"""Audio extraction service built around third-party scraping actors."""

__version__ = "0.1.0"
