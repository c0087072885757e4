"""
Event ingestion core.

Extraction waterfall, fetcher-routing analyzer, scraper strategy base and the
pipeline orchestrator that drives queued sources through their stages.
"""

__version__ = "0.3.0"
