"""
Data ingestion modules for gexwatch

Components:
- TradierClient: Market data API client (quotes, expirations, option chains)
- CollectionEngine: Scheduled worker-pool collection, caching and history
"""

from gexwatch.ingestion.tradier_client import TradierClient
from gexwatch.ingestion.collection_engine import CollectionEngine

__all__ = [
    "TradierClient",
    "CollectionEngine",
]
