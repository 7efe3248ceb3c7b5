"""Feed ingestion."""

from .ingestor import FeedError, FeedIngestor, FeedItem, FeedStats, entry_to_item

__all__ = [
    "FeedError",
    "FeedIngestor",
    "FeedItem",
    "FeedStats",
    "entry_to_item",
]
