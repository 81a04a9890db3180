from .base import FeedSource, materialize_feed
from .csv_manifest import CsvFeedSource
from .transitfeeds import TransitFeedsSource

__all__ = ["FeedSource", "materialize_feed", "CsvFeedSource", "TransitFeedsSource"]
