from sitecrawler.errors import CrawlerError, InvalidSeedError, FetchError
from sitecrawler.models import CrawlTask, CrawlerConfig, Document, PageRecord, StatsSnapshot, CrawlResult
from sitecrawler.interfaces import Fetcher, Extractor, Sink, StatusListener
from sitecrawler.orchestrator import WebCrawler

__version__ = "1.0.0"

__all__ = [
    "CrawlerError", "InvalidSeedError", "FetchError",
    "CrawlTask", "CrawlerConfig", "Document", "PageRecord", "StatsSnapshot", "CrawlResult",
    "Fetcher", "Extractor", "Sink", "StatusListener",
    "WebCrawler",
]
