"""
Exception types raised by the crawler.

InvalidSeedError aborts a run before any worker starts. FetchError is
recovered per task: the page is counted as failed and reported to the sink.
"""


class CrawlerError(Exception):
    """Base class for crawler errors."""


class InvalidSeedError(CrawlerError, ValueError):
    def __init__(self, seed_url, reason="unparsable or hostless URL"):
        self.seed_url = seed_url
        self.reason = reason
        super().__init__(f"Invalid seed URL {seed_url!r}: {reason}")


class FetchError(CrawlerError):
    """A single page could not be fetched (timeout, DNS, HTTP error, bad content type)."""

    def __init__(self, url, reason, status_code=None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{url}: {reason}")
