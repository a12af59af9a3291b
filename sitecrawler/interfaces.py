from abc import ABC, abstractmethod

from sitecrawler.models import Document, PageRecord, StatsSnapshot


class Fetcher(ABC):
    """
    Abstract interface for page retrieval.
    Implementations must raise FetchError for every failure they can classify.
    """

    @abstractmethod
    def fetch(self, url: str, user_agent: str, timeout_ms: int) -> Document:
        """Fetch url and return a parsed Document, or raise FetchError."""
        pass


class Extractor(ABC):
    """Pure transformation from a Document to a PageRecord. No side effects."""

    @abstractmethod
    def extract(self, document: Document, depth: int = 0) -> PageRecord:
        pass


class Sink(ABC):
    """
    Downstream receiver for crawl output.
    Must tolerate concurrent calls from any worker thread.
    """

    @abstractmethod
    def accept(self, record: PageRecord) -> None:
        """Receive one record per successfully fetched page."""
        pass

    @abstractmethod
    def report_broken_link(self, url: str, reason: str) -> None:
        """Receive one report per unreachable URL."""
        pass

    @abstractmethod
    def flush_all(self) -> None:
        """Called once by the orchestrator after shutdown."""
        pass


class StatusListener(ABC):
    """Observer notified by the monitoring loop. Must return quickly."""

    @abstractmethod
    def on_stats_snapshot(self, snapshot: StatsSnapshot) -> None:
        pass
