from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlparse

from sitecrawler import core

QUIESCENCE_MODES = ("counter", "heuristic")


@dataclass(frozen=True)
class CrawlTask:
    """
    Unit of work owned by the Frontier.
    Invariant: depth >= 0 and never exceeds the run's max_depth.
    """
    url: str
    depth: int = 0

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"CrawlTask depth must be >= 0, got {self.depth}")


@dataclass(frozen=True)
class CrawlerConfig:
    """
    Immutable settings for one crawl run.
    delay_ms and connect_timeout_ms are milliseconds; the scheduler timings are seconds.
    """
    max_threads: int = core.MAX_THREADS
    max_pages: int = core.MAX_PAGES
    max_depth: int = core.MAX_DEPTH
    delay_ms: int = core.DELAY_MS
    connect_timeout_ms: int = core.CONNECT_TIMEOUT_MS
    user_agent: str = core.USER_AGENT

    poll_timeout: float = core.POLL_TIMEOUT
    monitor_interval: float = core.MONITOR_INTERVAL
    quiescence_grace: float = core.QUIESCENCE_GRACE
    shutdown_grace: float = core.SHUTDOWN_GRACE
    cancel_grace: float = core.CANCEL_GRACE
    quiescence_mode: str = "counter"
    strict_page_cap: bool = False

    check_links: bool = False
    verify_ssl: bool = core.VERIFY_SSL
    output_dir: str = core.OUTPUT_DIR

    def __post_init__(self):
        if self.max_threads < 1:
            raise ValueError(f"max_threads must be >= 1, got {self.max_threads}")
        if self.max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {self.max_pages}")
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.delay_ms < 0 or self.connect_timeout_ms <= 0:
            raise ValueError("delay_ms must be >= 0 and connect_timeout_ms must be > 0")
        for name in ("poll_timeout", "monitor_interval", "quiescence_grace", "shutdown_grace", "cancel_grace"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.quiescence_mode not in QUIESCENCE_MODES:
            raise ValueError(f"quiescence_mode must be one of {QUIESCENCE_MODES}, got {self.quiescence_mode!r}")

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0

    @property
    def connect_timeout_seconds(self) -> float:
        return self.connect_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides):
        """Build a config from CRAWLER_* environment variables; keyword overrides win."""
        values = {
            "max_threads": core.env_int("CRAWLER_MAX_THREADS", core.MAX_THREADS),
            "max_pages": core.env_int("CRAWLER_MAX_PAGES", core.MAX_PAGES),
            "max_depth": core.env_int("CRAWLER_MAX_DEPTH", core.MAX_DEPTH),
            "delay_ms": core.env_int("CRAWLER_DELAY_MS", core.DELAY_MS),
            "connect_timeout_ms": core.env_int("CRAWLER_CONNECT_TIMEOUT_MS", core.CONNECT_TIMEOUT_MS),
            "user_agent": core.env_str("CRAWLER_USER_AGENT", core.USER_AGENT),
            "output_dir": core.env_str("CRAWLER_OUTPUT_DIR", core.OUTPUT_DIR),
            "verify_ssl": core.env_bool("CRAWLER_VERIFY_SSL", core.VERIFY_SSL),
        }
        for key, value in overrides.items():
            if key not in cls.__dataclass_fields__:
                raise ValueError(f"Invalid configuration key: {key}")
            if value is not None:
                values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class Document:
    """Parsed response handed from the fetcher to the extractor."""
    url: str
    html: str
    text: str = ""
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    status_code: int = 200

    @property
    def size(self) -> int:
        return len(self.html)


@dataclass
class PageRecord:
    """
    Structured extraction result for one fetched page.
    html is kept for the page archive but excluded from tabular exports.
    """
    url: str
    title: str = ""
    description: str = ""
    content: str = ""
    headings: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    phone_numbers: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    link_count: int = 0
    image_count: int = 0
    word_count: int = 0
    has_contact_form: bool = False
    depth: int = 0
    crawl_time: datetime = field(default_factory=datetime.now)
    html: str = field(default="", repr=False)

    @property
    def domain(self) -> str:
        return urlparse(self.url).hostname or "unknown"

    @property
    def heading_count(self) -> int:
        return len(self.headings)

    def to_dict(self):
        data = asdict(self)
        data.pop("html")
        data["domain"] = self.domain
        data["crawl_time"] = self.crawl_time.isoformat()
        return data


@dataclass(frozen=True)
class StatsSnapshot:
    crawled: int
    queued: int
    failed: int
    bytes_downloaded: int
    elapsed_seconds: float
    pages_per_second: float

    @property
    def megabytes(self) -> float:
        return self.bytes_downloaded / (1024.0 * 1024.0)


@dataclass(frozen=True)
class CrawlResult:
    """Outcome of WebCrawler.crawl, available after shutdown has completed."""
    seed_url: str
    base_domain: str
    stats: StatsSnapshot
    unique_urls: int
    stop_reason: str
    stragglers: int = 0
    finished_at: Optional[datetime] = None
