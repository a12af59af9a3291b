"""
FILE DESCRIPTION: Crawl scheduling core shared by every worker thread of a run.
KEY FUNCTIONS/CLASSES: ScopePolicy, VisitedSet, Frontier, CrawlContext, CrawlerWorker

Only VisitedSet and Frontier are mutated by more than one thread. Both expose
single-call atomic operations; no caller ever holds a lock across two calls.
"""

import threading
from dataclasses import dataclass, field
from queue import Queue, Empty
from typing import Optional
from urllib.parse import urlparse

from sitecrawler.core import logger
from sitecrawler.errors import FetchError, InvalidSeedError
from sitecrawler.interfaces import Fetcher, Extractor, Sink
from sitecrawler.metrics import CrawlStats
from sitecrawler.models import CrawlTask, CrawlerConfig
from sitecrawler.processor import LinkUtility, LinkChecker


# === SCOPE POLICY ===

class ScopePolicy:
    """
    FLOW: Derives the base domain from the seed host ->
    Accepts http/https URLs whose host equals the base domain or is a subdomain of it.
    """
    ALLOWED_SCHEMES = ("http", "https")

    def __init__(self, base_domain: str):
        self.base_domain = base_domain.lower().rstrip(".")

    @classmethod
    def from_seed(cls, seed_url):
        if not isinstance(seed_url, str) or not seed_url.strip():
            raise InvalidSeedError(seed_url, "empty seed URL")
        try:
            parsed = urlparse(seed_url.strip())
            host = parsed.hostname
            parsed.port  # raises ValueError on a malformed port
        except ValueError as e:
            raise InvalidSeedError(seed_url, str(e))
        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise InvalidSeedError(seed_url, f"unsupported scheme {parsed.scheme!r}")
        if not host:
            raise InvalidSeedError(seed_url, "no host")
        return cls(host)

    def in_scope(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
            host = parsed.hostname
        except ValueError:
            return False
        if parsed.scheme.lower() not in self.ALLOWED_SCHEMES or not host:
            return False
        host = host.rstrip(".")
        return host == self.base_domain or host.endswith("." + self.base_domain)


# === VISITED SET ===

class VisitedSet:
    """
    Every URL ever admitted to the frontier, with the depth it was first seen at.
    try_admit is the single authority for whether a task is created for a URL.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._depths = {}

    def try_admit(self, url: str, depth: int) -> bool:
        """Insert url -> depth if absent. True iff this call performed the insertion."""
        with self._lock:
            if url in self._depths:
                return False
            self._depths[url] = depth
            return True

    def depth_of(self, url: str) -> Optional[int]:
        with self._lock:
            return self._depths.get(url)

    def size(self) -> int:
        with self._lock:
            return len(self._depths)

    def __len__(self):
        return self.size()


# === FRONTIER MANAGEMENT ===

class Frontier:
    """
    FLOW: Unbounded multi-producer/multi-consumer FIFO of CrawlTask ->
    pop() blocks at most `timeout` seconds -> every popped task is closed with task_done().

    Quiescence is read from the queue's own unfinished-task counter under its
    mutex: it rises on push and falls on task_done, so it is zero only when
    nothing is queued and no worker still holds a task.
    """

    def __init__(self):
        self.queue = Queue(maxsize=0)

    def push(self, task: CrawlTask) -> None:
        self.queue.put_nowait(task)

    def pop(self, timeout: float) -> Optional[CrawlTask]:
        try:
            return self.queue.get(timeout=timeout)
        except Empty:
            return None

    def task_done(self) -> None:
        self.queue.task_done()

    def is_empty(self) -> bool:
        return self.queue.empty()

    def is_quiescent(self) -> bool:
        with self.queue.mutex:
            return self.queue.unfinished_tasks == 0

    def in_flight(self) -> int:
        with self.queue.mutex:
            return self.queue.unfinished_tasks - len(self.queue.queue)

    def __len__(self):
        return self.queue.qsize()


# === RUN CONTEXT ===

@dataclass
class CrawlContext:
    """Everything one run shares with its workers. Built by the orchestrator, one per run."""
    config: CrawlerConfig
    scope: ScopePolicy
    fetcher: Fetcher
    extractor: Extractor
    sink: Sink
    frontier: Frontier = field(default_factory=Frontier)
    visited: VisitedSet = field(default_factory=VisitedSet)
    stats: CrawlStats = field(default_factory=CrawlStats)
    stop_event: threading.Event = field(default_factory=threading.Event)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    link_checker: Optional[LinkChecker] = None


# === CRAWLER WORKER ===

class CrawlerWorker(threading.Thread):
    """
    FLOW: Main worker loop -> Dequeues task -> Reserves a crawl slot -> Waits the politeness delay ->
    Fetches -> Extracts page record -> Admits new in-scope links -> Reports to stats and sink.
    """

    def __init__(self, context: CrawlContext, name="Worker"):
        super().__init__(name=name, daemon=True)
        self.context = context
        self.current_task = None

    def log(self, level, msg):
        getattr(logger, level)(msg, extra={'context': self.name})

    def run(self):
        ctx = self.context
        self.log("info", "started")
        while not ctx.stop_event.is_set():
            task = ctx.frontier.pop(ctx.config.poll_timeout)
            if task is None:
                continue
            self.current_task = task
            try:
                if ctx.stop_event.is_set():
                    break
                self.process(task)
            except Exception as e:
                self.log("exception", f"Process error for {task.url}: {e}")
                self._report_failure(task, f"processing error: {e}")
            finally:
                self.current_task = None
                ctx.frontier.task_done()
        self.log("info", "stopped")

    def process(self, task: CrawlTask) -> None:
        ctx = self.context
        config = ctx.config

        if not ctx.stats.try_reserve_slot(config.max_pages):
            # Page limit reached by in-flight work; hand the task back in case a slot is released
            ctx.frontier.push(task)
            ctx.stop_event.wait(config.poll_timeout)
            return

        consumed = False
        try:
            # Delaying: per task, so the effective interval per host is delay / max_threads
            if config.delay_ms > 0 and ctx.stop_event.wait(config.delay_seconds):
                self.log("debug", f"Stop requested during delay, dropping {task.url}")
                return

            # Fetching
            try:
                document = ctx.fetcher.fetch(task.url, config.user_agent, config.connect_timeout_ms)
            except FetchError as e:
                self._report_failure(task, e.reason)
                return

            # Extracting
            record = ctx.extractor.extract(document, task.depth)
            cancelled = ctx.cancel_event.is_set()
            if task.depth < config.max_depth and not cancelled:
                self.admit_links(task, document.links)

            # Reporting
            ctx.stats.record_crawled()
            consumed = True
            ctx.stats.add_bytes(document.size)
            ctx.stats.record_worker_outcome(self.name, ok=True)
            self.log("info", f"Crawled (depth {task.depth}): {task.url}")

            if cancelled:
                self.log("warning", f"Cancelled after fetch; {task.url} not handed to the sink")
                return
            self._deliver(record)

            if ctx.link_checker is not None:
                self._check_links(record.url, document.links)
        finally:
            if not consumed:
                ctx.stats.release_slot()

    def admit_links(self, task: CrawlTask, links) -> int:
        """
        Admission control for links found on a page at task.depth.
        Returns the number of new tasks created.
        """
        ctx = self.context
        config = ctx.config
        if task.depth >= config.max_depth:
            return 0

        child_depth = task.depth + 1
        admitted = 0
        seen = set()
        for link in links:
            if ctx.stop_event.is_set():
                break
            url = LinkUtility.canonicalize(link)
            if not url or url in seen:
                continue
            seen.add(url)
            if not ctx.scope.in_scope(url):
                continue

            if config.strict_page_cap:
                if ctx.stats.queued >= config.max_pages:
                    break
                if not ctx.visited.try_admit(url, child_depth):
                    continue
                if not ctx.stats.try_record_queued(config.max_pages):
                    self.log("debug", f"Page cap reached while admitting {url}")
                    break
                ctx.frontier.push(CrawlTask(url, child_depth))
            else:
                # Best-effort cap: two independent counters, may overshoot slightly
                if ctx.stats.crawled + ctx.stats.queued >= config.max_pages:
                    break
                if not ctx.visited.try_admit(url, child_depth):
                    continue
                ctx.frontier.push(CrawlTask(url, child_depth))
                ctx.stats.record_queued()
            admitted += 1

        if admitted:
            self.log("debug", f"Queued {admitted} new URLs from {task.url}")
        return admitted

    def _report_failure(self, task, reason):
        ctx = self.context
        ctx.stats.record_failed()
        ctx.stats.record_worker_outcome(self.name, ok=False)
        self.log("error", f"Failed to crawl {task.url}: {reason}")
        try:
            ctx.sink.report_broken_link(task.url, reason)
        except Exception as e:
            self.log("exception", f"Sink failed to record broken link {task.url}: {e}")

    def _deliver(self, record):
        try:
            self.context.sink.accept(record)
        except Exception as e:
            # A page is never re-fetched because its sink write failed
            self.log("exception", f"Sink failed to accept {record.url}: {e}")

    def _check_links(self, page_url, links):
        ctx = self.context
        for link in links:
            if ctx.stop_event.is_set():
                break
            if ctx.link_checker.is_link_working(link):
                continue
            try:
                ctx.sink.report_broken_link(link, f"found on: {page_url}")
            except Exception as e:
                self.log("exception", f"Sink failed to record broken link {link}: {e}")
