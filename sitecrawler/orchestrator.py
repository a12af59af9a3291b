"""
FILE DESCRIPTION: Run orchestration for a single crawl.
KEY FUNCTIONS/CLASSES: WebCrawler

FLOW: Validate seed -> Admit seed task -> Start worker pool -> Monitor until page limit,
quiescence or stop request -> Bounded shutdown -> Final stats -> Flush sink.
"""

import threading
import time
from datetime import datetime

from sitecrawler.core import logger
from sitecrawler.exporter import DataExporter
from sitecrawler.engine import CrawlContext, CrawlerWorker, ScopePolicy
from sitecrawler.interfaces import StatusListener
from sitecrawler.models import CrawlTask, CrawlResult
from sitecrawler.processor import LinkUtility, LinkChecker, PageFetcher, PageExtractor

STOP_PAGE_LIMIT = "page limit reached"
STOP_QUIESCENT = "no work remaining"
STOP_REQUESTED = "stop requested"
STOP_INTERRUPTED = "interrupted"
STOP_WORKERS_EXITED = "all workers exited"


class WebCrawler:
    """
    One crawler instance drives exactly one run. Each run owns its own
    VisitedSet, Frontier and CrawlStats, created in crawl() and shared with
    the workers through a CrawlContext.
    """

    def __init__(self, config, fetcher=None, extractor=None, sink=None):
        self.config = config
        self.fetcher = fetcher or PageFetcher(verify_ssl=config.verify_ssl)
        self.extractor = extractor or PageExtractor()
        self.sink = sink if sink is not None else DataExporter(config.output_dir)

        self.context = None
        self.workers = []
        self._listeners = []
        self._listener_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._started = False
        self._shutdown_done = False
        self._stragglers = 0

    # === OBSERVERS ===

    def add_status_listener(self, listener):
        """Register a StatusListener or any callable taking a StatsSnapshot."""
        if isinstance(listener, StatusListener) or hasattr(listener, "on_stats_snapshot"):
            callback = listener.on_stats_snapshot
        elif callable(listener):
            callback = listener
        else:
            raise TypeError(f"Status listener must be callable or define on_stats_snapshot: {listener!r}")
        with self._listener_lock:
            self._listeners.append(callback)

    def _notify(self, snapshot):
        with self._listener_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.exception(f"Status listener failed: {e}", extra={'context': 'Monitor'})

    # === PUBLIC API ===

    @property
    def visited(self):
        return self.context.visited if self.context else None

    @property
    def stats(self):
        return self.context.stats if self.context else None

    def request_stop(self):
        """Ask a running (or about to run) crawl to stop gracefully."""
        logger.info("Stop requested", extra={'context': 'Orchestrator'})
        self._stop_event.set()

    def crawl(self, seed_url) -> CrawlResult:
        scope = ScopePolicy.from_seed(seed_url)
        seed = LinkUtility.canonicalize(seed_url.strip())

        with self._state_lock:
            if self._started:
                raise RuntimeError("WebCrawler instances run once; create a new crawler for another crawl")
            self._started = True

        config = self.config
        ctx = CrawlContext(
            config=config,
            scope=scope,
            fetcher=self.fetcher,
            extractor=self.extractor,
            sink=self.sink,
            stop_event=self._stop_event,
        )
        if config.check_links:
            ctx.link_checker = LinkChecker(config.user_agent, verify_ssl=config.verify_ssl)
        self.context = ctx

        ctx.visited.try_admit(seed, 0)
        ctx.frontier.push(CrawlTask(seed, 0))
        ctx.stats.record_queued()

        logger.info(f"Starting crawl of {seed} (domain: {scope.base_domain}, threads: {config.max_threads}, "
                    f"max pages: {config.max_pages}, max depth: {config.max_depth})",
                    extra={'context': 'Orchestrator'})

        self.workers = [CrawlerWorker(ctx, name=f"Worker-{i}") for i in range(config.max_threads)]
        for worker in self.workers:
            worker.start()

        try:
            stop_reason = self._monitor()
        except KeyboardInterrupt:
            logger.warning("Interrupted, shutting down", extra={'context': 'Orchestrator'})
            stop_reason = STOP_INTERRUPTED

        stragglers = self.shutdown()
        snapshot = ctx.stats.snapshot()
        logger.info(f"Final {ctx.stats.format_line(snapshot)}", extra={'context': 'Orchestrator'})
        ctx.stats.print_final_summary(ctx.visited.size(), stop_reason)

        try:
            self.sink.flush_all()
        except Exception as e:
            logger.exception(f"Sink flush failed: {e}", extra={'context': 'Orchestrator'})

        return CrawlResult(
            seed_url=seed,
            base_domain=scope.base_domain,
            stats=snapshot,
            unique_urls=ctx.visited.size(),
            stop_reason=stop_reason,
            stragglers=stragglers,
            finished_at=datetime.now(),
        )

    # === MONITORING LOOP ===

    def _monitor(self):
        """
        FLOW: Sleep one interval (woken early by a stop request) -> Log and publish stats ->
        Check page limit -> Check quiescence. Returns the stop reason.
        """
        ctx = self.context
        config = self.config
        while True:
            if ctx.stop_event.wait(config.monitor_interval):
                return STOP_REQUESTED

            snapshot = ctx.stats.snapshot()
            logger.info(ctx.stats.format_line(snapshot), extra={'context': 'Monitor'})
            self._notify(snapshot)

            if ctx.stats.crawled >= config.max_pages:
                logger.info(f"Reached maximum pages limit: {config.max_pages}", extra={'context': 'Monitor'})
                return STOP_PAGE_LIMIT

            if self._is_quiescent():
                logger.info("No more URLs to crawl", extra={'context': 'Monitor'})
                return STOP_QUIESCENT

            if not any(w.is_alive() for w in self.workers):
                logger.error("All workers exited before the crawl finished", extra={'context': 'Monitor'})
                return STOP_WORKERS_EXITED

    def _is_quiescent(self):
        frontier = self.context.frontier
        if self.config.quiescence_mode == "counter":
            return frontier.is_quiescent()
        # heuristic: empty, wait, still empty
        if not frontier.is_empty():
            return False
        if self.context.stop_event.wait(self.config.quiescence_grace):
            return False
        return frontier.is_empty()

    # === SHUTDOWN ===

    def shutdown(self):
        """
        Stop the worker pool. Joins within shutdown_grace, then forces a cancel
        and waits cancel_grace more. Returns the number of workers still alive.
        Safe to call more than once.
        """
        ctx = self.context
        if ctx is None:
            return 0
        with self._state_lock:
            if self._shutdown_done:
                return self._stragglers
            self._shutdown_done = True

        ctx.stop_event.set()

        alive = self._join_all(self.config.shutdown_grace)
        if alive:
            logger.warning(f"{len(alive)} worker(s) still running after {self.config.shutdown_grace}s, cancelling",
                           extra={'context': 'Orchestrator'})
            ctx.cancel_event.set()
            alive = self._join_all(self.config.cancel_grace)
            for worker in alive:
                task = worker.current_task
                logger.error(f"{worker.name} did not terminate (task: {task.url if task else 'none'})",
                             extra={'context': 'Orchestrator'})

        self._stragglers = len(alive)
        logger.info("Crawler shutdown complete", extra={'context': 'Orchestrator'})
        return self._stragglers

    def _join_all(self, grace):
        deadline = time.monotonic() + grace
        for worker in self.workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        return [w for w in self.workers if w.is_alive()]
