"""
CrawlerWorker task processing: admission control, failure reporting and interruption.
"""

import tempfile
import threading
import time
import unittest
from unittest.mock import MagicMock

from sitecrawler.engine import CrawlContext, CrawlerWorker, ScopePolicy
from sitecrawler.interfaces import Extractor
from sitecrawler.models import CrawlTask
from sitecrawler.processor import PageExtractor

from fakes import FakeFetcher, RecordingSink, fast_config, page


def make_context(pages, **overrides):
    output_dir = tempfile.mkdtemp()
    return CrawlContext(
        config=fast_config(output_dir, **overrides),
        scope=ScopePolicy("a.test"),
        fetcher=FakeFetcher(pages),
        extractor=PageExtractor(),
        sink=RecordingSink(),
    )


class TestAdmission(unittest.TestCase):
    def setUp(self):
        self.ctx = make_context({})
        self.worker = CrawlerWorker(self.ctx, name="Worker-test")

    def test_links_at_max_depth_create_no_tasks(self):
        task = CrawlTask("http://a.test/", self.ctx.config.max_depth)
        admitted = self.worker.admit_links(task, ["http://a.test/x", "http://a.test/y"])
        self.assertEqual(admitted, 0)
        self.assertTrue(self.ctx.frontier.is_empty())
        self.assertEqual(self.ctx.visited.size(), 0)

    def test_children_get_parent_depth_plus_one(self):
        admitted = self.worker.admit_links(CrawlTask("http://a.test/", 0), ["http://a.test/x"])
        self.assertEqual(admitted, 1)
        child = self.ctx.frontier.pop(0.1)
        self.assertEqual(child, CrawlTask("http://a.test/x", 1))
        self.assertEqual(self.ctx.visited.depth_of("http://a.test/x"), 1)
        self.assertEqual(self.ctx.stats.queued, 1)

    def test_out_of_scope_and_duplicate_links_are_skipped(self):
        links = [
            "http://a.test/x",
            "HTTP://A.TEST/x",
            "http://sub.a.test/y",
            "http://b.test/z",
            "mailto:me@a.test",
        ]
        admitted = self.worker.admit_links(CrawlTask("http://a.test/", 0), links)
        self.assertEqual(admitted, 2)
        self.assertEqual(self.ctx.visited.size(), 2)
        self.assertIsNone(self.ctx.visited.depth_of("http://b.test/z"))

    def test_admission_is_idempotent(self):
        task = CrawlTask("http://a.test/", 0)
        self.assertEqual(self.worker.admit_links(task, ["http://a.test/x"]), 1)
        self.assertEqual(self.worker.admit_links(task, ["http://a.test/x"]), 0)
        self.assertEqual(len(self.ctx.frontier), 1)

    def test_best_effort_cap_stops_admission(self):
        ctx = make_context({}, max_pages=3)
        worker = CrawlerWorker(ctx)
        links = [f"http://a.test/{i}" for i in range(10)]
        worker.admit_links(CrawlTask("http://a.test/", 0), links)
        self.assertEqual(ctx.stats.queued, 3)

    def test_strict_cap_never_exceeds_max_pages_under_contention(self):
        ctx = make_context({}, max_pages=7, strict_page_cap=True)
        barrier = threading.Barrier(8)

        def admit(i):
            worker = CrawlerWorker(ctx, name=f"Worker-{i}")
            barrier.wait()
            worker.admit_links(CrawlTask("http://a.test/", 0),
                               [f"http://a.test/{i}/{j}" for j in range(20)])

        threads = [threading.Thread(target=admit, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(ctx.stats.queued, 7)
        self.assertEqual(len(ctx.frontier), 7)


class TestProcess(unittest.TestCase):
    def test_successful_page_is_reported(self):
        ctx = make_context({"http://a.test/": page("/p1", "/p2")})
        CrawlerWorker(ctx).process(CrawlTask("http://a.test/", 0))

        self.assertEqual(ctx.stats.crawled, 1)
        self.assertGreater(ctx.stats.bytes_downloaded, 0)
        self.assertEqual(ctx.sink.urls(), ["http://a.test/"])
        self.assertEqual(len(ctx.frontier), 2)
        self.assertEqual(ctx.stats.reserved_slots, 1)

    def test_fetch_failure_is_counted_and_reported(self):
        ctx = make_context({})
        CrawlerWorker(ctx).process(CrawlTask("http://a.test/missing", 1))

        self.assertEqual(ctx.stats.failed, 1)
        self.assertEqual(ctx.stats.crawled, 0)
        self.assertEqual(ctx.sink.broken, [("http://a.test/missing", "http error: 404")])
        self.assertEqual(ctx.stats.reserved_slots, 0)

    def test_sink_failure_does_not_abort_the_task(self):
        ctx = make_context({"http://a.test/": page("/p1")})
        ctx.sink = MagicMock()
        ctx.sink.accept.side_effect = IOError("disk full")

        CrawlerWorker(ctx).process(CrawlTask("http://a.test/", 0))

        self.assertEqual(ctx.stats.crawled, 1)
        self.assertEqual(len(ctx.frontier), 1)
        ctx.sink.accept.assert_called_once()

    def test_stop_during_delay_drops_task_without_stats(self):
        ctx = make_context({"http://a.test/": page()}, delay_ms=5000)
        ctx.stop_event.set()

        start = time.monotonic()
        CrawlerWorker(ctx).process(CrawlTask("http://a.test/", 0))

        self.assertLess(time.monotonic() - start, 1.0)
        self.assertEqual(ctx.fetcher.calls, [])
        self.assertEqual((ctx.stats.crawled, ctx.stats.failed), (0, 0))
        self.assertEqual(ctx.stats.reserved_slots, 0)

    def test_cancel_after_fetch_skips_discovery_and_sink(self):
        ctx = make_context({"http://a.test/": page("/p1")})
        fetcher = ctx.fetcher

        class CancellingFetcher(FakeFetcher):
            def fetch(self, url, user_agent, timeout_ms):
                document = fetcher.fetch(url, user_agent, timeout_ms)
                ctx.cancel_event.set()
                return document

        ctx.fetcher = CancellingFetcher({})
        CrawlerWorker(ctx).process(CrawlTask("http://a.test/", 0))

        self.assertEqual(ctx.stats.crawled, 1)
        self.assertEqual(ctx.sink.records, [])
        self.assertTrue(ctx.frontier.is_empty())

    def test_broken_links_on_page_are_reported_when_checking(self):
        ctx = make_context({"http://a.test/": page("/ok", "/bad")}, check_links=True)
        ctx.link_checker = MagicMock()
        ctx.link_checker.is_link_working.side_effect = lambda url: not url.endswith("bad")

        CrawlerWorker(ctx).process(CrawlTask("http://a.test/", 0))

        self.assertEqual(ctx.link_checker.is_link_working.call_count, 2)
        self.assertEqual(ctx.sink.broken, [("http://a.test/bad", "found on: http://a.test/")])

    def test_task_is_handed_back_when_no_crawl_slot_is_free(self):
        ctx = make_context({"http://a.test/": page()}, max_pages=1)
        self.assertTrue(ctx.stats.try_reserve_slot(1))

        CrawlerWorker(ctx).process(CrawlTask("http://a.test/", 0))

        self.assertEqual(ctx.fetcher.calls, [])
        self.assertEqual(ctx.frontier.pop(0.1), CrawlTask("http://a.test/", 0))


class TestRunLoop(unittest.TestCase):
    def _drain(self, ctx, timeout=5.0):
        deadline = time.monotonic() + timeout
        while not ctx.frontier.is_quiescent() and time.monotonic() < deadline:
            time.sleep(0.01)

    def test_unexpected_error_counts_as_failure_and_worker_continues(self):
        ctx = make_context({"http://a.test/bad": page(), "http://a.test/good": page()})

        class FlakyExtractor(Extractor):
            def extract(self, document, depth=0):
                if document.url.endswith("bad"):
                    raise RuntimeError("parser exploded")
                return PageExtractor().extract(document, depth)

        ctx.extractor = FlakyExtractor()
        worker = CrawlerWorker(ctx)
        ctx.frontier.push(CrawlTask("http://a.test/bad", 1))
        ctx.frontier.push(CrawlTask("http://a.test/good", 1))
        worker.start()
        self._drain(ctx)
        ctx.stop_event.set()
        worker.join(2.0)

        self.assertFalse(worker.is_alive())
        self.assertTrue(ctx.frontier.is_quiescent())
        self.assertEqual(ctx.stats.failed, 1)
        self.assertEqual(ctx.stats.crawled, 1)
        self.assertEqual(ctx.sink.broken[0][0], "http://a.test/bad")
        self.assertIn("processing error", ctx.sink.broken[0][1])

    def test_worker_exits_within_one_poll_interval_of_stop(self):
        ctx = make_context({})
        worker = CrawlerWorker(ctx)
        worker.start()
        ctx.stop_event.set()
        worker.join(1.0)
        self.assertFalse(worker.is_alive())


if __name__ == '__main__':
    unittest.main()
