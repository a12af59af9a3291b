"""
Scope, visited-set and frontier behaviour under single and concurrent use.
"""

import threading
import unittest

from sitecrawler.engine import ScopePolicy, VisitedSet, Frontier
from sitecrawler.errors import InvalidSeedError
from sitecrawler.models import CrawlTask


class TestScopePolicy(unittest.TestCase):
    def setUp(self):
        self.scope = ScopePolicy.from_seed("https://Example.com/start")

    def test_base_domain_is_lowercased_seed_host(self):
        self.assertEqual(self.scope.base_domain, "example.com")

    def test_same_host_and_subdomains_are_in_scope(self):
        self.assertTrue(self.scope.in_scope("https://example.com/a"))
        self.assertTrue(self.scope.in_scope("http://sub.example.com/b"))
        self.assertTrue(self.scope.in_scope("http://deep.sub.example.com/"))

    def test_foreign_hosts_are_rejected(self):
        self.assertFalse(self.scope.in_scope("https://evil.com/"))
        self.assertFalse(self.scope.in_scope("https://notexample.com/"))
        self.assertFalse(self.scope.in_scope("https://example.com.evil.com/"))

    def test_non_http_schemes_are_rejected(self):
        self.assertFalse(self.scope.in_scope("mailto:info@example.com"))
        self.assertFalse(self.scope.in_scope("ftp://example.com/file"))
        self.assertFalse(self.scope.in_scope("javascript:void(0)"))

    def test_invalid_seeds(self):
        for seed in ["", "   ", "not a url", "ftp://example.com/", "http://", "http://host:notaport/"]:
            with self.subTest(seed=seed):
                with self.assertRaises(InvalidSeedError):
                    ScopePolicy.from_seed(seed)

    def test_invalid_seed_is_a_value_error(self):
        with self.assertRaises(ValueError):
            ScopePolicy.from_seed(None)


class TestVisitedSet(unittest.TestCase):
    def test_first_admission_wins(self):
        visited = VisitedSet()
        self.assertTrue(visited.try_admit("http://a.test/", 0))
        self.assertFalse(visited.try_admit("http://a.test/", 1))
        self.assertEqual(visited.depth_of("http://a.test/"), 0)
        self.assertIsNone(visited.depth_of("http://a.test/missing"))
        self.assertEqual(len(visited), 1)

    def test_concurrent_admission_of_same_url_succeeds_once(self):
        visited = VisitedSet()
        n = 32
        barrier = threading.Barrier(n)
        results = []
        lock = threading.Lock()

        def admit(depth):
            barrier.wait()
            ok = visited.try_admit("http://a.test/page", depth)
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=admit, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(True), 1)
        self.assertEqual(visited.size(), 1)

    def test_distinct_urls_are_all_admitted(self):
        visited = VisitedSet()
        for i in range(50):
            self.assertTrue(visited.try_admit(f"http://a.test/{i}", 1))
        self.assertEqual(visited.size(), 50)


class TestFrontier(unittest.TestCase):
    def test_pop_on_empty_returns_none_after_timeout(self):
        frontier = Frontier()
        self.assertIsNone(frontier.pop(0.05))
        self.assertTrue(frontier.is_empty())
        self.assertTrue(frontier.is_quiescent())

    def test_fifo_order(self):
        frontier = Frontier()
        frontier.push(CrawlTask("http://a.test/1", 1))
        frontier.push(CrawlTask("http://a.test/2", 1))
        self.assertEqual(frontier.pop(0.1).url, "http://a.test/1")
        self.assertEqual(frontier.pop(0.1).url, "http://a.test/2")

    def test_popped_task_keeps_frontier_busy_until_done(self):
        frontier = Frontier()
        frontier.push(CrawlTask("http://a.test/", 0))
        self.assertFalse(frontier.is_quiescent())

        task = frontier.pop(0.1)
        self.assertIsNotNone(task)
        self.assertTrue(frontier.is_empty())
        self.assertFalse(frontier.is_quiescent())
        self.assertEqual(frontier.in_flight(), 1)

        frontier.push(CrawlTask("http://a.test/child", 1))
        frontier.task_done()
        self.assertFalse(frontier.is_quiescent())
        self.assertEqual(frontier.in_flight(), 0)
        self.assertEqual(len(frontier), 1)

        frontier.pop(0.1)
        frontier.task_done()
        self.assertTrue(frontier.is_quiescent())


if __name__ == '__main__':
    unittest.main()
