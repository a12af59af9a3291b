"""
Run-scoped crawl counters and terminal output formatting.

One CrawlStats instance is owned by each crawl run and passed explicitly to
every worker. Counters are independently atomic; no lock ever spans two of
them, so readers may observe transiently inconsistent combinations (for
example crawled + failed briefly exceeding queued). Only values read after
quiescence are mutually consistent.
"""

import time
import os
from datetime import datetime, timedelta
from collections import defaultdict
from threading import Lock

import psutil
from tabulate import tabulate

from sitecrawler.models import StatsSnapshot


class _Counter:
    """Monotonic integer guarded by its own lock."""

    __slots__ = ("_value", "_lock")

    def __init__(self):
        self._value = 0
        self._lock = Lock()

    def add(self, amount=1):
        if amount < 0:
            raise ValueError("counters never decrease")
        with self._lock:
            self._value += amount
            return self._value

    def add_if_below(self, limit):
        """Compare-and-increment: adds one only while the value is below limit."""
        with self._lock:
            if self._value >= limit:
                return False
            self._value += 1
            return True

    @property
    def value(self):
        return self._value


class CrawlStats:
    """
    Counters for one run: pages crawled, queued, failed, and bytes downloaded.
    Also holds the crawl-slot reservation that keeps crawled <= max_pages.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self.start_time = clock()
        self.started_at = datetime.now()

        self._crawled = _Counter()
        self._queued = _Counter()
        self._failed = _Counter()
        self._bytes = _Counter()

        # Slots reserved by workers about to fetch; released on failure
        self._slot_lock = Lock()
        self._reserved = 0

        self._worker_lock = Lock()
        self.worker_stats = defaultdict(lambda: {"fetched": 0, "crawled": 0, "failed": 0})

        self._process = psutil.Process(os.getpid())
        self.initial_memory_mb = self._process.memory_info().rss / 1024 / 1024

    # --- atomic updates ---

    def record_crawled(self):
        self._crawled.add()

    def record_queued(self):
        self._queued.add()

    def record_failed(self):
        self._failed.add()

    def add_bytes(self, n):
        self._bytes.add(n)

    def try_record_queued(self, limit):
        """Atomic queued cap: increments and returns True only while queued < limit."""
        return self._queued.add_if_below(limit)

    def try_reserve_slot(self, limit):
        """
        Reserve the right to fetch one page. A successful fetch consumes the slot
        when it is reported as crawled; a failed or abandoned fetch must release it.
        """
        with self._slot_lock:
            if self._reserved >= limit:
                return False
            self._reserved += 1
            return True

    def release_slot(self):
        with self._slot_lock:
            if self._reserved > 0:
                self._reserved -= 1

    def record_worker_outcome(self, worker_name, ok):
        with self._worker_lock:
            ws = self.worker_stats[worker_name]
            ws["fetched"] += 1
            ws["crawled" if ok else "failed"] += 1

    # --- reads ---

    @property
    def crawled(self):
        return self._crawled.value

    @property
    def queued(self):
        return self._queued.value

    @property
    def failed(self):
        return self._failed.value

    @property
    def bytes_downloaded(self):
        return self._bytes.value

    @property
    def reserved_slots(self):
        return self._reserved

    def elapsed_seconds(self):
        return max(0.0, self._clock() - self.start_time)

    def pages_per_second(self):
        elapsed = self.elapsed_seconds()
        return self.crawled / elapsed if elapsed > 0 else 0.0

    def snapshot(self) -> StatsSnapshot:
        elapsed = self.elapsed_seconds()
        crawled = self.crawled
        return StatsSnapshot(
            crawled=crawled,
            queued=self.queued,
            failed=self.failed,
            bytes_downloaded=self.bytes_downloaded,
            elapsed_seconds=elapsed,
            pages_per_second=crawled / elapsed if elapsed > 0 else 0.0,
        )

    def format_line(self, snapshot=None):
        s = snapshot or self.snapshot()
        return (f"Stats - Crawled: {s.crawled}, Queued: {s.queued}, Failed: {s.failed}, "
                f"Bytes: {s.megabytes:.2f} MB, Speed: {s.pages_per_second:.2f} pages/sec")

    def get_current_memory_usage(self):
        current = self._process.memory_info().rss / 1024 / 1024
        return current, current - self.initial_memory_mb

    def print_final_summary(self, unique_urls, stop_reason):
        """
        Print comprehensive final summary after crawl completion.
        """
        s = self.snapshot()
        final_mem, delta_mem = self.get_current_memory_usage()

        print("\n" + "=" * 80)
        print("CRAWL COMPLETED - FINAL SUMMARY")
        print("=" * 80)
        rows = [
            ["Start Time", self.started_at.strftime('%Y-%m-%d %H:%M:%S')],
            ["End Time", datetime.now().strftime('%Y-%m-%d %H:%M:%S')],
            ["Duration", str(timedelta(seconds=int(s.elapsed_seconds)))],
            ["Stop Reason", stop_reason],
            ["Pages Crawled", s.crawled],
            ["Pages Queued", s.queued],
            ["Pages Failed", s.failed],
            ["Unique URLs Discovered", unique_urls],
            ["Data Fetched", f"{s.megabytes:.2f} MB ({s.bytes_downloaded:,} bytes)"],
            ["Crawl Speed", f"{s.pages_per_second:.2f} pages/sec"],
            ["Final Memory", f"{final_mem:.2f} MB ({delta_mem:+.2f} MB)"],
        ]
        print(tabulate(rows, tablefmt="simple"))

        with self._worker_lock:
            worker_rows = [
                [name, ws["fetched"], ws["crawled"], ws["failed"],
                 f"{ws['crawled'] / max(1, ws['fetched']) * 100:.1f}%"]
                for name, ws in sorted(self.worker_stats.items())
            ]
        if worker_rows:
            print("\nWORKER STATISTICS:")
            print(tabulate(worker_rows,
                           headers=["Worker", "Fetched", "Crawled", "Failed", "Success Rate"],
                           tablefmt="grid"))
        print("=" * 80 + "\n")
