"""
FILE DESCRIPTION: Command-line entry point.
KEY FUNCTIONS/CLASSES: build_parser, build_config, main
"""

import argparse
import logging
import sys

from sitecrawler.core import logger, setup_logger
from sitecrawler.errors import InvalidSeedError
from sitecrawler.exporter import DataExporter
from sitecrawler.models import CrawlerConfig
from sitecrawler.orchestrator import WebCrawler
from sitecrawler.processor import PageFetcher, PageExtractor

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser():
    parser = argparse.ArgumentParser(
        prog="sitecrawler",
        description="Bounded, domain-scoped multi-threaded web crawler.",
    )
    parser.add_argument("seed_url", help="Seed URL; its host defines the crawl domain")
    parser.add_argument("--threads", type=int, dest="max_threads", help="Number of worker threads")
    parser.add_argument("--max-pages", type=int, help="Maximum number of pages to crawl")
    parser.add_argument("--max-depth", type=int, help="Maximum link depth from the seed")
    parser.add_argument("--delay-ms", type=int, help="Delay before each fetch, per worker (ms)")
    parser.add_argument("--timeout-ms", type=int, dest="connect_timeout_ms", help="Request timeout (ms)")
    parser.add_argument("--user-agent", help="User-Agent header sent with every request")
    parser.add_argument("--output-dir", help="Directory for exported data and reports")
    parser.add_argument("--check-links", action="store_true", default=None,
                        help="HEAD-probe every link on crawled pages and report broken ones")
    parser.add_argument("--strict-page-cap", action="store_true", default=None,
                        help="Never queue more than --max-pages tasks")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def build_config(args):
    return CrawlerConfig.from_env(
        max_threads=args.max_threads,
        max_pages=args.max_pages,
        max_depth=args.max_depth,
        delay_ms=args.delay_ms,
        connect_timeout_ms=args.connect_timeout_ms,
        user_agent=args.user_agent,
        output_dir=args.output_dir,
        check_links=args.check_links,
        strict_page_cap=args.strict_page_cap,
    )


def print_enhanced_summary(exporter, result):
    print("\nENHANCED CRAWL SUMMARY")
    print("=" * 50)
    print(f"Stop reason: {result.stop_reason}")
    print(f"Pages exported: {exporter.total_pages}")
    print(f"Domains: {exporter.total_domains}")
    print(f"Emails found: {exporter.total_emails}")
    print(f"Phone numbers found: {exporter.total_phone_numbers}")
    print(f"Broken links: {exporter.total_broken_links}")
    print(f"Output directory: {exporter.output_dir.resolve()}")


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logger(log_file=args.log_file, level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_USAGE

    exporter = DataExporter(config.output_dir)
    crawler = WebCrawler(config, fetcher=PageFetcher(verify_ssl=config.verify_ssl),
                         extractor=PageExtractor(), sink=exporter)
    try:
        result = crawler.crawl(args.seed_url)
    except InvalidSeedError as e:
        logger.error(str(e))
        return EXIT_USAGE
    except KeyboardInterrupt:
        crawler.request_stop()
        crawler.shutdown()
        return EXIT_INTERRUPTED

    print_enhanced_summary(exporter, result)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
