"""
FILE DESCRIPTION: File-system sink that archives crawled pages and writes the end-of-run exports and reports.
KEY FUNCTIONS/CLASSES: DataExporter

Output layout under output_dir:
    pages/     raw HTML per page
    content/   extracted text per page
    images/    reserved for image downloads
    data/      crawl_results.csv, crawl_results.json, contact_info.txt
    reports/   broken_links.txt, domain_analysis.txt, crawl_summary.txt
"""

import csv
import json
import threading
from collections import defaultdict
from datetime import datetime
from pathlib import Path

import tldextract
from tabulate import tabulate

from sitecrawler.core import logger
from sitecrawler.interfaces import Sink
from sitecrawler.processor import LinkUtility

CSV_HEADER = [
    "URL", "Title", "Description", "Word_Count", "Link_Count", "Image_Count", "Heading_Count",
    "Email_Count", "Phone_Count", "Domain", "Has_Contact_Form", "Depth", "Crawl_Time",
]

SUBDIRECTORIES = ("pages", "content", "images", "reports", "data")

# Offline suffix list; never fetches the public suffix list over the network
_domain_extractor = tldextract.TLDExtract(suffix_list_urls=())


class DataExporter(Sink):
    """
    FLOW: accept() archives page HTML and text immediately and keeps the record in memory ->
    report_broken_link() collects failures -> flush_all() writes every export once.
    All methods are safe to call from any worker thread.
    """

    def __init__(self, output_dir, save_pages=True):
        self.output_dir = Path(output_dir)
        self.save_pages = save_pages
        self._lock = threading.Lock()
        self.records = []
        self.records_by_domain = defaultdict(list)
        self.broken_links = []
        self.emails = set()
        self.phone_numbers = set()
        self._create_directories()

    def _create_directories(self):
        try:
            for sub in SUBDIRECTORIES:
                (self.output_dir / sub).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create output directories under {self.output_dir}: {e}")

    # === SINK INTERFACE ===

    def accept(self, record):
        with self._lock:
            self.records.append(record)
            self.records_by_domain[record.domain].append(record)
            self.emails.update(record.emails)
            self.phone_numbers.update(record.phone_numbers)
        if self.save_pages:
            self.save_page_content(record)

    def report_broken_link(self, url, reason):
        entry = f"{url} ({reason})" if reason else url
        with self._lock:
            self.broken_links.append(entry)

    def flush_all(self):
        """Write every export; a failing step is logged and the remaining steps still run."""
        steps = [
            self.export_csv,
            self.export_json,
            self.export_broken_links,
            self.export_contact_info,
            self.export_domain_analysis,
            self.export_summary_report,
        ]
        failed = 0
        for step in steps:
            try:
                step()
            except (OSError, ValueError, TypeError) as e:
                failed += 1
                logger.exception(f"Export step {step.__name__} failed: {e}")
        if failed:
            logger.warning(f"{failed} export step(s) failed, see log for details")
        else:
            logger.info(f"All data exported to {self.output_dir}")

    # === PAGE ARCHIVE ===

    def save_page_content(self, record):
        name = LinkUtility.sanitize_file_name(record.url)
        try:
            (self.output_dir / "pages" / f"{name}.html").write_text(record.html, encoding="utf-8")
            (self.output_dir / "content" / f"{name}.txt").write_text(record.content, encoding="utf-8")
            logger.debug(f"Saved: {name}.html")
        except OSError as e:
            logger.error(f"Failed to save content for {record.url}: {e}")

    # === EXPORTS ===

    def _snapshot(self):
        with self._lock:
            return (
                list(self.records),
                {domain: list(pages) for domain, pages in self.records_by_domain.items()},
                list(self.broken_links),
                sorted(self.emails),
                sorted(self.phone_numbers),
            )

    def export_csv(self):
        records = self._snapshot()[0]
        path = self.output_dir / "data" / "crawl_results.csv"
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for r in records:
                writer.writerow([
                    r.url, r.title, r.description, r.word_count, r.link_count, r.image_count,
                    r.heading_count, len(r.emails), len(r.phone_numbers), r.domain,
                    str(r.has_contact_form).lower(), r.depth, r.crawl_time.isoformat(),
                ])
        logger.info(f"Exported CSV: {path}")

    def export_json(self):
        records = self._snapshot()[0]
        path = self.output_dir / "data" / "crawl_results.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump([r.to_dict() for r in records], f, indent=4)
        logger.info(f"Exported JSON: {path}")

    def export_broken_links(self):
        broken = self._snapshot()[2]
        if not broken:
            return
        path = self.output_dir / "reports" / "broken_links.txt"
        with open(path, "w", encoding="utf-8") as f:
            f.write("BROKEN LINKS REPORT\n")
            f.write("==================\n")
            f.write(f"Total broken links found: {len(broken)}\n\n")
            for entry in broken:
                f.write(f"{entry}\n")
        logger.info(f"Exported broken links: {path}")

    def export_contact_info(self):
        _, _, _, emails, phones = self._snapshot()
        path = self.output_dir / "data" / "contact_info.txt"
        with open(path, "w", encoding="utf-8") as f:
            f.write("CONTACT INFORMATION FOUND\n")
            f.write("========================\n")
            f.write(f"EMAIL ADDRESSES ({len(emails)}):\n")
            f.write("-" * 30 + "\n")
            for email in emails:
                f.write(f"{email}\n")
            f.write(f"\nPHONE NUMBERS ({len(phones)}):\n")
            f.write("-" * 30 + "\n")
            for phone in phones:
                f.write(f"{phone}\n")
        logger.info(f"Exported contact info: {path}")

    def export_domain_analysis(self):
        by_domain = self._snapshot()[1]
        path = self.output_dir / "reports" / "domain_analysis.txt"
        with open(path, "w", encoding="utf-8") as f:
            f.write("DOMAIN ANALYSIS REPORT\n")
            f.write("=====================\n\n")
            for domain, pages in sorted(by_domain.items()):
                count = len(pages)
                f.write(f"Domain: {domain}\n")
                f.write(f"Registered domain: {registered_domain(domain)}\n")
                f.write(f"Pages crawled: {count}\n")
                f.write(f"Average word count: {sum(p.word_count for p in pages) / count:.1f}\n")
                f.write(f"Average links per page: {sum(p.link_count for p in pages) / count:.1f}\n")
                f.write(f"Average images per page: {sum(p.image_count for p in pages) / count:.1f}\n")
                f.write(f"Pages with contact forms: {sum(1 for p in pages if p.has_contact_form)}\n")
                f.write("-" * 50 + "\n\n")
        logger.info(f"Exported domain analysis: {path}")

    def export_summary_report(self):
        records, by_domain, broken, emails, phones = self._snapshot()
        path = self.output_dir / "reports" / "crawl_summary.txt"

        overall = [
            ["Total pages crawled", len(records)],
            ["Total domains", len(by_domain)],
            ["Total broken links", len(broken)],
            ["Total emails found", len(emails)],
            ["Total phone numbers found", len(phones)],
        ]
        content = [
            ["Total words", sum(r.word_count for r in records)],
            ["Total links found", sum(r.link_count for r in records)],
            ["Total images found", sum(r.image_count for r in records)],
            ["Pages with contact forms", sum(1 for r in records if r.has_contact_form)],
        ]
        top_domains = sorted(by_domain.items(), key=lambda item: (-len(item[1]), item[0]))[:10]

        with open(path, "w", encoding="utf-8") as f:
            f.write("WEB CRAWLER SUMMARY REPORT\n")
            f.write("=" * 50 + "\n")
            f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")
            f.write("OVERALL STATISTICS\n")
            f.write(tabulate(overall, tablefmt="plain") + "\n\n")
            f.write("CONTENT STATISTICS\n")
            f.write(tabulate(content, tablefmt="plain") + "\n\n")
            f.write("TOP DOMAINS BY PAGE COUNT\n")
            f.write(tabulate([[d, len(p)] for d, p in top_domains],
                             headers=["Domain", "Pages"], tablefmt="simple") + "\n\n")
            f.write("FILES CREATED\n")
            f.write("-" * 30 + "\n")
            f.write("- pages/: HTML files of crawled pages\n")
            f.write("- content/: Text content extracted from pages\n")
            f.write("- data/crawl_results.csv: Complete data in CSV format\n")
            f.write("- data/crawl_results.json: Complete data in JSON format\n")
            f.write("- data/contact_info.txt: All emails and phone numbers found\n")
            f.write("- reports/broken_links.txt: List of broken links (if any)\n")
            f.write("- reports/domain_analysis.txt: Analysis by domain\n")
            f.write("- reports/crawl_summary.txt: This summary report\n")
        logger.info(f"Exported summary report: {path}")

    # === COUNTERS ===

    @property
    def total_pages(self):
        with self._lock:
            return len(self.records)

    @property
    def total_domains(self):
        with self._lock:
            return len(self.records_by_domain)

    @property
    def total_broken_links(self):
        with self._lock:
            return len(self.broken_links)

    @property
    def total_emails(self):
        with self._lock:
            return len(self.emails)

    @property
    def total_phone_numbers(self):
        with self._lock:
            return len(self.phone_numbers)


def registered_domain(host):
    """example.co.uk for www.example.co.uk; the host itself when no public suffix matches."""
    ext = _domain_extractor(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return host
