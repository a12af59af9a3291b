"""
FILE DESCRIPTION: Content processing pipeline handling network fetching, HTML parsing, page extraction and URL canonicalization.
KEY FUNCTIONS/CLASSES: LinkUtility, parse_document, PageFetcher, PageExtractor, LinkChecker
"""

import re
import threading
from datetime import datetime
from urllib.parse import urljoin, urlsplit, urlunsplit

import requests
import urllib3
from bs4 import BeautifulSoup

from sitecrawler.core import LINK_CHECK_TIMEOUT, logger
from sitecrawler.errors import FetchError
from sitecrawler.interfaces import Fetcher, Extractor
from sitecrawler.models import Document, PageRecord

HTML_PARSER = "lxml"


# === LINK UTILITY ===

class LinkUtility:

    @staticmethod
    def canonicalize(url: str) -> str:
        """
        Canonical absolute form used as the visited-set key:
        lower-cased scheme and host, no fragment, empty path becomes "/".
        Returns "" for anything that is not an absolute URL.
        """
        if not url:
            return ""
        try:
            parts = urlsplit(url.strip())
        except ValueError:
            return ""
        if not parts.scheme or not parts.netloc:
            return ""
        return urlunsplit((
            parts.scheme.lower(),
            parts.netloc.lower(),
            parts.path or "/",
            parts.query,
            "",
        ))

    @staticmethod
    def resolve(base_url: str, href: str) -> str:
        """Resolve href against base_url and strip the fragment. "" if unresolvable."""
        href = (href or "").strip()
        if not href or href.startswith("#"):
            return ""
        try:
            absolute = urljoin(base_url, href)
            parts = urlsplit(absolute)
        except ValueError:
            return ""
        return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))

    @staticmethod
    def sanitize_file_name(url: str) -> str:
        """host + path flattened into a safe file name."""
        try:
            parts = urlsplit(url)
            name = (parts.hostname or "") + parts.path
        except ValueError:
            name = url
        if not name:
            name = url
        name = re.sub(r"[^a-zA-Z0-9.-]", "_", name)
        name = re.sub(r"_{2,}", "_", name)
        return name.strip("_") or "index"


# === DOCUMENT PARSING ===

def parse_document(url, html, base_url=None, status_code=200) -> Document:
    """
    Parse raw HTML into a Document.
    Links and image sources are resolved against base_url (the post-redirect URL).
    """
    base_url = base_url or url
    soup = BeautifulSoup(html or "", HTML_PARSER)

    links = []
    for a in soup.find_all("a", href=True):
        resolved = LinkUtility.resolve(base_url, a["href"])
        if resolved:
            links.append(resolved)

    images = []
    for img in soup.find_all("img", src=True):
        resolved = LinkUtility.resolve(base_url, img["src"])
        if resolved:
            images.append(resolved)

    title = soup.title.get_text(strip=True) if soup.title else ""

    description = ""
    meta = soup.find("meta", attrs={"name": "description"})
    if meta and meta.get("content"):
        description = meta["content"].strip()
    else:
        og = soup.find("meta", attrs={"property": "og:description"})
        if og and og.get("content"):
            description = og["content"].strip()

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = " ".join(soup.get_text(" ").split())

    return Document(
        url=url,
        html=html or "",
        text=text,
        links=links,
        images=images,
        title=title,
        description=description,
        status_code=status_code,
    )


# === PAGE FETCHER ===

class PageFetcher(Fetcher):
    """
    FLOW: Executes a single GET with the configured user agent and timeout ->
    Classifies the outcome -> Returns a parsed Document or raises FetchError. No retries.
    """
    ACCEPTED_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

    def __init__(self, verify_ssl=True):
        self.verify_ssl = verify_ssl
        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def fetch(self, url, user_agent, timeout_ms):
        headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        try:
            r = requests.get(
                url,
                timeout=timeout_ms / 1000.0,
                headers=headers,
                verify=self.verify_ssl,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout as e:
            raise FetchError(url, f"timeout: {e}")
        except requests.exceptions.ConnectionError as e:
            raise FetchError(url, f"connection error: {e}")
        except requests.exceptions.RequestException as e:
            raise FetchError(url, f"request error: {e}")

        if not 200 <= r.status_code < 400:
            raise FetchError(url, f"http error: {r.status_code}", status_code=r.status_code)

        content_type = r.headers.get("Content-Type", "").lower()
        if content_type and not any(t in content_type for t in self.ACCEPTED_CONTENT_TYPES):
            raise FetchError(url, f"unsupported content type: {content_type}", status_code=r.status_code)

        return parse_document(url, r.text, base_url=r.url or url, status_code=r.status_code)


# === PAGE EXTRACTOR ===

class PageExtractor(Extractor):
    """
    FLOW: Re-parses the document HTML -> Collects headings, form signals and tag counts ->
    Mines the plain text for e-mail addresses and phone numbers -> Returns a PageRecord.
    """
    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
    PHONE_PATTERN = re.compile(
        r"(?:\+?1[-. ]?)?\(?([0-9]{3})\)?[-. ]?([0-9]{3})[-. ]?([0-9]{4})\b"
        r"|\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"
    )
    HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]

    def extract(self, document, depth=0):
        soup = BeautifulSoup(document.html, HTML_PARSER)
        text = document.text

        headings = []
        for heading in soup.find_all(self.HEADING_TAGS):
            heading_text = heading.get_text(" ", strip=True)
            if heading_text:
                headings.append(f"{heading.name}: {heading_text}")

        emails = sorted({m.group(0).lower() for m in self.EMAIL_PATTERN.finditer(text)})
        phones = sorted({m.group(0).strip() for m in self.PHONE_PATTERN.finditer(text)})

        return PageRecord(
            url=document.url,
            title=document.title,
            description=document.description,
            content=text,
            headings=headings,
            emails=emails,
            phone_numbers=phones,
            links=list(document.links),
            images=list(document.images),
            link_count=len(soup.find_all("a", href=True)),
            image_count=len(soup.find_all("img", src=True)),
            word_count=len(text.split()),
            has_contact_form=self.has_contact_form(soup, text),
            depth=depth,
            crawl_time=datetime.now(),
            html=document.html,
        )

    @staticmethod
    def has_contact_form(soup, text):
        if not soup.find("form"):
            return False
        lowered = text.lower()
        return (
            "contact" in lowered
            or "email" in lowered
            or soup.find("input", attrs={"type": "email"}) is not None
            or soup.find("textarea") is not None
        )


# === BROKEN LINK CHECKER ===

class LinkChecker:
    """
    FLOW: HEAD-probes a link once per run -> caches the verdict ->
    2xx/3xx is working, anything else (including errors) is broken.
    """

    def __init__(self, user_agent, timeout=LINK_CHECK_TIMEOUT, verify_ssl=True):
        self.user_agent = user_agent
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._lock = threading.Lock()
        self._results = {}

    def is_link_working(self, url: str) -> bool:
        if not url.lower().startswith(("http://", "https://")):
            return True
        with self._lock:
            if url in self._results:
                return self._results[url]
        try:
            r = requests.head(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                verify=self.verify_ssl,
                allow_redirects=True,
            )
            working = 200 <= r.status_code < 400
        except requests.exceptions.RequestException as e:
            logger.debug(f"Link check failed for {url}: {e}")
            working = False
        with self._lock:
            self._results[url] = working
        return working

    def checked_count(self) -> int:
        with self._lock:
            return len(self._results)
