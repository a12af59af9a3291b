"""
FILE DESCRIPTION: Foundational module for environment configuration and logging.
KEY FUNCTIONS/CLASSES: setup_logger, CompanyFormatter, env_int, env_float, env_str
"""

import logging
import sys
import os
from datetime import datetime
from dotenv import load_dotenv

# === CONFIGURATION SECTION ===

# Load .env from the working directory (if present) before any default is read
load_dotenv()


def env_str(name, default):
    value = os.getenv(name)
    return value if value not in (None, "") else default


def env_int(name, default):
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def env_float(name, default):
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}")


def env_bool(name, default):
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Defaults for a crawl run (overridable per run through CrawlerConfig)
MAX_THREADS = env_int("CRAWLER_MAX_THREADS", 5)
MAX_PAGES = env_int("CRAWLER_MAX_PAGES", 100)
MAX_DEPTH = env_int("CRAWLER_MAX_DEPTH", 2)
DELAY_MS = env_int("CRAWLER_DELAY_MS", 1000)  # per worker task, not per host
CONNECT_TIMEOUT_MS = env_int("CRAWLER_CONNECT_TIMEOUT_MS", 10000)
USER_AGENT = env_str("CRAWLER_USER_AGENT", "WebCrawler/1.0")
OUTPUT_DIR = env_str("CRAWLER_OUTPUT_DIR", "crawler_output")
VERIFY_SSL = env_bool("CRAWLER_VERIFY_SSL", True)

# Scheduler timings (seconds)
POLL_TIMEOUT = env_float("CRAWLER_POLL_TIMEOUT", 5.0)
MONITOR_INTERVAL = env_float("CRAWLER_MONITOR_INTERVAL", 5.0)
QUIESCENCE_GRACE = env_float("CRAWLER_QUIESCENCE_GRACE", 2.0)
SHUTDOWN_GRACE = env_float("CRAWLER_SHUTDOWN_GRACE", 30.0)
CANCEL_GRACE = env_float("CRAWLER_CANCEL_GRACE", 30.0)

# Broken-link probing
LINK_CHECK_TIMEOUT = env_float("CRAWLER_LINK_CHECK_TIMEOUT", 5.0)

LOG_FILE = os.getenv("CRAWLER_LOG_FILE")


# === LOGGING SECTION ===

class CompanyFormatter(logging.Formatter):
    """
    FLOW: Receives a log record -> Extracts timestamp -> Formats according to company standard
    (e.g., [ Tue Jan 06 05:32:41 AM UTC 2026 ]) -> Prepends level and context -> Returns final string.
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p UTC %Y")
        context = getattr(record, 'context', 'root')
        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logger(name="sitecrawler", log_file=None, level=logging.INFO):
    """
    FLOW: Initializes/Retrieves logger -> Checks for existing handlers to prevent duplicates ->
    Sets propagation for child loggers -> Attaches Console and optional File handlers with CompanyFormatter.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if name != "sitecrawler":
        logger.propagate = True
        setup_logger("sitecrawler", log_file=log_file, level=level)
        return logger

    formatter = CompanyFormatter()

    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # Only the root 'sitecrawler' logger gets a FileHandler
    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Global logger instance
logger = setup_logger(log_file=LOG_FILE)
