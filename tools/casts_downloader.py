#!/usr/bin/env python3
"""
SymfonyCasts Course Downloader

Logs in to the course site, discovers the course catalog and downloads each
chapter's video plus the course script and code archive.

Files that already exist are never downloaded again, so an interrupted run
can simply be started again. The course catalog is cached in blueprint.json;
use --refresh to crawl the site again.

Usage:
    python casts_downloader.py                         # Download everything in local.ini
    python casts_downloader.py --course "Symfony 6"    # Single course
    python casts_downloader.py --refresh               # Re-crawl the catalog
    python casts_downloader.py --catalog-only          # Build blueprint only
    python casts_downloader.py --log download.log      # Log to file
"""

import argparse
import configparser
import logging
import os
import re
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, NoReturn
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from catalog import filter_courses, get_catalog
from resources import (
    CourseClaims,
    classify_chapter,
    dashes_to_title,
    sanitize_title,
    strip_activity_chapters,
)
from site_client import AuthError, SiteClient, login

# ============ LOGGING SETUP ============

class ColorFormatter(logging.Formatter):
    """Colored output for terminal."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[41m',  # Red background
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """Configure logging to stdout and optionally to file."""
    logger = logging.getLogger('casts_downloader')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(ColorFormatter('%(asctime)s [%(levelname)s] %(message)s', datefmt='%H:%M:%S'))
    logger.addHandler(console)

    # File handler (no colors)
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        )
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {log_file}")

    return logger


log = logging.getLogger('casts_downloader')


# ============ ERROR HANDLING ============

class DownloadFatalError(Exception):
    """Unrecoverable error - stop everything."""
    pass


class ConfigError(Exception):
    """Missing or malformed local.ini."""
    pass


class DownloadError(Exception):
    """A single transfer failed."""
    pass


def fatal(message: str) -> NoReturn:
    """Log fatal error and exit immediately."""
    log.critical("")
    log.critical("=" * 60)
    log.critical("FATAL ERROR - STOPPING IMMEDIATELY")
    log.critical("=" * 60)
    log.critical(message)
    log.critical("=" * 60)
    log.critical("")
    sys.exit(1)


# ============ CONFIGURATION ============

PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_FILE = PROJECT_ROOT / 'local.ini'
BLUEPRINT_FILE = PROJECT_ROOT / 'blueprint.json'

CONFIG_SECTION = "downloader"
REQUIRED_KEYS = ("URL", "EMAIL", "PASSWORD", "TARGET")
SECTION_HEADER = re.compile(r"^\[[^\]]+\]\s*$")
DEFAULT_DELAY_MS = 250
DEFAULT_TIMEOUT = 60


@dataclass(frozen=True)
class DownloaderConfig:
    """Credentials and settings for one run."""
    base_url: str
    email: str
    password: str
    target: str
    courses: tuple = ()
    site_name: str = ""
    blueprint: Path = BLUEPRINT_FILE
    delay_ms: int = DEFAULT_DELAY_MS
    timeout: int = DEFAULT_TIMEOUT

    @property
    def download_dir(self) -> Path:
        return Path(self.target) / (self.site_name or site_name_from_url(self.base_url))


def site_name_from_url(url: str) -> str:
    """'https://www.symfonycasts.com/' -> 'symfonycasts'"""
    host = urlparse(url).hostname or "site"
    if host.startswith("www."):
        host = host[4:]
    return host.split(".")[0]


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def load_config(path: Path, overrides: Optional[dict] = None) -> DownloaderConfig:
    """Read local.ini, then apply environment and command line overrides.

    The file may be written with or without a [downloader] section header.
    COURSES lists one title per line.

    Raises:
        ConfigError: If the file is missing or a required key is empty
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    text = path.read_text(encoding="utf-8")
    if not any(SECTION_HEADER.match(line) for line in text.splitlines()):
        text = f"[{CONFIG_SECTION}]\n{text}"

    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read_string(text, source=str(path))
    except configparser.Error as e:
        raise ConfigError(f"Unable to parse {path}: {e}") from e

    if not parser.has_section(CONFIG_SECTION):
        raise ConfigError(f"Missing [{CONFIG_SECTION}] section in {path}")
    section = parser[CONFIG_SECTION]

    values = {key: _unquote(section.get(key, "")) for key in REQUIRED_KEYS}
    values["EMAIL"] = os.environ.get("CASTS_EMAIL", values["EMAIL"])
    values["PASSWORD"] = os.environ.get("CASTS_PASSWORD", values["PASSWORD"])
    courses = [_unquote(line) for line in section.get("COURSES", "").splitlines() if line.strip()]

    overrides = overrides or {}
    if overrides.get("target"):
        values["TARGET"] = overrides["target"]
    if overrides.get("courses"):
        courses = list(overrides["courses"])

    missing = [key for key in REQUIRED_KEYS if not values[key]]
    if missing:
        raise ConfigError(f"Missing required config values: {', '.join(missing)}")

    try:
        delay_ms = int(_unquote(section.get("DELAY_MS", str(DEFAULT_DELAY_MS))))
    except ValueError as e:
        raise ConfigError(f"DELAY_MS must be a number: {e}") from e

    blueprint = _unquote(section.get("BLUEPRINT", ""))

    return DownloaderConfig(
        base_url=values["URL"],
        email=values["EMAIL"],
        password=values["PASSWORD"],
        target=values["TARGET"],
        courses=tuple(courses),
        site_name=_unquote(section.get("SITE_NAME", "")),
        blueprint=Path(blueprint) if blueprint else BLUEPRINT_FILE,
        delay_ms=delay_ms,
    )


# ============ PROGRESS TRACKING ============

@dataclass
class DownloadStats:
    """Counters for the final summary."""
    total_courses: int = 0
    completed_courses: int = 0
    total_chapters: int = 0
    files_downloaded: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    bytes_downloaded: int = 0
    start_time: float = field(default_factory=time.time)
    errors: list = field(default_factory=list)

    def add_error(self, error: str):
        """Record a recoverable error."""
        self.errors.append(error)
        log.error(error)

    def log_summary(self):
        elapsed = time.time() - self.start_time

        log.info("")
        log.info("=" * 60)
        log.info("DOWNLOAD SUMMARY")
        log.info("=" * 60)
        log.info(f"  Courses:    {self.completed_courses}/{self.total_courses}")
        log.info(f"  Chapters:   {self.total_chapters}")
        log.info(f"  Downloaded: {self.files_downloaded} files ({format_size(self.bytes_downloaded)})")
        log.info(f"  Skipped:    {self.files_skipped} files (already existed)")
        log.info(f"  Failed:     {self.files_failed} files")
        log.info(f"  Duration:   {format_duration(elapsed)}")

        if self.errors:
            log.warning("")
            log.warning(f"ERRORS ({len(self.errors)}):")
            for err in self.errors:
                log.warning(f"  - {err}")

        log.info("=" * 60)


class ProgressState(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class ProgressReporter:
    """Progress bar for one transfer.

    The bar only appears once the total size is known and is closed when the
    downloaded count reaches the total.
    """

    def __init__(self, label: str):
        self.label = label
        self.state = ProgressState.NOT_STARTED
        self.total = None
        self.bar = None

    def update(self, downloaded: int, total: Optional[int]):
        if self.state is ProgressState.DONE:
            return

        if self.state is ProgressState.NOT_STARTED:
            if not total:
                return
            self.total = total
            self.bar = tqdm(total=total, unit='B', unit_scale=True, desc=self.label, leave=False)
            self.state = ProgressState.IN_PROGRESS

        self.bar.update(downloaded - self.bar.n)
        if downloaded >= self.total:
            self.finish()

    def finish(self):
        if self.bar is not None:
            self.bar.close()
        self.state = ProgressState.DONE


# ============ UTILITY FUNCTIONS ============

def format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.2f} TB"


def format_duration(seconds: float) -> str:
    """Format duration as human-readable string."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{seconds/60:.0f}m {seconds%60:.0f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def expected_size(response: requests.Response) -> Optional[int]:
    """Content-Length of the body as written to disk, if the server sent one."""
    if response.headers.get("Content-Encoding"):
        return None
    try:
        return int(response.headers.get("Content-Length", "")) or None
    except ValueError:
        return None


# ============ DOWNLOAD ENGINE ============

class FetchResult(Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


def download_file(client: SiteClient, url: str, dest_path: Path) -> FetchResult:
    """Stream url to dest_path. Existing files are never fetched again.

    Bytes go to a sibling .part file that is renamed into place only once the
    transfer is complete, so dest_path never holds a partial download. The
    .part file is removed on any failure, including Ctrl+C.
    """
    if dest_path.exists():
        log.info(f"  File '{dest_path.name}' was already downloaded")
        return FetchResult.SKIPPED

    log.info(f"  Downloading: {dest_path.name}")
    progress = ProgressReporter(dest_path.name)
    part_path = dest_path.with_name(dest_path.name + ".part")
    completed = False

    try:
        with client.stream(url, max_redirects=2) as response:
            total = expected_size(response)
            downloaded = 0
            with open(part_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=65536):
                    if chunk:
                        f.write(chunk)
                        downloaded += len(chunk)
                        progress.update(downloaded, total)

            if total and downloaded < total:
                raise DownloadError(
                    f"Incomplete transfer: got {downloaded} of {total} bytes"
                )

        part_path.replace(dest_path)
        completed = True
        progress.finish()
        log.info(f"    OK: {format_size(downloaded)}")
        return FetchResult.WRITTEN

    except (requests.RequestException, OSError, DownloadError) as e:
        log.warning(f"  Download failed for {dest_path.name}: {e}")
        return FetchResult.FAILED

    finally:
        if not completed:
            progress.finish()
            try:
                part_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                log.debug(f"  Could not remove partial file {part_path}: {cleanup_error}")


# ============ MAIN OPERATIONS ============

def download_course(client: SiteClient, title: str, chapters: dict[str, str], course_dir: Path,
                    stats: DownloadStats):
    """Download every chapter of one course into course_dir."""
    try:
        course_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        stats.add_error(f"Unable to create course directory '{course_dir}': {e}")
        return

    if not chapters:
        log.warning("No chapters to download")
        return

    chapters = strip_activity_chapters(chapters)
    claims = CourseClaims()

    for i, (slug, url) in enumerate(chapters.items(), 1):
        log.info("")
        log.info(f"Chapter '{dashes_to_title(slug)}' ({i} of {len(chapters)})")
        stats.total_chapters += 1

        try:
            targets, claims = classify_chapter(client, url, i, slug, course_dir, claims)
        except requests.RequestException as e:
            stats.add_error(f"Unable to fetch chapter '{slug}' of '{title}': {e}")
            continue

        for target in targets:
            result = download_file(client, target.url, target.path)
            if result is FetchResult.WRITTEN:
                stats.files_downloaded += 1
                stats.bytes_downloaded += target.path.stat().st_size
            elif result is FetchResult.SKIPPED:
                stats.files_skipped += 1
            else:
                stats.files_failed += 1

    stats.completed_courses += 1


def wanted_courses(client: SiteClient, refresh: bool = False) -> dict:
    """Resolve the catalog and narrow it to the configured courses."""
    try:
        catalog = get_catalog(client, client.config.blueprint, refresh=refresh)
    except requests.RequestException as e:
        raise DownloadFatalError(f"Unable to fetch the course catalog: {e}") from e

    courses = filter_courses(catalog, list(client.config.courses))
    log.info("")
    log.info("Wanted courses")
    log.info("-" * 60)
    for title in courses:
        log.info(f"  * {title}")

    return courses


def download_all(client: SiteClient, refresh: bool = False) -> DownloadStats:
    """Log in, resolve the catalog and download every wanted course.

    Raises:
        AuthError: If the login is rejected
        DownloadFatalError: If the download directory can't be created
    """
    config = client.config
    download_dir = config.download_dir

    log.info("")
    log.info("=" * 60)
    log.info("COURSE DOWNLOADER")
    log.info("=" * 60)
    log.info(f"Site: {config.base_url}")
    log.info(f"Output: {download_dir.absolute()}")
    log.info("=" * 60)

    stats = DownloadStats()
    login(client)

    try:
        download_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DownloadFatalError(f"Unable to create download directory '{download_dir}': {e}") from e

    courses = wanted_courses(client, refresh=refresh)
    stats.total_courses = len(courses)
    used_dirs = {}

    for i, (title, chapters) in enumerate(courses.items(), 1):
        log.info("")
        log.info("=" * 60)
        log.info(f"Processing course: '{title}' ({i} of {len(courses)})")
        log.info("=" * 60)

        course_dir = download_dir / sanitize_title(title)
        if course_dir in used_dirs:
            stats.add_error(f"Course '{title}' would share directory '{course_dir.name}' "
                            f"with '{used_dirs[course_dir]}', skipping")
            continue
        used_dirs[course_dir] = title

        download_course(client, title, chapters, course_dir, stats)

    stats.log_summary()
    log.info(f"Requests: {client.total_requests}")
    log.info("Finished")
    return stats


def catalog_only(client: SiteClient, refresh: bool = False) -> dict:
    """Log in and build (or show) the course blueprint without downloading."""
    login(client)
    courses = wanted_courses(client, refresh=refresh)
    chapter_count = sum(len(chapters) for chapters in courses.values())
    log.info(f"{len(courses)} courses, {chapter_count} chapters")
    return courses


# ============ CLI ============

def main():
    parser = argparse.ArgumentParser(
        description="Download course videos, scripts and code from SymfonyCasts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python casts_downloader.py
    python casts_downloader.py --course "Symfony 6: Doctrine" --course "Twig"
    python casts_downloader.py --refresh
    python casts_downloader.py --catalog-only
    python casts_downloader.py --config other.ini --target /mnt/videos
"""
    )

    parser.add_argument("--config", type=str, default=str(CONFIG_FILE), help="Path to local.ini")
    parser.add_argument("--target", type=str, help="Override TARGET download directory")
    parser.add_argument("--course", action="append", help="Only download this course title (repeatable)")
    parser.add_argument("--refresh", action="store_true", help="Ignore blueprint.json and crawl the catalog again")
    parser.add_argument("--catalog-only", action="store_true", help="Build the course blueprint without downloading")
    parser.add_argument("--log", type=str, help="Log file path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    # Setup logging first
    log_file = Path(args.log) if args.log else None
    setup_logging(log_file, args.verbose)

    try:
        config = load_config(Path(args.config), {"target": args.target, "courses": args.course})
    except ConfigError as e:
        fatal(f"{e}\nHint: run 'cp application.ini local.ini' and provide the required credentials")

    client = SiteClient(config)

    try:
        if args.catalog_only:
            catalog_only(client, refresh=args.refresh)
        else:
            download_all(client, refresh=args.refresh)
    except AuthError as e:
        fatal(f"Unable to authenticate: {e}")
    except DownloadFatalError as e:
        fatal(str(e))
    except KeyboardInterrupt:
        log.warning("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
