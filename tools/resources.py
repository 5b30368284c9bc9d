#!/usr/bin/env python3
"""
Chapter Resource Classification

Turns the links in a chapter's download menu into download targets:
one video per chapter, plus at most one script and one code archive per
course. Which of those the course already has is tracked in CourseClaims,
which is handed from chapter to chapter.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from site_client import SiteClient, select_attrs

log = logging.getLogger('casts_downloader')

BAD_PATH_CHARS = re.compile(r'[<>:"/\\|?*]')
ACTIVITY_CHAPTER = re.compile(r'/activity/[0-9]{3}$')

VIDEO_EXT = "mp4"
SCRIPT_EXT = "pdf"
ARCHIVE_EXT = "zip"


class ResourceKind(Enum):
    VIDEO = "video"
    SCRIPT = "script"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class CourseClaims:
    """Whether the course's single script / code archive is already taken."""
    has_script: bool = False
    has_archive: bool = False


@dataclass(frozen=True)
class DownloadTarget:
    path: Path
    kind: ResourceKind
    url: str


class LinkStatus(Enum):
    TARGET = "target"
    DUPLICATE = "duplicate"
    UNKNOWN = "unknown"
    NO_FILENAME = "no_filename"


@dataclass(frozen=True)
class LinkClassification:
    status: LinkStatus
    kind: Optional[ResourceKind] = None
    filename: Optional[str] = None


# ============ NAMING ============

def sanitize_title(title: str) -> str:
    """Replace characters that are not allowed in Windows paths with '-'."""
    return BAD_PATH_CHARS.sub('-', title)


def dashes_to_title(text: str) -> str:
    """'some-chapter-name' -> 'Some Chapter Name'"""
    return " ".join(part[:1].upper() + part[1:] for part in text.split("-"))


def is_activity_chapter(url: str) -> bool:
    """Activity pages are quiz checkpoints, not content."""
    return bool(ACTIVITY_CHAPTER.search(url))


def strip_activity_chapters(chapters: dict[str, str]) -> dict[str, str]:
    return {slug: url for slug, url in chapters.items() if not is_activity_chapter(url)}


# ============ CLASSIFICATION ============

def classify_link(href: str, chapter_index: int, slug: str, title_path: str,
                  claims: CourseClaims) -> tuple[LinkClassification, CourseClaims]:
    """Classify one download-menu link.

    Returns the classification and the claims to carry into the next link.
    """
    if not href:
        return LinkClassification(LinkStatus.NO_FILENAME), claims

    if "video" in href:
        filename = f"{chapter_index:03d}-{slug}.{VIDEO_EXT}"
        return LinkClassification(LinkStatus.TARGET, ResourceKind.VIDEO, filename), claims

    if "script" in href:
        if claims.has_script:
            return LinkClassification(LinkStatus.DUPLICATE, ResourceKind.SCRIPT), claims
        filename = f"{title_path}.{SCRIPT_EXT}"
        return (LinkClassification(LinkStatus.TARGET, ResourceKind.SCRIPT, filename),
                replace(claims, has_script=True))

    if "code" in href:
        if claims.has_archive:
            return LinkClassification(LinkStatus.DUPLICATE, ResourceKind.ARCHIVE), claims
        filename = f"{title_path}.{ARCHIVE_EXT}"
        return (LinkClassification(LinkStatus.TARGET, ResourceKind.ARCHIVE, filename),
                replace(claims, has_archive=True))

    return LinkClassification(LinkStatus.UNKNOWN), claims


def classify_links(hrefs: list[str], chapter_index: int, slug: str, course_dir: Path,
                   claims: CourseClaims) -> tuple[list[DownloadTarget], CourseClaims]:
    """Classify a chapter's links in order, dropping duplicates and unknowns."""
    title_path = course_dir.name
    targets = []

    for href in hrefs:
        result, claims = classify_link(href, chapter_index, slug, title_path, claims)

        if result.status is LinkStatus.UNKNOWN:
            log.warning(f"Unknown link type: {href}")
        elif result.status is LinkStatus.NO_FILENAME:
            log.warning("Unable to get download links")
        elif result.status is LinkStatus.DUPLICATE:
            log.debug(f"  Course already has a {result.kind.value}: {href}")
        else:
            targets.append(DownloadTarget(course_dir / result.filename, result.kind, href))

    return targets, claims


def classify_chapter(client: SiteClient, chapter_url: str, chapter_index: int, slug: str,
                     course_dir: Path, claims: CourseClaims) -> tuple[list[DownloadTarget], CourseClaims]:
    """Fetch a chapter page and classify its download menu.

    Raises:
        requests.RequestException: If the chapter page can't be fetched
    """
    soup = client.get_html(chapter_url)
    hrefs = select_attrs(soup, client.selectors.download_links, "href", default="")
    log.debug(f"  {len(hrefs)} download links")
    return classify_links(hrefs, chapter_index, slug, course_dir, claims)
