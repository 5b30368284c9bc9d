#!/usr/bin/env python3
"""
Course Catalog Discovery

Crawls the course listing and each course page to build the catalog:
an ordered mapping of course title -> {chapter slug: chapter URL}.

The catalog is cached as a "blueprint" JSON file. Once a blueprint exists it
is used as-is and the site is not crawled again, unless a refresh is forced.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from site_client import SiteClient, select_text

log = logging.getLogger('casts_downloader')

Catalog = dict[str, dict[str, str]]


def chapter_slug(href: str) -> tuple[str, str]:
    """Split a chapter href into (slug, url without fragment)."""
    url = href.split("#", 1)[0]
    return url.rstrip("/").split("/")[-1], url


def parse_chapters(soup, selector: str) -> dict[str, str]:
    """Ordered chapter slug -> URL map from a course page."""
    chapters = {}
    for anchor in soup.select(selector):
        href = anchor.get("href")
        if not href or href == "#":
            continue
        slug, url = chapter_slug(href)
        if slug:
            chapters[slug] = url
    return chapters


def course_title(anchor, selectors) -> Optional[str]:
    """Title from the course thumbnail's alt text, else the title element."""
    image = anchor.select_one(selectors.course_title_image)
    if image is not None and image.get("alt"):
        return image.get("alt").strip()
    return select_text(anchor, selectors.course_title_element)


def discover_catalog(client: SiteClient) -> Catalog:
    """Crawl the course listing and every course page."""
    selectors = client.selectors
    soup = client.get_html(selectors.catalog_path)
    items = soup.select(selectors.course_item)
    log.info(f"Found {len(items)} courses in listing")

    catalog = {}
    with tqdm(total=len(items), unit="course", leave=False) as bar:
        for i, anchor in enumerate(items, 1):
            title = course_title(anchor, selectors)
            course_url = anchor.get("href")
            bar.set_postfix_str(title or "?")
            bar.update(1)

            if not title or not course_url:
                log.warning(f"Skipping course entry {i} without title or link")
                continue

            log.info(f"[{i}/{len(items)}] {title}")
            course_soup = client.get_html(course_url)
            catalog[title] = parse_chapters(course_soup, selectors.chapter_links)
            log.debug(f"  {len(catalog[title])} chapters")

    return catalog


def load_cached_catalog(path: Path) -> Optional[Catalog]:
    """Load the blueprint, or None if there is no usable one."""
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        log.warning(f"Ignoring unreadable course blueprint {path}: {e}")
        return None

    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        log.warning(f"Ignoring malformed course blueprint {path}")
        return None

    return data


def persist_catalog(catalog: Catalog, path: Path) -> bool:
    """Write the blueprint. Returns False (with a warning) if it can't be saved."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(catalog, f, indent=4, ensure_ascii=False)
    except OSError as e:
        log.warning(f"Unable to save course blueprint: {e}")
        return False

    log.info(f"Saved course blueprint: {path}")
    return True


def get_catalog(client: SiteClient, blueprint_path: Path, refresh: bool = False) -> Catalog:
    """Return the cached catalog, crawling the site only when needed."""
    log.info("")
    log.info("=" * 60)
    log.info("FETCHING COURSES")
    log.info("=" * 60)

    if not refresh:
        catalog = load_cached_catalog(blueprint_path)
        if catalog is not None:
            log.info(f"Using course blueprint: {blueprint_path} ({len(catalog)} courses)")
            log.info("Run with --refresh to crawl the site again")
            return catalog
    else:
        log.info("Refreshing course blueprint")

    catalog = discover_catalog(client)
    persist_catalog(catalog, blueprint_path)
    return catalog


def filter_courses(catalog: Catalog, allow_list: Optional[list[str]]) -> Catalog:
    """Keep only allow-listed titles, in catalog order. Empty list keeps all."""
    if not allow_list:
        return catalog

    wanted = set(allow_list)
    missing = [title for title in allow_list if title not in catalog]
    for title in missing:
        log.warning(f"Course not found in catalog: '{title}'")

    return {title: chapters for title, chapters in catalog.items() if title in wanted}
