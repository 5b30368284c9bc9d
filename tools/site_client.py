#!/usr/bin/env python3
"""
Site Session Client for the Casts Downloader

Wraps a requests.Session with a fixed base URL and a persistent cookie jar,
parses served markup with BeautifulSoup, and performs the CSRF login
handshake. Every site-specific selector lives in the Selectors object below,
so markup changes on the site only need an edit there.

Usage:
    from site_client import SiteClient, login

    client = SiteClient(config)
    login(client)
    soup = client.get_html("/courses/filtering")
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

log = logging.getLogger('casts_downloader')


# ============ ERRORS ============

class SiteError(Exception):
    """Problem talking to the course site."""
    pass


class AuthError(SiteError):
    """Login handshake failed. Fatal for the run."""
    pass


# ============ SELECTORS ============

@dataclass(frozen=True)
class Selectors:
    """Paths and CSS selectors that describe the site's markup."""
    login_path: str = "login"
    csrf_field: str = "_csrf_token"
    catalog_path: str = "/courses/filtering"
    course_item: str = "div.course-list-bookmark-container.js-course-item > div > div > a"
    course_title_image: str = "img"
    course_title_element: str = ".course-title"
    chapter_links: str = "ul.chapter-list > li > a"
    download_links: str = '[aria-labelledby="downloadDropdown"] a'


SYMFONYCASTS_SELECTORS = Selectors()


# ============ MARKUP EXTRACTION ============

def parse_html(text: str) -> BeautifulSoup:
    """Parse an HTML document or fragment."""
    return BeautifulSoup(text, "html.parser")


def select_attrs(soup, selector: str, attribute: str, default: Optional[str] = None) -> list[str]:
    """Return the attribute value of every element matching selector.

    Elements without the attribute get default, or are left out when
    default is None.
    """
    values = []
    for element in soup.select(selector):
        value = element.get(attribute, default)
        if value is not None:
            values.append(value)
    return values


def select_text(soup, selector: str) -> Optional[str]:
    """Return the stripped text of the first match, or None."""
    element = soup.select_one(selector)
    if element is None:
        return None
    text = element.get_text(strip=True)
    return text or None


# ============ HTTP SESSION CLIENT ============

class SiteClient:
    """Cookie-keeping HTTP client bound to one site."""

    def __init__(self, config, selectors: Selectors = SYMFONYCASTS_SELECTORS):
        self.config = config
        self.selectors = selectors
        self.session = requests.Session()
        self.session.headers["User-Agent"] = "CastsDownloader/1.0 (Personal Use)"
        self.total_requests = 0

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def landing_url(self) -> str:
        """Page the site redirects to after a successful login."""
        return urljoin(self.base_url, "/")

    def url(self, path: str) -> str:
        """Resolve a site path (or absolute URL) against the base URL."""
        return urljoin(self.base_url, path)

    def _wait_between_requests(self):
        """Small delay between requests (be a good citizen)."""
        if self.config.delay_ms <= 0:
            return
        delay = self.config.delay_ms / 1000 + random.uniform(0, 0.1)
        time.sleep(delay)

    def get(self, path: str, **kwargs) -> requests.Response:
        """GET a page. HTTP errors raise requests.HTTPError."""
        self._wait_between_requests()
        url = self.url(path)
        log.debug(f"GET {url}")
        kwargs.setdefault("timeout", self.config.timeout)
        response = self.session.get(url, **kwargs)
        self.total_requests += 1
        try:
            response.raise_for_status()
        except requests.HTTPError:
            response.close()
            raise
        return response

    def post(self, path: str, data: dict) -> requests.Response:
        """POST a form, following redirects."""
        self._wait_between_requests()
        url = self.url(path)
        log.debug(f"POST {url}")
        response = self.session.post(url, data=data, allow_redirects=True, timeout=self.config.timeout)
        self.total_requests += 1
        try:
            response.raise_for_status()
        except requests.HTTPError:
            response.close()
            raise
        return response

    def get_html(self, path: str) -> BeautifulSoup:
        """GET a page and parse it."""
        return parse_html(self.get(path).text)

    def stream(self, url: str, max_redirects: int = 2) -> requests.Response:
        """Open a streaming GET, following at most max_redirects redirects."""
        current = self.url(url)
        for _ in range(max_redirects + 1):
            response = self.get(current, stream=True, allow_redirects=False)
            if not response.is_redirect:
                return response
            location = response.headers.get("Location", "")
            response.close()
            current = urljoin(current, location)
            log.debug(f"  redirected to {current}")
        raise requests.TooManyRedirects(f"Exceeded {max_redirects} redirects for {url}")


# ============ AUTHENTICATION ============

def extract_csrf_token(soup, field_name: str) -> Optional[str]:
    """Find the value of the named input, or None if missing or empty."""
    token = None
    for element in soup.find_all("input"):
        if element.get("name") == field_name:
            token = element.get("value")
    return token or None


def login(client: SiteClient):
    """Log in with the configured credentials.

    Fetches the login form, pulls the CSRF token out of it and posts the
    credentials back. The site redirects to its landing page on success and
    back to the login form when the credentials are rejected.

    Raises:
        AuthError: If the token is missing or the login is rejected
    """
    log.info(f"Logging in as {client.config.email}...")
    selectors = client.selectors

    try:
        soup = client.get_html(selectors.login_path)
    except requests.RequestException as e:
        raise AuthError(f"unable to load login page: {e}") from e

    csrf_token = extract_csrf_token(soup, selectors.csrf_field)
    if not csrf_token:
        raise AuthError("missing csrf token")

    try:
        response = client.post(selectors.login_path, data={
            "email": client.config.email,
            "password": client.config.password,
            selectors.csrf_field: csrf_token,
        })
    except requests.RequestException as e:
        raise AuthError(f"login request failed: {e}") from e

    log.debug(f"  Landed on {response.url}")
    if response.url != client.landing_url:
        raise AuthError("authorization failed")

    log.info("Logged in.")
