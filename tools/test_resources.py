#!/usr/bin/env python3
"""
Tests for chapter resource classification

Run with: pytest test_resources.py -v
"""

from pathlib import Path
from unittest.mock import Mock, patch, MagicMock
import pytest

from casts_downloader import DownloaderConfig
from resources import (
    CourseClaims,
    DownloadTarget,
    LinkStatus,
    ResourceKind,
    classify_chapter,
    classify_link,
    classify_links,
    dashes_to_title,
    is_activity_chapter,
    sanitize_title,
    strip_activity_chapters,
)
from site_client import SiteClient


# ============ FIXTURES ============

CHAPTER_PAGE = """
<div class="dropdown">
  <button id="downloadDropdown">Download</button>
  <div class="dropdown-menu" aria-labelledby="downloadDropdown">
    <a href="/screencast/symfony/setup/download/video">Video</a>
    <a href="/screencast/symfony/download/script">Script</a>
    <a href="/screencast/symfony/download/code">Course Code</a>
    <a href="/screencast/symfony/download/subtitles">Subtitles</a>
  </div>
</div>
<a href="/screencast/symfony/video-elsewhere">Not in the menu</a>
"""


@pytest.fixture
def course_dir(tmp_path):
    return tmp_path / "symfonycasts" / "Symfony 6- Fundamentals"


@pytest.fixture
def config(tmp_path):
    """Create a test configuration."""
    return DownloaderConfig(
        base_url="https://symfonycasts.com/",
        email="user@example.com",
        password="secret",
        target=str(tmp_path),
        blueprint=tmp_path / "blueprint.json",
        delay_ms=0,
    )


# ============ NAMING ============

class TestNaming:
    """Tests for path and title helpers."""

    def test_sanitize_replaces_windows_characters(self):
        assert sanitize_title('a<b>c:d"e/f\\g|h?i*j') == "a-b-c-d-e-f-g-h-i-j"

    def test_sanitize_keeps_valid_titles(self):
        assert sanitize_title("Symfony 6 Fundamentals") == "Symfony 6 Fundamentals"

    def test_dashes_to_title(self):
        assert dashes_to_title("routing-and-controllers") == "Routing And Controllers"


class TestActivityChapters:
    """Tests for quiz checkpoint detection."""

    def test_detects_activity_pages(self):
        assert is_activity_chapter("/screencast/symfony/activity/123")

    def test_content_pages_are_kept(self):
        assert not is_activity_chapter("/screencast/symfony/routing")
        assert not is_activity_chapter("/screencast/symfony/activity/12")
        assert not is_activity_chapter("/screencast/symfony/activity/1234")

    def test_strip_keeps_order(self):
        chapters = {
            "setup": "/screencast/symfony/setup",
            "123": "/screencast/symfony/activity/123",
            "routing": "/screencast/symfony/routing",
        }
        assert list(strip_activity_chapters(chapters)) == ["setup", "routing"]


# ============ CLASSIFICATION ============

class TestClassifyLink:
    """Tests for single link classification."""

    def test_video(self):
        result, claims = classify_link("/x/download/video", 7, "routing", "Symfony", CourseClaims())
        assert result.status is LinkStatus.TARGET
        assert result.kind is ResourceKind.VIDEO
        assert result.filename == "007-routing.mp4"
        assert claims == CourseClaims()

    def test_first_script_is_claimed(self):
        result, claims = classify_link("/x/download/script", 1, "setup", "Symfony", CourseClaims())
        assert result.kind is ResourceKind.SCRIPT
        assert result.filename == "Symfony.pdf"
        assert claims.has_script and not claims.has_archive

    def test_first_code_is_claimed(self):
        result, claims = classify_link("/x/download/code", 1, "setup", "Symfony", CourseClaims())
        assert result.kind is ResourceKind.ARCHIVE
        assert result.filename == "Symfony.zip"
        assert claims.has_archive and not claims.has_script

    def test_claimed_script_is_duplicate(self):
        result, claims = classify_link("/x/download/script", 2, "routing", "Symfony",
                                       CourseClaims(has_script=True))
        assert result.status is LinkStatus.DUPLICATE
        assert result.filename is None

    def test_unknown_link(self):
        result, _ = classify_link("/x/download/subtitles", 1, "setup", "Symfony", CourseClaims())
        assert result.status is LinkStatus.UNKNOWN

    def test_empty_link_has_no_filename(self):
        result, _ = classify_link("", 1, "setup", "Symfony", CourseClaims())
        assert result.status is LinkStatus.NO_FILENAME

    def test_claims_are_not_mutated(self):
        claims = CourseClaims()
        classify_link("/x/download/script", 1, "setup", "Symfony", claims)
        assert claims == CourseClaims()


class TestClassifyLinks:
    """Tests for a chapter's full link list."""

    def test_only_first_script_and_code_per_course(self, course_dir):
        hrefs = [
            "/c/setup/download/video",
            "/c/download/script",
            "/c/download/code",
            "/c/download/script",
            "/c/download/code",
        ]
        targets, claims = classify_links(hrefs, 1, "setup", course_dir, CourseClaims())

        kinds = [t.kind for t in targets]
        assert kinds == [ResourceKind.VIDEO, ResourceKind.SCRIPT, ResourceKind.ARCHIVE]
        assert claims == CourseClaims(has_script=True, has_archive=True)

        # Next chapter of the same course advertises the same links again
        targets, claims = classify_links(hrefs, 2, "routing", course_dir, claims)
        assert [t.kind for t in targets] == [ResourceKind.VIDEO]

    def test_targets_are_absolute_in_course_dir(self, course_dir):
        targets, _ = classify_links(["/c/download/script"], 1, "setup", course_dir, CourseClaims())
        assert targets == [
            DownloadTarget(course_dir / "Symfony 6- Fundamentals.pdf", ResourceKind.SCRIPT, "/c/download/script")
        ]

    def test_unknown_links_warn(self, course_dir, caplog):
        targets, _ = classify_links(["/c/download/subtitles"], 1, "setup", course_dir, CourseClaims())
        assert targets == []
        assert "Unknown link type: /c/download/subtitles" in caplog.text

    def test_empty_links_warn(self, course_dir, caplog):
        targets, _ = classify_links([""], 1, "setup", course_dir, CourseClaims())
        assert targets == []
        assert "Unable to get download links" in caplog.text


class TestClassifyChapter:
    """Tests for fetching and classifying a chapter page."""

    def test_reads_download_menu_only(self, config, course_dir):
        with patch('site_client.requests.Session') as mock_session_class:
            mock_session = MagicMock()
            mock_session_class.return_value = mock_session
            response = Mock()
            response.text = CHAPTER_PAGE
            response.raise_for_status = Mock()
            mock_session.get.return_value = response

            client = SiteClient(config)
            targets, claims = classify_chapter(
                client, "/screencast/symfony/setup", 1, "setup", course_dir, CourseClaims()
            )

        assert [t.path.name for t in targets] == [
            "001-setup.mp4",
            "Symfony 6- Fundamentals.pdf",
            "Symfony 6- Fundamentals.zip",
        ]
        assert all(isinstance(t.path, Path) and t.path.is_absolute() for t in targets)
        assert claims == CourseClaims(has_script=True, has_archive=True)

    def test_menu_link_without_href_warns(self, config, course_dir, caplog):
        with patch('site_client.requests.Session') as mock_session_class:
            mock_session = MagicMock()
            mock_session_class.return_value = mock_session
            response = Mock()
            response.text = '<div aria-labelledby="downloadDropdown"><a>Broken</a></div>'
            response.raise_for_status = Mock()
            mock_session.get.return_value = response

            client = SiteClient(config)
            targets, claims = classify_chapter(
                client, "/screencast/symfony/setup", 1, "setup", course_dir, CourseClaims()
            )

        assert targets == []
        assert claims == CourseClaims()
        assert "Unable to get download links" in caplog.text


# ============ RUN TESTS ============

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
