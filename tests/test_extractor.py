"""Tests for resolving a playable media URL from a page."""

import http.client
import io
import urllib.error
import urllib.request
from types import SimpleNamespace

import pytest
from yt_dlp.utils import DownloadError as YtDlpDownloadError

from video_fetch import extractor
from video_fetch.errors import ExtractionError, FatalTransferError, TransientNetworkError
from video_fetch.logger import TransferLogger
from video_fetch.models import MediaInfo

PAGE_URL = "https://www.douyin.com/video/7300000000000000000"

PAGE_HTML = (
    "<html><head><title>Cat &amp; Dog</title></head><body><script>"
    'window._DATA = {"video":{"playAddr":"\\u002F\\u002Fv26.example.com\\u002Fplay\\u002Fabc.mp4"}};'
    "</script></body></html>"
)


def make_fake_youtube_dl(result):
    class FakeYoutubeDL:
        calls = []

        def __init__(self, params):
            self.params = params

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def extract_info(self, url, download=True):
            FakeYoutubeDL.calls.append((url, download, self.params))
            if isinstance(result, Exception):
                raise result
            return result

    return FakeYoutubeDL


def test_extract_url_from_html_unescapes_slashes():
    assert extractor.extract_url_from_html(PAGE_HTML) == "//v26.example.com/play/abc.mp4"


@pytest.mark.parametrize(
    "page, expected",
    [
        ('{"playApi":"https://cdn.example.com/a.mp4"}', "https://cdn.example.com/a.mp4"),
        ('{"videoUrl":"https://cdn.example.com/b.mp4"}', "https://cdn.example.com/b.mp4"),
        ('{"playAddr":""}', None),
        ("<html>nothing here</html>", None),
    ],
)
def test_extract_url_from_html_fields(page, expected):
    assert extractor.extract_url_from_html(page) == expected


@pytest.mark.parametrize(
    "url, expected",
    [
        ("//cdn.example.com/v.mp4", "https://cdn.example.com/v.mp4"),
        ("http://cdn.example.com/v.mp4", "https://cdn.example.com/v.mp4"),
        ("https://cdn.example.com/v.mp4", "https://cdn.example.com/v.mp4"),
    ],
)
def test_normalize_media_url(url, expected):
    assert extractor.normalize_media_url(url) == expected


def test_extract_title_from_html():
    assert extractor.extract_title_from_html(PAGE_HTML) == "Cat & Dog"
    assert extractor.extract_title_from_html("<title>  </title>") is None
    assert extractor.extract_title_from_html("<p>no title</p>") is None


def test_build_filename():
    assert extractor.build_filename("My Clip", timestamp_ms=1700000000000) == "My Clip_1700000000000.mp4"
    assert extractor.build_filename("a/b:c?", "webm", 5) == "a_b_c_5.webm"
    assert extractor.build_filename(None, timestamp_ms=1) == "video_1.mp4"


def test_pick_format_prefers_last_progressive_http_format():
    info = {
        "formats": [
            {"url": "https://cdn.example.com/low.mp4", "vcodec": "h264", "acodec": "aac"},
            {"url": "https://cdn.example.com/high.mp4", "vcodec": "h264", "acodec": "aac"},
            {"url": "https://cdn.example.com/video-only.mp4", "vcodec": "h264", "acodec": "none"},
            {"url": "https://cdn.example.com/master.m3u8", "vcodec": "h264", "acodec": "aac", "protocol": "m3u8_native"},
        ]
    }

    assert extractor.pick_format(info)["url"] == "https://cdn.example.com/high.mp4"


def test_pick_format_falls_back_to_any_format_with_url():
    info = {"formats": [{"vcodec": "h264"}, {"url": "https://cdn.example.com/v.mp4", "acodec": "none"}]}

    assert extractor.pick_format(info)["url"] == "https://cdn.example.com/v.mp4"
    assert extractor.pick_format({"formats": []}) is None


def test_resolve_media_uses_yt_dlp(monkeypatch):
    info = {
        "title": "Clip",
        "formats": [
            {
                "url": "http://cdn.example.com/v.mp4",
                "ext": "mp4",
                "vcodec": "h264",
                "acodec": "aac",
                "http_headers": {"Referer": PAGE_URL},
            }
        ],
    }
    fake = make_fake_youtube_dl(info)
    monkeypatch.setattr(extractor.yt_dlp, "YoutubeDL", fake)

    def no_page(*args, **kwargs):
        raise AssertionError("page should not be fetched")

    monkeypatch.setattr(extractor, "fetch_page", no_page)

    media = extractor.resolve_media(PAGE_URL, SimpleNamespace(), TransferLogger())

    assert media == MediaInfo(
        url="https://cdn.example.com/v.mp4",
        title="Clip",
        ext="mp4",
        http_headers={"Referer": PAGE_URL},
    )
    url, download, params = fake.calls[0]
    assert (url, download) == (PAGE_URL, False)
    assert params["skip_download"] is True


def test_resolve_media_takes_first_playlist_entry(monkeypatch):
    info = {
        "_type": "playlist",
        "entries": [None, {"title": "First", "url": "https://cdn.example.com/1.mp4", "ext": "mp4"}],
    }
    monkeypatch.setattr(extractor.yt_dlp, "YoutubeDL", make_fake_youtube_dl(info))

    media = extractor.resolve_media(PAGE_URL, SimpleNamespace())

    assert media.url == "https://cdn.example.com/1.mp4"
    assert media.title == "First"


def test_resolve_media_falls_back_to_page_source(monkeypatch):
    monkeypatch.setattr(
        extractor.yt_dlp, "YoutubeDL", make_fake_youtube_dl(YtDlpDownloadError("Unsupported URL"))
    )
    monkeypatch.setattr(extractor, "fetch_page", lambda url, user_agent, timeout=30.0: PAGE_HTML)
    logger = TransferLogger()

    media = extractor.resolve_media(PAGE_URL, SimpleNamespace(), logger)

    assert media.url == "https://v26.example.com/play/abc.mp4"
    assert media.title == "Cat & Dog"
    assert media.ext == "mp4"
    assert media.http_headers["Referer"] == PAGE_URL
    assert logger.warning_count == 1


def test_resolve_media_without_video_raises(monkeypatch):
    monkeypatch.setattr(extractor.yt_dlp, "YoutubeDL", make_fake_youtube_dl({"title": "no formats"}))
    monkeypatch.setattr(extractor, "fetch_page", lambda url, user_agent, timeout=30.0: "<html></html>")

    with pytest.raises(ExtractionError, match="No video URL found"):
        extractor.resolve_media(PAGE_URL, SimpleNamespace())


def test_resolve_media_page_unreachable(monkeypatch):
    monkeypatch.setattr(
        extractor.yt_dlp, "YoutubeDL", make_fake_youtube_dl(YtDlpDownloadError("blocked"))
    )

    def unreachable(url, user_agent, timeout=30.0):
        raise urllib.error.URLError("Network is unreachable")

    monkeypatch.setattr(extractor, "fetch_page", unreachable)

    with pytest.raises(ExtractionError, match="Failed to load"):
        extractor.resolve_media(PAGE_URL, SimpleNamespace())


class FakeResponse(io.BytesIO):
    def __init__(self, data, content_type):
        super().__init__(data)
        self.headers = http.client.HTTPMessage()
        self.headers["Content-Type"] = content_type


def test_fetch_page_decodes_with_declared_charset(monkeypatch):
    body = "<title>Café</title>".encode("latin-1")
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda request, timeout=None: FakeResponse(body, "text/html; charset=latin-1"),
    )

    assert extractor.fetch_page(PAGE_URL, "TestAgent/1.0") == "<title>Café</title>"


def test_fetch_blob_returns_bytes(monkeypatch):
    seen = []

    def fake_urlopen(request, timeout=None):
        seen.append(request)
        return FakeResponse(b"video bytes", "video/mp4")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    media = MediaInfo(url="https://cdn.example.com/v.mp4", http_headers={"Referer": PAGE_URL})

    handle = extractor.fetch_blob(media)

    assert handle.data == b"video bytes"
    assert handle.content_type == "video/mp4"
    assert seen[0].get_header("Referer") == PAGE_URL


@pytest.mark.parametrize(
    "exc, error_type",
    [
        (urllib.error.URLError("Network is unreachable"), TransientNetworkError),
        (urllib.error.HTTPError("https://cdn.example.com/v.mp4", 403, "Forbidden", None, None), FatalTransferError),
    ],
)
def test_fetch_blob_failures_are_classified(monkeypatch, exc, error_type):
    def failing_urlopen(request, timeout=None):
        raise exc

    monkeypatch.setattr(urllib.request, "urlopen", failing_urlopen)

    with pytest.raises(error_type, match="Video download failed, try again"):
        extractor.fetch_blob(MediaInfo(url="https://cdn.example.com/v.mp4"))
