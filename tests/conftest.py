import io
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import brotli
import httpx
import pytest
import structlog

from rrscrap.chapters import make_client

FICTION_URL = "https://www.royalroad.com/fiction/1234/some-story"
NAV_CLASS = "btn btn-primary col-xs-12"


def chapter_url(k: int) -> str:
    return f"{FICTION_URL}/chapter/{1000 + k}/chapter-{k}"


def chapter_html(
    paragraphs: List[str],
    next_href: Optional[str] = None,
    next_text: str = "Next Chapter",
) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    nav = f'<a class="{NAV_CLASS}" href="/fiction/1234/some-story/chapter/999/prev">Previous Chapter</a>'
    if next_href is not None:
        nav += f'<a class="{NAV_CLASS}" href="{next_href}"> {next_text} </a>'
    return (
        "<html><head><title>chapter</title></head><body>"
        f'<div class="chapter-inner chapter-content">{body}</div>'
        f'<div class="nav-buttons">{nav}</div>'
        "</body></html>"
    )


def expected_content(k: int) -> bytes:
    return f"Paragraph {k}.1\n\nParagraph {k}.2".encode("utf-8")


class FakeSite:
    def __init__(self):
        self.pages: Dict[str, str] = {}
        self.failures: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []

    def chain(self, n: int, fail_at: Optional[int] = None, status: int = 500) -> List[str]:
        urls = [chapter_url(k) for k in range(1, n + 1)]
        for k, url in enumerate(urls, start=1):
            next_href = urlsplit(urls[k]).path if k < n else None
            self.pages[url] = chapter_html([f"Paragraph {k}.1", f"Paragraph {k}.2"], next_href)
        if fail_at is not None:
            self.failures[urls[fail_at - 1]] = status
        return urls

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.failures:
            return httpx.Response(self.failures[url])
        html = self.pages.get(url)
        if html is None:
            return httpx.Response(404)
        return httpx.Response(200, text=html, headers={"content-type": "text/html; charset=utf-8"})

    @property
    def fetched(self) -> List[str]:
        return [str(r.url) for r in self.requests]

    def client(self, **kwargs) -> httpx.AsyncClient:
        return make_client(transport=httpx.MockTransport(self.handler), **kwargs)


def read_archive(path: Path) -> Dict[str, Tuple[tarfile.TarInfo, bytes]]:
    raw = brotli.decompress(Path(path).read_bytes())
    entries = {}
    with tarfile.open(fileobj=io.BytesIO(raw), mode="r:") as tar:
        for member in tar.getmembers():
            entries[member.name] = (member, tar.extractfile(member).read())
    return entries


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
