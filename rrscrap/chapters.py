"""Fetching, parsing and walking a fiction's chapter chain.

``walk`` follows the "Next Chapter" button from page to page, one fetch at a
time, and hands every chapter to the relay from a separate task so the next
fetch can start right away.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

import httpx
import structlog
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from .config import CONTENT_SELECTOR, DEFAULT_TIMEOUT, DEFAULT_UA, NAV_SELECTOR
from .errors import (
    ExtractionError,
    FetchError,
    InvalidRunTarget,
    MissingChapterName,
)
from .relay import Sender

FICTION_PATTERN = re.compile(r"/fiction/\d+/([\w-]+)")
NEXT_LABEL = "next chapter"
BLOCK_SEPARATOR = "\n\n"


# --------- Data ---------
@dataclass
class Chapter:
    index: int
    name: str
    content: bytes

    @property
    def entry_name(self) -> str:
        return f"{self.name}.txt"


@dataclass
class NavCandidate:
    text: str
    href: Optional[str]

    def is_next(self) -> bool:
        return self.text.strip().casefold() == NEXT_LABEL


# --------- Naming ---------
def run_target(url: str) -> str:
    """Fiction slug from a ``/fiction/<id>/<slug>`` chapter URL."""
    match = FICTION_PATTERN.search(url)
    if not match:
        raise InvalidRunTarget(url)
    return match.group(1)


def chapter_name(url: str) -> str:
    name = urlsplit(url).path.rsplit("/", 1)[-1]
    if not name:
        raise MissingChapterName(url)
    return name


def next_chapter_url(current: str, candidates: List[NavCandidate]) -> Optional[str]:
    # only the first matching button counts, even if it has no link
    for candidate in candidates:
        if candidate.is_next():
            if not candidate.href:
                return None
            try:
                return urljoin(current, candidate.href)
            except ValueError as e:
                # e.g. an unterminated IPv6 host in the href
                raise ExtractionError(current) from e
    return None


# --------- Fetching ---------
def make_client(
    user_agent: str = DEFAULT_UA,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent},
        timeout=timeout,
        follow_redirects=True,
        **kwargs,
    )


class PageFetcher:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch(self, url: str) -> bytes:
        try:
            r = await self.client.get(url)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(url, e.response.status_code) from e
        except httpx.HTTPError as e:
            raise FetchError(url) from e
        return r.content


# --------- Extraction ---------
class ChapterExtractor:
    """Owns the selectors that locate chapter text and the navigation buttons."""

    def __init__(
        self,
        content_selector: str = CONTENT_SELECTOR,
        nav_selector: str = NAV_SELECTOR,
        parser: str = "html.parser",
    ):
        self.content_selector = content_selector
        self.nav_selector = nav_selector
        self.parser = parser

    def parse(self, markup: bytes, url: str) -> BeautifulSoup:
        try:
            return BeautifulSoup(markup, self.parser)
        except (ParserRejectedMarkup, UnicodeDecodeError) as e:
            raise ExtractionError(url) from e

    def select_text(self, document: BeautifulSoup) -> List[str]:
        return [el.get_text() for el in document.select(self.content_selector)]

    def select_candidates(self, document: BeautifulSoup) -> List[NavCandidate]:
        return [
            NavCandidate(text=el.get_text(), href=el.get("href"))
            for el in document.select(self.nav_selector)
        ]


# --------- Walk ---------
async def _handoff(
    sender: Sender,
    chapter: Chapter,
    previous: Optional[asyncio.Task],
    log,
) -> None:
    with sender:
        if previous is not None:
            await previous
        await sender.send(chapter)
    log.info("chapter handed off", chapter=chapter.name, index=chapter.index)


async def walk(
    start_url: str,
    sender: Sender,
    *,
    fetcher: PageFetcher,
    extractor: ChapterExtractor,
    logger=None,
) -> int:
    """Crawl the chain starting at ``start_url``; return the chapters handed off.

    Pages are fetched strictly one after another. Each handoff task waits for
    the one before it, so chapters reach the relay in chain order. ``sender``
    is closed once every dispatched handoff has settled.
    """
    log = logger or structlog.get_logger(__name__)
    url: Optional[str] = start_url
    index = 0
    last_handoff: Optional[asyncio.Task] = None

    try:
        try:
            while url:
                name = chapter_name(url)
                document = extractor.parse(await fetcher.fetch(url), url)
                content = BLOCK_SEPARATOR.join(extractor.select_text(document))
                index += 1
                log.info("chapter parsed", chapter=name, index=index, url=url)

                if last_handoff is not None and last_handoff.done():
                    last_handoff.result()
                chapter = Chapter(index=index, name=name, content=content.encode("utf-8"))
                last_handoff = asyncio.create_task(
                    _handoff(sender.clone(), chapter, last_handoff, log)
                )

                url = next_chapter_url(url, extractor.select_candidates(document))
        except Exception as e:
            if last_handoff is not None:
                await asyncio.wait([last_handoff])
                pending_error = last_handoff.exception()
                if pending_error is not None and pending_error is not e:
                    log.warning("handoff failed", error=str(pending_error))
            raise
        if last_handoff is not None:
            await last_handoff
    finally:
        sender.close()

    log.info("chain ended", chapters=index, start=start_url)
    return index
