"""One run per fiction: walk the chapter chain and archive it concurrently."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import httpx
import structlog

from .chapters import ChapterExtractor, PageFetcher, make_client, run_target, walk
from .config import Settings
from .errors import RelayHandoffError, ScrapeError
from .relay import Relay
from .tarball import drain


@dataclass
class RunResult:
    url: str
    output_path: Path
    handed_off: int
    archived: int


@dataclass
class RunOutcome:
    url: str
    result: Optional[RunResult] = None
    error: Optional[ScrapeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _client_for(settings: Settings) -> httpx.AsyncClient:
    return make_client(user_agent=settings.user_agent, timeout=settings.timeout)


async def run(
    initial_url: str,
    settings: Settings,
    *,
    client: Optional[httpx.AsyncClient] = None,
    logger=None,
) -> RunResult:
    """Archive the fiction whose first chapter is ``initial_url``.

    The walker and the archive writer run side by side and both are awaited.
    A walker failure wins over a writer failure; the writer's is logged, and
    becomes the cause of a walker that only failed to hand off.
    """
    log = (logger or structlog.get_logger(__name__)).bind(initial_chapter=initial_url)
    target = run_target(initial_url)
    if client is None:
        async with _client_for(settings) as owned:
            return await run(initial_url, settings, client=owned, logger=logger)

    output_path = settings.archive_path(target)
    relay = Relay(settings.relay_capacity, settings.backpressure)
    receiver = relay.subscribe()
    sender = relay.sender()
    log.info("run started", target=target, output=str(output_path))

    walked, drained = await asyncio.gather(
        walk(
            initial_url,
            sender,
            fetcher=PageFetcher(client),
            extractor=ChapterExtractor(settings.content_selector, settings.nav_selector),
            logger=log,
        ),
        drain(receiver, output_path, logger=log),
        return_exceptions=True,
    )

    walker_error = walked if isinstance(walked, BaseException) else None
    writer_error = drained if isinstance(drained, BaseException) else None
    if walker_error is not None:
        if writer_error is None:
            raise walker_error
        log.error("archive writer failed too", error=str(writer_error))
        if isinstance(walker_error, RelayHandoffError) and walker_error.__cause__ is None:
            # the walker lost its reader because the writer stopped
            raise walker_error from writer_error
        raise walker_error
    if writer_error is not None:
        raise writer_error

    log.info("run finished", output=str(output_path), chapters=drained, handed_off=walked)
    return RunResult(initial_url, output_path, handed_off=walked, archived=drained)


async def run_all(
    urls: Iterable[str],
    settings: Settings,
    *,
    client: Optional[httpx.AsyncClient] = None,
    logger=None,
) -> List[RunOutcome]:
    """Run every initial chapter in turn; a failed run does not stop the rest."""
    log = logger or structlog.get_logger(__name__)
    if client is None:
        async with _client_for(settings) as owned:
            return await run_all(urls, settings, client=owned, logger=logger)

    outcomes: List[RunOutcome] = []
    for url in urls:
        try:
            result = await run(url, settings, client=client, logger=log)
        except ScrapeError as e:
            log.error("run failed", initial_chapter=url, error=str(e), cause=repr(e.__cause__))
            outcomes.append(RunOutcome(url, error=e))
        else:
            outcomes.append(RunOutcome(url, result=result))
    return outcomes
