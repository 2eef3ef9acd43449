"""Streaming ``.tar.br`` output for the chapters coming off the relay.

Layers, outermost first: ``tarfile`` stream -> ``BrotliWriter`` ->
``io.BufferedWriter`` -> file. Each layer can hold bytes the one below has not
seen yet, so shutdown walks them in that same order.
"""

from __future__ import annotations

import asyncio
import io
import os
import tarfile
from pathlib import Path
from typing import BinaryIO, Union

import brotli
import structlog

from .errors import ArchiveError
from .relay import Receiver, RelayClosed, RelayLagged

ENTRY_MODE = 0o777
BUFFER_SIZE = 64 * 1024
BROTLI_QUALITY = 11

CODEC_ERRORS = (OSError, tarfile.TarError, brotli.error)


class BrotliWriter:
    """Write-only file object that brotli-compresses into ``raw``."""

    def __init__(self, raw: BinaryIO, quality: int = BROTLI_QUALITY):
        self._raw = raw
        self._compressor = brotli.Compressor(quality=quality)
        self.finished = False

    def write(self, data: bytes) -> int:
        if self.finished:
            raise ValueError("write to a finished brotli stream")
        chunk = self._compressor.process(data)
        if chunk:
            self._raw.write(chunk)
        return len(data)

    def finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        self._raw.write(self._compressor.finish())


class ChapterArchive:
    """Blocking tar-over-brotli writer. One instance per output file."""

    def __init__(self, path: Union[str, Path], quality: int = BROTLI_QUALITY):
        self.path = Path(path)
        self.entries = 0
        self._closed = False
        self._file = open(self.path, "wb", buffering=0)
        try:
            self._buffered = io.BufferedWriter(self._file, buffer_size=BUFFER_SIZE)
            self._brotli = BrotliWriter(self._buffered, quality=quality)
            self._tar = tarfile.open(
                fileobj=self._brotli, mode="w|", format=tarfile.GNU_FORMAT
            )
        except Exception:
            self._file.close()
            raise

    @classmethod
    def create(cls, path: Union[str, Path], quality: int = BROTLI_QUALITY) -> "ChapterArchive":
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return cls(path, quality=quality)
        except CODEC_ERRORS as e:
            raise ArchiveError(path, "open") from e

    def append(self, name: str, content: bytes) -> None:
        info = tarfile.TarInfo(name)
        info.size = len(content)
        info.mode = ENTRY_MODE
        try:
            self._tar.addfile(info, io.BytesIO(content))
        except CODEC_ERRORS as e:
            raise ArchiveError(self.path, "append") from e
        self.entries += 1

    def close(self) -> None:
        """Write the tar trailer, end the brotli stream, flush and fsync."""
        if self._closed:
            return
        self._closed = True
        try:
            self._tar.close()
            self._brotli.finish()
            self._buffered.flush()
            os.fsync(self._file.fileno())
            self._buffered.close()
        except CODEC_ERRORS as e:
            self._discard()
            raise ArchiveError(self.path, "finalize") from e

    def _discard(self) -> None:
        # unflushed bytes are dropped; BufferedWriter.close closes the file
        # even when its own final flush fails
        try:
            self._buffered.close()
        except (OSError, ValueError):
            self._file.close()


async def drain(
    receiver: Receiver,
    output_path: Union[str, Path],
    *,
    quality: int = BROTLI_QUALITY,
    logger=None,
) -> int:
    """Archive every chapter read from ``receiver`` until the relay closes.

    Returns the number of entries written. The receiver is closed on the way
    out so a producer still sending learns that nobody is listening. A file
    left behind by a failed drain is incomplete.
    """
    log = logger or structlog.get_logger(__name__)
    path = Path(output_path)
    try:
        archive = await asyncio.to_thread(ChapterArchive.create, path, quality)
    except ArchiveError:
        receiver.close()
        raise

    failed = False
    try:
        while True:
            try:
                chapter = await receiver.recv()
            except RelayLagged as lag:
                log.warning("relay lagged", skipped=lag.skipped, path=str(path))
                continue
            except RelayClosed:
                break
            await asyncio.to_thread(archive.append, chapter.entry_name, chapter.content)
            log.info(
                "chapter archived",
                chapter=chapter.entry_name,
                size=len(chapter.content),
            )
    except BaseException:
        failed = True
        raise
    finally:
        receiver.close()
        try:
            await asyncio.to_thread(archive.close)
        except ArchiveError:
            if not failed:
                raise
            log.exception("archive shutdown failed", path=str(path))

    log.info("archive finalized", path=str(path), entries=archive.entries)
    return archive.entries
