"""Walking a directory, registering its files and storing their embeddings."""

from __future__ import annotations

import logging
import os
import queue
import stat
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from .db import Database
from .embedder import TextEmbedder
from .registration import ByteBudget, FileRegError, FileRegErrorType, FileRegistration
from .vector_db import EmbedDb, NewEmbed, get_embed_db
from .views import IndexStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessError:
    """A directory entry could not be reached during the walk."""

    error: OSError


@dataclass(frozen=True)
class FinishedWithNoop:
    """An entry needed no work (a directory)."""


@dataclass(frozen=True)
class ReadError:
    """A file could not be read."""

    path: Path
    error: BaseException


@dataclass(frozen=True)
class EmbeddingFailure:
    """A file could not be embedded."""

    path: Path


@dataclass(frozen=True)
class Register:
    """A file was examined and is ready to be stored."""

    registration: FileRegistration


@dataclass(frozen=True)
class DirectoryWalked:
    """The walk finished; ``count`` entries were handed off for processing."""

    count: int


IndexEvent = Union[
    AccessError, FinishedWithNoop, ReadError, EmbeddingFailure, Register, DirectoryWalked
]
Sink = Callable[[IndexEvent], None]


def _walk(root: Path) -> Iterator[Union[Path, OSError]]:
    try:
        mode = root.stat().st_mode
    except OSError as exc:
        yield exc
        return
    yield root
    if stat.S_ISDIR(mode):
        yield from _walk_dir(root)


def _walk_dir(directory: Path) -> Iterator[Union[Path, OSError]]:
    try:
        with os.scandir(directory) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError as exc:
        yield exc
        return
    for entry in entries:
        path = Path(entry.path)
        yield path
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False
        if is_dir:
            yield from _walk_dir(path)


def process_entry(
    path,
    embedder: Optional[TextEmbedder],
    budget: Optional[ByteBudget],
    sink: Sink,
) -> None:
    """Register one walked entry and report the outcome to ``sink``."""
    try:
        registration = FileRegistration.create(path, embedder, budget)
    except FileRegError as exc:
        if exc.err_type is FileRegErrorType.DIRECTORY:
            sink(FinishedWithNoop())
        elif exc.err_type is FileRegErrorType.EMBEDDING:
            sink(EmbeddingFailure(exc.path))
        else:
            sink(ReadError(exc.path, exc.cause))
        return
    sink(Register(registration))


class FileIndexer:
    """Walks a directory tree and processes every entry concurrently."""

    def __init__(
        self,
        path,
        embedder: Optional[TextEmbedder] = None,
        budget: Optional[ByteBudget] = None,
    ) -> None:
        self.path = Path(path)
        self._embedder = embedder
        self._budget = budget

    def run(self, sink: Sink) -> int:
        """Walk the tree, sending events to ``sink``; return the entry count.

        Returns once every entry has been processed.
        """
        count = 0
        futures = []
        with ThreadPoolExecutor() as pool:
            for item in _walk(self.path):
                if isinstance(item, OSError):
                    sink(AccessError(item))
                    continue
                count += 1
                futures.append(
                    pool.submit(process_entry, item, self._embedder, self._budget, sink)
                )
            sink(DirectoryWalked(count))
        for future in futures:
            error = future.exception()
            if error is not None:
                logger.error("processing an entry failed: %s", error)
        return count


_DONE = object()


class DirectoryIndexWorker:
    """Runs an index task: walks its path and stores files, chunks and vectors."""

    def __init__(
        self,
        db: Database,
        embedder: Optional[TextEmbedder] = None,
        embed_db: Optional[EmbedDb] = None,
    ) -> None:
        self.db = db
        self.embedder = embedder
        self.embed_db = embed_db

    def perform(self, task_id: int) -> None:
        """Index the directory of task ``task_id``; raises NotFoundError."""
        logger.info("=================DirectoryIndexer=======================")
        task = self.db.get_index_task(task_id)
        logger.info("Performing task %s", task)
        embed_db = self.embed_db if self.embed_db is not None else get_embed_db()

        events: "queue.Queue[object]" = queue.Queue()

        def walk() -> None:
            try:
                FileIndexer(task.path, self.embedder).run(events.put)
            finally:
                events.put(_DONE)

        threading.Thread(target=walk, daemon=True).start()

        entry_count: Optional[int] = None
        processed = 0
        while True:
            event = events.get()
            if event is _DONE:
                break
            logger.info("ev %s", event)
            if isinstance(event, DirectoryWalked):
                entry_count = event.count
                continue
            processed += 1
            if not isinstance(event, Register):
                continue

            registration = event.registration
            path = str(registration.path)
            progress = processed / entry_count if entry_count else None
            try:
                updated = self.db.update_index_task(task.id, progress=progress, queue=path)
            except Exception:
                updated = None
            if updated is not None and IndexStatus.parse(updated.status) is IndexStatus.CANCELLED:
                return

            title = registration.path.name or path
            contents = registration.contents
            try:
                file = self.db.insert_file(title, contents.file_type(), path)
            except Exception:
                continue
            chunks = contents.chunks()
            if chunks is None:
                continue

            new_embeds = []
            for chunk in chunks:
                record = self.db.insert_file_chunk(chunk.text, file.id)
                new_embeds.append(NewEmbed(id=record.id, embeds=chunk.embeddings))
            embed_db.insert(new_embeds)

        try:
            self.db.update_index_task(task.id, status=IndexStatus.CANCELLED)
        except Exception:
            pass
        logger.info("FINISHED!")