"""Registering a single file: type detection, byte budgeting and embedding."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence

from .embedder import Chunk, TextEmbedder, get_embedder
from .views import FileType

logger = logging.getLogger(__name__)

GIGS_ALLOWED = 8
BYTES_PER_PERMIT = 1 << 20
MAX_BYTES = GIGS_ALLOWED * (1 << 30)

_EXTENSIONS = {".txt": FileType.TEXT, ".jpeg": FileType.JPEG}


class ByteBudget:
    """Limits how many bytes of file content are held open at once.

    Bytes are counted in whole permits of ``bytes_per_permit`` bytes; a
    reservation waits until enough permits are free.
    """

    def __init__(
        self, max_bytes: int = MAX_BYTES, bytes_per_permit: int = BYTES_PER_PERMIT
    ) -> None:
        if bytes_per_permit <= 0:
            raise ValueError("bytes_per_permit must be positive")
        if max_bytes < 0:
            raise ValueError("max_bytes must not be negative")
        self._per_permit = bytes_per_permit
        self._total = max_bytes // bytes_per_permit
        self._available = self._total
        self._cond = threading.Condition()

    @property
    def total_permits(self) -> int:
        return self._total

    @property
    def available(self) -> int:
        with self._cond:
            return self._available

    def permits_for(self, length: int) -> int:
        """Number of permits needed to hold ``length`` bytes (rounded up)."""
        if length < 0:
            raise ValueError("length must not be negative")
        return -(-length // self._per_permit)

    @contextmanager
    def reserve(self, length: int) -> Iterator[int]:
        """Hold permits for ``length`` bytes for the duration of the block."""
        needed = self.permits_for(length)
        if needed > self._total:
            raise ValueError(
                f"{length} bytes need {needed} permits, more than the {self._total} available"
            )
        with self._cond:
            self._cond.wait_for(lambda: self._available >= needed)
            self._available -= needed
        try:
            yield needed
        finally:
            with self._cond:
                self._available += needed
                self._cond.notify_all()


OPEN_BYTES = ByteBudget()


@dataclass(frozen=True)
class FileEmbeddings:
    """The embedded content of a file, by kind; unknown files have none."""

    kind: FileType
    embedded: Optional[tuple[Chunk, ...]] = None

    @classmethod
    def text(cls, chunks: Sequence[Chunk]) -> "FileEmbeddings":
        return cls(FileType.TEXT, tuple(chunks))

    @classmethod
    def jpeg(cls, chunks: Sequence[Chunk]) -> "FileEmbeddings":
        return cls(FileType.JPEG, tuple(chunks))

    @classmethod
    def unknown(cls) -> "FileEmbeddings":
        return cls(FileType.UNKNOWN, None)

    def chunks(self) -> Optional[list[Chunk]]:
        """The embedded chunks, or None for files that were not embedded."""
        return None if self.embedded is None else list(self.embedded)

    def file_type(self) -> FileType:
        return self.kind


class FileRegErrorType(Enum):
    """Why a file could not be registered."""

    DIRECTORY = "directory"
    EMBEDDING = "embedding"
    IO = "io"


class FileRegError(Exception):
    """Registration of a path failed."""

    def __init__(
        self,
        path: Path,
        err_type: FileRegErrorType,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"{err_type.value} error for {path}")
        self.path = path
        self.err_type = err_type
        self.cause = cause


@dataclass(frozen=True)
class FileRegistration:
    """A file that has been examined and, where possible, embedded."""

    path: Path
    contents: FileEmbeddings

    @classmethod
    def create(
        cls,
        path,
        embedder: Optional[TextEmbedder] = None,
        budget: Optional[ByteBudget] = None,
    ) -> "FileRegistration":
        """Examine ``path`` and embed it if its type is supported.

        The type is decided by extension alone. Raises FileRegError when the
        path is not a regular file, cannot be read, or cannot be embedded.
        """
        path = Path(path)
        if not path.is_file():
            raise FileRegError(path, FileRegErrorType.DIRECTORY)

        kind = _EXTENSIONS.get(path.suffix)
        if kind is None:
            return cls(path, FileEmbeddings.unknown())

        budget = OPEN_BYTES if budget is None else budget
        try:
            length = path.stat().st_size
        except OSError as exc:
            raise FileRegError(path, FileRegErrorType.IO, exc) from exc

        with budget.reserve(length):
            if kind is FileType.JPEG:
                # There is no image embedder, so JPEG content cannot be embedded.
                raise FileRegError(path, FileRegErrorType.EMBEDDING)
            try:
                prompt = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise FileRegError(path, FileRegErrorType.IO, exc) from exc

            model = get_embedder() if embedder is None else embedder
            try:
                chunks = model.chunk_embed(prompt)
            except Exception as exc:
                raise FileRegError(path, FileRegErrorType.EMBEDDING, exc) from exc
            logger.info("(%s): Embed processed!", path)

        return cls(path, FileEmbeddings.text(chunks))