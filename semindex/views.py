"""Response shapes for files and index tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .db import File, IndexTask


class FileType(str, Enum):
    """The kind of content a file holds."""

    TEXT = "text"
    JPEG = "jpeg"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "FileType":
        """Parse a stored name; anything unrecognised is UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class IndexStatus(str, Enum):
    """The state of an index task."""

    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "IndexStatus":
        """Parse a stored name; raises ValueError for anything else."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError("Invalid status") from None


@dataclass
class FileResponse:
    """A file's id and title."""

    id: int
    title: str

    @classmethod
    def from_model(cls, model: File) -> "FileResponse":
        return cls(id=model.id, title=model.title)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title}


@dataclass
class FileChunk:
    """A matching chunk of a file and how similar it is to the query."""

    id: int
    content: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "content": self.content, "similarity": float(self.similarity)}


@dataclass
class FileSimilarity:
    """A file together with the chunks that matched a query."""

    id: int
    title: str
    file_type: FileType
    path: str
    chunks: list[FileChunk] = field(default_factory=list)

    @classmethod
    def from_model(cls, model: File) -> "FileSimilarity":
        return cls(
            id=model.id,
            title=model.title,
            file_type=FileType.parse(model.file_type),
            path=model.path,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "file_type": self.file_type.value,
            "path": self.path,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
        }


@dataclass
class FileDetails:
    """A file with its full content and any highlighted chunks."""

    id: int
    title: str
    content: str
    file_type: FileType
    path: str
    chunks: list[FileChunk] = field(default_factory=list)

    @classmethod
    def from_model(cls, model: File) -> "FileDetails":
        return cls(
            id=model.id,
            title=model.title,
            content="",
            file_type=FileType.parse(model.file_type),
            path=model.path,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "file_type": self.file_type.value,
            "path": self.path,
            "chunks": [chunk.to_dict() for chunk in self.chunks],
        }


@dataclass
class IndexResponse:
    """An index task as reported to clients."""

    created_at: datetime
    updated_at: datetime
    id: int
    status: IndexStatus
    path: str
    progress: float
    queue: str

    @classmethod
    def from_model(cls, model: IndexTask) -> "IndexResponse":
        return cls(
            created_at=model.created_at,
            updated_at=model.updated_at,
            id=model.id,
            status=IndexStatus.parse(model.status),
            path=model.path,
            progress=model.progress,
            queue=model.queue,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "id": self.id,
            "status": self.status.value,
            "path": self.path,
            "progress": float(self.progress),
            "queue": self.queue,
        }