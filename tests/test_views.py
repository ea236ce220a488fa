from datetime import datetime, timezone

import pytest

from semindex.db import File, IndexTask
from semindex.views import (
    FileChunk,
    FileDetails,
    FileResponse,
    FileSimilarity,
    FileType,
    IndexResponse,
    IndexStatus,
)

STAMP = datetime(2025, 11, 21, 10, 18, 38, tzinfo=timezone.utc)


def make_file(file_type="text"):
    return File(
        created_at=STAMP,
        updated_at=STAMP,
        id=3,
        title="notes.txt",
        file_type=file_type,
        path="/data/notes.txt",
    )


def make_task(status="in_progress"):
    return IndexTask(
        created_at=STAMP,
        updated_at=STAMP,
        id=9,
        path="/data",
        progress=0.25,
        status=status,
        queue="Starting Task",
    )


@pytest.mark.parametrize(
    "name, expected",
    [("text", FileType.TEXT), ("jpeg", FileType.JPEG), ("unknown", FileType.UNKNOWN)],
)
def test_file_type_parse_known(name, expected):
    assert FileType.parse(name) is expected
    assert str(expected) == name


def test_file_type_parse_unrecognised_is_unknown():
    assert FileType.parse("png") is FileType.UNKNOWN
    assert FileType.parse("") is FileType.UNKNOWN


@pytest.mark.parametrize("status", list(IndexStatus))
def test_index_status_round_trip(status):
    assert IndexStatus.parse(str(status)) is status


@pytest.mark.parametrize(
    "name, expected",
    [
        ("in_progress", IndexStatus.IN_PROGRESS),
        ("complete", IndexStatus.COMPLETE),
        ("cancelled", IndexStatus.CANCELLED),
    ],
)
def test_index_status_names(name, expected):
    parsed = IndexStatus.parse(name)
    assert parsed is expected
    assert str(parsed) == name


def test_index_status_invalid_raises():
    with pytest.raises(ValueError, match="Invalid status"):
        IndexStatus.parse("paused")


def test_file_response_from_model():
    response = FileResponse.from_model(make_file())
    assert response.to_dict() == {"id": 3, "title": "notes.txt"}


def test_file_chunk_to_dict():
    chunk = FileChunk(id=1, content="hello", similarity=1.0)
    assert chunk.to_dict() == {"id": 1, "content": "hello", "similarity": 1.0}


def test_file_similarity_from_model():
    result = FileSimilarity.from_model(make_file("jpeg"))
    assert result.file_type is FileType.JPEG
    assert result.chunks == []
    data = result.to_dict()
    assert data["file_type"] == "jpeg"
    assert data["path"] == "/data/notes.txt"
    assert data["chunks"] == []


def test_file_similarity_serialises_chunks():
    result = FileSimilarity.from_model(make_file())
    result.chunks.append(FileChunk(id=5, content="abc", similarity=0.5))
    assert result.to_dict()["chunks"] == [{"id": 5, "content": "abc", "similarity": 0.5}]


def test_file_details_starts_empty():
    details = FileDetails.from_model(make_file("something"))
    assert details.content == ""
    assert details.file_type is FileType.UNKNOWN
    data = details.to_dict()
    assert data["file_type"] == "unknown"
    assert data["title"] == "notes.txt"


def test_index_response_from_model():
    response = IndexResponse.from_model(make_task("complete"))
    assert response.status is IndexStatus.COMPLETE
    data = response.to_dict()
    assert data["status"] == "complete"
    assert data["progress"] == 0.25
    assert data["queue"] == "Starting Task"
    assert datetime.fromisoformat(data["created_at"]) == STAMP
    assert datetime.fromisoformat(data["updated_at"]) == STAMP


def test_index_response_bad_status_raises():
    with pytest.raises(ValueError):
        IndexResponse.from_model(make_task("bogus"))