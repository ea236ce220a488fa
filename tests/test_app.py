import threading

import numpy as np
import pytest

from semindex.app import BackgroundQueue, create_app, main
from semindex.db import Database
from semindex.embedder import TextEmbedder
from semindex.vector_db import EmbedDb

DIM = 64


class WordTokenizer:
    def __init__(self):
        self.vocab = {}
        self.words = []

    def _id(self, word):
        if word not in self.vocab:
            self.vocab[word] = len(self.words)
            self.words.append(word)
        return self.vocab[word]

    def encode(self, text):
        return [self._id(word) for word in text.split()]

    def decode(self, ids):
        return " ".join(self.words[i] for i in ids)


def one_hot_encoder(ids):
    return np.eye(DIM, dtype=np.float32)[np.asarray(ids) % DIM]


@pytest.fixture
def client():
    embedder = TextEmbedder(WordTokenizer(), one_hot_encoder)
    app = create_app(":memory:", embedder=embedder, embed_db=EmbedDb(), inline_jobs=True)
    app.testing = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def corpus(tmp_path):
    (tmp_path / "fruit.txt").write_text("apple banana cherry", encoding="utf-8")
    (tmp_path / "cars.txt").write_text("engine wheel brake", encoding="utf-8")
    (tmp_path / "notes.md").write_text("plain notes", encoding="utf-8")
    return tmp_path


def test_can_get_files(client):
    res = client.get("/api/files/")
    assert res.status_code == 200
    assert res.get_json() == []


def test_can_get_index_tasks(client):
    res = client.get("/api/index_tasks/")
    assert res.status_code == 200
    assert res.get_json() == []


def test_can_get_searches(client):
    res = client.get("/api/searches/")
    assert res.status_code == 200
    assert res.get_json() == []


def test_default_routes(client):
    assert client.get("/_ping").get_json() == {"ok": True}
    assert client.get("/_health").get_json() == {"ok": True}


def test_search_crud(client):
    created = client.post("/api/searches/", json={"query": "hello"}).get_json()
    assert created["query"] == "hello"
    search_id = created["id"]

    assert client.get(f"/api/searches/{search_id}").get_json()["query"] == "hello"

    updated = client.put(f"/api/searches/{search_id}", json={"query": "world"}).get_json()
    assert updated["query"] == "world"
    modified = client.open(
        f"/api/searches/{search_id}", method="PATCH", json={"query": "again"}
    ).get_json()
    assert modified["query"] == "again"

    listed = client.get("/api/searches/").get_json()
    assert [s["query"] for s in listed] == ["again"]

    res = client.delete(f"/api/searches/{search_id}")
    assert res.status_code == 200
    assert res.data == b""
    assert client.get(f"/api/searches/{search_id}").status_code == 404


def test_missing_search_is_not_found(client):
    res = client.get("/api/searches/999")
    assert res.status_code == 404
    assert res.get_json()["error"] == "not_found"


def test_search_without_query_is_rejected(client):
    res = client.post("/api/searches/", json={"other": 1})
    assert res.status_code == 422


def test_directory_listing(client, corpus):
    res = client.get("/api/directories/", query_string={"path": str(corpus)})
    assert sorted(res.get_json()) == ["cars.txt", "fruit.txt", "notes.md"]


def test_directory_listing_of_missing_path_is_empty(client, tmp_path):
    res = client.get("/api/directories/", query_string={"path": str(tmp_path / "absent")})
    assert res.status_code == 200
    assert res.get_json() == []


def test_directory_listing_requires_path(client):
    assert client.get("/api/directories/").status_code == 400


def test_index_task_lifecycle(client, corpus):
    res = client.post("/api/index_tasks/", json={"path": str(corpus)})
    created = res.get_json()
    assert created["status"] == "in_progress"
    assert created["queue"] == "Starting Task"
    assert created["path"] == str(corpus)

    tasks = client.get("/api/index_tasks/").get_json()
    assert len(tasks) == 1
    assert tasks[0]["status"] == "cancelled"

    files = client.get("/api/files/").get_json()
    assert sorted(f["title"] for f in files) == ["cars.txt", "fruit.txt", "notes.md"]
    types = {f["title"]: f["file_type"] for f in files}
    assert types["notes.md"] == "unknown"
    assert types["fruit.txt"] == "text"


def test_remove_index_task_cancels(client, tmp_path):
    created = client.post("/api/index_tasks/", json={"path": str(tmp_path)}).get_json()
    res = client.delete(f"/api/index_tasks/{created['id']}")
    assert res.status_code == 200
    assert res.get_json() is None
    task = client.get(f"/api/index_tasks/{created['id']}").get_json()
    assert task["status"] == "cancelled"
    assert client.delete("/api/index_tasks/999").status_code == 404


def test_semantic_search_ranks_matching_file_first(client, corpus):
    client.post("/api/index_tasks/", json={"path": str(corpus)})
    results = client.get("/api/files/", query_string={"q": "apple"}).get_json()
    assert results[0]["title"] == "fruit.txt"
    assert results[0]["chunks"][0]["content"] == "apple banana cherry"
    assert results[0]["chunks"][0]["similarity"] == pytest.approx(1 / np.sqrt(3), abs=1e-4)
    similarities = [r["chunks"][0]["similarity"] for r in results]
    assert similarities == sorted(similarities, reverse=True)


def test_file_details_with_chunk(client, corpus):
    client.post("/api/index_tasks/", json={"path": str(corpus)})
    results = client.get("/api/files/", query_string={"q": "apple"}).get_json()
    file_id = results[0]["id"]
    chunk_id = results[0]["chunks"][0]["id"]

    details = client.get(f"/api/files/{file_id}", query_string={"chunk": chunk_id}).get_json()
    assert details["content"] == "apple banana cherry"
    assert details["chunks"] == [
        {"id": chunk_id, "content": "apple banana cherry", "similarity": 1.0}
    ]

    plain = client.get(f"/api/files/{file_id}").get_json()
    assert plain["chunks"] == []
    assert client.get("/api/files/999").status_code == 404


class Recorder:
    def __init__(self):
        self.seen = []
        self.threads = []

    def perform(self, task_id):
        self.seen.append(task_id)
        self.threads.append(threading.current_thread().name)


class Failing:
    def perform(self, task_id):
        raise ValueError(f"bad task {task_id}")


def test_background_queue_runs_jobs_on_worker_thread():
    recorder = Recorder()
    jobs = BackgroundQueue(recorder, inline=False)
    jobs.enqueue(1)
    jobs.enqueue(2)
    jobs.shutdown()
    assert recorder.seen == [1, 2]
    assert all(name.startswith("indexer") for name in recorder.threads)


def test_inline_queue_propagates_errors():
    jobs = BackgroundQueue(Failing(), inline=True)
    with pytest.raises(ValueError, match="bad task 7"):
        jobs.enqueue(7)


def test_main_db_commands(tmp_path, capsys):
    path = str(tmp_path / "app.sqlite")
    assert main(["db", "migrate", "--db", path]) == 0
    assert "applied m20251121_101838_searches" in capsys.readouterr().out
    assert main(["db", "down", "--db", path]) == 0
    with Database(path) as db:
        assert db.migrate_up() == ["m20251123_155655_file_chunks"]


def test_main_version(capsys, monkeypatch):
    monkeypatch.delenv("BUILD_SHA", raising=False)
    monkeypatch.delenv("GITHUB_SHA", raising=False)
    assert main(["version"]) == 0
    assert capsys.readouterr().out.strip() == "semindex 0.1.0 (dev)"