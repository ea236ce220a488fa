# semindex

semindex walks a directory, splits text files into overlapping token
windows, embeds each window and keeps the vectors in an in-memory HNSW
graph. Files, chunks, saved searches and indexing tasks are stored in
SQLite. A small Flask API starts indexing jobs, reports their progress and
searches the indexed files by meaning rather than by keyword.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command line

```
semindex start [--host 127.0.0.1] [--port 5150] [--db semindex.sqlite]
semindex db migrate [--db semindex.sqlite]
semindex db down [--db semindex.sqlite]
semindex version
```

- `start` creates (and migrates) the database and serves the HTTP API.
- `db migrate` applies every pending schema migration; `db down` rolls back
  the most recent one.
- `version` prints the version, followed by the value of `BUILD_SHA` or
  `GITHUB_SHA` from the environment, or `dev`.

## HTTP API

| Method | Path | Purpose |
| --- | --- | --- |
| GET | `/_ping`, `/_health` | Liveness checks, `{"ok": true}` |
| GET | `/api/directories/?path=...` | Names inside a directory (empty list if it cannot be read) |
| GET | `/api/index_tasks/` | Indexing tasks with status, progress and the file last handled |
| POST | `/api/index_tasks/` | Start indexing `{"path": "..."}` in the background |
| GET | `/api/index_tasks/<id>` | One task |
| DELETE | `/api/index_tasks/<id>` | Mark a task `cancelled` |
| GET | `/api/files/` | The first 50 indexed files |
| GET | `/api/files/?q=...` | Files whose chunks best match the query, best file first, chunks best first |
| GET | `/api/files/<id>?chunk=<chunk id>` | File details, its current contents and optionally one chunk |
| GET, POST | `/api/searches/` | List or store saved searches (`{"query": "..."}`) |
| GET, PUT, PATCH, DELETE | `/api/searches/<id>` | Read, update or delete a saved search |

Missing rows answer 404; a request body without the required field answers
422.

Task status is one of `in_progress`, `complete` or `cancelled`. A running
job stops early when its task has been cancelled, and when a job finishes
it sets its task's status to `cancelled`. Progress is the share of walked
entries handled so far.

File type is one of `text`, `jpeg` or `unknown`, decided by extension only.
Files ending in `.txt` are read and embedded; files ending in `.jpeg` are
reported as embedding failures and not stored; every other file is stored
with type `unknown` and no chunks. Directories are walked but not stored.

## Using it as a library

```python
import numpy as np

from semindex.app import create_app
from semindex.embedder import TextEmbedder, similarity
from semindex.vector_db import EmbedDb


class WordTokenizer:
    def __init__(self):
        self.vocab = {}
        self.words = []

    def encode(self, text):
        ids = []
        for word in text.split():
            if word not in self.vocab:
                self.vocab[word] = len(self.words)
                self.words.append(word)
            ids.append(self.vocab[word])
        return ids

    def decode(self, ids):
        return " ".join(self.words[i] for i in ids)


def encoder(ids):
    # (batch, tokens) -> (batch, tokens, hidden_size)
    return np.eye(64, dtype=np.float32)[ids % 64]


embedder = TextEmbedder(WordTokenizer(), encoder)
app = create_app("semindex.sqlite", embedder, EmbedDb(), inline_jobs=False)
app.run()
```

- `TextEmbedder.chunk_embed` splits text into windows of 300 tokens with a
  50-token overlap and returns `Chunk` values (text and embedding);
  `naive_embed` embeds the whole text as an array of shape
  `(1, hidden_size)`. Hidden states are mean-pooled over tokens and
  L2-normalised (`mean_pool_normalize`).
- `similarity(first, second)` is the cosine similarity of two vectors.
- `EmbedDb.insert` takes `NewEmbed(id, embeds)` values; `EmbedDb.get`
  returns up to 20 `PromptNeighbor(id, similarity)` values, most similar
  first.
- `set_embedder` / `get_embedder` and `get_embed_db` hold process-wide
  instances used when none is passed to `create_app`.
- `Database` (in `semindex.db`) wraps the SQLite schema;
  `DirectoryIndexWorker.perform(task_id)` runs one indexing job directly.

## What it does not do

- No tokenizer or embedding model is included. `semindex start` runs
  without one, so indexing `.txt` files and `/api/files/?q=...` fail until
  an embedder is supplied through `create_app` or `set_embedder`.
- The vector index lives in memory only; it is empty after a restart even
  though files and chunks remain in the database.
- JPEG content is never embedded.