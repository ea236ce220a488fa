"""HTTP API for indexing directories and searching their files by meaning."""

from __future__ import annotations

import argparse
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

import numpy as np
from flask import Flask, jsonify, request

from .db import Database, NotFoundError
from .embedder import TextEmbedder, get_embedder
from .indexer import DirectoryIndexWorker
from .vector_db import EmbedDb, get_embed_db
from .views import FileChunk, FileDetails, FileSimilarity, IndexResponse, IndexStatus

logger = logging.getLogger(__name__)

APP_NAME = "semindex"
APP_VERSION = "0.1.0"
FILES_PAGE_SIZE = 50


class _Worker(Protocol):
    def perform(self, task_id: int) -> None: ...


class BackgroundQueue:
    """Runs index jobs, either right away in the caller or on a worker thread."""

    def __init__(self, worker: _Worker, inline: bool = False) -> None:
        self.worker = worker
        self.inline = inline
        self._pool: Optional[ThreadPoolExecutor] = (
            None if inline else ThreadPoolExecutor(max_workers=1, thread_name_prefix="indexer")
        )

    def enqueue(self, task_id: int) -> None:
        """Schedule ``task_id``; inline queues run it now and raise its errors."""
        if self._pool is None:
            self.worker.perform(task_id)
            return
        future = self._pool.submit(self.worker.perform, task_id)
        future.add_done_callback(_report_failure)

    def shutdown(self) -> None:
        """Wait for scheduled jobs to finish and stop the worker thread."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)


def _report_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("index job failed: %s", error)


@dataclass
class _Services:
    db: Database
    jobs: BackgroundQueue
    embedder: Optional[TextEmbedder]
    embed_db: Optional[EmbedDb]


def _record(model: Any) -> dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in asdict(model).items()
    }


def _error(status: int, kind: str, description: str):
    return jsonify({"error": kind, "description": description}), status


def _json_field(name: str) -> Optional[str]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return None
    value = body.get(name)
    return value if isinstance(value, str) else None


def _app_version() -> str:
    sha = os.environ.get("BUILD_SHA") or os.environ.get("GITHUB_SHA") or "dev"
    return f"{APP_VERSION} ({sha})"


def create_app(
    db_path: str = ":memory:",
    embedder: Optional[TextEmbedder] = None,
    embed_db: Optional[EmbedDb] = None,
    inline_jobs: bool = False,
) -> Flask:
    """Build the web application over a migrated database at ``db_path``."""
    db = Database(db_path)
    db.migrate_up()
    worker = DirectoryIndexWorker(db, embedder, embed_db)
    services = _Services(db, BackgroundQueue(worker, inline=inline_jobs), embedder, embed_db)

    app = Flask(APP_NAME)
    app.extensions[APP_NAME] = services

    @app.errorhandler(NotFoundError)
    def not_found(_exc: NotFoundError):
        return _error(404, "not_found", "Resource was not found")

    @app.get("/_ping")
    def ping():
        return jsonify({"ok": True})

    @app.get("/_health")
    def health():
        return jsonify({"ok": True})

    # -- directories ------------------------------------------------------

    @app.get("/api/directories/")
    def list_directory_contents():
        path = request.args.get("path")
        if path is None:
            return _error(400, "bad_request", "missing field `path`")
        try:
            with os.scandir(path) as listing:
                names = [entry.name for entry in listing]
        except OSError as exc:
            logger.warning("On checking directory contents: %s", exc)
            return jsonify([])
        return jsonify(names)

    # -- files ------------------------------------------------------------

    @app.get("/api/files/")
    def list_files():
        prompt = request.args.get("q")
        if prompt is None:
            files = db.list_files(FILES_PAGE_SIZE, 0)
            return jsonify([FileSimilarity.from_model(f).to_dict() for f in files])

        model = services.embedder if services.embedder is not None else get_embedder()
        embedding = np.asarray(model.naive_embed(prompt)).squeeze(0).tolist()
        if not embedding:
            return jsonify([])

        index = services.embed_db if services.embed_db is not None else get_embed_db()
        neighbors = {n.id: n.similarity for n in index.get(embedding)}
        chunks = db.chunks_by_ids(neighbors)
        found = {
            f.id: FileSimilarity.from_model(f)
            for f in db.files_by_ids({chunk.file_id for chunk in chunks})
        }
        for chunk in chunks:
            target = found.get(chunk.file_id)
            if target is None:
                continue
            target.chunks.append(
                FileChunk(id=chunk.id, content=chunk.content, similarity=neighbors[chunk.id])
            )

        results = list(found.values())
        for result in results:
            result.chunks.sort(key=lambda c: c.similarity, reverse=True)
        results.sort(
            key=lambda r: r.chunks[0].similarity if r.chunks else 0.0, reverse=True
        )
        return jsonify([r.to_dict() for r in results])

    @app.get("/api/files/<int:file_id>")
    def get_file(file_id: int):
        details = FileDetails.from_model(db.get_file(file_id))
        try:
            details.content = Path(details.path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            pass

        raw_chunk = request.args.get("chunk")
        if raw_chunk is not None:
            try:
                chunk_id = int(raw_chunk)
            except ValueError:
                return _error(400, "bad_request", "invalid `chunk`")
            try:
                chunk = db.get_file_chunk(chunk_id)
            except NotFoundError:
                chunk = None
            if chunk is not None:
                details.chunks.append(
                    FileChunk(id=chunk.id, content=chunk.content, similarity=1.0)
                )
        return jsonify(details.to_dict())

    # -- index tasks ------------------------------------------------------

    @app.get("/api/index_tasks/")
    def list_index_tasks():
        return jsonify(
            [IndexResponse.from_model(t).to_dict() for t in db.list_index_tasks()]
        )

    @app.post("/api/index_tasks/")
    def add_index_task():
        path = _json_field("path")
        if path is None:
            return _error(422, "unprocessable_entity", "missing field `path`")
        item = db.insert_index_task(path, IndexStatus.IN_PROGRESS, "Starting Task")
        services.jobs.enqueue(item.id)
        return jsonify(_record(item))

    @app.get("/api/index_tasks/<int:task_id>")
    def get_index_task(task_id: int):
        return jsonify(_record(db.get_index_task(task_id)))

    @app.delete("/api/index_tasks/<int:task_id>")
    def remove_index_task(task_id: int):
        db.get_index_task(task_id)
        db.update_index_task(task_id, status=IndexStatus.CANCELLED)
        return jsonify(None)

    # -- searches ---------------------------------------------------------

    @app.get("/api/searches/")
    def list_searches():
        return jsonify([_record(s) for s in db.list_searches()])

    @app.post("/api/searches/")
    def add_search():
        query = _json_field("query")
        if query is None:
            return _error(422, "unprocessable_entity", "missing field `query`")
        return jsonify(_record(db.insert_search(query)))

    @app.get("/api/searches/<int:search_id>")
    def get_search(search_id: int):
        return jsonify(_record(db.get_search(search_id)))

    @app.route("/api/searches/<int:search_id>", methods=["PUT", "PATCH"])
    def update_search(search_id: int):
        db.get_search(search_id)
        query = _json_field("query")
        if query is None:
            return _error(422, "unprocessable_entity", "missing field `query`")
        return jsonify(_record(db.update_search(search_id, query)))

    @app.delete("/api/searches/<int:search_id>")
    def remove_search(search_id: int):
        db.delete_search(search_id)
        return "", 200

    return app


def main(argv: Optional[list[str]] = None) -> int:
    """Command-line entry point: serve the API or manage the database."""
    parser = argparse.ArgumentParser(prog=APP_NAME)
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="run the web server")
    start.add_argument("--host", default="127.0.0.1")
    start.add_argument("--port", type=int, default=5150)
    start.add_argument("--db", default=f"{APP_NAME}.sqlite")

    database = commands.add_parser("db", help="manage the database schema")
    database.add_argument("action", choices=["migrate", "down"])
    database.add_argument("--db", default=f"{APP_NAME}.sqlite")

    commands.add_parser("version", help="print the version")

    args = parser.parse_args(argv)

    if args.command == "version":
        print(f"{APP_NAME} {_app_version()}")
        return 0

    if args.command == "db":
        with Database(args.db) as db:
            if args.action == "migrate":
                for name in db.migrate_up():
                    print(f"applied {name}")
            else:
                name = db.migrate_down()
                print(f"rolled back {name}" if name else "nothing to roll back")
        return 0

    logging.basicConfig(level=logging.INFO)
    app = create_app(args.db)
    try:
        app.run(host=args.host, port=args.port)
    finally:
        app.extensions[APP_NAME].jobs.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())