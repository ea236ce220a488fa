"""An in-memory HNSW index over cosine distance."""

from __future__ import annotations

import heapq
import math
import random
import threading
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

SEARCH_K = 20
SEARCH_EF = 50


@dataclass(frozen=True)
class NewEmbed:
    """An embedding to add to the index, tagged with a caller-chosen id."""

    id: int
    embeds: Sequence[float]


@dataclass(frozen=True)
class PromptNeighbor:
    """A search hit: the stored id and its cosine similarity to the query."""

    id: int
    similarity: float


class EmbedDb:
    """Approximate nearest-neighbour index (HNSW) with cosine distance.

    Searches return up to 20 neighbours, explored with an ef of 50, ordered
    from most to least similar. Ids need not be unique.
    """

    def __init__(
        self,
        max_connections: int = 32,
        ef_construction: int = 200,
        max_layers: int = 16,
    ) -> None:
        if max_connections < 2:
            raise ValueError("max_connections must be at least 2")
        if ef_construction < 1:
            raise ValueError("ef_construction must be positive")
        if max_layers < 1:
            raise ValueError("max_layers must be positive")
        self._max_connections = max_connections
        self._ef_construction = ef_construction
        self._max_layers = max_layers
        self._level_scale = 1.0 / math.log(max_connections)
        self._rng = random.Random(0)
        self._vectors: list[np.ndarray] = []
        self._ids: list[int] = []
        self._links: list[list[list[int]]] = []
        self._entry: int | None = None
        self._top_level = -1
        self._dim: int | None = None
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._vectors)

    def _prepare(self, values: Sequence[float]) -> np.ndarray:
        vec = np.asarray(values, dtype=np.float32).ravel()
        if self._dim is not None and vec.shape[0] != self._dim:
            raise ValueError(f"expected dimension {self._dim}, got {vec.shape[0]}")
        norm = float(np.linalg.norm(vec))
        return vec / norm if norm > 0 else np.zeros_like(vec)

    def _distance(self, query: np.ndarray, point: int) -> float:
        return max(0.0, 1.0 - float(np.dot(query, self._vectors[point])))

    def _random_level(self) -> int:
        u = 1.0 - self._rng.random()
        level = int(-math.log(u) * self._level_scale)
        return min(level, self._max_layers - 1)

    def _search_layer(
        self, query: np.ndarray, entries: Iterable[int], ef: int, level: int
    ) -> list[tuple[float, int]]:
        visited = set(entries)
        candidates = [(self._distance(query, p), p) for p in visited]
        heapq.heapify(candidates)
        found = [(-d, p) for d, p in candidates]
        heapq.heapify(found)
        while len(found) > ef:
            heapq.heappop(found)
        while candidates:
            dist, point = heapq.heappop(candidates)
            if len(found) >= ef and dist > -found[0][0]:
                break
            for neighbor in self._links[point][level]:
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                d = self._distance(query, neighbor)
                if len(found) < ef or d < -found[0][0]:
                    heapq.heappush(candidates, (d, neighbor))
                    heapq.heappush(found, (-d, neighbor))
                    if len(found) > ef:
                        heapq.heappop(found)
        return sorted((-d, p) for d, p in found)

    def _capacity(self, level: int) -> int:
        return self._max_connections * 2 if level == 0 else self._max_connections

    def _prune(self, point: int, level: int) -> None:
        links = self._links[point][level]
        limit = self._capacity(level)
        if len(links) > limit:
            origin = self._vectors[point]
            links.sort(key=lambda n: self._distance(origin, n))
            del links[limit:]

    def _insert_one(self, embed: NewEmbed) -> None:
        if self._dim is None:
            self._dim = len(np.asarray(embed.embeds, dtype=np.float32).ravel())
        vec = self._prepare(embed.embeds)
        level = self._random_level()
        point = len(self._vectors)
        self._vectors.append(vec)
        self._ids.append(embed.id)
        self._links.append([[] for _ in range(level + 1)])

        if self._entry is None:
            self._entry, self._top_level = point, level
            return

        entries = [self._entry]
        for lc in range(self._top_level, level, -1):
            entries = [self._search_layer(vec, entries, 1, lc)[0][1]]
        for lc in range(min(level, self._top_level), -1, -1):
            found = self._search_layer(vec, entries, self._ef_construction, lc)
            neighbors = [p for _, p in found[: self._capacity(lc)]]
            self._links[point][lc] = list(neighbors)
            for neighbor in neighbors:
                self._links[neighbor][lc].append(point)
                self._prune(neighbor, lc)
            entries = [p for _, p in found]
        if level > self._top_level:
            self._entry, self._top_level = point, level

    def insert(self, embeds: Iterable[NewEmbed]) -> None:
        """Add embeddings to the index."""
        with self._lock:
            for embed in embeds:
                self._insert_one(embed)

    def get(self, embedding: Sequence[float]) -> list[PromptNeighbor]:
        """Return the nearest stored embeddings, most similar first."""
        with self._lock:
            if self._entry is None:
                return []
            query = self._prepare(embedding)
            entries = [self._entry]
            for lc in range(self._top_level, 0, -1):
                entries = [self._search_layer(query, entries, 1, lc)[0][1]]
            found = self._search_layer(query, entries, max(SEARCH_EF, SEARCH_K), 0)
            return [
                PromptNeighbor(id=self._ids[p], similarity=1.0 - d)
                for d, p in found[:SEARCH_K]
            ]


_embed_db: EmbedDb | None = None
_embed_db_lock = threading.Lock()


def get_embed_db() -> EmbedDb:
    """Return the process-wide index, creating it on first use."""
    global _embed_db
    with _embed_db_lock:
        if _embed_db is None:
            _embed_db = EmbedDb()
        return _embed_db