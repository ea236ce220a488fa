"""Text embedding: token chunking, mean pooling and cosine similarity."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence

import numpy as np

CHUNK_LEN = 300
OVERLAP = 50
STRIDE = CHUNK_LEN - OVERLAP


class Tokenizer(Protocol):
    """Turns text into token ids and back."""

    def encode(self, text: str) -> Sequence[int]: ...

    def decode(self, ids: Sequence[int]) -> str: ...


Encoder = Callable[[np.ndarray], "np.ndarray"]


@dataclass
class Chunk:
    """A piece of text together with its normalised embedding."""

    text: str
    embeddings: list[float] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"Chunk(text={self.text!r}, embeddings={len(self.embeddings)})"


def mean_pool_normalize(hidden) -> np.ndarray:
    """Average hidden states over the token axis and L2-normalise each row.

    ``hidden`` has shape (batch, tokens, hidden_size); the result has shape
    (batch, hidden_size).
    """
    states = np.asarray(hidden, dtype=np.float32)
    if states.ndim != 3:
        raise ValueError(f"expected a 3-dimensional array, got {states.ndim} dimensions")
    pooled = states.sum(axis=1) / states.shape[1]
    with np.errstate(invalid="ignore", divide="ignore"):
        norms = np.sqrt((pooled * pooled).sum(axis=1, keepdims=True))
        return pooled / norms


def similarity(first, second) -> float:
    """Cosine similarity of two embeddings of any matching shape."""
    a = np.asarray(first, dtype=np.float32).ravel()
    b = np.asarray(second, dtype=np.float32).ravel()
    if a.shape != b.shape:
        raise ValueError(f"shape mismatch: {a.shape} vs {b.shape}")
    dot = float((a * b).sum())
    sum_a = float((a * a).sum())
    sum_b = float((b * b).sum())
    with np.errstate(invalid="ignore", divide="ignore"):
        return float(np.float32(dot) / np.sqrt(np.float32(sum_a * sum_b)))


class TextEmbedder:
    """Embeds text with a tokenizer and a sequence encoder.

    The encoder receives a 2-D integer array of token ids (batch, tokens) and
    returns hidden states of shape (batch, tokens, hidden_size). Calls are
    serialised, since the underlying model is shared.
    """

    def __init__(self, tokenizer: Tokenizer, encoder: Encoder) -> None:
        self._tokenizer = tokenizer
        self._encoder = encoder
        self._lock = threading.Lock()

    def _forward(self, batch: list[list[int]]) -> np.ndarray:
        ids = np.asarray(batch, dtype=np.int64)
        return mean_pool_normalize(self._encoder(ids))

    def chunk_embed(self, text: str) -> list[Chunk]:
        """Split text into overlapping token windows and embed each window.

        Windows are 300 tokens long with a 50-token overlap. Full windows are
        embedded as one batch; a trailing shorter window is embedded alone and
        comes last.
        """
        with self._lock:
            ids = list(self._tokenizer.encode(text))
            full: list[list[int]] = []
            tail: list[int] | None = None
            start = 0
            while start < len(ids):
                end = start + CHUNK_LEN
                if end > len(ids):
                    tail = ids[start:]
                    break
                full.append(ids[start:end])
                start += STRIDE

            result: list[Chunk] = []
            if full:
                pooled = self._forward(full)
                result.extend(
                    Chunk(text=self._tokenizer.decode(window), embeddings=row.tolist())
                    for window, row in zip(full, pooled)
                )
            if tail is not None:
                pooled = self._forward([tail])
                result.append(
                    Chunk(text=self._tokenizer.decode(tail), embeddings=pooled[0].tolist())
                )
            return result

    def naive_embed(self, text: str) -> np.ndarray:
        """Embed the whole text at once; the result has shape (1, hidden_size)."""
        with self._lock:
            ids = list(self._tokenizer.encode(text))
            return self._forward([ids])


_embedder: TextEmbedder | None = None
_embedder_lock = threading.Lock()


def set_embedder(embedder: TextEmbedder | None) -> None:
    """Install the shared embedder, or clear it with None."""
    global _embedder
    with _embedder_lock:
        _embedder = embedder


def get_embedder() -> TextEmbedder:
    """Return the shared embedder; raises RuntimeError if none is installed."""
    with _embedder_lock:
        if _embedder is None:
            raise RuntimeError("no text embedder has been configured")
        return _embedder