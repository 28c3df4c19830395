"""
Two-tower music recommender.

Item tower: every song in the catalog is encoded into a 128-dim vector from
its metadata (hashed text bands), numeric attributes, the engagement
signals recorded on its catalog row and its listening context.

User tower: the embeddings of the songs a user listened to, weighted by how
strongly they engaged with each play, summed and L2-normalized.

Matching: cosine similarity between the user vector and every catalog song;
the whole catalog is ranked, nothing is excluded.

Embedding layout (128 dims):
  [0-15]    title hash        x1.5
  [16-31]   artist hash       x1.5
  [32-47]   genre hash        x2.0
  [48-63]   sub-genre hash    x1.5
  [64-79]   language hash     x1.0
  [80-95]   mood hash         x1.8
  [96-111]  activity hash     x1.5
  [112]     release year, 1950..2050 -> 0..1
  [113]     duration / 10 min
  [114-119] completion, rating, liked, repeats, not-skipped, playlist-add
  [120-122] hour of day (sin, cos), weekend
  [123-127] weather x0.8 @123, location x0.5 @126 (wrapping)
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import numpy as np

from ..data.catalog import ListeningRecord, Song, dedupe_songs
from ..errors import DimensionMismatchError, ModelNotReadyError
from .hashing import hash_to_vector
from .similarity import l2_normalize, score_all, top_k

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 128

_TEXT_BANDS = (
    ("title", 0, 1.5),
    ("artist", 16, 1.5),
    ("genre", 32, 2.0),
    ("sub_genre", 48, 1.5),
    ("language", 64, 1.0),
    ("mood", 80, 1.8),
    ("activity", 96, 1.5),
)
_CONTEXT_BANDS = (
    ("weather", 123, 0.8),
    ("location", 126, 0.5),
)

DEFAULT_RELEASE_YEAR = 2020
DEFAULT_DURATION_SEC = 200.0
DEFAULT_COMPLETION_RATE = 0.5
DEFAULT_RATING = 3.0
DEFAULT_HOUR_OF_DAY = 12

SKIP_PENALTY = 0.3
MAX_REPEATS_ENCODED = 5
MAX_REPEATS_WEIGHTED = 3


def _or(value, default):
    return default if value is None else value


# ------------------------------------------------------------------ #
# Item tower                                                           #
# ------------------------------------------------------------------ #

def song_embedding(song: Song) -> np.ndarray:
    vec = np.zeros(EMBEDDING_DIM, dtype=np.float64)

    for attr, offset, weight in _TEXT_BANDS:
        hash_to_vector(getattr(song, attr), vec, offset, weight)

    vec[112] = (_or(song.release_year, DEFAULT_RELEASE_YEAR) - 1950) / 100
    vec[113] = _or(song.duration_sec, DEFAULT_DURATION_SEC) / 600

    vec[114] = _or(song.completion_rate, DEFAULT_COMPLETION_RATE)
    vec[115] = _or(song.rating, DEFAULT_RATING) / 5
    vec[116] = song.liked
    vec[117] = min(song.repeat_count, MAX_REPEATS_ENCODED) / MAX_REPEATS_ENCODED
    vec[118] = 1 - song.skipped
    vec[119] = song.added_to_playlist

    # Cyclical hour so 23h and 0h end up close together
    hour = _or(song.hour_of_day, DEFAULT_HOUR_OF_DAY)
    vec[120] = math.sin(2 * math.pi * hour / 24)
    vec[121] = math.cos(2 * math.pi * hour / 24)
    vec[122] = song.weekend

    for attr, offset, weight in _CONTEXT_BANDS:
        hash_to_vector(getattr(song, attr), vec, offset, weight)

    return vec


# ------------------------------------------------------------------ #
# User tower                                                           #
# ------------------------------------------------------------------ #

def engagement_weight(song: Song) -> float:
    """
    Aggregation weight of one play:

        (0.5 + completion) * (0.6 + rating/5 * 0.8) + liked * 0.5 + min(repeats, 3) * 0.3

    multiplied by 0.3 when the play was skipped.
    """
    completion = _or(song.completion_rate, DEFAULT_COMPLETION_RATE)
    rating = _or(song.rating, DEFAULT_RATING) / 5

    weight = (0.5 + completion) * (0.6 + rating * 0.8)
    weight += song.liked * 0.5
    weight += min(song.repeat_count, MAX_REPEATS_WEIGHTED) * 0.3
    if song.skipped:
        weight *= SKIP_PENALTY
    return weight


def user_embedding(
    history: Iterable[ListeningRecord],
    embeddings: Mapping[str, np.ndarray],
) -> np.ndarray:
    """Engagement-weighted, unit-length sum of the embeddings of played songs.

    Plays of songs missing from ``embeddings`` are ignored; with nothing left
    the zero vector is returned.
    """
    agg = np.zeros(EMBEDDING_DIM, dtype=np.float64)
    total_weight = 0.0

    for record in history:
        emb = embeddings.get(record.song.key)
        if emb is None:
            continue
        if emb.shape != (EMBEDDING_DIM,):
            raise DimensionMismatchError(
                f"song embedding for {record.song.key!r} has shape {emb.shape}"
            )
        weight = engagement_weight(record.song)
        agg += emb * weight
        total_weight += weight

    if not total_weight:
        return np.zeros(EMBEDDING_DIM, dtype=np.float64)
    return l2_normalize(agg)


# ------------------------------------------------------------------ #
# Snapshot + ranking                                                   #
# ------------------------------------------------------------------ #

@dataclass(frozen=True)
class MusicSnapshot:
    """Immutable trained state: deduped catalog and its embedding table."""

    songs: tuple[Song, ...]
    matrix: np.ndarray
    embeddings: Mapping[str, np.ndarray]
    trained_at: float


def build_snapshot(songs: Iterable[Song]) -> MusicSnapshot:
    catalog = tuple(dedupe_songs(songs))
    if catalog:
        matrix = np.vstack([song_embedding(song) for song in catalog])
    else:
        matrix = np.zeros((0, EMBEDDING_DIM), dtype=np.float64)
    matrix.setflags(write=False)
    embeddings = MappingProxyType({song.key: matrix[i] for i, song in enumerate(catalog)})
    return MusicSnapshot(songs=catalog, matrix=matrix, embeddings=embeddings, trained_at=time.time())


def recommend_songs(
    snapshot: MusicSnapshot,
    history: Iterable[ListeningRecord],
    limit: int = 10,
) -> list[dict]:
    history = list(history)
    if not snapshot.songs or not history:
        return []

    user_vec = user_embedding(history, snapshot.embeddings)
    scores = score_all(user_vec, snapshot.matrix)

    results = []
    for idx in top_k(scores, limit):
        song = snapshot.songs[idx]
        results.append({
            "id": song.key,
            "title": song.title,
            "artist": song.artist,
            "album": song.album,
            "genre": song.genre,
            "mood": song.mood,
            "similarity_score": float(scores[idx]),
        })
    return results


class MusicRecommender:
    """
    Holds the current MusicSnapshot. train() builds a new snapshot off to the
    side and swaps it in under the lock, so a concurrent recommend() sees
    either the old catalog or the new one, never a mix.
    """

    def __init__(self, model_version: str = "1.0"):
        self._snapshot: Optional[MusicSnapshot] = None
        self._lock = threading.RLock()
        self._model_version = model_version

    @property
    def snapshot(self) -> Optional[MusicSnapshot]:
        with self._lock:
            return self._snapshot

    def is_trained(self) -> bool:
        return self.snapshot is not None

    def train(self, songs: Iterable[Song]) -> MusicSnapshot:
        snapshot = build_snapshot(songs)
        with self._lock:
            self._snapshot = snapshot
        logger.info("Song embeddings trained for %d catalog songs", len(snapshot.songs))
        return snapshot

    def recommend(self, history: Iterable[ListeningRecord], top_k: int = 10) -> list[dict]:
        snapshot = self.snapshot
        if snapshot is None:
            raise ModelNotReadyError("music catalog has not been trained")
        return recommend_songs(snapshot, history, top_k)

    def get_training_metadata(self) -> dict:
        snapshot = self.snapshot
        return {
            "pipeline": "music",
            "algorithm": "TwoTower-HashedFeatures",
            "embedding_dim": EMBEDDING_DIM,
            "n_items": len(snapshot.songs) if snapshot else 0,
            "trained_at": snapshot.trained_at if snapshot else None,
            "model_version": self._model_version,
        }
