"""
Two-tower movie recommender driven by explicit ratings.

Item tower (64 dims), built from CatalogStatistics:
  [0-4]   star histogram / rating count
  [5-9]   mean/5, capped popularity, sqrt popularity, like ratio, 1 - dislike ratio
  [10-29] hashed ids of up to 20 users who rated the movie >= 4
  [32-47] genre string hash (16-wide band)
  [48-49] rating activity span (years / 10), share of ratings in the last year
  [56-63] movie id hash, keeps unrated-but-similar ids loosely related

User tower (64 dims):
  [0-4]   mean/5, sqrt(variance)/2, capped activity, like share, dislike share
  [5-63]  weighted mean of the embeddings of up to 30 movies rated >= 4
  [32-39] minus 0.3 x the embeddings of up to 10 movies rated <= 2
  [48-55] mean rating / 5 for the first 8 genres the user rated

A movie without ratings has no statistics and encodes to the zero vector,
so it scores 0 against every user.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import numpy as np

from ..data.catalog import Movie, Rating
from ..errors import ModelNotReadyError
from .hashing import hash_to_vector, hash_user
from .similarity import l2_normalize, score_all, top_k
from .stats import (
    HIGH_RATING,
    LOW_RATING,
    CatalogStatistics,
    ItemStatistics,
    build_statistics,
    summarize,
    users_by_activity,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 64
HASH_BAND = 16
SECONDS_PER_YEAR = 365 * 24 * 60 * 60

MAX_COLLAB_USERS = 20
MAX_LIKED_MOVIES = 30
MAX_DISLIKED_MOVIES = 10
MAX_GENRES = 8
DISLIKE_WEIGHT = 0.3
DEFAULT_PREDICTED_BASE = 3.0


# ------------------------------------------------------------------ #
# Item tower                                                           #
# ------------------------------------------------------------------ #

def movie_embedding(movie_id: str, stats: CatalogStatistics, now: float) -> np.ndarray:
    vec = np.zeros(EMBEDDING_DIM, dtype=np.float64)
    item = stats.items.get(movie_id)
    if item is None:
        return vec

    total = item.rating_count or 1
    vec[0:5] = np.asarray(item.histogram, dtype=np.float64) / total

    vec[5] = item.avg_rating / 5
    vec[6] = min(item.rating_count / 1000, 1.0)
    vec[7] = math.sqrt(item.rating_count) / 100
    vec[8] = len(item.high_rating_users) / total
    vec[9] = 1 - len(item.low_rating_users) / total

    # Collaborative signal: who liked this movie
    for idx, user_id in enumerate(item.high_rating_users[:MAX_COLLAB_USERS]):
        vec[10 + idx] = hash_user(user_id)

    movie = stats.movies.get(movie_id)
    if movie is not None and movie.genres:
        hash_to_vector(movie.genres, vec, 32, 1.0, band=HASH_BAND)

    if item.timestamps:
        span_years = (max(item.timestamps) - min(item.timestamps)) / SECONDS_PER_YEAR
        vec[48] = min(span_years / 10, 1.0)
        cutoff = now - SECONDS_PER_YEAR
        recent = sum(1 for ts in item.timestamps if ts > cutoff)
        vec[49] = recent / len(item.timestamps)

    hash_to_vector(movie_id, vec, 56, 0.5, band=HASH_BAND)
    return vec


# ------------------------------------------------------------------ #
# User tower                                                           #
# ------------------------------------------------------------------ #

def user_embedding(
    user_id: str,
    stats: CatalogStatistics,
    embeddings: Mapping[str, np.ndarray],
) -> np.ndarray:
    vec = np.zeros(EMBEDDING_DIM, dtype=np.float64)
    profile = stats.users.get(user_id)
    if profile is None or not profile.ratings:
        return vec

    count = profile.rating_count
    vec[0] = profile.avg_rating / 5
    vec[1] = math.sqrt(profile.rating_variance) / 2
    vec[2] = min(count / 500, 1.0)
    vec[3] = sum(1 for r in profile.ratings if r.rating >= HIGH_RATING) / count
    vec[4] = sum(1 for r in profile.ratings if r.rating <= LOW_RATING) / count

    liked = sorted(
        (r for r in profile.ratings if r.rating >= HIGH_RATING),
        key=lambda r: r.rating,
        reverse=True,
    )[:MAX_LIKED_MOVIES]

    total_weight = 0.0
    for r in liked:
        emb = embeddings.get(r.movie_id)
        if emb is None:
            continue
        weight = (r.rating - 3) / 2  # 4 stars -> 0.5, 5 stars -> 1.0
        vec += emb * weight
        total_weight += weight

    if total_weight > 0:
        vec[5:] /= total_weight

    disliked = [r for r in profile.ratings if r.rating <= LOW_RATING][:MAX_DISLIKED_MOVIES]
    for r in disliked:
        emb = embeddings.get(r.movie_id)
        if emb is None:
            continue
        vec[32:40] -= emb[32:40] * DISLIKE_WEIGHT

    genre_scores: dict[str, list[float]] = {}
    for r in profile.ratings:
        movie = stats.movies.get(r.movie_id)
        if movie is None or not movie.genres:
            continue
        for genre in movie.genre_list:
            score = genre_scores.setdefault(genre, [0.0, 0])
            score[0] += r.rating
            score[1] += 1

    for idx, (total, n) in enumerate(list(genre_scores.values())[:MAX_GENRES]):
        vec[48 + idx] = (total / n) / 5

    return l2_normalize(vec)


def predicted_rating(similarity: float, item: Optional[ItemStatistics]) -> float:
    """Display-only estimate: avg + (similarity - 0.5) * 2, clamped to 1..5.

    Rounded half up to one decimal on the exact float value, so 3.25 shows
    as 3.3 rather than the 3.2 that round() would give.
    """
    base = item.avg_rating if item is not None and item.avg_rating else DEFAULT_PREDICTED_BASE
    predicted = base + (similarity - 0.5) * 2
    clamped = max(1.0, min(5.0, predicted))
    return float(Decimal(clamped).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


# ------------------------------------------------------------------ #
# Snapshot + ranking                                                   #
# ------------------------------------------------------------------ #

@dataclass(frozen=True)
class MovieSnapshot:
    """Immutable trained state: statistics plus the movie embedding table."""

    stats: CatalogStatistics
    movie_ids: tuple[str, ...]
    matrix: np.ndarray
    embeddings: Mapping[str, np.ndarray]
    trained_at: float


def build_snapshot(stats: CatalogStatistics, now: Optional[float] = None) -> MovieSnapshot:
    now = time.time() if now is None else now
    movie_ids = stats.item_order
    if movie_ids:
        matrix = np.vstack([movie_embedding(mid, stats, now) for mid in movie_ids])
    else:
        matrix = np.zeros((0, EMBEDDING_DIM), dtype=np.float64)
    matrix.setflags(write=False)
    embeddings = MappingProxyType({mid: matrix[i] for i, mid in enumerate(movie_ids)})
    return MovieSnapshot(
        stats=stats,
        movie_ids=movie_ids,
        matrix=matrix,
        embeddings=embeddings,
        trained_at=now,
    )


def recommend_movies(snapshot: MovieSnapshot, user_id: str, limit: int = 20) -> list[dict]:
    """Rank every movie the user has not rated by cosine similarity."""
    stats = snapshot.stats
    profile = stats.users.get(user_id)
    rated = {r.movie_id for r in profile.ratings} if profile else set()

    candidates = [i for i, mid in enumerate(snapshot.movie_ids) if mid not in rated]
    if not candidates:
        return []

    user_vec = user_embedding(user_id, stats, snapshot.embeddings)
    scores = score_all(user_vec, snapshot.matrix[candidates])

    results = []
    for pos in top_k(scores, limit):
        movie_id = snapshot.movie_ids[candidates[pos]]
        movie = stats.movies.get(movie_id)
        item = stats.items.get(movie_id)
        similarity = float(scores[pos])
        results.append({
            "movieId": movie_id,
            "title": movie.title if movie else f"Movie {movie_id}",
            "genres": (movie.genres if movie else "") or "Unknown",
            "year": movie.year if movie else None,
            "avgRating": round(item.avg_rating, 2) if item else None,
            "ratingCount": item.rating_count if item else 0,
            "similarity_score": similarity,
            "predicted_rating": predicted_rating(similarity, item),
        })
    return results


class MovieRecommender:
    """
    Owns the current MovieSnapshot. train() rebuilds statistics and
    embeddings from the complete rating set and publishes them with one
    reference swap; readers never observe a partially built table.
    """

    def __init__(self, model_version: str = "1.0"):
        self._snapshot: Optional[MovieSnapshot] = None
        self._lock = threading.RLock()
        self._model_version = model_version

    @property
    def snapshot(self) -> Optional[MovieSnapshot]:
        with self._lock:
            return self._snapshot

    def is_trained(self) -> bool:
        snapshot = self.snapshot
        return snapshot is not None and len(snapshot.movie_ids) > 0

    def train(
        self,
        ratings: Iterable[Rating],
        movies: Iterable[Movie] = (),
        now: Optional[float] = None,
    ) -> MovieSnapshot:
        stats = build_statistics(ratings, movies)
        snapshot = build_snapshot(stats, now)
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Trained embeddings for %d movies (%d ratings, %d users)",
            len(snapshot.movie_ids), stats.total_ratings, len(stats.users),
        )
        return snapshot

    def has_user(self, user_id: str) -> bool:
        snapshot = self.snapshot
        return snapshot is not None and user_id in snapshot.stats.users

    def recommend(self, user_id: str, top_k: int = 20) -> list[dict]:
        snapshot = self.snapshot
        if snapshot is None:
            raise ModelNotReadyError("movie model has not been trained")
        return recommend_movies(snapshot, user_id, top_k)

    def get_stats(self) -> dict:
        snapshot = self.snapshot
        stats = snapshot.stats if snapshot else build_statistics(())
        return summarize(stats)

    def users_by_activity(self) -> list[str]:
        snapshot = self.snapshot
        return users_by_activity(snapshot.stats) if snapshot else []

    def user_summary(self, user_id: str) -> Optional[dict]:
        snapshot = self.snapshot
        profile = snapshot.stats.users.get(user_id) if snapshot else None
        if profile is None:
            return None
        return {"avgRating": profile.avg_rating, "ratingCount": profile.rating_count}

    def get_training_metadata(self) -> dict:
        snapshot = self.snapshot
        stats = snapshot.stats if snapshot else None
        return {
            "pipeline": "movie",
            "algorithm": "TwoTower-CollaborativeStats",
            "embedding_dim": EMBEDDING_DIM,
            "n_items": len(snapshot.movie_ids) if snapshot else 0,
            "n_users": len(stats.users) if stats else 0,
            "n_ratings": stats.total_ratings if stats else 0,
            "trained_at": snapshot.trained_at if snapshot else None,
            "model_version": self._model_version,
        }
