"""
Per-user and per-movie aggregates for the movie pipeline.

Statistics are always rebuilt from the full rating set in one pass; there is
no incremental update. Users or movies without ratings simply have no entry.
"""

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ..data.catalog import Movie, Rating

HIGH_RATING = 4
LOW_RATING = 2
N_STAR_BUCKETS = 5


@dataclass(frozen=True)
class UserProfile:
    ratings: tuple[Rating, ...]
    rating_count: int
    avg_rating: float
    rating_variance: float


@dataclass(frozen=True)
class ItemStatistics:
    ratings: tuple[float, ...]
    timestamps: tuple[float, ...]
    histogram: tuple[int, ...]
    rating_count: int
    avg_rating: float
    high_rating_users: tuple[str, ...]
    low_rating_users: tuple[str, ...]


@dataclass(frozen=True)
class CatalogStatistics:
    users: Mapping[str, UserProfile]
    items: Mapping[str, ItemStatistics]
    movies: Mapping[str, Movie]
    item_order: tuple[str, ...]
    total_ratings: int


def star_bucket(rating: float) -> Optional[int]:
    """Histogram bucket 0..4 for a 1..5 star rating; None below one star."""
    idx = min(math.floor(rating) - 1, N_STAR_BUCKETS - 1)
    return idx if idx >= 0 else None


def _user_profile(ratings: list[Rating]) -> UserProfile:
    values = [r.rating for r in ratings]
    count = len(values)
    mean = sum(values) / count
    variance = sum((v - mean) ** 2 for v in values) / count
    return UserProfile(
        ratings=tuple(ratings),
        rating_count=count,
        avg_rating=mean,
        rating_variance=variance,
    )


def _item_statistics(ratings: list[Rating]) -> ItemStatistics:
    values = [r.rating for r in ratings]
    histogram = [0] * N_STAR_BUCKETS
    high: dict[str, None] = {}
    low: dict[str, None] = {}
    for r in ratings:
        bucket = star_bucket(r.rating)
        if bucket is not None:
            histogram[bucket] += 1
        if r.rating >= HIGH_RATING:
            high.setdefault(r.user_id)
        elif r.rating <= LOW_RATING:
            low.setdefault(r.user_id)
    return ItemStatistics(
        ratings=tuple(values),
        timestamps=tuple(r.timestamp for r in ratings),
        histogram=tuple(histogram),
        rating_count=len(values),
        avg_rating=sum(values) / len(values),
        high_rating_users=tuple(high),
        low_rating_users=tuple(low),
    )


def build_statistics(
    ratings: Iterable[Rating],
    movies: Iterable[Movie] = (),
) -> CatalogStatistics:
    ratings = list(ratings)

    by_user: dict[str, list[Rating]] = {}
    by_item: dict[str, list[Rating]] = {}
    for r in ratings:
        by_user.setdefault(r.user_id, []).append(r)
        by_item.setdefault(r.movie_id, []).append(r)

    metadata: dict[str, Movie] = {}
    for movie in movies:
        metadata.setdefault(movie.movie_id, movie)

    return CatalogStatistics(
        users=MappingProxyType({uid: _user_profile(rs) for uid, rs in by_user.items()}),
        items=MappingProxyType({mid: _item_statistics(rs) for mid, rs in by_item.items()}),
        movies=MappingProxyType(metadata),
        item_order=tuple(by_item),
        total_ratings=len(ratings),
    )


def users_by_activity(stats: CatalogStatistics) -> list[str]:
    """User ids, most ratings first."""
    return sorted(stats.users, key=lambda uid: stats.users[uid].rating_count, reverse=True)


def summarize(stats: CatalogStatistics) -> dict:
    n_users = len(stats.users)
    n_movies = len(stats.items)
    return {
        "totalRatings": stats.total_ratings,
        "uniqueUsers": n_users,
        "uniqueMovies": n_movies,
        "moviesWithMetadata": len(stats.movies),
        "avgRatingsPerUser": round(stats.total_ratings / n_users, 1) if n_users else 0,
        "avgRatingsPerMovie": round(stats.total_ratings / n_movies, 1) if n_movies else 0,
    }
