"""
Canonical record shapes for both pipelines.

Every raw CSV/JSON row is normalized into one of these frozen dataclasses at
the ingestion boundary (see ``ingest.py``), so the towers only ever read a
single schema. Numeric fields that were absent or unparseable are ``None``;
the encoders substitute their documented defaults.
"""

import json
from dataclasses import asdict, dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class Song:
    title: str = ""
    artist: str = ""
    album: str = ""
    genre: str = ""
    sub_genre: str = ""
    language: str = ""
    release_year: Optional[int] = None
    duration_sec: Optional[float] = None

    # Engagement signals carried on the catalog row
    completion_rate: Optional[float] = None
    rating: Optional[float] = None
    liked: int = 0
    skipped: int = 0
    repeat_count: int = 0
    added_to_playlist: int = 0

    # Listening context
    mood: str = ""
    activity: str = ""
    hour_of_day: Optional[int] = None
    weekend: int = 0
    weather: str = ""
    location: str = ""

    @property
    def key(self) -> str:
        return song_key(self)


@dataclass(frozen=True)
class ListeningRecord:
    """One play of a song by a user, as exported from the listening log."""

    user_id: str
    song: Song
    listen_duration_sec: float = 0.0
    device: str = ""
    day_of_week: str = ""
    recommended_by_system: int = 0
    recommendation_source: str = ""
    user_action: str = ""


@dataclass(frozen=True)
class Rating:
    user_id: str
    movie_id: str
    rating: float
    timestamp: float  # unix seconds


@dataclass(frozen=True)
class Movie:
    movie_id: str
    title: str
    genres: str = ""
    year: Optional[int] = None

    @property
    def genre_list(self) -> list[str]:
        return self.genres.split("|") if self.genres else []


def song_key(song: Song) -> str:
    """Composite identity ``title::artist``, trimmed and case-folded."""
    title = song.title.strip().lower()
    artist = song.artist.strip().lower()
    if title or artist:
        return f"{title}::{artist}"
    return json.dumps(asdict(song), sort_keys=True)


def dedupe_songs(songs: Iterable[Song]) -> list[Song]:
    """Collapse songs sharing a key, keeping the first one seen."""
    seen: dict[str, Song] = {}
    for song in songs:
        seen.setdefault(song.key, song)
    return list(seen.values())
