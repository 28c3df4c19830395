"""
Ingestion boundary: raw rows -> canonical records.

Uploaded CSVs come from several exporters that disagree on column names
(``title`` vs ``Song_Title``, ``userId`` vs ``user_id`` ...). Every field is
looked up through its alias list here, once, so nothing downstream has to
know about the alternate spellings.
"""

import io
import logging
import math
import time
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from .catalog import ListeningRecord, Movie, Rating, Song

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

SONG_FIELDS = {
    "title": ("title", "Song_Title", "track_name"),
    "artist": ("artist", "Artist_Name", "artist_name"),
    "album": ("album", "Album"),
    "genre": ("genre", "Genre"),
    "sub_genre": ("subGenre", "Sub_Genre"),
    "language": ("language", "Language"),
    "release_year": ("releaseYear", "Release_Year"),
    "duration_sec": ("duration", "Duration_sec"),
    "completion_rate": ("completionRate", "Completion_Rate"),
    "rating": ("rating", "Rating"),
    "liked": ("likedFlag", "Liked_Flag"),
    "skipped": ("skipFlag", "Skip_Flag"),
    "repeat_count": ("repeatCount", "Repeat_Count"),
    "added_to_playlist": ("addedToPlaylist", "Added_To_Playlist"),
    "mood": ("mood", "Mood"),
    "activity": ("activity", "Activity"),
    "hour_of_day": ("hourOfDay", "Hour_of_Day"),
    "weekend": ("weekendFlag", "Weekend_Flag"),
    "weather": ("weather", "Weather"),
    "location": ("location", "Location"),
}

LISTENING_FIELDS = {
    "listen_duration_sec": ("listenDuration", "Listen_Duration_sec"),
    "device": ("device", "Device"),
    "day_of_week": ("dayOfWeek", "Day_of_Week"),
    "recommended_by_system": ("recommendedBySystem", "Recommended_By_System"),
    "recommendation_source": ("recommendationSource", "Recommendation_Source"),
    "user_action": ("userAction", "User_Action"),
}

RATING_FIELDS = {
    "user_id": ("userId", "user_id", "UserID"),
    "movie_id": ("movieId", "movie_id", "MovieID"),
    "rating": ("rating", "Rating"),
    "timestamp": ("timestamp", "Timestamp"),
}

MOVIE_FIELDS = {
    "movie_id": ("movieId", "movie_id", "MovieID"),
    "title": ("title", "Title"),
    "genres": ("genres", "Genres", "genre"),
    "year": ("year", "Year"),
}


# ------------------------------------------------------------------ #
# Field helpers                                                        #
# ------------------------------------------------------------------ #

def _pick(row: Row, aliases: Iterable[str]) -> Any:
    """Return the first alias holding a non-blank value, else None."""
    for name in aliases:
        value = row.get(name)
        if value is None:
            continue
        if isinstance(value, str):
            if not value.strip():
                continue
        elif isinstance(value, float) and pd.isna(value):
            continue
        return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
    number = pd.to_numeric(value, errors="coerce")
    if pd.isna(number) or not math.isfinite(number):
        return None
    return float(number)


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return None if number is None else int(number)


def _text(row: Row, aliases: Iterable[str]) -> str:
    value = _pick(row, aliases)
    return "" if value is None else str(value).strip()


def _flag(row: Row, aliases: Iterable[str]) -> int:
    return _to_int(_pick(row, aliases)) or 0


def _id(row: Row, aliases: Iterable[str]) -> str:
    value = _pick(row, aliases)
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


# ------------------------------------------------------------------ #
# Record builders                                                      #
# ------------------------------------------------------------------ #

def normalize_song(row: Row) -> Song:
    f = SONG_FIELDS
    return Song(
        title=_text(row, f["title"]),
        artist=_text(row, f["artist"]),
        album=_text(row, f["album"]),
        genre=_text(row, f["genre"]),
        sub_genre=_text(row, f["sub_genre"]),
        language=_text(row, f["language"]),
        release_year=_to_int(_pick(row, f["release_year"])),
        duration_sec=_to_float(_pick(row, f["duration_sec"])),
        completion_rate=_to_float(_pick(row, f["completion_rate"])),
        rating=_to_float(_pick(row, f["rating"])),
        liked=_flag(row, f["liked"]),
        skipped=_flag(row, f["skipped"]),
        repeat_count=_flag(row, f["repeat_count"]),
        added_to_playlist=_flag(row, f["added_to_playlist"]),
        mood=_text(row, f["mood"]),
        activity=_text(row, f["activity"]),
        hour_of_day=_to_int(_pick(row, f["hour_of_day"])),
        weekend=_flag(row, f["weekend"]),
        weather=_text(row, f["weather"]),
        location=_text(row, f["location"]),
    )


def normalize_listening_record(user_id: str, row: Row) -> ListeningRecord:
    f = LISTENING_FIELDS
    return ListeningRecord(
        user_id=user_id,
        song=normalize_song(row),
        listen_duration_sec=_to_float(_pick(row, f["listen_duration_sec"])) or 0.0,
        device=_text(row, f["device"]),
        day_of_week=_text(row, f["day_of_week"]),
        recommended_by_system=_flag(row, f["recommended_by_system"]),
        recommendation_source=_text(row, f["recommendation_source"]),
        user_action=_text(row, f["user_action"]),
    )


def normalize_rating(row: Row, now: Optional[float] = None) -> Optional[Rating]:
    """Build a Rating, or None when the row names no user or no movie."""
    f = RATING_FIELDS
    user_id = _id(row, f["user_id"])
    movie_id = _id(row, f["movie_id"])
    if not user_id or not movie_id:
        return None
    timestamp = _to_float(_pick(row, f["timestamp"]))
    if timestamp is None:
        timestamp = time.time() if now is None else now
    return Rating(
        user_id=user_id,
        movie_id=movie_id,
        rating=_to_float(_pick(row, f["rating"])) or 0.0,
        timestamp=timestamp,
    )


def normalize_movie(row: Row) -> Optional[Movie]:
    f = MOVIE_FIELDS
    movie_id = _id(row, f["movie_id"])
    if not movie_id:
        return None
    return Movie(
        movie_id=movie_id,
        title=_text(row, f["title"]) or f"Movie {movie_id}",
        genres=_text(row, f["genres"]),
        year=_to_int(_pick(row, f["year"])),
    )


def songs_from_rows(rows: Iterable[Row]) -> list[Song]:
    return [normalize_song(row) for row in rows]


def listening_records_from_rows(user_id: str, rows: Iterable[Row]) -> list[ListeningRecord]:
    return [normalize_listening_record(user_id, row) for row in rows]


def ratings_from_rows(rows: Iterable[Row], now: Optional[float] = None) -> list[Rating]:
    now = time.time() if now is None else now
    ratings = []
    dropped = 0
    for row in rows:
        rating = normalize_rating(row, now)
        if rating is None:
            dropped += 1
            continue
        ratings.append(rating)
    if dropped:
        logger.info("Dropped %d rating rows without user or movie id", dropped)
    return ratings


def movies_from_rows(rows: Iterable[Row]) -> list[Movie]:
    return [movie for movie in (normalize_movie(row) for row in rows) if movie is not None]


def read_csv_rows(text: Optional[str]) -> list[dict[str, str]]:
    """Parse CSV text into string-valued dicts; malformed lines are skipped."""
    if not text or not text.strip():
        return []
    frame = pd.read_csv(
        io.StringIO(text.strip()),
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        on_bad_lines="skip",
    )
    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.fillna("")
    return frame.to_dict(orient="records")
