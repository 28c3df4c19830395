"""
ClickHouse storage layer for the recommender service.

Three tables:
  listening_history   : one row per uploaded listening record (music tower input)
  recommendations     : served results, deduplicated by (pipeline, user_id, item_id)
                        via ReplacingMergeTree
  movie_model_runs    : dataset summary written after every movie retrain

All writes are best-effort: if ClickHouse is unreachable the service keeps
running on in-memory state.
"""

import logging
from dataclasses import fields
from datetime import datetime, timezone
from typing import Optional

from ..data.catalog import ListeningRecord, Song

logger = logging.getLogger(__name__)

_client = None  # module-level connection, set by init_tables()

_SONG_COLUMNS = [f.name for f in fields(Song)]
_RECORD_COLUMNS = [f.name for f in fields(ListeningRecord) if f.name not in ("user_id", "song")]
_HISTORY_COLUMNS = ["timestamp", "user_id"] + _SONG_COLUMNS + _RECORD_COLUMNS


def is_connected() -> bool:
    return _client is not None


def init_tables(host: str, port: int, database: str) -> bool:
    """
    Connect to ClickHouse and create tables if they don't exist.
    Returns True on success, False if ClickHouse is unreachable.
    """
    global _client
    try:
        import clickhouse_connect

        _client = clickhouse_connect.get_client(host=host, port=port, database=database)
        _client.command(f"CREATE DATABASE IF NOT EXISTS {database}")

        _client.command(f"""
            CREATE TABLE IF NOT EXISTS {database}.listening_history (
                timestamp              DateTime DEFAULT now(),
                user_id                String,
                title                  String,
                artist                 String,
                album                  String,
                genre                  LowCardinality(String),
                sub_genre              LowCardinality(String),
                language               LowCardinality(String),
                release_year           Nullable(Int32),
                duration_sec           Nullable(Float64),
                completion_rate        Nullable(Float64),
                rating                 Nullable(Float64),
                liked                  Int32,
                skipped                Int32,
                repeat_count           Int32,
                added_to_playlist      Int32,
                mood                   LowCardinality(String),
                activity               LowCardinality(String),
                hour_of_day            Nullable(Int32),
                weekend                Int32,
                weather                LowCardinality(String),
                location               String,
                listen_duration_sec    Float64,
                device                 LowCardinality(String),
                day_of_week            LowCardinality(String),
                recommended_by_system  Int32,
                recommendation_source  String,
                user_action            String
            )
            ENGINE = MergeTree()
            ORDER BY (user_id, timestamp)
        """)

        _client.command(f"""
            CREATE TABLE IF NOT EXISTS {database}.recommendations (
                timestamp   DateTime DEFAULT now(),
                pipeline    LowCardinality(String),
                user_id     String,
                item_id     String,
                title       String,
                score       Float32,
                model_ver   String
            )
            ENGINE = ReplacingMergeTree(timestamp)
            ORDER BY (pipeline, user_id, item_id)
        """)

        _client.command(f"""
            CREATE TABLE IF NOT EXISTS {database}.movie_model_runs (
                timestamp       DateTime DEFAULT now(),
                user_id         String,
                ratings_count   UInt32,
                movies_count    UInt32,
                user_avg_rating Nullable(Float64),
                user_rating_count Nullable(UInt32)
            )
            ENGINE = MergeTree()
            ORDER BY (user_id, timestamp)
        """)

        logger.info("ClickHouse tables initialized at %s:%d/%s", host, port, database)
        return True

    except Exception as e:
        logger.warning("ClickHouse unavailable (%s), running without persistent storage", e)
        _client = None
        return False


def store_listening_history(records: list[ListeningRecord]) -> bool:
    """Persist uploaded listening records. Returns False if nothing was written."""
    if _client is None or not records:
        return False
    try:
        now = datetime.now(timezone.utc)
        rows = [
            [now, r.user_id]
            + [getattr(r.song, name) for name in _SONG_COLUMNS]
            + [getattr(r, name) for name in _RECORD_COLUMNS]
            for r in records
        ]
        _client.insert("listening_history", rows, column_names=_HISTORY_COLUMNS)
        return True
    except Exception as e:
        logger.debug("Failed to store listening history: %s", e)
        return False


def get_listening_history(user_id: str) -> list[ListeningRecord]:
    """
    Load a user's listening records in upload order.
    Returns empty list if ClickHouse is down or the user has no history.
    """
    if _client is None:
        return []
    try:
        columns = ", ".join(_SONG_COLUMNS + _RECORD_COLUMNS)
        result = _client.query(
            f"""
            SELECT {columns}
            FROM listening_history
            WHERE user_id = %(user_id)s
            ORDER BY timestamp
            """,
            parameters={"user_id": user_id},
        )
        n_song = len(_SONG_COLUMNS)
        records = []
        for row in result.result_rows:
            song = Song(**dict(zip(_SONG_COLUMNS, row[:n_song])))
            extra = dict(zip(_RECORD_COLUMNS, row[n_song:]))
            records.append(ListeningRecord(user_id=user_id, song=song, **extra))
        return records
    except Exception as e:
        logger.debug("Failed to fetch listening history: %s", e)
        return []


def store_recommendations(
    pipeline: str,
    user_id: str,
    recs: list[dict],
    model_ver: str = "1.0",
) -> None:
    """
    Write a fresh set of recommendations for a user.
    ReplacingMergeTree deduplicates on (pipeline, user_id, item_id), keeping the newest row.
    """
    if _client is None or not recs:
        return
    try:
        now = datetime.now(timezone.utc)
        rows = [
            [
                now,
                pipeline,
                user_id,
                str(r.get("id") or r.get("movieId")),
                r.get("title", ""),
                float(r["similarity_score"]),
                model_ver,
            ]
            for r in recs
        ]
        _client.insert(
            "recommendations",
            rows,
            column_names=["timestamp", "pipeline", "user_id", "item_id", "title", "score", "model_ver"],
        )
    except Exception as e:
        logger.debug("Failed to store recommendations: %s", e)


def get_recommendations(pipeline: str, user_id: str, top_k: int = 10) -> list[dict]:
    """
    Fetch the latest served recommendations for a user from ClickHouse.
    Returns empty list if ClickHouse is down or nothing was served yet.
    """
    if _client is None:
        return []
    try:
        # FINAL forces deduplication of ReplacingMergeTree before returning
        result = _client.query(
            """
            SELECT item_id, title, score, model_ver
            FROM recommendations FINAL
            WHERE pipeline = %(pipeline)s AND user_id = %(user_id)s
            ORDER BY score DESC
            LIMIT %(top_k)s
            """,
            parameters={"pipeline": pipeline, "user_id": user_id, "top_k": top_k},
        )
        return [
            {"id": row[0], "title": row[1], "score": row[2], "model_ver": row[3]}
            for row in result.result_rows
        ]
    except Exception as e:
        logger.debug("Failed to fetch recommendations: %s", e)
        return []


def store_movie_run(
    user_id: str,
    ratings_count: int,
    movies_count: int,
    user_summary: Optional[dict] = None,
) -> bool:
    """Record the dataset a movie retrain was run on, plus the uploader's own profile."""
    if _client is None:
        return False
    try:
        _client.insert(
            "movie_model_runs",
            [[
                datetime.now(timezone.utc),
                user_id,
                ratings_count,
                movies_count,
                user_summary["avgRating"] if user_summary else None,
                user_summary["ratingCount"] if user_summary else None,
            ]],
            column_names=[
                "timestamp", "user_id", "ratings_count", "movies_count",
                "user_avg_rating", "user_rating_count",
            ],
        )
        return True
    except Exception as e:
        logger.debug("Failed to store movie run: %s", e)
        return False
