"""
Two-Tower Recommender: Service

Thin HTTP shell around the two recommendation pipelines:
  - Music: listening-history CSV upload -> song embeddings -> recommendations
  - Movies: ratings (+ optional metadata) CSV upload -> statistics ->
    movie embeddings -> recommendations with predicted ratings

Data flow:
  client -> POST upload -> ingest (field normalization) -> tower retrain
         -> ClickHouse(listening_history / movie_model_runs) + MLflow run
  client -> GET recommendations -> user tower + ranker -> ClickHouse(recommendations)
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from . import config, mlflow_utils
from .data import ingest
from .data.catalog import ListeningRecord
from .errors import ModelNotReadyError
from .model.movie import MovieRecommender
from .model.music import MusicRecommender
from .store import history as store

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Global state                                                         #
# ------------------------------------------------------------------ #

music: Optional[MusicRecommender] = None
movies: Optional[MovieRecommender] = None
_in_memory_history: dict[str, list[ListeningRecord]] = {}  # fallback when ClickHouse is unavailable
_history_lock = threading.Lock()


# ------------------------------------------------------------------ #
# Helpers                                                              #
# ------------------------------------------------------------------ #

def _save_history(user_id: str, records: list[ListeningRecord]) -> bool:
    with _history_lock:
        _in_memory_history.setdefault(user_id, []).extend(records)
    return store.store_listening_history(records)


def _load_history(user_id: str) -> list[ListeningRecord]:
    persisted = store.get_listening_history(user_id)
    if persisted:
        return persisted
    with _history_lock:
        return list(_in_memory_history.get(user_id, []))


def _log_retrain(metadata: dict) -> None:
    mlflow_utils.log_training(metadata)
    logger.info(
        "Retrain complete: pipeline=%s, %d items, algorithm=%s",
        metadata["pipeline"], metadata["n_items"], metadata["algorithm"],
    )


def _ingest_music(user_id: str, csv_text: Optional[str]) -> tuple[int, int, bool]:
    """Normalize uploaded rows, retrain the song catalog and save the history."""
    if not csv_text:
        raise HTTPException(status_code=400, detail="Missing csv_text in request body")
    rows = ingest.read_csv_rows(csv_text)
    if not rows:
        raise HTTPException(status_code=400, detail="CSV appears empty")

    records = ingest.listening_records_from_rows(user_id, rows)
    snapshot = music.train(record.song for record in records)
    _log_retrain(music.get_training_metadata())

    persisted = _save_history(user_id, records)
    return len(records), len(snapshot.songs), persisted


# ------------------------------------------------------------------ #
# Lifespan                                                             #
# ------------------------------------------------------------------ #

@asynccontextmanager
async def lifespan(app: FastAPI):
    global music, movies

    store.init_tables(config.CLICKHOUSE_HOST, config.CLICKHOUSE_PORT, config.CLICKHOUSE_DB)
    mlflow_utils.setup_mlflow()

    music = MusicRecommender(model_version=config.MODEL_VERSION)
    movies = MovieRecommender(model_version=config.MODEL_VERSION)

    logger.info(
        "Recommender service ready (clickhouse=%s, mlflow=%s)",
        store.is_connected(), mlflow_utils.is_ready(),
    )
    yield
    logger.info("Shutting down")


# ------------------------------------------------------------------ #
# App                                                                  #
# ------------------------------------------------------------------ #

app = FastAPI(
    title="Two-Tower Recommender",
    description="Deterministic two-tower retrieval for songs and movies.",
    version="1.0.0",
    lifespan=lifespan,
)


# ------------------------------------------------------------------ #
# Request / Response models                                            #
# ------------------------------------------------------------------ #

class MusicUpload(BaseModel):
    user_id: str
    csv_text: str = ""


class MovieUpload(BaseModel):
    ratings_text: str = ""
    movies_text: Optional[str] = None
    user_id: Optional[str] = None  # uploader, recorded with the run


class SongRecommendation(BaseModel):
    id: str
    title: str
    artist: str
    album: str
    genre: str
    mood: str
    similarity_score: float


class MovieRecommendation(BaseModel):
    movieId: str
    title: str
    genres: str
    year: Optional[int] = None
    avgRating: Optional[float] = None
    ratingCount: int
    similarity_score: float
    predicted_rating: float


class MusicRecommendationResponse(BaseModel):
    user_id: str
    recommendations: list[SongRecommendation]
    model_version: str


class MovieRecommendationResponse(BaseModel):
    success: bool = True
    user_id: str
    recommendations: list[MovieRecommendation]
    total_recommendations: int
    model_version: str


# ------------------------------------------------------------------ #
# Endpoints                                                            #
# ------------------------------------------------------------------ #

@app.get("/health")
def health():
    return {
        "status": "ok",
        "project": config.PROJECT_NAME,
        "models": {
            "music": music.is_trained() if music else False,
            "movies": movies.is_trained() if movies else False,
        },
        "storage": {
            "clickhouse": store.is_connected(),
            "mlflow": mlflow_utils.is_ready(),
        },
    }


@app.post("/music/catalog")
def upload_music_catalog(upload: MusicUpload):
    """
    Load a music CSV (song metadata + listening signals) as the catalog,
    train song embeddings and keep the rows as the user's history.
    """
    count, catalog_size, persisted = _ingest_music(upload.user_id, upload.csv_text)
    return {
        "success": True,
        "message": "Music CSV uploaded successfully.",
        "songsLoaded": count,
        "catalogSize": catalog_size,
        "warning": None if persisted else "ClickHouse not configured - history kept in memory only",
    }


@app.post("/music/history")
def upload_listening_history(upload: MusicUpload):
    """Upload a listening log; duplicate songs collapse into one catalog entry."""
    count, catalog_size, persisted = _ingest_music(upload.user_id, upload.csv_text)
    return {
        "success": True,
        "message": "Listening history uploaded successfully.",
        "count": count,
        "catalogSize": catalog_size,
        "warning": None if persisted else "ClickHouse not configured - history kept in memory only",
    }


@app.get("/music/recommendations/{user_id}", response_model=MusicRecommendationResponse)
def get_music_recommendations(
    user_id: str,
    top_k: Optional[int] = Query(default=None, ge=1, le=config.MAX_TOP_K),
):
    """
    Rank the song catalog against the user's listening history.

    With no catalog loaded yet, the catalog is rebuilt from the user's own
    stored history first. No history at all gives an empty list.
    """
    k = top_k or config.MUSIC_TOP_K
    if music is None:
        raise HTTPException(status_code=503, detail="Model not yet initialized")

    history = _load_history(user_id)
    snapshot = music.snapshot
    if snapshot is None or not snapshot.songs:
        if not history:
            return MusicRecommendationResponse(
                user_id=user_id, recommendations=[], model_version=config.MODEL_VERSION,
            )
        music.train(record.song for record in history)
        _log_retrain(music.get_training_metadata())

    recs = music.recommend(history, k)
    store.store_recommendations("music", user_id, recs, config.MODEL_VERSION)

    return MusicRecommendationResponse(
        user_id=user_id,
        recommendations=[SongRecommendation(**r) for r in recs],
        model_version=config.MODEL_VERSION,
    )


@app.post("/movies/data")
def upload_movie_data(upload: MovieUpload):
    """
    Upload ratings (userId, movieId, rating, timestamp) and optionally movie
    metadata (movieId, title, genres). Rebuilds statistics and embeddings.
    Metadata from an earlier upload is kept when none is sent.
    """
    if movies is None:
        raise HTTPException(status_code=503, detail="Model not yet initialized")
    if not upload.ratings_text:
        raise HTTPException(status_code=400, detail="Missing ratings data")

    ratings = ingest.ratings_from_rows(ingest.read_csv_rows(upload.ratings_text))
    if not ratings:
        raise HTTPException(status_code=400, detail="No valid ratings found in CSV")

    if upload.movies_text:
        metadata = ingest.movies_from_rows(ingest.read_csv_rows(upload.movies_text))
    else:
        previous = movies.snapshot
        metadata = list(previous.stats.movies.values()) if previous else []

    movies.train(ratings, metadata)
    _log_retrain(movies.get_training_metadata())

    if upload.user_id:
        store.store_movie_run(
            upload.user_id, len(ratings), len(metadata), movies.user_summary(upload.user_id),
        )

    return {
        "success": True,
        "message": "Movie data processed and model trained",
        "stats": movies.get_stats(),
        "users": movies.users_by_activity(),
    }


@app.get("/movies/recommendations/{user_id}", response_model=MovieRecommendationResponse)
def get_movie_recommendations(
    user_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=config.MAX_TOP_K),
):
    k = limit or config.MOVIE_TOP_K
    if movies is None or not movies.is_trained():
        raise HTTPException(status_code=400, detail="Model not trained. Please upload movie data first.")
    if not movies.has_user(user_id):
        raise HTTPException(status_code=404, detail=f"User {user_id} not found in the dataset")

    try:
        recs = movies.recommend(user_id, k)
    except ModelNotReadyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    store.store_recommendations("movie", user_id, recs, config.MODEL_VERSION)

    return MovieRecommendationResponse(
        user_id=user_id,
        recommendations=[MovieRecommendation(**r) for r in recs],
        total_recommendations=len(recs),
        model_version=config.MODEL_VERSION,
    )


@app.get("/movies/stats")
def get_movie_stats():
    """Dataset summary for display and monitoring."""
    if movies is None:
        raise HTTPException(status_code=503, detail="Model not yet initialized")
    return {"success": True, "stats": movies.get_stats()}


@app.get("/movies/users")
def get_movie_users():
    """Users in the movie dataset, most active first."""
    if movies is None:
        raise HTTPException(status_code=503, detail="Model not yet initialized")
    return {"success": True, "users": movies.users_by_activity()}


@app.get("/recommendations/served/{pipeline}/{user_id}")
def get_served_recommendations(
    pipeline: Literal["music", "movie"],
    user_id: str,
    top_k: Optional[int] = Query(default=None, ge=1, le=config.MAX_TOP_K),
):
    """Recommendations last served to a user, as stored in ClickHouse."""
    default_k = config.MUSIC_TOP_K if pipeline == "music" else config.MOVIE_TOP_K
    k = top_k or default_k
    return {
        "user_id": user_id,
        "pipeline": pipeline,
        "recommendations": store.get_recommendations(pipeline, user_id, k),
    }


@app.get("/model/status")
def model_status():
    """Training metadata of both towers."""
    if music is None or movies is None:
        return {"status": "not_ready"}
    return {
        "status": "ready",
        "music": music.get_training_metadata(),
        "movies": movies.get_training_metadata(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tworec.main:app", host="0.0.0.0", port=config.API_PORT)
