import math

import numpy as np
import pytest

from tworec.data.catalog import Rating
from tworec.errors import ModelNotReadyError
from tworec.model.hashing import hash_user
from tworec.model.movie import (
    MovieRecommender,
    build_snapshot,
    movie_embedding,
    predicted_rating,
    recommend_movies,
    user_embedding,
)
from tworec.model.similarity import cosine_similarity
from tworec.model.stats import build_statistics

from conftest import NOW


@pytest.fixture
def stats(ratings, movies):
    return build_statistics(ratings, movies)


@pytest.fixture
def snapshot(stats):
    return build_snapshot(stats, now=NOW)


def test_movie_embedding_statistics_slots(stats):
    vec = movie_embedding("m1", stats, NOW)
    assert vec.shape == (64,)
    np.testing.assert_allclose(vec[0:5], [0, 0, 0, 0.5, 0.5])
    assert vec[5] == pytest.approx(0.9)
    assert vec[6] == pytest.approx(0.002)
    assert vec[7] == pytest.approx(math.sqrt(2) / 100)
    assert vec[8] == pytest.approx(1.0)
    assert vec[9] == pytest.approx(1.0)
    assert vec[10] == pytest.approx(hash_user("u1"))
    assert vec[11] == pytest.approx(hash_user("u2"))
    assert vec[12] == 0


def test_movie_embedding_temporal_slots(stats):
    vec = movie_embedding("m2", stats, NOW)
    assert vec[48] == pytest.approx(0.2, rel=1e-4)
    assert vec[49] == pytest.approx(0.5)
    assert vec[9] == pytest.approx(0.5)


def test_movie_embedding_without_ratings_is_zero(stats):
    assert not movie_embedding("m99", stats, NOW).any()


def test_genre_hash_only_with_metadata(stats):
    with_genres = movie_embedding("m1", stats, NOW)
    without = movie_embedding("m3", stats, NOW)
    assert with_genres[32:48].any()
    assert not without[32:48].any()


def test_user_embedding_unit_length_and_genre_slots(stats, snapshot):
    vec = user_embedding("u1", stats, snapshot.embeddings)
    assert np.linalg.norm(vec) == pytest.approx(1.0)
    # Drama and Adventure average 5 stars, Comedy 4
    assert vec[48] / vec[50] == pytest.approx(1.25)
    assert vec[49] == pytest.approx(vec[48])


def test_unknown_user_embedding_is_zero(stats, snapshot):
    assert not user_embedding("nobody", stats, snapshot.embeddings).any()


def test_recommendations_exclude_rated_movies(snapshot):
    recs = recommend_movies(snapshot, "u2", limit=20)
    assert {r["movieId"] for r in recs} == {"m3", "m4"}
    for rec in recs:
        assert -1.0 <= rec["similarity_score"] <= 1.0
        assert 1.0 <= rec["predicted_rating"] <= 5.0


def test_recommendation_display_fields(snapshot):
    recs = {r["movieId"]: r for r in recommend_movies(snapshot, "u2", limit=20)}
    assert recs["m3"]["title"] == "Movie m3"
    assert recs["m3"]["genres"] == "Unknown"
    assert recs["m3"]["year"] is None
    assert recs["m4"]["title"] == "Deep Space"
    assert recs["m4"]["year"] == 2015
    assert recs["m4"]["avgRating"] == 3.0
    assert recs["m4"]["ratingCount"] == 1


def test_user_who_rated_everything_gets_nothing():
    stats = build_statistics([Rating("u1", "m1", 5.0, NOW)])
    assert recommend_movies(build_snapshot(stats, now=NOW), "u1", limit=5) == []


def test_unknown_user_gets_catalog_order(snapshot):
    recs = recommend_movies(snapshot, "nobody", limit=20)
    assert [r["movieId"] for r in recs] == ["m1", "m2", "m3", "m4"]
    assert all(r["similarity_score"] == 0.0 for r in recs)
    assert recs[0]["predicted_rating"] == pytest.approx(3.5)


def test_predicted_rating_is_clamped(stats):
    m1 = stats.items["m1"]
    assert predicted_rating(1.0, m1) == 5.0
    low = build_statistics([Rating("u", "m", 1.0, 0.0)]).items["m"]
    assert predicted_rating(-1.0, low) == 1.0
    assert predicted_rating(0.75, None) == 3.5


def test_recommender_requires_training():
    rec = MovieRecommender()
    assert not rec.is_trained()
    assert rec.users_by_activity() == []
    assert rec.get_stats()["totalRatings"] == 0
    with pytest.raises(ModelNotReadyError):
        rec.recommend("u1")


def test_recommender_end_to_end(ratings, movies):
    rec = MovieRecommender(model_version="3.0")
    rec.train(ratings, movies, now=NOW)
    assert rec.is_trained()
    assert rec.has_user("u1")
    assert not rec.has_user("u9")
    assert rec.users_by_activity() == ["u1", "u2", "u3"]
    assert [r["movieId"] for r in rec.recommend("u1", top_k=5)] == ["m4"]

    summary = rec.user_summary("u1")
    assert summary["ratingCount"] == 3
    assert summary["avgRating"] == pytest.approx(10 / 3)
    assert rec.user_summary("u9") is None

    meta = rec.get_training_metadata()
    assert meta["pipeline"] == "movie"
    assert meta["n_items"] == 4
    assert meta["n_users"] == 3
    assert meta["n_ratings"] == 6
    assert meta["model_version"] == "3.0"


def test_recommendations_are_deterministic(ratings, movies):
    first = MovieRecommender()
    second = MovieRecommender()
    first.train(ratings, movies, now=NOW)
    second.train(ratings, movies, now=NOW)
    assert first.recommend("u3") == second.recommend("u3")


def test_single_five_star_rating_predicts_within_bounds():
    stats = build_statistics([Rating("u1", "x", 5.0, NOW)])
    snapshot = build_snapshot(stats, now=NOW)
    user_vec = user_embedding("u1", stats, snapshot.embeddings)
    similarity = cosine_similarity(user_vec, snapshot.embeddings["x"])
    assert 0.0 < similarity <= 1.0
    assert 1.0 <= predicted_rating(similarity, stats.items["x"]) <= 5.0


def test_disliked_movies_push_genre_band_down(ratings, movies):
    stats = build_statistics(ratings, movies)
    snapshot = build_snapshot(stats, now=NOW)
    with_dislike = user_embedding("u2", stats, snapshot.embeddings)

    liked_only = build_statistics([r for r in ratings if r.rating >= 4], movies)
    without = user_embedding("u2", liked_only, build_snapshot(liked_only, now=NOW).embeddings)
    assert with_dislike[32:40].sum() < without[32:40].sum()


def test_predicted_rating_rounds_half_up():
    item = build_statistics([Rating("u", "m", 3.0, 0.0)]).items["m"]
    assert predicted_rating(0.625, item) == 3.3
    assert predicted_rating(0.375, item) == 2.8
