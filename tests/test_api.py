import pytest
from fastapi.testclient import TestClient

from tworec import main

MUSIC_CSV = """Song_Title,Artist_Name,Genre,Mood,Completion_Rate,Rating,Liked_Flag,Skip_Flag
Blue Skies,Aria,Pop,Happy,1.0,5,1,0
Night Drive,Kano,Synthwave,Calm,0.9,4,0,0
Iron Rain,Vex,Metal,Angry,0.2,2,0,1
"""

RATINGS_CSV = """userId,movieId,rating,timestamp
u1,m1,5,1700000000
u1,m2,4,1690000000
u1,m3,1,1680000000
u2,m1,4,1700000100
u2,m2,2,1700000200
u3,m4,3,1700000300
"""

MOVIES_CSV = """movieId,title,genres
m1,The Long Road,Drama|Adventure
m2,Laugh Track,Comedy
m4,Deep Space,Sci-Fi|Adventure
"""


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main.store, "init_tables", lambda *args: False)
    monkeypatch.setattr(main.mlflow_utils, "setup_mlflow", lambda: False)
    monkeypatch.setattr(main, "_in_memory_history", {})
    with TestClient(main.app) as test_client:
        yield test_client


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["models"] == {"music": False, "movies": False}
    assert body["storage"]["clickhouse"] is False


def test_music_recommendations_without_history_are_empty(client):
    resp = client.get("/music/recommendations/alice")
    assert resp.status_code == 200
    assert resp.json()["recommendations"] == []


def test_music_upload_rejects_empty_csv(client):
    resp = client.post("/music/catalog", json={"user_id": "alice", "csv_text": ""})
    assert resp.status_code == 400


def test_music_catalog_upload_and_recommend(client):
    resp = client.post("/music/catalog", json={"user_id": "alice", "csv_text": MUSIC_CSV})
    assert resp.status_code == 200
    body = resp.json()
    assert body["songsLoaded"] == 3
    assert body["catalogSize"] == 3
    assert body["warning"]

    resp = client.get("/music/recommendations/alice")
    assert resp.status_code == 200
    recs = resp.json()["recommendations"]
    assert len(recs) == 3
    assert {r["title"] for r in recs} == {"Blue Skies", "Night Drive", "Iron Rain"}
    scores = [r["similarity_score"] for r in recs]
    assert scores == sorted(scores, reverse=True)


def test_music_top_k_is_bounded(client):
    client.post("/music/catalog", json={"user_id": "alice", "csv_text": MUSIC_CSV})
    assert len(client.get("/music/recommendations/alice?top_k=1").json()["recommendations"]) == 1
    assert client.get("/music/recommendations/alice?top_k=0").status_code == 422
    assert client.get("/music/recommendations/alice?top_k=1000").status_code == 422


def test_listening_history_dedupes_catalog(client):
    csv_text = "title,artist\nBlue Skies,Aria\nblue skies, ARIA\nNight Drive,Kano\n"
    resp = client.post("/music/history", json={"user_id": "bob", "csv_text": csv_text})
    assert resp.status_code == 200
    assert resp.json()["count"] == 3
    assert resp.json()["catalogSize"] == 2


def test_user_without_history_gets_nothing_from_trained_catalog(client):
    client.post("/music/catalog", json={"user_id": "alice", "csv_text": MUSIC_CSV})
    assert client.get("/music/recommendations/carol").json()["recommendations"] == []


def test_movie_recommendations_before_upload(client):
    resp = client.get("/movies/recommendations/u1")
    assert resp.status_code == 400


def test_movie_upload_validation(client):
    assert client.post("/movies/data", json={"ratings_text": ""}).status_code == 400
    no_ids = "userId,movieId,rating\n,m1,4\nu1,,3\n"
    assert client.post("/movies/data", json={"ratings_text": no_ids}).status_code == 400


def test_movie_upload_and_recommend(client):
    resp = client.post(
        "/movies/data",
        json={"ratings_text": RATINGS_CSV, "movies_text": MOVIES_CSV, "user_id": "u2"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["stats"]["totalRatings"] == 6
    assert body["stats"]["moviesWithMetadata"] == 3
    assert body["users"] == ["u1", "u2", "u3"]

    resp = client.get("/movies/recommendations/u2")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_recommendations"] == 2
    assert {r["movieId"] for r in body["recommendations"]} == {"m3", "m4"}

    assert client.get("/movies/recommendations/ghost").status_code == 404


def test_movie_metadata_survives_ratings_only_upload(client):
    client.post("/movies/data", json={"ratings_text": RATINGS_CSV, "movies_text": MOVIES_CSV})
    client.post("/movies/data", json={"ratings_text": RATINGS_CSV})
    recs = client.get("/movies/recommendations/u1").json()["recommendations"]
    assert recs[0]["title"] == "Deep Space"


def test_movie_stats_users_and_model_status(client):
    client.post("/movies/data", json={"ratings_text": RATINGS_CSV})
    assert client.get("/movies/stats").json()["stats"]["uniqueMovies"] == 4
    assert client.get("/movies/users").json()["users"][0] == "u1"

    status = client.get("/model/status").json()
    assert status["status"] == "ready"
    assert status["movies"]["n_ratings"] == 6
    assert status["music"]["n_items"] == 0


def test_served_recommendations(client, monkeypatch):
    served = []

    def fake_get(pipeline, user_id, top_k):
        served.append((pipeline, user_id, top_k))
        return [{"id": "m4", "title": "Deep Space", "score": 0.25, "model_ver": "1.0"}]

    monkeypatch.setattr(main.store, "get_recommendations", fake_get)
    resp = client.get("/recommendations/served/movie/u1")
    assert resp.status_code == 200
    assert resp.json()["recommendations"][0]["id"] == "m4"
    assert served == [("movie", "u1", main.config.MOVIE_TOP_K)]

    client.get("/recommendations/served/music/u1?top_k=3")
    assert served[-1] == ("music", "u1", 3)
    assert client.get("/recommendations/served/books/u1").status_code == 422


def test_music_csv_with_infinite_cells_still_trains(client):
    csv_text = "title,artist,Release_Year,Liked_Flag,rating\nBlue Skies,Aria,inf,1e400,inf\n"
    resp = client.post("/music/catalog", json={"user_id": "dana", "csv_text": csv_text})
    assert resp.status_code == 200
    recs = client.get("/music/recommendations/dana").json()["recommendations"]
    assert recs[0]["similarity_score"] == pytest.approx(1.0)
