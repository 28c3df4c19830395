import pytest

from tworec.data.catalog import ListeningRecord, Movie, Rating, Song

NOW = 1_700_000_000.0
YEAR = 365 * 24 * 60 * 60


@pytest.fixture
def songs():
    return [
        Song(title="Blue Skies", artist="Aria", genre="Pop", mood="Happy", release_year=2018),
        Song(title="Night Drive", artist="Kano", genre="Synthwave", mood="Calm", activity="Driving"),
        Song(title="Iron Rain", artist="Vex", genre="Metal", mood="Angry", duration_sec=320.0),
        Song(title="Sunday Morning", artist="Lia", genre="Jazz", mood="Relaxed", weekend=1),
    ]


@pytest.fixture
def engaged_song():
    # completion 1.0, 5 stars, liked, no repeats, not skipped -> weight 2.6
    return Song(
        title="Blue Skies",
        artist="Aria",
        genre="Pop",
        completion_rate=1.0,
        rating=5.0,
        liked=1,
    )


def plays(user_id, *songs):
    return [ListeningRecord(user_id=user_id, song=song) for song in songs]


@pytest.fixture
def ratings():
    return [
        Rating("u1", "m1", 5.0, NOW - 10),
        Rating("u1", "m2", 4.0, NOW - 2 * YEAR),
        Rating("u1", "m3", 1.0, NOW - 100),
        Rating("u2", "m1", 4.0, NOW - 20),
        Rating("u2", "m2", 2.0, NOW - 30),
        Rating("u3", "m4", 3.0, NOW - 40),
    ]


@pytest.fixture
def movies():
    return [
        Movie("m1", "The Long Road", "Drama|Adventure", 1999),
        Movie("m2", "Laugh Track", "Comedy", 2004),
        Movie("m4", "Deep Space", "Sci-Fi|Adventure", 2015),
    ]
