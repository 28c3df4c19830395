"""Two-tower music and movie recommender."""

__version__ = "1.0.0"
