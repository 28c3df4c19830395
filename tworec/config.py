import os

PROJECT_NAME = os.getenv("PROJECT_NAME", "two-tower-recommender")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Service
API_PORT = int(os.getenv("API_PORT", "8090"))

# ClickHouse
CLICKHOUSE_HOST = os.getenv("CLICKHOUSE_HOST", "clickhouse")
CLICKHOUSE_PORT = int(os.getenv("CLICKHOUSE_PORT", "8123"))
CLICKHOUSE_DB = os.getenv("CLICKHOUSE_DB", "recommender_db")

# MLflow
MLFLOW_TRACKING_URI = os.getenv("MLFLOW_TRACKING_URI", "http://mlflow:5000")
MLFLOW_EXPERIMENT = os.getenv("MLFLOW_EXPERIMENT", f"{PROJECT_NAME}-towers")

# Recommendation model
MUSIC_TOP_K = int(os.getenv("MUSIC_TOP_K", "10"))
MOVIE_TOP_K = int(os.getenv("MOVIE_TOP_K", "20"))
MAX_TOP_K = int(os.getenv("MAX_TOP_K", "100"))
MODEL_VERSION = os.getenv("MODEL_VERSION", "1.0")
