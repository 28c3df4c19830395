"""
MLflow experiment tracking helpers.
All functions are best-effort: a missing or unreachable MLflow server
will log a warning and let the service continue normally.
"""
import logging

from .config import MLFLOW_EXPERIMENT, MLFLOW_TRACKING_URI

logger = logging.getLogger(__name__)

_mlflow_ready = False


def is_ready() -> bool:
    return _mlflow_ready


def setup_mlflow() -> bool:
    """Connect to MLflow and ensure the experiment exists.

    Returns True if the connection succeeded, False otherwise.
    Called once at startup; failure does not prevent the service from running.
    """
    global _mlflow_ready
    try:
        import mlflow
        mlflow.set_tracking_uri(MLFLOW_TRACKING_URI)
        mlflow.set_experiment(MLFLOW_EXPERIMENT)
        _mlflow_ready = True
        logger.info("MLflow connected: %s, experiment: %s", MLFLOW_TRACKING_URI, MLFLOW_EXPERIMENT)
        return True
    except Exception as exc:
        logger.warning("MLflow not available (retrains will not be tracked): %s", exc)
        return False


def log_training(metadata: dict) -> None:
    """Record one tower retrain as an MLflow run.

    String-valued metadata goes in as params, counts as metrics, so
    successive catalog uploads can be compared in the MLflow UI.
    """
    if not _mlflow_ready:
        return
    try:
        import mlflow
        run_name = f"{metadata['pipeline']}-retrain-v{metadata['model_version']}"
        with mlflow.start_run(run_name=run_name):
            mlflow.log_params({
                "pipeline": metadata["pipeline"],
                "algorithm": metadata["algorithm"],
                "embedding_dim": metadata["embedding_dim"],
            })
            mlflow.log_metrics({
                key: float(value)
                for key, value in metadata.items()
                if key.startswith("n_") and value is not None
            })
        logger.info("Logged %s retrain to MLflow", metadata["pipeline"])
    except Exception as exc:
        logger.debug("MLflow logging skipped: %s", exc)
