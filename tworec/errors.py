class DimensionMismatchError(ValueError):
    """Two vectors of different lengths were compared."""


class ModelNotReadyError(RuntimeError):
    """A recommender was queried before its first train() call."""
