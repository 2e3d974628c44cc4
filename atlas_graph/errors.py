"""
Exception hierarchy for the knowledge-graph engine.

Missing records are never reported through exceptions: lookups, updates
and deletes by id return ``None`` instead.
"""


class GraphError(Exception):
    """Base class for all engine errors."""


class ReferentialIntegrityError(GraphError):
    """Raised when an edge write references a node id that does not exist."""

    def __init__(self, source_id: str, target_id: str):
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(
            f"Edge endpoints must reference existing nodes "
            f"(source={source_id!r}, target={target_id!r})"
        )


class MalformedInputError(GraphError, ValueError):
    """Raised for invalid arguments, before any store mutation happens."""


class EmbeddingError(GraphError):
    """Raised when an embedding backend fails after all retries."""


class UnsupportedModelError(EmbeddingError):
    """Raised when an embedding model name is not recognised by a provider."""

    def __init__(self, model: str, detail: str = ""):
        self.model = model
        message = f"Embedding model {model} not supported"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ProviderUnavailableError(EmbeddingError):
    """Raised only if no embedding provider at all can be resolved."""
