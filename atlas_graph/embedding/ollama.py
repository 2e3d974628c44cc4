import logging
import time
from typing import List, Optional

import requests

from ..errors import EmbeddingError, UnsupportedModelError
from .base import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"

# Model name -> embedding dimensions, for reference only.
KNOWN_MODELS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "bge-large": 1024,
    "snowflake-arctic-embed": 1024,
}


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings served by a local Ollama daemon.

    Each request carries *timeout* seconds; failed requests are retried up
    to *max_retries* attempts in total, sleeping ``attempt * retry_delay``
    seconds between attempts.
    """

    name = "ollama"

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 10.0,
                 max_retries: int = 3, retry_delay: float = 1.0,
                 availability_timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.availability_timeout = availability_timeout
        self._ensured_models: set[str] = set()

    def is_available(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/api/tags",
                                    timeout=self.availability_timeout)
            return response.ok
        except requests.exceptions.RequestException as e:
            logger.debug("[Ollama] Service not available: %s", e)
            return False

    def get_default_model(self) -> str:
        return "nomic-embed-text"

    def get_supported_models(self) -> List[str]:
        return list(KNOWN_MODELS)

    def ensure_model_available(self, model: str) -> None:
        """Pull *model* if the daemon does not have it yet.

        Best effort: when the daemon cannot be reached the check is skipped
        and the embedding request itself reports the failure.  Raises
        :class:`UnsupportedModelError` if the daemon answers but the model
        can be neither found nor pulled.
        """
        if model in self._ensured_models:
            return
        try:
            response = requests.post(f"{self.base_url}/api/show",
                                     json={"name": model}, timeout=self.timeout)
            if not response.ok:
                logger.info("[Ollama] Model %s not found, attempting to pull", model)
                pull = requests.post(f"{self.base_url}/api/pull",
                                     json={"name": model, "stream": False},
                                     timeout=(10, 600))
                if not pull.ok:
                    raise UnsupportedModelError(
                        model, f"pull failed with status {pull.status_code}")
                logger.info("[Ollama] Pulled model %s", model)
        except requests.exceptions.RequestException as e:
            logger.warning("[Ollama] Could not verify model %s: %s", model, e)
            return
        self._ensured_models.add(model)

    def generate_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError("Text cannot be empty for embedding generation")
        model = model or self.get_default_model()
        self.ensure_model_available(model)

        payload = {"model": model, "prompt": text.strip()}
        for attempt in range(1, self.max_retries + 1):
            try:
                response = requests.post(f"{self.base_url}/api/embeddings",
                                         json=payload, timeout=self.timeout)
                if not response.ok:
                    raise EmbeddingError(
                        f"Ollama API error ({response.status_code}): {response.text}")
                embedding = response.json().get("embedding")
                if not isinstance(embedding, list) or not embedding:
                    raise EmbeddingError("Invalid embedding response from Ollama")
                logger.debug("[Ollama] Generated %dD embedding using %s",
                             len(embedding), model)
                return [float(v) for v in embedding]
            except (requests.exceptions.RequestException, EmbeddingError, ValueError) as e:
                logger.warning("[Ollama] Attempt %d/%d failed: %s",
                               attempt, self.max_retries, e)
                if attempt == self.max_retries:
                    raise EmbeddingError(
                        f"Failed to generate Ollama embedding after "
                        f"{self.max_retries} attempts: {e}") from e
                time.sleep(attempt * self.retry_delay)

        raise EmbeddingError("Ollama embedding requested with max_retries < 1")
