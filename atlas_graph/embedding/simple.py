"""
Deterministic, dependency-light embedding backend.

Always available and performs no I/O, so it is the last resort of the
provider registry and the backend used under test.  The vector is built
from lexical features only:

    [0, 36)    character frequencies for a-z and 0-9
    [36, 76)   hashed buckets for the first 20 words
    [76, 79)   log-scaled text length, word count and mean word length
    [79, 99)   hashed word-bigram buckets
    99         unused

and is L2-normalised.  Empty text yields the all-zero vector.
"""

import math
import re
from typing import List

import numpy as np

from ..errors import UnsupportedModelError
from .base import EmbeddingProvider

DIMENSIONS = 100
DEFAULT_MODEL = "simple"
MODEL_ALIASES = ("simple-js",)

_CHAR_OFFSET = 0
_WORD_OFFSET = 36
_WORD_BUCKETS = 40
_MAX_POSITIONAL_WORDS = 20
_LENGTH_OFFSET = 76
_BIGRAM_OFFSET = 79
_BIGRAM_BUCKETS = 20

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def string_hash(text: str) -> int:
    """31-based rolling hash folded to a signed 32-bit value, returned as its absolute value."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class SimpleEmbeddingProvider(EmbeddingProvider):

    name = "simple"

    def is_available(self) -> bool:
        return True

    def get_default_model(self) -> str:
        return DEFAULT_MODEL

    def get_supported_models(self) -> List[str]:
        return [DEFAULT_MODEL, *MODEL_ALIASES]

    def generate_embedding(self, text: str, model: str = DEFAULT_MODEL) -> List[float]:
        if model not in self.get_supported_models():
            raise UnsupportedModelError(model)
        return self._embed(text or "").tolist()

    @staticmethod
    def _embed(text: str) -> np.ndarray:
        normalized = _NON_ALNUM.sub("", text.lower())
        words = normalized.split()
        vec = np.zeros(DIMENSIONS, dtype=np.float64)

        for ch in normalized:
            if "a" <= ch <= "z":
                vec[_CHAR_OFFSET + ord(ch) - ord("a")] += 1
            elif "0" <= ch <= "9":
                vec[_CHAR_OFFSET + 26 + ord(ch) - ord("0")] += 1

        for word in words[:_MAX_POSITIONAL_WORDS]:
            vec[_WORD_OFFSET + string_hash(word) % _WORD_BUCKETS] += 1

        mean_word_len = sum(len(w) for w in words) / max(len(words), 1)
        vec[_LENGTH_OFFSET] = math.log1p(len(text.strip()))
        vec[_LENGTH_OFFSET + 1] = math.log1p(len(words))
        vec[_LENGTH_OFFSET + 2] = math.log1p(mean_word_len)

        for first, second in zip(words, words[1:]):
            vec[_BIGRAM_OFFSET + string_hash(first + second) % _BIGRAM_BUCKETS] += 1

        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec
