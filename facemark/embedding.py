"""Face descriptor helpers.

Descriptors travel as JSON arrays of numbers, the same text form the
registration records have always stored. Python floats serialise with
``repr`` precision, so ``decode(encode(x))`` reproduces ``x`` exactly.
"""

import json
import math
from typing import Any, Optional, Sequence, Union

import numpy as np

from .exceptions import InvalidEmbeddingLength, MalformedEmbedding

EmbeddingLike = Union[np.ndarray, Sequence[float]]


def as_embedding(values: EmbeddingLike, dimension: Optional[int] = None, label: str = "embedding") -> np.ndarray:
    """Return ``values`` as a read-only float64 vector.

    Raises InvalidEmbeddingLength when ``dimension`` is given and differs.
    """
    vector = np.array(values, dtype=np.float64).reshape(-1)
    if dimension is not None and vector.size != dimension:
        raise InvalidEmbeddingLength(expected=dimension, actual=int(vector.size), label=label)
    vector.flags.writeable = False
    return vector


def encode(embedding: EmbeddingLike) -> str:
    vector = np.asarray(embedding, dtype=np.float64).reshape(-1)
    if vector.size == 0:
        raise MalformedEmbedding("Cannot encode an empty descriptor.")
    try:
        return json.dumps([float(v) for v in vector], allow_nan=False)
    except ValueError as exc:
        raise MalformedEmbedding(f"Descriptor contains non-finite values: {exc}") from exc


def _reject_constant(name: str) -> Any:
    raise MalformedEmbedding(f"Descriptor contains non-finite value {name}.")


def decode(text: Union[str, bytes], dimension: Optional[int] = None) -> np.ndarray:
    if not isinstance(text, (str, bytes, bytearray)):
        raise MalformedEmbedding(f"Descriptor must be text, got {type(text).__name__}.")

    try:
        payload = json.loads(text, parse_constant=_reject_constant)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedEmbedding(f"Descriptor is not valid JSON: {exc}") from exc

    if not isinstance(payload, list) or not payload:
        raise MalformedEmbedding("Descriptor must be a non-empty JSON array.")

    for index, item in enumerate(payload):
        # bool is an int subclass; true/false are not coordinates
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise MalformedEmbedding(f"Descriptor item {index} is not a number: {item!r}")
        if not math.isfinite(item):
            raise MalformedEmbedding(f"Descriptor item {index} is not finite.")

    return as_embedding(payload, dimension=dimension, label="decoded descriptor")
