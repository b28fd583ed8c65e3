from .embedding import as_embedding, decode, encode
from .exceptions import InvalidEmbeddingLength, MalformedEmbedding
from .matcher import Matched, MatchResult, Unmatched, euclidean_distance, match

__all__ = [
    "InvalidEmbeddingLength",
    "MalformedEmbedding",
    "MatchResult",
    "Matched",
    "Unmatched",
    "as_embedding",
    "decode",
    "encode",
    "euclidean_distance",
    "match",
]
