import json

import numpy as np
import pytest

from conftest import DIM
from facemark.embedding import as_embedding, decode, encode
from facemark.exceptions import AttendanceError, InvalidEmbeddingLength, MalformedEmbedding


def test_round_trip_is_exact_for_random_descriptors():
    rng = np.random.default_rng(2024)
    for _ in range(25):
        original = rng.normal(size=DIM)
        assert np.array_equal(decode(encode(original)), original)


def test_round_trip_keeps_float32_values():
    original = np.random.default_rng(5).random(DIM).astype(np.float32)
    restored = decode(encode(original))
    assert np.array_equal(restored.astype(np.float32), original)


def test_round_trip_extreme_magnitudes():
    original = np.array([1e-308, -1e308, 0.0, -0.0, 5e-324, 1.0 / 3.0])
    assert np.array_equal(decode(encode(original)), original)


def test_encode_produces_a_json_array():
    text = encode([0.5, -1.25, 3.0])
    assert json.loads(text) == [0.5, -1.25, 3.0]


def test_decode_accepts_stored_javascript_arrays():
    restored = decode("[0.1,-0.2,3,4e-05]")
    assert restored.dtype == np.float64
    assert restored.tolist() == [0.1, -0.2, 3.0, 4e-05]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "not json",
        "{\"a\": 1}",
        "[]",
        "\"0.1,0.2\"",
        "[\"0.1\"]",
        "[true, 0.2]",
        "[0.1, null]",
        "[[0.1], [0.2]]",
        "[NaN, 0.1]",
        "[Infinity]",
    ],
)
def test_decode_rejects_malformed_text(text):
    with pytest.raises(MalformedEmbedding):
        decode(text)


def test_decode_rejects_non_text():
    with pytest.raises(MalformedEmbedding):
        decode(None)
    with pytest.raises(MalformedEmbedding):
        decode([0.1, 0.2])


def test_decode_checks_dimension():
    with pytest.raises(InvalidEmbeddingLength) as excinfo:
        decode(encode(np.zeros(3)), dimension=DIM)
    assert excinfo.value.expected == DIM
    assert excinfo.value.actual == 3


def test_decoded_descriptor_is_read_only():
    restored = decode(encode(np.ones(4)))
    with pytest.raises(ValueError):
        restored[0] = 2.0


def test_as_embedding_copies_input():
    source = np.arange(4, dtype=np.float64)
    vector = as_embedding(source)
    source[0] = 99.0
    assert vector[0] == 0.0
    assert not vector.flags.writeable


def test_encode_rejects_non_finite_and_empty():
    with pytest.raises(MalformedEmbedding):
        encode([0.1, float("nan")])
    with pytest.raises(MalformedEmbedding):
        encode([])


def test_codec_errors_share_the_attendance_hierarchy():
    assert issubclass(MalformedEmbedding, AttendanceError)
    assert issubclass(MalformedEmbedding, ValueError)
