# Needs: python-package:pytest>=8.0
import json

import pytest

from model_harness.errors import ConfigurationError
from model_harness.fixtures import ReferenceVectors, load_reference_vectors
from conftest import FIXTURES_DIR


@pytest.mark.unit
def test_load_shipped_fixture():
    vectors = load_reference_vectors(FIXTURES_DIR / "embed_reference.json")

    assert set(vectors) == {"all-minilm:latest", "nomic-embed-text:latest"}
    assert all(len(vector) == 8 for vector in vectors.values())
    assert isinstance(vectors["all-minilm:latest"], tuple)


@pytest.mark.unit
def test_reference_vectors_are_read_only():
    vectors = ReferenceVectors.from_dict({"m": [1, 2, 3]})

    assert vectors["m"] == (1.0, 2.0, 3.0)
    with pytest.raises(TypeError):
        vectors["m"] = (0.0,)


@pytest.mark.unit
def test_missing_fixture_file(tmp_path):
    with pytest.raises(ConfigurationError, match="failed to open test data file"):
        load_reference_vectors(tmp_path / "absent.json")


@pytest.mark.unit
def test_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="failed to load test data"):
        load_reference_vectors(path)


@pytest.mark.unit
@pytest.mark.parametrize("payload, message", [
    ([1.0, 2.0], "must be a JSON object"),
    ({"m": []}, "non-empty list"),
    ({"m": "0.1, 0.2"}, "non-empty list"),
    ({"m": [0.1, "x"]}, "not numeric"),
    ({"m": [0.1, None]}, "not numeric"),
])
def test_malformed_entries_are_rejected(tmp_path, payload, message):
    path = tmp_path / "vectors.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ConfigurationError, match=message):
        load_reference_vectors(path)


@pytest.mark.unit
def test_non_finite_values_are_rejected():
    with pytest.raises(ConfigurationError, match="non-finite"):
        ReferenceVectors.from_dict({"m": [0.1, float("nan")]})
