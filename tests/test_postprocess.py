import numpy as np
import pytest

from birdsong.errors import ValidationError
from birdsong.postprocess import DetectionResult, clamp_options, process, scientific_name

LABELS = ["American Robin", "Blue Jay", "Northern Cardinal"]


def test_threshold_and_order():
    results = process([0.9, 0.05, 0.62], LABELS, confidence_threshold=0.1, max_results=10, now_ms=1700000000000)
    assert [r.common_name for r in results] == ["American Robin", "Northern Cardinal"]
    assert [r.scientific_species_name for r in results] == ["Turdus migratorius", "Cardinalis cardinalis"]
    assert [r.confidence for r in results] == pytest.approx([0.9, 0.62])
    assert all(r.timestamp_ms == 1700000000000 for r in results)


def test_threshold_is_inclusive():
    results = process([0.5, 0.4999], LABELS[:2], confidence_threshold=0.5)
    assert [r.common_name for r in results] == ["American Robin"]


def test_zero_threshold_keeps_everything():
    results = process([0.0, 0.01, 0.02], LABELS, confidence_threshold=0.0)
    assert len(results) == 3


def test_max_results_truncates_after_sort():
    results = process([0.2, 0.8, 0.5], LABELS, confidence_threshold=0.0, max_results=2)
    assert [r.common_name for r in results] == ["Blue Jay", "Northern Cardinal"]


def test_ties_keep_label_order():
    results = process([0.5, 0.5, 0.5], LABELS, confidence_threshold=0.1)
    assert [r.common_name for r in results] == LABELS


def test_random_scores_properties():
    rng = np.random.RandomState(0)
    labels = [f"Species {i}" for i in range(40)]
    for _ in range(20):
        scores = rng.rand(40)
        threshold, k = float(rng.rand()), int(rng.randint(1, 51))
        results = process(scores, labels, confidence_threshold=threshold, max_results=k)
        confs = [r.confidence for r in results]
        assert len(results) == min(k, int((scores >= threshold).sum()))
        assert confs == sorted(confs, reverse=True)
        assert all(c >= threshold for c in confs)


def test_one_timestamp_per_call():
    results = process([0.9, 0.8, 0.7], LABELS)
    assert len({r.timestamp_ms for r in results}) == 1


def test_extra_scores_are_ignored():
    results = process([0.9, 0.9, 0.9, 0.9, 0.9], LABELS)
    assert len(results) == 3


def test_extra_labels_are_ignored():
    assert [r.common_name for r in process([0.9], LABELS)] == ["American Robin"]


def test_empty_scores():
    assert process([], LABELS) == []


# --- names ---

@pytest.mark.parametrize("label, expected", [
    ("American Robin", "Turdus migratorius"),
    ("Red-winged Blackbird", "Agelaius phoeniceus"),
    ("Mystery Bird", "Unknown mystery_bird"),
    ("Mystery Bird Two", "Unknown mystery_bird two"),
    ("Owl", "Unknown owl"),
    ("Turdus merula_Eurasian Blackbird", "Unknown turdus_merula_eurasian blackbird"),
    ("Turdus migratorius_American Robin", "Unknown turdus_migratorius_american robin"),
    ("american robin", "Unknown american_robin"),
])
def test_scientific_name(label, expected):
    assert scientific_name(label) == expected


def test_to_dict_uses_client_field_names():
    d = DetectionResult("Turdus migratorius", "American Robin", 0.9, 123).to_dict()
    assert d == {"species": "Turdus migratorius", "commonName": "American Robin",
                 "confidence": 0.9, "timestamp": 123}


# --- options ---

def test_clamp_defaults():
    assert clamp_options({}) == (0.1, 10)
    assert clamp_options({"confidence_threshold": None, "max_results": ""}) == (0.1, 10)


@pytest.mark.parametrize("body, expected", [
    ({"confidence_threshold": 0}, (0.0, 10)),
    ({"confidence_threshold": -3}, (0.0, 10)),
    ({"confidence_threshold": 2.5}, (1.0, 10)),
    ({"confidence_threshold": "0.3"}, (0.3, 10)),
    ({"max_results": 0}, (0.1, 1)),
    ({"max_results": 500}, (0.1, 50)),
    ({"max_results": 7.9}, (0.1, 7)),
    ({"max_results": "3"}, (0.1, 3)),
])
def test_clamp_values(body, expected):
    threshold, k = clamp_options(body)
    assert threshold == pytest.approx(expected[0])
    assert k == expected[1]
    assert isinstance(k, int)


@pytest.mark.parametrize("body", [
    {"confidence_threshold": "high"},
    {"confidence_threshold": True},
    {"confidence_threshold": [0.1]},
    {"confidence_threshold": float("nan")},
    {"max_results": "many"},
    {"max_results": False},
    {"max_results": {"n": 3}},
])
def test_clamp_rejects_non_numbers(body):
    with pytest.raises(ValidationError):
        clamp_options(body)
