import math
import random

import pytest

from geoduel.services.geo.errors import InvalidInput
from geoduel.services.geo.scoring import (
    MAX_DISTANCE_KM, MAX_SCORE_PER_ROUND, distance_km, evaluate_guess, format_distance, no_guess_distance,
    score,
)


def test_score_is_max_within_perfect_radius():
    assert score(0) == MAX_SCORE_PER_ROUND
    assert score(0.05) == MAX_SCORE_PER_ROUND
    assert score(0.1) == MAX_SCORE_PER_ROUND


def test_score_decreases_with_distance_and_stays_bounded():
    distances = [0.2, 1, 10, 250, 1000, 2000, 5000, 12000, 20000, 40000]
    scores = [score(d) for d in distances]
    assert scores == sorted(scores, reverse=True)
    assert all(0 <= s <= MAX_SCORE_PER_ROUND for s in scores)
    rng = random.Random(7)
    for _ in range(200):
        d1, d2 = sorted(rng.uniform(0.11, 30000) for _ in range(2))
        assert score(d1) >= score(d2)


def test_score_at_decay_distance():
    assert score(2000) == round(5000 * math.exp(-1)) == 1839


def test_distance_zero_and_symmetric():
    assert distance_km(48.8584, 2.2945, 48.8584, 2.2945) == 0
    a = (50.4501, 30.5234)
    b = (-33.8568, 151.2153)
    assert distance_km(*a, *b) == pytest.approx(distance_km(*b, *a))


def test_distance_known_pair():
    # Paris -> London is roughly 344 km
    assert distance_km(48.8566, 2.3522, 51.5074, -0.1278) == pytest.approx(343.5, abs=3)


def test_distance_rejects_invalid_coordinates():
    with pytest.raises(InvalidInput):
        distance_km(91, 0, 0, 0)
    with pytest.raises(InvalidInput):
        distance_km(0, 0, 0, 181)


def test_evaluate_guess_without_coordinates_is_max_distance():
    outcome = evaluate_guess(10, 10)
    assert outcome.distance_km == MAX_DISTANCE_KM == no_guess_distance()
    assert outcome.score == 0
    assert not outcome.has_guess


def test_evaluate_exact_guess():
    outcome = evaluate_guess(35.6586, 139.7454, 35.6586, 139.7454)
    assert outcome.distance_km == 0
    assert outcome.score == MAX_SCORE_PER_ROUND


def test_format_distance():
    assert format_distance(0.85) == '850 m'
    assert format_distance(12.34) == '12.3 km'
    assert format_distance(1234.4) == '1234 km'
