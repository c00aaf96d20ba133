import math
from typing import NamedTuple, Optional

from .errors import InvalidInput

EARTH_RADIUS_KM = 6371.0
MAX_SCORE_PER_ROUND = 5000
MAX_DISTANCE_KM = 20000.0
PERFECT_RADIUS_KM = 0.1
SCORE_DECAY_KM = 2000.0


class GuessOutcome(NamedTuple):
    guess_lat: Optional[float]
    guess_lng: Optional[float]
    distance_km: float
    score: int

    @property
    def has_guess(self) -> bool:
        return self.guess_lat is not None and self.guess_lng is not None

    def to_dict(self) -> dict:
        return {
            'guessLat': self.guess_lat,
            'guessLng': self.guess_lng,
            'distanceKm': self.distance_km,
            'score': self.score,
        }


def no_guess_distance() -> float:
    return MAX_DISTANCE_KM


def valid_coordinate(lat, lng) -> bool:
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def distance_km(target_lat: float, target_lng: float, guess_lat: float, guess_lng: float) -> float:
    """Great-circle distance in kilometres (haversine)."""
    if not (valid_coordinate(target_lat, target_lng) and valid_coordinate(guess_lat, guess_lng)):
        raise InvalidInput('Coordinates must satisfy |lat| <= 90 and |lng| <= 180')
    phi1 = math.radians(target_lat)
    phi2 = math.radians(guess_lat)
    d_phi = math.radians(guess_lat - target_lat)
    d_lambda = math.radians(guess_lng - target_lng)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def score(distance: float) -> int:
    """Points for a guess ``distance`` km away, in [0, MAX_SCORE_PER_ROUND]."""
    if distance <= PERFECT_RADIUS_KM:
        return MAX_SCORE_PER_ROUND
    # Half-up rounding, not banker's rounding
    return max(0, int(math.floor(MAX_SCORE_PER_ROUND * math.exp(-distance / SCORE_DECAY_KM) + 0.5)))


def evaluate_guess(target_lat: float, target_lng: float,
                   guess_lat: Optional[float] = None, guess_lng: Optional[float] = None) -> GuessOutcome:
    """Score a guess; a missing coordinate counts as the max-distance sentinel."""
    if guess_lat is None or guess_lng is None:
        return GuessOutcome(None, None, no_guess_distance(), 0)
    d = min(distance_km(target_lat, target_lng, guess_lat, guess_lng), MAX_DISTANCE_KM)
    return GuessOutcome(float(guess_lat), float(guess_lng), d, score(d))


def format_distance(km: float) -> str:
    # Presentation helper for UI collaborators
    if km < 1:
        return f'{round(km * 1000)} m'
    if km < 100:
        return f'{km:.1f} km'
    return f'{round(km)} km'
