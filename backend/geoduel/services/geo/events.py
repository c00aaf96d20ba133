"""Host-to-follower broadcast events.

The channel carries ``{"event": NAME, "data": {...}}`` with camelCase keys.
Inside the process every event is one of four frozen dataclasses; anything
else fails to decode.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from .errors import InvalidInput
from .locations import Location

SESSION_STARTING = 'SESSION_STARTING'
ROUND_RESULTS = 'ROUND_RESULTS'
NEXT_ROUND = 'NEXT_ROUND'
SESSION_OVER = 'SESSION_OVER'


@dataclass(frozen=True)
class GuessResult:
    player_id: str
    player_name: str
    guess_lat: Optional[float]
    guess_lng: Optional[float]
    distance_km: float
    score: int

    def to_dict(self) -> dict:
        return {
            'playerId': self.player_id,
            'playerName': self.player_name,
            'guessLat': self.guess_lat,
            'guessLng': self.guess_lng,
            'distanceKm': self.distance_km,
            'score': self.score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GuessResult':
        return cls(
            player_id=data['playerId'],
            player_name=data.get('playerName') or '?',
            guess_lat=data.get('guessLat'),
            guess_lng=data.get('guessLng'),
            distance_km=float(data['distanceKm']),
            score=int(data['score']),
        )


@dataclass(frozen=True)
class Standing:
    name: str
    score: int
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'score': self.score}

    @classmethod
    def from_dict(cls, data: dict) -> 'Standing':
        return cls(name=data['name'], score=int(data['score']), id=data.get('id'))


def rank_standings(standings) -> Tuple[Standing, ...]:
    return tuple(sorted(standings, key=lambda s: s.score, reverse=True))


@dataclass(frozen=True)
class SessionStarting:
    locations: Tuple[Location, ...]


@dataclass(frozen=True)
class RoundResults:
    round_index: int
    target_lat: float
    target_lng: float
    target_location_label: str = ''
    guesses: Tuple[GuessResult, ...] = field(default_factory=tuple)

    def ranked(self) -> Tuple[GuessResult, ...]:
        # sorted() is stable, so ties keep submission order
        return tuple(sorted(self.guesses, key=lambda g: g.score, reverse=True))

    def to_dict(self) -> dict:
        return {
            'roundIndex': self.round_index,
            'targetLat': self.target_lat,
            'targetLng': self.target_lng,
            'targetLocationLabel': self.target_location_label,
            'guesses': [g.to_dict() for g in self.ranked()],
        }


@dataclass(frozen=True)
class NextRound:
    round_index: int


@dataclass(frozen=True)
class SessionOver:
    players: Tuple[Standing, ...]


GameEvent = Union[SessionStarting, RoundResults, NextRound, SessionOver]


def encode_event(event: GameEvent) -> dict:
    if isinstance(event, SessionStarting):
        return {'event': SESSION_STARTING, 'data': {'locations': [loc.to_dict() for loc in event.locations]}}
    if isinstance(event, RoundResults):
        return {'event': ROUND_RESULTS, 'data': event.to_dict()}
    if isinstance(event, NextRound):
        return {'event': NEXT_ROUND, 'data': {'roundIndex': event.round_index}}
    if isinstance(event, SessionOver):
        players = rank_standings(event.players)
        return {'event': SESSION_OVER, 'data': {'players': [p.to_dict() for p in players]}}
    raise TypeError(f'Not a game event: {event!r}')


def decode_event(payload: dict) -> GameEvent:
    try:
        name = payload['event']
        data = payload.get('data') or {}
        if name == SESSION_STARTING:
            return SessionStarting(tuple(Location.from_dict(d) for d in data['locations']))
        if name == ROUND_RESULTS:
            return RoundResults(
                round_index=int(data['roundIndex']),
                target_lat=float(data['targetLat']),
                target_lng=float(data['targetLng']),
                target_location_label=data.get('targetLocationLabel') or '',
                guesses=tuple(GuessResult.from_dict(g) for g in data.get('guesses') or []),
            )
        if name == NEXT_ROUND:
            return NextRound(int(data['roundIndex']))
        if name == SESSION_OVER:
            return SessionOver(rank_standings(Standing.from_dict(p) for p in data['players']))
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise InvalidInput(f'Malformed game event: {payload!r}') from exc
    raise InvalidInput(f'Unknown game event: {name!r}')
