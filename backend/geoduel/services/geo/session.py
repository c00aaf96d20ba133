"""Per-client session state.

``SessionContext`` is a frozen value owned by one coordinator. Each
transition below takes a context and returns a new one, raising
``InvalidTransition`` when the move is not allowed from the current phase.
The UI only ever sees ``ClientSessionView`` snapshots.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

from .errors import InvalidTransition
from .events import RoundResults, Standing
from .locations import Location
from .scoring import GuessOutcome


class Phase(str, Enum):
    WAITING = 'waiting'
    ROUND_ACTIVE = 'round_active'
    ROUND_RESULTS = 'round_results'
    FINISHED = 'finished'
    LEFT = 'left'


_CLOSED = (Phase.FINISHED, Phase.LEFT)


@dataclass(frozen=True)
class SessionContext:
    player_id: str
    player_name: str
    is_solo: bool = False
    is_host: bool = False
    room: Optional[dict] = None
    max_rounds: int = 0
    time_limit: int = 0
    players: Tuple[dict, ...] = ()
    locations: Tuple[Location, ...] = ()
    phase: Phase = Phase.WAITING
    round_index: int = -1
    round_id: Optional[int] = None
    target: Optional[Location] = None
    target_ready: bool = False
    guess_confirmed: bool = False
    time_left: int = 0
    score: int = 0
    round_scores: Tuple[GuessOutcome, ...] = ()
    guess_count: int = 0
    results: Optional[RoundResults] = None
    standings: Tuple[Standing, ...] = ()
    leaderboard_recorded: bool = False
    notice: Optional[str] = None

    @property
    def room_id(self) -> Optional[int]:
        return self.room['id'] if self.room else None

    @property
    def is_last_round(self) -> bool:
        return self.round_index >= self.max_rounds - 1

    def snapshot(self) -> 'ClientSessionView':
        reveal = self.phase in (Phase.ROUND_RESULTS, Phase.FINISHED)
        target = self.target
        return ClientSessionView(
            player_id=self.player_id,
            player_name=self.player_name,
            is_solo=self.is_solo,
            is_host=self.is_host,
            room_code=self.room['code'] if self.room else None,
            room_id=self.room_id,
            phase=self.phase.value,
            round_index=self.round_index,
            max_rounds=self.max_rounds,
            time_limit=self.time_limit,
            time_left=self.time_left,
            round_ready=self.target_ready,
            location_img=target.img if target else None,
            location_hint=target.hint if target else None,
            target_lat=target.lat if (target and reveal) else None,
            target_lng=target.lng if (target and reveal) else None,
            guess_confirmed=self.guess_confirmed,
            guess_count=self.guess_count,
            score=self.score,
            round_scores=self.round_scores,
            players=self.players,
            results=self.results,
            standings=self.standings,
            notice=self.notice,
        )


@dataclass(frozen=True)
class ClientSessionView:
    player_id: str
    player_name: str
    is_solo: bool
    is_host: bool
    room_code: Optional[str]
    room_id: Optional[int]
    phase: str
    round_index: int
    max_rounds: int
    time_limit: int
    time_left: int
    round_ready: bool
    location_img: Optional[str]
    location_hint: Optional[str]
    target_lat: Optional[float]
    target_lng: Optional[float]
    guess_confirmed: bool
    guess_count: int
    score: int
    round_scores: Tuple[GuessOutcome, ...] = field(default_factory=tuple)
    players: Tuple[dict, ...] = field(default_factory=tuple)
    results: Optional[RoundResults] = None
    standings: Tuple[Standing, ...] = field(default_factory=tuple)
    notice: Optional[str] = None

    @property
    def my_rank(self) -> Optional[int]:
        for idx, standing in enumerate(self.standings):
            if standing.id == self.player_id:
                return idx + 1
        return 1 if self.standings else None

    def to_dict(self) -> dict:
        return {
            'playerId': self.player_id,
            'playerName': self.player_name,
            'isSolo': self.is_solo,
            'isHost': self.is_host,
            'roomCode': self.room_code,
            'roomId': self.room_id,
            'phase': self.phase,
            'roundIndex': self.round_index,
            'maxRounds': self.max_rounds,
            'timeLimit': self.time_limit,
            'timeLeft': self.time_left,
            'roundReady': self.round_ready,
            'locationImg': self.location_img,
            'locationHint': self.location_hint,
            'targetLat': self.target_lat,
            'targetLng': self.target_lng,
            'guessConfirmed': self.guess_confirmed,
            'guessCount': self.guess_count,
            'score': self.score,
            'roundScores': [rs.to_dict() for rs in self.round_scores],
            'players': list(self.players),
            'results': self.results.to_dict() if self.results else None,
            'standings': [s.to_dict() for s in self.standings],
            'myRank': self.my_rank,
            'notice': self.notice,
        }


def _require(ctx: SessionContext, allowed, action: str) -> None:
    if ctx.phase not in allowed:
        raise InvalidTransition(f'Cannot {action} while {ctx.phase.value}')


def with_players(ctx: SessionContext, players) -> SessionContext:
    return replace(ctx, players=tuple(players))


def with_notice(ctx: SessionContext, notice: Optional[str]) -> SessionContext:
    return replace(ctx, notice=notice)


def begin_session(ctx: SessionContext, locations) -> SessionContext:
    _require(ctx, (Phase.WAITING,), 'start a session')
    return replace(ctx, locations=tuple(locations), score=0, round_scores=(), round_index=-1)


def adopt_locations(ctx: SessionContext, locations) -> SessionContext:
    """Late SESSION_STARTING: keep the sequence without touching progress."""
    if ctx.locations:
        return ctx
    locations = tuple(locations)
    target = ctx.target
    if 0 <= ctx.round_index < len(locations):
        known = locations[ctx.round_index]
        # A target already read from the store keeps its coordinates
        target = replace(known, lat=target.lat, lng=target.lng) if target else known
    return replace(ctx, locations=locations, target=target)


def enter_round(ctx: SessionContext, round_index: int) -> SessionContext:
    if ctx.phase in _CLOSED:
        raise InvalidTransition(f'Cannot start a round while {ctx.phase.value}')
    if not 0 <= round_index < ctx.max_rounds:
        raise InvalidTransition(f'Round {round_index} is outside 0..{ctx.max_rounds - 1}')
    if round_index <= ctx.round_index:
        raise InvalidTransition(f'Round {round_index} already started')
    target = ctx.locations[round_index] if round_index < len(ctx.locations) else None
    return replace(
        ctx,
        phase=Phase.ROUND_ACTIVE,
        round_index=round_index,
        round_id=None,
        target=target,
        target_ready=False,
        guess_confirmed=False,
        time_left=ctx.time_limit,
        guess_count=0,
        results=None,
    )


def resolve_round(ctx: SessionContext, round_id: Optional[int], lat: float, lng: float) -> SessionContext:
    """The round's persisted target is readable; it wins over the local copy."""
    _require(ctx, (Phase.ROUND_ACTIVE,), 'resolve a round')
    base = ctx.target or Location(lat, lng)
    return replace(ctx, round_id=round_id, target=replace(base, lat=lat, lng=lng), target_ready=True)


def tick(ctx: SessionContext) -> SessionContext:
    _require(ctx, (Phase.ROUND_ACTIVE,), 'count down')
    return replace(ctx, time_left=max(0, ctx.time_left - 1))


def record_guess(ctx: SessionContext, outcome: GuessOutcome) -> SessionContext:
    _require(ctx, (Phase.ROUND_ACTIVE,), 'guess')
    if ctx.guess_confirmed:
        raise InvalidTransition('Guess already confirmed for this round')
    return replace(
        ctx,
        guess_confirmed=True,
        score=ctx.score + outcome.score,
        round_scores=ctx.round_scores + (outcome,),
    )


def show_results(ctx: SessionContext, results: RoundResults) -> SessionContext:
    _require(ctx, (Phase.ROUND_ACTIVE,), 'show results')
    if results.round_index != ctx.round_index:
        raise InvalidTransition(
            f'Results for round {results.round_index} while in round {ctx.round_index}'
        )
    target = ctx.target or Location(results.target_lat, results.target_lng)
    return replace(
        ctx,
        phase=Phase.ROUND_RESULTS,
        results=results,
        target=replace(target, lat=results.target_lat, lng=results.target_lng),
        time_left=0,
    )


def replace_results(ctx: SessionContext, results: RoundResults) -> SessionContext:
    """Host results for the round already on screen supersede a local read."""
    _require(ctx, (Phase.ROUND_RESULTS,), 'replace results')
    if results.round_index != ctx.round_index:
        raise InvalidTransition(
            f'Results for round {results.round_index} while showing round {ctx.round_index}'
        )
    return replace(
        ctx,
        results=results,
        target=replace(ctx.target, lat=results.target_lat, lng=results.target_lng),
    )


def finish(ctx: SessionContext, standings) -> SessionContext:
    if ctx.phase in _CLOSED:
        raise InvalidTransition(f'Session already {ctx.phase.value}')
    return replace(ctx, phase=Phase.FINISHED, standings=tuple(standings), time_left=0)


def mark_leaderboard_recorded(ctx: SessionContext) -> SessionContext:
    return replace(ctx, leaderboard_recorded=True)


def leave(ctx: SessionContext) -> SessionContext:
    return replace(ctx, phase=Phase.LEFT, time_left=0)
