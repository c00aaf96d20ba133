"""Row store for rooms, players, rounds, guesses and the leaderboard.

Every operation returns plain row dicts (column names as keys) or raises one
of the store errors. Writes commit immediately; there are no multi-row
transactions. After each commit the captured row changes for rooms, players
and guesses are published to the channel, the same way a hosted database
streams its change feed.
"""

import functools
import logging
from typing import List, Optional

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError

from geoduel import db
from geoduel.models import (
    ROOM_STATUS_ORDER, ROOM_WAITING, Guess, LeaderboardEntry, Player, Room, Round,
    generate_room_code,
)
from .channel import DELETE, GUESSES, INSERT, PLAYERS, ROOMS, UPDATE, RowChange
from .errors import InvalidInput, RowNotFound, StoreUnavailable, WriteRejected
from .scoring import MAX_DISTANCE_KM, MAX_SCORE_PER_ROUND, valid_coordinate

logger = logging.getLogger(__name__)

_ROW_CHANGES_KEY = 'geoduel.row_changes'


def _room_scope(obj) -> Optional[int]:
    if isinstance(obj, Room):
        return obj.id
    if isinstance(obj, Player):
        return obj.room_id
    return None


@event.listens_for(db.session, 'after_flush')
def _capture_row_changes(session, flush_context):
    captured = session.info.setdefault(_ROW_CHANGES_KEY, [])
    for kind, objs in ((INSERT, session.new), (UPDATE, session.dirty), (DELETE, session.deleted)):
        for obj in objs:
            if not isinstance(obj, (Room, Player, Guess)):
                continue
            if kind == UPDATE and not session.is_modified(obj):
                continue
            captured.append(RowChange(obj.__tablename__, kind, obj.to_dict(), _room_scope(obj)))


@event.listens_for(db.session, 'after_rollback')
def _discard_row_changes(session):
    session.info.pop(_ROW_CHANGES_KEY, None)


def _store_call(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        if not self.enabled:
            raise StoreUnavailable('Multiplayer store is not configured; solo mode only')
        try:
            return fn(self, *args, **kwargs)
        except OperationalError as exc:
            db.session.rollback()
            self.log.warning(f"[store-unavailable] op={fn.__name__} error={exc.orig}")
            raise StoreUnavailable('Multiplayer store is unreachable; solo mode only') from exc
    return wrapper


class RoomStore:
    def __init__(self, channel=None, enabled: bool = True, log=None):
        self.channel = channel
        self.enabled = enabled
        self.log = log or logger

    def _commit(self, op: str) -> None:
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            self.log.warning(f"[store-reject] op={op} error={exc.orig}")
            raise WriteRejected(f'Could not save ({op}); please try again') from exc
        changes = db.session.info.pop(_ROW_CHANGES_KEY, [])
        if self.channel is not None and changes:
            self.channel.publish_row_changes(changes)

    # ---- rooms ----

    @_store_call
    def create_room(self, host_id: str, host_name: str, max_rounds: int, time_limit: int) -> dict:
        if max_rounds < 1 or time_limit <= 0:
            raise InvalidInput('max_rounds must be >= 1 and time_limit > 0')
        room = Room(
            code=generate_room_code(),
            host_id=host_id,
            status=ROOM_WAITING,
            current_round=0,
            max_rounds=max_rounds,
            time_limit=time_limit,
        )
        db.session.add(room)
        self._commit('create_room')
        self.log.info(f"[room-create] room={room.id} code={room.code} host={host_id}")
        data = room.to_dict()
        self.upsert_player(data['id'], host_id, host_name, is_host=True)
        return data

    @_store_call
    def get_room(self, room_id: int) -> dict:
        room = Room.query.filter_by(id=room_id).first()
        if not room:
            raise RowNotFound('Room not found')
        return room.to_dict()

    @_store_call
    def get_room_by_code(self, code: str) -> dict:
        room = Room.query.filter_by(code=(code or '').strip().upper()).first()
        if not room:
            raise RowNotFound('Room not found')
        return room.to_dict()

    @_store_call
    def update_room_status(self, room_id: int, status: str, current_round: Optional[int] = None) -> dict:
        if status not in ROOM_STATUS_ORDER:
            raise InvalidInput(f'Unknown room status: {status}')
        room = Room.query.filter_by(id=room_id).first()
        if not room:
            raise RowNotFound('Room not found')
        if ROOM_STATUS_ORDER[status] < ROOM_STATUS_ORDER[room.status]:
            raise WriteRejected(f'Room status cannot go from {room.status} to {status}')
        if current_round is not None:
            if not 0 <= current_round < room.max_rounds:
                raise WriteRejected(f'Round {current_round} is outside 0..{room.max_rounds - 1}')
            if current_round < room.current_round:
                raise WriteRejected(f'Round {current_round} is behind round {room.current_round}')
            room.current_round = current_round
        room.status = status
        db.session.add(room)
        self._commit('update_room_status')
        return room.to_dict()

    # ---- players ----

    @_store_call
    def upsert_player(self, room_id: int, player_id: str, name: str, is_host: bool = False) -> dict:
        if is_host:
            other = Player.query.filter(
                Player.room_id == room_id, Player.is_host.is_(True), Player.id != player_id
            ).first()
            if other:
                raise WriteRejected('Room already has a host')
        player = Player.query.filter_by(id=player_id).first()
        if player is None:
            player = Player(id=player_id)
        player.room_id = room_id
        player.name = name
        player.score = 0
        player.is_host = is_host
        db.session.add(player)
        self._commit('upsert_player')
        return player.to_dict()

    @_store_call
    def list_players(self, room_id: int) -> List[dict]:
        players = Player.query.filter_by(room_id=room_id).order_by(Player.score.desc()).all()
        return [p.to_dict() for p in players]

    @_store_call
    def increment_player_score(self, player_id: str, delta: int) -> int:
        """Add ``delta`` to a player's score.

        Read-then-write, not atomic: two concurrent increments for the same
        player can lose one update. Only the owning client writes its score.
        """
        if delta < 0:
            raise WriteRejected('Score increments cannot be negative')
        player = Player.query.filter_by(id=player_id).first()
        if not player:
            raise RowNotFound('Player not found')
        current = player.score
        player.score = current + delta
        db.session.add(player)
        self._commit('increment_player_score')
        return player.score

    @_store_call
    def remove_player(self, player_id: str) -> None:
        player = Player.query.filter_by(id=player_id).first()
        if not player:
            return
        db.session.delete(player)
        self._commit('remove_player')

    # ---- rounds ----

    @_store_call
    def create_round(self, room_id: int, round_number: int, lat: float, lng: float) -> dict:
        if not valid_coordinate(lat, lng):
            raise InvalidInput('Round target must be a valid coordinate')
        existing = Round.query.filter_by(room_id=room_id, round_number=round_number).first()
        if existing:
            if (existing.lat, existing.lng) != (float(lat), float(lng)):
                raise WriteRejected(f'Round {round_number} already has a different target')
            return existing.to_dict()
        rnd = Round(room_id=room_id, round_number=round_number, lat=lat, lng=lng)
        db.session.add(rnd)
        self._commit('create_round')
        return rnd.to_dict()

    @_store_call
    def get_round(self, room_id: int, round_number: int) -> dict:
        rnd = Round.query.filter_by(room_id=room_id, round_number=round_number).first()
        if not rnd:
            raise RowNotFound(f'Round {round_number} not found')
        return rnd.to_dict()

    # ---- guesses ----

    @_store_call
    def upsert_guess(self, round_id: int, player_id: str, guess_lat: Optional[float],
                     guess_lng: Optional[float], distance: float, score: int) -> dict:
        if not 0 <= distance <= MAX_DISTANCE_KM or not 0 <= score <= MAX_SCORE_PER_ROUND:
            raise InvalidInput('Guess distance or score out of range')
        if (guess_lat is None) != (guess_lng is None):
            raise InvalidInput('Guess needs both coordinates or neither')
        if guess_lat is not None and not valid_coordinate(guess_lat, guess_lng):
            raise InvalidInput('Guess must be a valid coordinate')
        guess = Guess.query.filter_by(round_id=round_id, player_id=player_id).first()
        if guess is None:
            guess = Guess(round_id=round_id, player_id=player_id)
        guess.guess_lat = guess_lat
        guess.guess_lng = guess_lng
        guess.distance = distance
        guess.score = score
        db.session.add(guess)
        self._commit('upsert_guess')
        return guess.to_dict()

    @_store_call
    def list_guesses(self, round_id: int) -> List[dict]:
        rows = (
            db.session.query(Guess, Player.name)
            .outerjoin(Player, Guess.player_id == Player.id)
            .filter(Guess.round_id == round_id)
            .order_by(Guess.score.desc())
            .all()
        )
        out = []
        for guess, name in rows:
            data = guess.to_dict()
            data['player_name'] = name or '?'
            out.append(data)
        return out

    @_store_call
    def count_guesses(self, round_id: int) -> int:
        return Guess.query.filter_by(round_id=round_id).count()

    # ---- leaderboard ----

    @_store_call
    def append_leaderboard_entry(self, player_name: str, score: int, rounds: int) -> dict:
        entry = LeaderboardEntry(player_name=player_name, score=score, rounds=rounds)
        db.session.add(entry)
        self._commit('append_leaderboard_entry')
        return entry.to_dict()

    @_store_call
    def list_leaderboard(self, limit: int = 20) -> List[dict]:
        entries = (
            LeaderboardEntry.query
            .order_by(LeaderboardEntry.score.desc(), LeaderboardEntry.id.asc())
            .limit(limit)
            .all()
        )
        return [e.to_dict() for e in entries]
