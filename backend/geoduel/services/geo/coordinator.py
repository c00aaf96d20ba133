"""Round/result/finish state machine for one client instance.

The host instance authors every round-advancing change: it generates the
location sequence, creates round rows, aggregates results and ends the
session. Followers only react, to host broadcasts and to row changes on the
room, its players and guesses. Any broadcast-driven transition can also be
reached from a row change or from ``resync``, since the channel may drop
messages. There is no host failover; if the host goes away followers stay
where they are.

All entry points and timer callbacks run under one re-entrant lock, so a
coordinator behaves like a single-threaded event loop.
"""

import functools
import logging
from dataclasses import replace
from threading import RLock
from typing import Callable, Optional

from geoduel.models import ROOM_CODE_LENGTH, ROOM_FINISHED, ROOM_PLAYING, ROOM_WAITING
from . import session as S
from .channel import GUESSES, PLAYERS, ROOMS, RowChange
from .errors import (
    GeoDuelError, InvalidInput, InvalidTransition, NotHost, RoundNotVisible, RowNotFound,
    StoreUnavailable,
)
from .events import (
    GameEvent, GuessResult, NextRound, RoundResults, SessionOver, SessionStarting, Standing,
    rank_standings,
)
from .locations import CATALOG, get_random_locations
from .scoring import GuessOutcome, evaluate_guess, valid_coordinate
from .session import ClientSessionView, Phase, SessionContext

logger = logging.getLogger(__name__)

DEFAULTS = {
    'GEO_DEFAULT_ROUNDS': 5,
    'GEO_DEFAULT_TIME_LIMIT': 90,
    'GEO_MAX_ROUNDS': 20,
    'GEO_START_BROADCAST_DELAY_SEC': 0.3,
    'GEO_ROUND_SETTLE_SEC': 0.6,
    'GEO_ROUND_RETRY_BASE_SEC': 0.25,
    'GEO_ROUND_RETRY_MAX_SEC': 2.0,
    'GEO_ROUND_VISIBILITY_TIMEOUT_SEC': 6.0,
    'GEO_RESULTS_GRACE_SEC': 4.0,
}


def _serialized(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return fn(self, *args, **kwargs)
    return wrapper


class SessionCoordinator:
    def __init__(self, player_id: str, player_name: str, store, channel, scheduler,
                 settings=None, on_view: Optional[Callable[[ClientSessionView], None]] = None,
                 log=None, rng=None):
        self._ctx = SessionContext(player_id=player_id, player_name=player_name)
        self._store = store
        self._channel = channel
        self._scheduler = scheduler
        self._settings = settings or {}
        self._on_view = on_view
        self._log = log or logger
        self._rng = rng
        self._lock = RLock()
        self._sub = None
        self._timer = None

    # ---- accessors ----

    @property
    def context(self) -> SessionContext:
        return self._ctx

    @property
    def view(self) -> ClientSessionView:
        return self._ctx.snapshot()

    @property
    def player_id(self) -> str:
        return self._ctx.player_id

    def _setting(self, key):
        return self._settings.get(key, DEFAULTS[key])

    def _set(self, ctx: SessionContext) -> None:
        self._ctx = ctx
        if self._on_view is None:
            return
        try:
            self._on_view(ctx.snapshot())
        except Exception:
            self._log.exception(f"[view-callback-error] player={ctx.player_id}")

    def _notice(self, message: Optional[str]) -> None:
        self._set(S.with_notice(self._ctx, message))

    def _schedule(self, delay: float, fn, *args):
        return self._scheduler.call_later(delay, self._run_locked, fn, *args)

    def _run_locked(self, fn, *args) -> None:
        with self._lock:
            if self._ctx.phase == Phase.LEFT:
                return
            fn(*args)

    def _require_fresh(self) -> None:
        if self._ctx.room is not None or self._ctx.is_solo or self._ctx.phase != Phase.WAITING:
            raise InvalidTransition('This client already belongs to a session')

    def _require_host(self, action: str) -> None:
        if not self._ctx.is_host:
            raise NotHost(f'Only the host can {action}')

    def _validate_settings(self, rounds, time_limit):
        rounds = int(rounds or self._setting('GEO_DEFAULT_ROUNDS'))
        time_limit = int(time_limit or self._setting('GEO_DEFAULT_TIME_LIMIT'))
        max_rounds = min(int(self._setting('GEO_MAX_ROUNDS')), len(CATALOG))
        if not 1 <= rounds <= max_rounds:
            raise InvalidInput(f'Rounds must be between 1 and {max_rounds}')
        if time_limit <= 0:
            raise InvalidInput('Time limit must be positive')
        return rounds, time_limit

    # ---- session setup ----

    @_serialized
    def create_room(self, max_rounds: Optional[int] = None, time_limit: Optional[int] = None) -> dict:
        self._require_fresh()
        max_rounds, time_limit = self._validate_settings(max_rounds, time_limit)
        ctx = self._ctx
        room = self._store.create_room(ctx.player_id, ctx.player_name, max_rounds, time_limit)
        host = {'id': ctx.player_id, 'room_id': room['id'], 'name': ctx.player_name, 'score': 0, 'is_host': True}
        self._sub = self._channel.subscribe(room['id'], self)
        self._set(replace(
            ctx, is_host=True, room=room, max_rounds=room['max_rounds'],
            time_limit=room['time_limit'], players=(host,), notice=None,
        ))
        self._log.info(f"[lobby-create] room={room['id']} code={room['code']} host={ctx.player_id}")
        return room

    @_serialized
    def join_room(self, code: str) -> dict:
        self._require_fresh()
        code = (code or '').strip().upper()
        if len(code) != ROOM_CODE_LENGTH:
            raise InvalidInput('Enter the 6-character room code')
        room = self._store.get_room_by_code(code)
        if room['status'] != ROOM_WAITING:
            raise InvalidTransition('The game has already started')
        ctx = self._ctx
        self._store.upsert_player(room['id'], ctx.player_id, ctx.player_name, is_host=False)
        self._sub = self._channel.subscribe(room['id'], self)
        players = self._store.list_players(room['id'])
        self._set(replace(
            ctx, is_host=False, room=room, max_rounds=room['max_rounds'],
            time_limit=room['time_limit'], players=tuple(players), notice=None,
        ))
        self._log.info(f"[lobby-join] room={room['id']} code={room['code']} player={ctx.player_id}")
        return room

    @_serialized
    def start_solo(self, rounds: Optional[int] = None, time_limit: Optional[int] = None) -> ClientSessionView:
        self._require_fresh()
        rounds, time_limit = self._validate_settings(rounds, time_limit)
        ctx = self._ctx
        me = {'id': ctx.player_id, 'room_id': None, 'name': ctx.player_name, 'score': 0, 'is_host': True}
        ctx = replace(ctx, is_solo=True, is_host=True, max_rounds=rounds, time_limit=time_limit, players=(me,))
        self._set(S.begin_session(ctx, get_random_locations(rounds, self._rng)))
        self._log.info(f"[solo-start] player={ctx.player_id} rounds={rounds}")
        self._start_round(0)
        return self.view

    @_serialized
    def start_session(self) -> None:
        """Host: broadcast the location sequence, then persist room status."""
        self._require_host('start the game')
        if self._ctx.phase != Phase.WAITING or self._ctx.locations or self._ctx.is_solo:
            raise InvalidTransition('The session has already started')
        locations = get_random_locations(self._ctx.max_rounds, self._rng)
        self._set(S.begin_session(self._ctx, locations))
        self._sub.broadcast(SessionStarting(tuple(locations)))
        self._log.info(f"[session-start] room={self._ctx.room_id} rounds={len(locations)}")
        self._schedule(self._setting('GEO_START_BROADCAST_DELAY_SEC'), self._persist_start)

    def _persist_start(self) -> None:
        if self._ctx.phase != Phase.WAITING:
            return
        try:
            room = self._store.update_room_status(self._ctx.room_id, ROOM_PLAYING, 0)
        except GeoDuelError as exc:
            self._log.warning(f"[session-start-failed] room={self._ctx.room_id} error={exc.message}")
            self._notice(exc.message)
            return
        self._set(replace(self._ctx, room=room))
        self._start_round(0)

    # ---- rounds ----

    def _start_round(self, round_index: int) -> None:
        self._cancel_timer()
        ctx = S.enter_round(self._ctx, round_index)
        self._set(S.with_notice(ctx, None))
        self._log.info(
            f"[round-start] room={ctx.room_id} round={round_index} host={ctx.is_host} solo={ctx.is_solo}"
        )
        if ctx.is_solo:
            self._set(S.resolve_round(ctx, None, ctx.target.lat, ctx.target.lng))
            self._start_timer()
        elif ctx.is_host:
            try:
                rnd = self._store.create_round(ctx.room_id, round_index, ctx.target.lat, ctx.target.lng)
            except GeoDuelError as exc:
                self._log.warning(f"[round-create-failed] room={ctx.room_id} round={round_index} error={exc.message}")
                self._notice(exc.message)
                return
            self._set(S.resolve_round(self._ctx, rnd['id'], rnd['lat'], rnd['lng']))
            self._start_timer()
        else:
            settle = self._setting('GEO_ROUND_SETTLE_SEC')
            self._schedule(settle, self._reconcile_round, round_index, settle, 0)

    def _reconcile_round(self, round_index: int, waited: float, attempt: int) -> None:
        """Read the host's round row, retrying with backoff until it is visible."""
        ctx = self._ctx
        if ctx.phase != Phase.ROUND_ACTIVE or ctx.round_index != round_index or ctx.target_ready:
            return
        try:
            rnd = self._store.get_round(ctx.room_id, round_index)
        except RowNotFound:
            timeout = self._setting('GEO_ROUND_VISIBILITY_TIMEOUT_SEC')
            if waited >= timeout:
                err = RoundNotVisible(ctx.room_id, round_index, waited)
                self._log.warning(f"[round-not-visible] room={ctx.room_id} round={round_index} waited={waited:.2f}s")
                self._notice(err.message)
                return
            delay = min(
                self._setting('GEO_ROUND_RETRY_BASE_SEC') * (2 ** attempt),
                self._setting('GEO_ROUND_RETRY_MAX_SEC'),
                timeout - waited,
            )
            self._log.debug(f"[round-retry] room={ctx.room_id} round={round_index} attempt={attempt + 1} delay={delay:.2f}s")
            self._schedule(delay, self._reconcile_round, round_index, waited + delay, attempt + 1)
            return
        except StoreUnavailable as exc:
            self._notice(exc.message)
            return
        self._set(S.resolve_round(ctx, rnd['id'], rnd['lat'], rnd['lng']))
        self._start_timer()
        self._refresh_guess_count()

    def _start_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_every(1.0, self._run_locked, self._on_tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_tick(self) -> None:
        ctx = self._ctx
        if ctx.phase != Phase.ROUND_ACTIVE or ctx.guess_confirmed:
            self._cancel_timer()
            return
        ctx = S.tick(ctx)
        self._set(ctx)
        if ctx.time_left <= 0:
            self._cancel_timer()
            self._log.info(f"[timer-expired] room={ctx.room_id} round={ctx.round_index} player={ctx.player_id}")
            self._submit_guess(None, None)

    # ---- guesses ----

    @_serialized
    def confirm_guess(self, lat: Optional[float] = None, lng: Optional[float] = None) -> GuessOutcome:
        """Confirm this round's guess; no coordinate means no guess."""
        if (lat is None) != (lng is None):
            raise InvalidInput('A guess needs both lat and lng')
        if lat is not None and not valid_coordinate(lat, lng):
            raise InvalidInput('Guess must satisfy |lat| <= 90 and |lng| <= 180')
        return self._submit_guess(lat, lng)

    def _submit_guess(self, lat, lng) -> GuessOutcome:
        ctx = self._ctx
        if ctx.phase != Phase.ROUND_ACTIVE:
            raise InvalidTransition(f'Cannot guess while {ctx.phase.value}')
        if ctx.guess_confirmed:
            raise InvalidTransition('Guess already confirmed for this round')
        if ctx.target is None:
            raise InvalidTransition('Round is not loaded yet')
        self._cancel_timer()
        outcome = evaluate_guess(ctx.target.lat, ctx.target.lng, lat, lng)
        ctx = S.record_guess(ctx, outcome)
        self._set(ctx)
        self._log.info(
            f"[guess] room={ctx.room_id} round={ctx.round_index} player={ctx.player_id} "
            f"distance={outcome.distance_km:.1f} score={outcome.score}"
        )
        if not ctx.is_solo:
            self._persist_guess(ctx, outcome)
        if ctx.is_solo or ctx.is_host:
            grace = 0 if ctx.is_solo else self._setting('GEO_RESULTS_GRACE_SEC')
            self._schedule(grace, self._collect_results, ctx.round_index)
        return outcome

    def _persist_guess(self, ctx: SessionContext, outcome: GuessOutcome) -> None:
        if ctx.round_id is None:
            self._log.warning(f"[guess-unsaved] room={ctx.room_id} round={ctx.round_index} reason=round-not-visible")
            return
        try:
            self._store.upsert_guess(
                ctx.round_id, ctx.player_id, outcome.guess_lat, outcome.guess_lng,
                outcome.distance_km, outcome.score,
            )
            # Read-then-write; serialized per client by self._lock
            self._store.increment_player_score(ctx.player_id, outcome.score)
        except GeoDuelError as exc:
            self._log.warning(f"[guess-save-failed] room={ctx.room_id} round={ctx.round_index} error={exc.message}")
            self._notice(exc.message)

    def _refresh_guess_count(self) -> None:
        ctx = self._ctx
        if ctx.is_solo or ctx.round_id is None:
            return
        try:
            count = self._store.count_guesses(ctx.round_id)
        except GeoDuelError as exc:
            self._log.warning(f"[guess-count-failed] round={ctx.round_id} error={exc.message}")
            return
        self._set(replace(self._ctx, guess_count=count))

    # ---- results ----

    def _own_result(self) -> GuessResult:
        ctx = self._ctx
        outcome = ctx.round_scores[-1] if ctx.guess_confirmed and ctx.round_scores else evaluate_guess(0, 0)
        return GuessResult(
            ctx.player_id, ctx.player_name or 'You', outcome.guess_lat, outcome.guess_lng,
            outcome.distance_km, outcome.score,
        )

    def _results_from_store(self) -> RoundResults:
        ctx = self._ctx
        rows = self._store.list_guesses(ctx.round_id)
        guesses = tuple(
            GuessResult(r['player_id'], r['player_name'], r['guess_lat'], r['guess_lng'], r['distance'], r['score'])
            for r in rows
        )
        return RoundResults(ctx.round_index, ctx.target.lat, ctx.target.lng, ctx.target.label, guesses)

    def _collect_results(self, round_index: int) -> None:
        ctx = self._ctx
        if ctx.phase != Phase.ROUND_ACTIVE or ctx.round_index != round_index:
            return
        if ctx.is_solo or ctx.round_id is None:
            results = RoundResults(
                round_index, ctx.target.lat, ctx.target.lng, ctx.target.label, (self._own_result(),)
            )
        else:
            try:
                results = self._results_from_store()
            except GeoDuelError as exc:
                self._log.warning(f"[results-failed] room={ctx.room_id} round={round_index} error={exc.message}")
                self._notice(exc.message)
                return
        if ctx.is_host and not ctx.is_solo:
            self._sub.broadcast(results)
        self._apply_results(results)

    def _apply_results(self, results: RoundResults) -> None:
        self._cancel_timer()
        ctx = self._ctx
        if results.round_index > ctx.round_index:
            # Round start was missed entirely; jump straight to its results
            ctx = S.enter_round(ctx, results.round_index)
        self._set(S.show_results(ctx, results))
        self._log.info(
            f"[round-results] room={ctx.room_id} round={results.round_index} guesses={len(results.guesses)}"
        )

    # ---- advancing ----

    @_serialized
    def advance(self) -> None:
        """Host or solo: move from results to the next round, or finish."""
        ctx = self._ctx
        if not ctx.is_solo:
            self._require_host('advance the game')
        if ctx.phase != Phase.ROUND_RESULTS:
            raise InvalidTransition(f'Cannot advance while {ctx.phase.value}')
        if ctx.is_last_round:
            self._finish_as_host()
            return
        next_index = ctx.round_index + 1
        if not ctx.is_solo:
            self._sub.broadcast(NextRound(next_index))
            try:
                room = self._store.update_room_status(ctx.room_id, ROOM_PLAYING, next_index)
                self._set(replace(self._ctx, room=room))
            except GeoDuelError as exc:
                self._log.warning(f"[next-round-persist-failed] room={ctx.room_id} round={next_index} error={exc.message}")
        self._start_round(next_index)

    def _finish_as_host(self) -> None:
        ctx = self._ctx
        if ctx.is_solo:
            standings = (Standing(ctx.player_name or 'You', ctx.score, ctx.player_id),)
        else:
            try:
                standings = self._standings_from_store()
            except GeoDuelError as exc:
                self._log.warning(f"[finish-failed] room={ctx.room_id} error={exc.message}")
                self._notice(exc.message)
                return
        self._record_leaderboard()
        if not ctx.is_solo:
            self._sub.broadcast(SessionOver(standings))
            try:
                room = self._store.update_room_status(ctx.room_id, ROOM_FINISHED)
                self._set(replace(self._ctx, room=room))
            except GeoDuelError as exc:
                self._log.warning(f"[finish-persist-failed] room={ctx.room_id} error={exc.message}")
        self._apply_finish(standings)

    def _standings_from_store(self):
        players = self._store.list_players(self._ctx.room_id)
        return rank_standings(Standing(p['name'], p['score'], p['id']) for p in players)

    def _apply_finish(self, standings) -> None:
        self._cancel_timer()
        self._set(S.finish(self._ctx, rank_standings(standings)))
        self._log.info(f"[session-finished] room={self._ctx.room_id} player={self._ctx.player_id} score={self._ctx.score}")

    def _record_leaderboard(self) -> None:
        ctx = self._ctx
        if ctx.leaderboard_recorded:
            return
        # One attempt only, success or not
        self._set(S.mark_leaderboard_recorded(ctx))
        if not ctx.player_name:
            return
        try:
            self._store.append_leaderboard_entry(ctx.player_name, ctx.score, ctx.max_rounds)
        except StoreUnavailable as exc:
            self._log.warning(f"[leaderboard-skip] player={ctx.player_id} reason={exc.message}")
        except GeoDuelError as exc:
            self._log.warning(f"[leaderboard-failed] player={ctx.player_id} error={exc.message}")
            self._notice(exc.message)

    def _finish_as_follower(self, standings) -> None:
        if self._ctx.phase in (Phase.FINISHED, Phase.LEFT):
            return
        self._apply_finish(standings)
        self._record_leaderboard()

    # ---- leaving ----

    @_serialized
    def leave(self) -> None:
        ctx = self._ctx
        if ctx.phase == Phase.LEFT:
            return
        self._cancel_timer()
        if self._sub is not None:
            self._sub.unsubscribe()
            self._sub = None
        if not ctx.is_solo and ctx.room is not None:
            try:
                self._store.remove_player(ctx.player_id)
            except GeoDuelError as exc:
                self._log.warning(f"[leave-failed] room={ctx.room_id} player={ctx.player_id} error={exc.message}")
        self._set(S.leave(self._ctx))
        self._log.info(f"[left] room={ctx.room_id} player={ctx.player_id}")

    # ---- channel listener ----

    @_serialized
    def on_broadcast(self, event: GameEvent) -> None:
        if self._ctx.phase == Phase.LEFT or self._ctx.is_host:
            return
        try:
            if isinstance(event, SessionStarting):
                self._on_session_starting(event)
            elif isinstance(event, RoundResults):
                self._on_round_results(event)
            elif isinstance(event, NextRound):
                self._on_next_round(event)
            elif isinstance(event, SessionOver):
                self._finish_as_follower(event.players)
            else:
                raise TypeError(f'Unhandled game event: {event!r}')
        except InvalidTransition as exc:
            self._log.debug(f"[event-stale] player={self._ctx.player_id} event={type(event).__name__} reason={exc.message}")

    def _on_session_starting(self, event: SessionStarting) -> None:
        ctx = self._ctx
        if ctx.phase == Phase.WAITING and ctx.round_index < 0:
            self._set(S.begin_session(ctx, event.locations))
            self._start_round(0)
        else:
            self._set(S.adopt_locations(ctx, event.locations))

    def _on_round_results(self, event: RoundResults) -> None:
        ctx = self._ctx
        if event.round_index < ctx.round_index:
            return
        if event.round_index == ctx.round_index and ctx.phase == Phase.ROUND_RESULTS:
            # Results read back by resync give way to the host's aggregate
            if event != ctx.results:
                self._set(S.replace_results(ctx, event))
                self._log.info(
                    f"[round-results-replaced] room={ctx.room_id} round={event.round_index} guesses={len(event.guesses)}"
                )
            return
        if event.round_index == ctx.round_index and ctx.phase != Phase.ROUND_ACTIVE:
            return
        self._apply_results(event)

    def _on_next_round(self, event: NextRound) -> None:
        if event.round_index > self._ctx.round_index:
            self._start_round(event.round_index)

    @_serialized
    def on_row_change(self, change: RowChange) -> None:
        if self._ctx.phase == Phase.LEFT:
            return
        try:
            if change.table == ROOMS:
                self._on_room_row(change)
            elif change.table == PLAYERS:
                self._refresh_players()
            elif change.table == GUESSES:
                if self._ctx.round_id is not None and change.row.get('round_id') == self._ctx.round_id:
                    self._refresh_guess_count()
        except InvalidTransition as exc:
            self._log.debug(f"[row-change-stale] player={self._ctx.player_id} table={change.table} reason={exc.message}")

    def _on_room_row(self, change: RowChange) -> None:
        row = change.row
        if row.get('id') != self._ctx.room_id or change.kind == 'DELETE':
            return
        self._set(replace(self._ctx, room=row))
        if self._ctx.is_host:
            return
        self._follow_room(row)

    def _follow_room(self, room: dict) -> None:
        ctx = self._ctx
        if ctx.phase in (Phase.FINISHED, Phase.LEFT):
            return
        if room['status'] == ROOM_FINISHED:
            try:
                standings = self._standings_from_store()
            except GeoDuelError as exc:
                self._log.warning(f"[finish-read-failed] room={ctx.room_id} error={exc.message}")
                return
            self._finish_as_follower(standings)
        elif room['status'] == ROOM_PLAYING:
            if ctx.phase == Phase.WAITING:
                # SESSION_STARTING has not arrived; go by current_round alone
                self._set(S.begin_session(ctx, ctx.locations))
                self._start_round(room['current_round'])
            elif room['current_round'] > ctx.round_index:
                self._start_round(room['current_round'])

    def _refresh_players(self) -> None:
        try:
            players = self._store.list_players(self._ctx.room_id)
        except GeoDuelError as exc:
            self._log.warning(f"[players-refresh-failed] room={self._ctx.room_id} error={exc.message}")
            return
        self._set(S.with_players(self._ctx, players))

    # ---- reconstruction ----

    @_serialized
    def resync(self) -> ClientSessionView:
        """Re-read the store and catch up on anything the channel dropped."""
        ctx = self._ctx
        if ctx.is_solo or ctx.room is None or ctx.phase == Phase.LEFT:
            return self.view
        room = self._store.get_room(ctx.room_id)
        self._set(replace(self._ctx, room=room))
        self._refresh_players()
        if ctx.is_host:
            return self.view
        self._follow_room(room)
        ctx = self._ctx
        if ctx.phase == Phase.ROUND_ACTIVE and room['status'] == ROOM_PLAYING:
            if not ctx.target_ready:
                self._reconcile_round(ctx.round_index, self._setting('GEO_ROUND_VISIBILITY_TIMEOUT_SEC'), 0)
            elif ctx.guess_confirmed and ctx.round_id is not None:
                self._apply_results(self._results_from_store())
        return self.view
