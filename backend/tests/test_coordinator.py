import math

import pytest

from geoduel.models import LeaderboardEntry
from geoduel.services.geo.clients import get_registry
from geoduel.services.geo.errors import (
    InvalidInput, InvalidTransition, NotHost, RowNotFound, StoreUnavailable,
)
from geoduel.services.geo.scoring import MAX_DISTANCE_KM, MAX_SCORE_PER_ROUND


def _sub_of(channel, coordinator):
    room_id = coordinator.context.room_id
    return next(s for s in channel.subscribers(room_id) if s.listener is coordinator)


def _aim_at_target(coordinator):
    target = coordinator.context.target
    return coordinator.confirm_guess(target.lat, target.lng)


def _two_player_room(registry, scheduler, rounds=2, time_limit=30):
    host = registry.create('p_host', 'Hana')
    room = host.create_room(rounds, time_limit)
    guest = registry.create('p_guest', 'Gus')
    guest.join_room(room['code'].lower())
    scheduler.advance()
    return host, guest


def _play_round(host, guest, scheduler):
    """Both players confirm, then the grace period runs out."""
    _aim_at_target(host)
    guest.confirm_guess(0.0, 0.0)
    scheduler.advance(5)


# ---- solo ----

def test_solo_session_end_to_end(registry, scheduler):
    me = registry.create('p_solo', 'Sol')
    view = me.start_solo(5, 30)
    assert view.phase == 'round_active'
    assert view.round_ready
    assert view.target_lat is None

    for idx in range(5):
        assert me.view.round_index == idx
        outcome = _aim_at_target(me)
        assert outcome.score == MAX_SCORE_PER_ROUND
        scheduler.advance()
        view = me.view
        assert view.phase == 'round_results'
        assert view.target_lat == me.context.target.lat
        assert [g.player_id for g in view.results.guesses] == ['p_solo']
        me.advance()

    view = me.view
    assert view.phase == 'finished'
    assert view.score == 5 * MAX_SCORE_PER_ROUND
    assert view.my_rank == 1
    entries = LeaderboardEntry.query.all()
    assert [(e.player_name, e.score, e.rounds) for e in entries] == [('Sol', 25000, 5)]


def test_solo_guess_two_thousand_km_away(registry, scheduler):
    me = registry.create('p_solo', 'Sol')
    me.start_solo(1, 30)
    target = me.context.target
    offset = math.degrees(2000 / 6371)
    lat = target.lat - offset if target.lat > 0 else target.lat + offset
    outcome = me.confirm_guess(lat, target.lng)
    assert outcome.distance_km == pytest.approx(2000, abs=0.01)
    assert outcome.score == 1839


def test_solo_timer_expiry_submits_no_guess(registry, scheduler):
    me = registry.create('p_solo', 'Sol')
    me.start_solo(1, 3)
    scheduler.advance(2)
    assert me.view.time_left == 1
    assert me.view.phase == 'round_active'
    scheduler.advance(1)
    view = me.view
    assert view.phase == 'round_results'
    assert view.round_scores[-1].distance_km == MAX_DISTANCE_KM
    assert view.round_scores[-1].score == 0
    assert view.score == 0


def test_guess_confirmed_once_per_round(registry, scheduler):
    me = registry.create('p_solo', 'Sol')
    me.start_solo(2, 30)
    me.confirm_guess(10.0, 10.0)
    with pytest.raises(InvalidTransition):
        me.confirm_guess(11.0, 11.0)
    other = registry.create('p_other', 'Oz')
    other.start_solo(2, 30)
    with pytest.raises(InvalidInput):
        other.confirm_guess(95.0, 0.0)
    with pytest.raises(InvalidInput):
        other.confirm_guess(10.0, None)


def test_advance_only_from_results(registry, scheduler):
    me = registry.create('p_solo', 'Sol')
    me.start_solo(2, 30)
    with pytest.raises(InvalidTransition):
        me.advance()


def test_solo_still_works_when_store_unavailable(solo_app):
    registry = get_registry(solo_app)
    me = registry.create('p_solo', 'Sol')
    with pytest.raises(StoreUnavailable):
        me.create_room(3, 60)
    me.start_solo(1, 30)
    _aim_at_target(me)
    registry.scheduler.advance()
    me.advance()
    view = me.view
    assert view.phase == 'finished'
    assert view.score == MAX_SCORE_PER_ROUND
    assert view.notice is None


# ---- lobby ----

def test_join_validates_code_and_room_status(registry, scheduler):
    host, guest = _two_player_room(registry, scheduler)
    assert {p['id'] for p in host.view.players} == {'p_host', 'p_guest'}

    late = registry.create('p_late', 'Lou')
    with pytest.raises(InvalidInput):
        late.join_room('ABC')
    with pytest.raises(RowNotFound):
        late.join_room('QQQQQQ' if host.view.room_code != 'QQQQQQ' else 'WWWWWW')

    host.start_session()
    scheduler.advance(1)
    with pytest.raises(InvalidTransition):
        late.join_room(host.view.room_code)


def test_only_host_drives_the_session(registry, scheduler):
    host, guest = _two_player_room(registry, scheduler)
    with pytest.raises(NotHost):
        guest.start_session()
    host.start_session()
    scheduler.advance(1)
    _play_round(host, guest, scheduler)
    with pytest.raises(NotHost):
        guest.advance()
    with pytest.raises(InvalidTransition):
        host.start_session()


# ---- multiplayer ----

def test_two_player_session_end_to_end(registry, store, scheduler):
    host, guest = _two_player_room(registry, scheduler)
    host.start_session()
    scheduler.advance(1)

    for client in (host, guest):
        view = client.view
        assert view.phase == 'round_active'
        assert view.round_index == 0
        assert view.round_ready
    assert guest.context.target.lat == host.context.target.lat
    assert store.get_room(host.context.room_id)['status'] == 'playing'

    _play_round(host, guest, scheduler)
    for client in (host, guest):
        view = client.view
        assert view.phase == 'round_results'
        assert [g.player_id for g in view.results.ranked()][0] == 'p_host'
        assert len(view.results.guesses) == 2
    assert guest.view.results == host.view.results

    host.advance()
    scheduler.advance(1)
    assert guest.view.round_index == 1
    assert guest.view.round_ready
    assert store.get_room(host.context.room_id)['current_round'] == 1

    _play_round(host, guest, scheduler)
    host.advance()
    scheduler.advance()

    assert host.view.phase == 'finished'
    assert guest.view.phase == 'finished'
    assert host.view.standings == guest.view.standings
    assert host.view.standings[0].id == 'p_host'
    assert host.view.standings[0].score == 2 * MAX_SCORE_PER_ROUND
    assert guest.view.my_rank == 2
    assert store.get_room(host.context.room_id)['status'] == 'finished'
    names = sorted(e.player_name for e in LeaderboardEntry.query.all())
    assert names == ['Gus', 'Hana']


def test_guest_recovers_missed_session_start_from_room_row(registry, channel, scheduler):
    host, guest = _two_player_room(registry, scheduler, rounds=1)
    guest_sub = _sub_of(channel, guest)

    channel.disconnect(guest_sub)
    host.start_session()
    scheduler.advance()
    channel.reconnect(guest_sub)
    assert guest.view.phase == 'waiting'

    scheduler.advance(1)
    view = guest.view
    assert view.phase == 'round_active'
    assert view.round_index == 0
    assert view.round_ready
    assert guest.context.target.lat == host.context.target.lat


def test_round_not_visible_after_timeout(registry, scheduler):
    host, guest = _two_player_room(registry, scheduler, rounds=1)
    host.start_session()
    # Host goes away before the round row is written
    host.leave()
    scheduler.advance(1)
    assert guest.view.phase == 'round_active'
    assert not guest.view.round_ready
    assert guest.view.notice is None

    scheduler.advance(10)
    view = guest.view
    assert not view.round_ready
    assert 'not visible' in view.notice
    assert [p['id'] for p in view.players] == ['p_guest']


def test_resync_recovers_missed_next_round_and_session_over(registry, channel, scheduler):
    host, guest = _two_player_room(registry, scheduler)
    guest_sub = _sub_of(channel, guest)
    host.start_session()
    scheduler.advance(1)
    _play_round(host, guest, scheduler)

    channel.disconnect(guest_sub)
    host.advance()
    scheduler.advance(1)
    channel.reconnect(guest_sub)
    assert guest.view.phase == 'round_results'
    assert guest.view.round_index == 0

    view = guest.resync()
    assert view.phase == 'round_active'
    assert view.round_index == 1
    assert view.round_ready

    _play_round(host, guest, scheduler)
    channel.disconnect(guest_sub)
    host.advance()
    scheduler.advance()
    channel.reconnect(guest_sub)
    assert guest.view.phase == 'round_results'

    view = guest.resync()
    assert view.phase == 'finished'
    assert view.standings == host.view.standings
    guest.resync()
    assert LeaderboardEntry.query.filter_by(player_name='Gus').count() == 1


def test_host_results_replace_results_read_back_by_resync(registry, scheduler):
    host, guest = _two_player_room(registry, scheduler)
    third = registry.create('p_third', 'Tia')
    third.join_room(host.view.room_code)
    scheduler.advance()
    host.start_session()
    scheduler.advance(1)
    assert third.view.round_ready

    _aim_at_target(host)
    guest.confirm_guess(0.0, 0.0)
    view = guest.resync()
    assert view.phase == 'round_results'
    assert len(view.results.guesses) == 2

    # A late guess still inside the host's grace period
    third.confirm_guess(10.0, 10.0)
    scheduler.advance(5)

    assert len(host.view.results.guesses) == 3
    assert guest.view.phase == 'round_results'
    assert guest.view.results == host.view.results
    assert third.view.results == host.view.results


def test_leaving_removes_player_and_ignores_later_events(registry, store, scheduler):
    host, guest = _two_player_room(registry, scheduler)
    room_id = host.context.room_id
    guest.leave()
    scheduler.advance()
    assert [p['id'] for p in store.list_players(room_id)] == ['p_host']
    assert [p['id'] for p in host.view.players] == ['p_host']

    host.start_session()
    scheduler.advance(1)
    assert guest.view.phase == 'left'
    guest.leave()
