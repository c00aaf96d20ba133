import pytest

from geoduel.models import ROOM_CODE_ALPHABET, random_room_code
from geoduel.services.geo.errors import InvalidInput
from geoduel.services.geo.events import (
    GuessResult, NextRound, RoundResults, SessionOver, SessionStarting, Standing, decode_event,
    encode_event,
)
from geoduel.services.geo.locations import CATALOG, get_random_locations


def _guess(pid, score):
    return GuessResult(pid, pid.upper(), 1.0, 2.0, 100.0, score)


def test_room_codes_use_unambiguous_alphabet():
    assert len(ROOM_CODE_ALPHABET) == 32
    assert not set('IO01') & set(ROOM_CODE_ALPHABET)
    for _ in range(500):
        code = random_room_code()
        assert len(code) == 6
        assert set(code) <= set(ROOM_CODE_ALPHABET)


def test_round_results_rank_by_score_descending():
    results = RoundResults(0, 1.0, 2.0, 'X', (_guess('a', 4200), _guess('b', 4800), _guess('c', 100)))
    assert [g.score for g in results.ranked()] == [4800, 4200, 100]
    payload = encode_event(results)
    assert [g['score'] for g in payload['data']['guesses']] == [4800, 4200, 100]


def test_ranking_ties_keep_relative_order():
    results = RoundResults(0, 0.0, 0.0, '', (_guess('a', 10), _guess('b', 20), _guess('c', 10)))
    assert [g.player_id for g in results.ranked()] == ['b', 'a', 'c']


def test_wire_format_uses_event_names_and_camel_case():
    locations = tuple(CATALOG[:2])
    payload = encode_event(SessionStarting(locations))
    assert payload['event'] == 'SESSION_STARTING'
    assert payload['data']['locations'][0]['lat'] == CATALOG[0].lat
    assert decode_event(payload) == SessionStarting(locations)

    assert encode_event(NextRound(3)) == {'event': 'NEXT_ROUND', 'data': {'roundIndex': 3}}

    over = decode_event({'event': 'SESSION_OVER', 'data': {'players': [
        {'id': 'a', 'name': 'Ann', 'score': 10},
        {'name': 'Bob', 'score': 900},
    ]}})
    assert over == SessionOver((Standing('Bob', 900, None), Standing('Ann', 10, 'a')))


def test_decode_rejects_unknown_and_malformed_events():
    with pytest.raises(InvalidInput):
        decode_event({'event': 'PLAYER_LEFT', 'data': {}})
    with pytest.raises(InvalidInput):
        decode_event({'event': 'NEXT_ROUND', 'data': {}})
    with pytest.raises(InvalidInput):
        decode_event('not a dict')


def test_random_locations_are_distinct():
    picks = get_random_locations(10)
    assert len(picks) == 10
    assert len(set(picks)) == 10
    with pytest.raises(InvalidInput):
        get_random_locations(0)
    with pytest.raises(InvalidInput):
        get_random_locations(len(CATALOG) + 1)
