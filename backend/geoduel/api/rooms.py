from flask import Blueprint, jsonify, request, current_app
from geoduel.models import generate_player_id
from geoduel.services.geo.clients import get_registry
from geoduel.services.geo.errors import GeoDuelError, InvalidInput, StoreUnavailable

rooms = Blueprint('rooms', __name__)

DEFAULT_SOLO_NAME = 'Traveller'


@rooms.errorhandler(GeoDuelError)
def handle_geoduel_error(exc):
    payload = exc.to_response()
    if isinstance(exc, StoreUnavailable):
        payload['solo_available'] = True
    if exc.http_status >= 500:
        current_app.logger.warning(f"[api-error] path={request.path} code={exc.code} message={exc.message}")
    return jsonify(payload), exc.http_status


def _name_from(data, default=None):
    name = (data.get('name') or '').strip()
    if not name and default is None:
        raise InvalidInput('Enter your name')
    return name or default


def _optional_int(data, key):
    value = data.get(key)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f'{key} must be an integer')


def _session_reply(coordinator, status=200, **extra):
    body = {'player_id': coordinator.player_id, 'view': coordinator.view.to_dict()}
    body.update(extra)
    return jsonify(body), status


@rooms.route('/create', methods=['POST'])
def create_room():
    data = request.get_json(silent=True) or {}
    name = _name_from(data)
    player_id = data.get('player_id') or generate_player_id()
    registry = get_registry()
    coordinator = registry.create(player_id, name)
    try:
        room = coordinator.create_room(_optional_int(data, 'rounds'), _optional_int(data, 'time_limit'))
    except GeoDuelError:
        registry.discard(player_id)
        raise
    return _session_reply(coordinator, 201, room=room)


@rooms.route('/join', methods=['POST'])
def join_room():
    data = request.get_json(silent=True) or {}
    name = _name_from(data)
    code = (data.get('code') or '').strip().upper()
    if len(code) != 6:
        raise InvalidInput('Enter the 6-character room code')
    player_id = data.get('player_id') or generate_player_id()
    registry = get_registry()
    coordinator = registry.create(player_id, name)
    try:
        room = coordinator.join_room(code)
    except GeoDuelError:
        registry.discard(player_id)
        raise
    return _session_reply(coordinator, 201, room=room)


@rooms.route('/solo', methods=['POST'])
def start_solo():
    data = request.get_json(silent=True) or {}
    name = _name_from(data, DEFAULT_SOLO_NAME)
    player_id = data.get('player_id') or generate_player_id()
    coordinator = get_registry().create(player_id, name)
    coordinator.start_solo(_optional_int(data, 'rounds'), _optional_int(data, 'time_limit'))
    return _session_reply(coordinator, 201)


@rooms.route('/<string:player_id>/start', methods=['POST'])
def start_session(player_id):
    coordinator = get_registry().get(player_id)
    coordinator.start_session()
    return _session_reply(coordinator, 202)


@rooms.route('/<string:player_id>/guess', methods=['POST'])
def confirm_guess(player_id):
    data = request.get_json(silent=True) or {}
    coordinator = get_registry().get(player_id)
    lat, lng = data.get('lat'), data.get('lng')
    try:
        lat = float(lat) if lat is not None else None
        lng = float(lng) if lng is not None else None
    except (TypeError, ValueError):
        raise InvalidInput('lat and lng must be numbers')
    outcome = coordinator.confirm_guess(lat, lng)
    return _session_reply(coordinator, 200, guess=outcome.to_dict())


@rooms.route('/<string:player_id>/advance', methods=['POST'])
def advance(player_id):
    coordinator = get_registry().get(player_id)
    coordinator.advance()
    return _session_reply(coordinator)


@rooms.route('/<string:player_id>/resync', methods=['POST'])
def resync(player_id):
    coordinator = get_registry().get(player_id)
    coordinator.resync()
    return _session_reply(coordinator)


@rooms.route('/<string:player_id>/leave', methods=['POST'])
def leave(player_id):
    registry = get_registry()
    coordinator = registry.get(player_id)
    coordinator.leave()
    registry.discard(player_id)
    return jsonify({'message': 'You have left the game.'}), 200


@rooms.route('/<string:player_id>/view', methods=['GET'])
def get_view(player_id):
    return _session_reply(get_registry().get(player_id))
