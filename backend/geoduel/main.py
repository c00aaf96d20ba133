from flask import Blueprint, jsonify, request, current_app
from geoduel.services.geo.clients import get_registry
from geoduel.services.geo.errors import StoreUnavailable

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({
        'message': 'Welcome to the GeoDuel server!',
        'multiplayer': get_registry().store.enabled,
    })


@main.route('/api/leaderboard', methods=['GET'])
def leaderboard():
    default_limit = int(current_app.config.get('GEO_LEADERBOARD_LIMIT', 20))
    try:
        limit = int(request.args.get('limit', default_limit))
    except (TypeError, ValueError):
        return jsonify({'error': 'limit must be an integer'}), 400
    limit = max(1, min(limit, 100))
    try:
        entries = get_registry().store.list_leaderboard(limit)
    except StoreUnavailable as exc:
        return jsonify({'entries': [], 'error': exc.message}), 503
    return jsonify({'entries': entries})
