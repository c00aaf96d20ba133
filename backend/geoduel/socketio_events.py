from flask_socketio import join_room, leave_room, emit
from geoduel import socketio
from geoduel.services.geo.channel import room_channel
from geoduel.services.geo.clients import get_registry, player_channel


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # A dropped host is not replaced; followers stay where they are
    pass


def handle_watch_player(data):
    player_id = (data or {}).get('player_id')
    if not player_id:
        emit('error', {'message': 'player_id is required'})
        return
    room = player_channel(player_id)
    join_room(room)
    emit('joined', {'room': room})
    coordinator = get_registry().find(player_id)
    if coordinator is not None:
        emit('session_view', coordinator.view.to_dict())


def handle_watch_room(data):
    room_id = (data or {}).get('room_id')
    if room_id is None:
        emit('error', {'message': 'room_id is required'})
        return
    room = room_channel(room_id)
    join_room(room)
    emit('joined', {'room': room})


def handle_unwatch(data):
    room = (data or {}).get('room')
    if not room:
        emit('error', {'message': 'room is required'})
        return
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('watch_player', handle_watch_player, namespace=namespace)
        socketio.on_event('watch_room', handle_watch_room, namespace=namespace)
        socketio.on_event('unwatch', handle_unwatch, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
