from threading import Lock
from typing import Dict, Optional

from flask import current_app

from .coordinator import SessionCoordinator
from .errors import RowNotFound

EXTENSION_KEY = 'geoduel'


def player_channel(player_id: str) -> str:
    return f"player:{player_id}"


class ClientRegistry:
    """Client instances hosted by this process, one coordinator per player id."""

    def __init__(self, store, channel, scheduler, settings, socketio=None, namespace='/ws', log=None, rng=None):
        self.store = store
        self.channel = channel
        self.scheduler = scheduler
        self._settings = settings
        self._socketio = socketio
        self._namespace = namespace
        self._log = log
        self._rng = rng
        self._clients: Dict[str, SessionCoordinator] = {}
        self._lock = Lock()

    def create(self, player_id: str, player_name: str) -> SessionCoordinator:
        """Start a fresh client for ``player_id``; an older one leaves first."""
        with self._lock:
            previous = self._clients.pop(player_id, None)
        if previous is not None:
            previous.leave()
        coordinator = SessionCoordinator(
            player_id, player_name, self.store, self.channel, self.scheduler,
            settings=self._settings, on_view=self._push_view, log=self._log, rng=self._rng,
        )
        with self._lock:
            self._clients[player_id] = coordinator
        return coordinator

    def get(self, player_id: str) -> SessionCoordinator:
        with self._lock:
            coordinator = self._clients.get(player_id)
        if coordinator is None:
            raise RowNotFound('No session for this player')
        return coordinator

    def find(self, player_id: str) -> Optional[SessionCoordinator]:
        with self._lock:
            return self._clients.get(player_id)

    def discard(self, player_id: str) -> None:
        with self._lock:
            self._clients.pop(player_id, None)

    def _push_view(self, view) -> None:
        if self._socketio is None:
            return
        self._socketio.emit('session_view', view.to_dict(), to=player_channel(view.player_id), namespace=self._namespace)


def get_registry(app=None) -> ClientRegistry:
    return (app or current_app).extensions[EXTENSION_KEY]
