"""Per-room notification channel.

Carries row-change notifications for rooms, players and guesses, and the
host's broadcast events. Delivery is best-effort: every message is handed to
the scheduler and dispatched later, a subscriber that is disconnected when a
message is published never sees it, and nothing orders broadcasts relative
to row changes. Everything delivered is mirrored to the Socket.IO room
``room:<room_id>`` so browser clients can watch the same stream.
"""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional

from .errors import InvalidInput
from .events import GameEvent, decode_event, encode_event

logger = logging.getLogger(__name__)

ROOMS = 'rooms'
PLAYERS = 'players'
GUESSES = 'guesses'

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'


@dataclass(frozen=True)
class RowChange:
    table: str
    kind: str
    row: dict
    room_id: Optional[int] = None  # None: not room-scoped (guesses)

    def to_dict(self) -> dict:
        return {'table': self.table, 'kind': self.kind, 'row': self.row}


class Subscription:
    """A listener attached to one room.

    The listener is any object with ``on_row_change(change)`` and
    ``on_broadcast(event)`` methods.
    """

    def __init__(self, hub: 'ChannelHub', room_id: int, listener):
        self.hub = hub
        self.room_id = room_id
        self.listener = listener
        self.active = True
        self.connected = True

    def broadcast(self, event: GameEvent) -> None:
        self.hub.broadcast(self, event)

    def unsubscribe(self) -> None:
        self.hub.unsubscribe(self)


def room_channel(room_id) -> str:
    return f"room:{room_id}"


class ChannelHub:
    def __init__(self, scheduler, socketio=None, namespace: str = '/ws', log=None):
        self._scheduler = scheduler
        self._socketio = socketio
        self._namespace = namespace
        self._log = log or logger
        self._subs: Dict[int, List[Subscription]] = {}
        self._lock = Lock()

    def subscribe(self, room_id: int, listener) -> Subscription:
        sub = Subscription(self, room_id, listener)
        with self._lock:
            subs = self._subs.setdefault(room_id, [])
            subs.append(sub)
            count = len(subs)
        self._log.info(f"[channel-subscribe] room={room_id} subscribers={count}")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.active = False
        with self._lock:
            subs = self._subs.get(sub.room_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subs.pop(sub.room_id, None)

    def disconnect(self, sub: Subscription) -> None:
        sub.connected = False

    def reconnect(self, sub: Subscription) -> None:
        sub.connected = True

    def subscribers(self, room_id: int) -> List[Subscription]:
        with self._lock:
            return list(self._subs.get(room_id, []))

    def broadcast(self, sender: Subscription, event: GameEvent) -> None:
        """Send ``event`` to every other connected subscriber of the sender's room."""
        if not sender.active:
            return
        payload = encode_event(event)
        for sub in self.subscribers(sender.room_id):
            if sub is sender:
                continue
            self._enqueue(sub, '_deliver_broadcast', payload)
        self._mirror('game_event', payload, sender.room_id)

    def publish_row_changes(self, changes: List[RowChange]) -> None:
        for change in changes:
            if change.room_id is None:
                with self._lock:
                    targets = [s for subs in self._subs.values() for s in subs]
            else:
                targets = self.subscribers(change.room_id)
            for sub in targets:
                self._enqueue(sub, '_deliver_row_change', change)
            if change.room_id is not None:
                self._mirror('row_change', change.to_dict(), change.room_id)

    def _enqueue(self, sub: Subscription, method: str, message) -> None:
        if not sub.connected:
            self._log.debug(f"[channel-drop] room={sub.room_id} reason=disconnected")
            return
        self._scheduler.call_later(0, getattr(self, method), sub, message)

    def _deliver_broadcast(self, sub: Subscription, payload: dict) -> None:
        if not sub.active:
            return
        try:
            event = decode_event(payload)
        except InvalidInput as exc:
            self._log.warning(f"[channel-drop] room={sub.room_id} reason={exc.message}")
            return
        try:
            sub.listener.on_broadcast(event)
        except Exception:
            self._log.exception(f"[channel-listener-error] room={sub.room_id} event={payload.get('event')}")

    def _deliver_row_change(self, sub: Subscription, change: RowChange) -> None:
        if not sub.active:
            return
        try:
            sub.listener.on_row_change(change)
        except Exception:
            self._log.exception(f"[channel-listener-error] room={sub.room_id} table={change.table}")

    def _mirror(self, name: str, payload: dict, room_id) -> None:
        if self._socketio is None:
            return
        self._socketio.emit(name, payload, to=room_channel(room_id), namespace=self._namespace)
