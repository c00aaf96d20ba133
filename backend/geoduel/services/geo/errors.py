"""Error taxonomy for session coordination.

Store failures come in three kinds: the store is unavailable (callers fall
back to solo play), a row is not found (expected while waiting for writes
to become visible), or a write is rejected (surfaced as a transient
failure, never retried). Coordination errors cover illegal transitions and
host-only actions attempted by followers.
"""


class GeoDuelError(Exception):
    """Base class. ``code`` and ``http_status`` shape the JSON error reply."""

    code = 'GEODUEL_ERROR'
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {'error': self.message, 'code': self.code}


class StoreUnavailable(GeoDuelError):
    code = 'STORE_UNAVAILABLE'
    http_status = 503


class RowNotFound(GeoDuelError):
    code = 'NOT_FOUND'
    http_status = 404


class RoundNotVisible(RowNotFound):
    """The host's round row did not become readable within the timeout."""

    code = 'ROUND_NOT_VISIBLE'

    def __init__(self, room_id, round_number: int, waited: float):
        super().__init__(
            f'Round {round_number + 1} of room {room_id} was not visible after {waited:.1f}s'
        )
        self.room_id = room_id
        self.round_number = round_number
        self.waited = waited


class WriteRejected(GeoDuelError):
    code = 'WRITE_REJECTED'
    http_status = 409


class InvalidTransition(GeoDuelError):
    code = 'INVALID_TRANSITION'
    http_status = 409


class NotHost(GeoDuelError):
    code = 'NOT_HOST'
    http_status = 403


class InvalidInput(GeoDuelError):
    code = 'INVALID_INPUT'
    http_status = 400
