from geoduel import db
import random
import time
import uuid
from datetime import datetime

ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_CODE_LENGTH = 6

ROOM_WAITING = 'waiting'
ROOM_PLAYING = 'playing'
ROOM_FINISHED = 'finished'
ROOM_STATUS_ORDER = {ROOM_WAITING: 0, ROOM_PLAYING: 1, ROOM_FINISHED: 2}


def random_room_code(length=ROOM_CODE_LENGTH, rng=None):
    return ''.join((rng or random).choices(ROOM_CODE_ALPHABET, k=length))


def generate_room_code(length=ROOM_CODE_LENGTH):
    """Generate a unique, short room code."""
    while True:
        code = random_room_code(length)
        if not Room.query.filter_by(code=code).first():
            return code


def _base36(number):
    digits = '0123456789abcdefghijklmnopqrstuvwxyz'
    out = ''
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or '0'


def generate_player_id():
    return 'p_' + uuid.uuid4().hex[:12] + _base36(int(time.time() * 1000))


class Room(db.Model):
    __tablename__ = 'rooms'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(ROOM_CODE_LENGTH), unique=True, index=True, nullable=False)
    host_id = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), default=ROOM_WAITING, nullable=False)  # waiting, playing, finished
    current_round = db.Column(db.Integer, default=0, nullable=False)
    max_rounds = db.Column(db.Integer, nullable=False)
    time_limit = db.Column(db.Integer, nullable=False)
    players = db.relationship('Player', back_populates='room')

    def __init__(self, **kwargs):
        super(Room, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_room_code()

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'host_id': self.host_id,
            'status': self.status,
            'current_round': self.current_round,
            'max_rounds': self.max_rounds,
            'time_limit': self.time_limit,
        }


class Player(db.Model):
    __tablename__ = 'players'
    id = db.Column(db.String(64), primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    room = db.relationship('Room', back_populates='players')
    guesses = db.relationship('Guess', back_populates='player', cascade='all, delete-orphan', passive_deletes=True)

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'name': self.name,
            'score': self.score,
            'is_host': self.is_host,
        }


class Round(db.Model):
    __tablename__ = 'rounds'
    __table_args__ = (db.UniqueConstraint('room_id', 'round_number', name='uq_rounds_room_round'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    lat = db.Column(db.Float, nullable=False)
    lng = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'round_number': self.round_number,
            'lat': self.lat,
            'lng': self.lng,
        }


class Guess(db.Model):
    __tablename__ = 'guesses'
    round_id = db.Column(db.Integer, db.ForeignKey('rounds.id'), primary_key=True)
    player_id = db.Column(db.String(64), db.ForeignKey('players.id', ondelete='CASCADE'), primary_key=True)
    guess_lat = db.Column(db.Float, nullable=True)  # null: no guess / timed out
    guess_lng = db.Column(db.Float, nullable=True)
    distance = db.Column(db.Float, nullable=False)
    score = db.Column(db.Integer, nullable=False)
    player = db.relationship('Player', back_populates='guesses')

    def to_dict(self):
        return {
            'round_id': self.round_id,
            'player_id': self.player_id,
            'guess_lat': self.guess_lat,
            'guess_lng': self.guess_lng,
            'distance': self.distance,
            'score': self.score,
        }


class LeaderboardEntry(db.Model):
    __tablename__ = 'leaderboard'
    id = db.Column(db.Integer, primary_key=True)
    player_name = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    rounds = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'player_name': self.player_name,
            'score': self.score,
            'rounds': self.rounds,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
