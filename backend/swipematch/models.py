from swipematch import db
from flask import current_app
import json
import random
import time
import uuid

MODE_PAIR = 'pair'
MODE_GROUP = 'group'
MODES = (MODE_PAIR, MODE_GROUP)

# Session statuses
LOBBY = 'lobby'
POOL_READY = 'pool_ready'
SWIPING = 'swiping'
RESULTS = 'results'
NO_MATCH = 'no_match'
WINNER = 'winner'
FINALIST_COMPUTATION = 'finalist_computation'
FINAL_VOTING = 'final_voting'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

TERMINAL_STATUSES = frozenset({RESULTS, WINNER, COMPLETED, CANCELLED})

DECISIONS = ('like', 'dislike', 'neutral', 'superlike')
LIKED_DECISIONS = frozenset({'like', 'superlike'})

JOIN_CODE_ALPHABET = 'ABCDEFGHJKMNPQRSTUVWXYZ23456789'


def _now():
    return time.time()


def _load_json(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def generate_join_code(length=6):
    """Generate a short join code that no active session is using."""
    ttl = int(current_app.config.get('SESSION_TTL_SEC', 0))
    while True:
        code = ''.join(random.choices(JOIN_CODE_ALPHABET, k=length))
        holders = MatchSession.query.filter(
            MatchSession.join_code == code,
            MatchSession.status.notin_(TERMINAL_STATUSES),
        ).all()
        if all(s.is_expired(ttl) for s in holders):
            return code


class MatchSession(db.Model):
    __tablename__ = 'match_session'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    join_code = db.Column(db.String(12), nullable=False, index=True)
    mode = db.Column(db.String(16), nullable=False, default=MODE_PAIR)
    status = db.Column(db.String(32), nullable=False, default=LOBBY)  # see lifecycle.PAIR_TRANSITIONS / GROUP_TRANSITIONS
    round = db.Column(db.Integer, nullable=False, default=1)
    min_participants = db.Column(db.Integer, nullable=False, default=2)
    max_participants = db.Column(db.Integer, nullable=True)
    round1_limit = db.Column(db.Integer, nullable=False)
    round2_limit = db.Column(db.Integer, nullable=False)
    superlikes_per_round = db.Column(db.Integer, nullable=False, default=3)
    host_participant_id = db.Column(db.String(64), nullable=False)
    pool = db.Column(db.Text, nullable=True)  # JSON list of {candidate_id, ...metadata}
    round2_deck = db.Column(db.Text, nullable=True)  # JSON list of candidate ids
    preferences = db.Column(db.Text, nullable=True)  # JSON handed to the pool supplier
    winner_candidate_id = db.Column(db.String(64), nullable=True)
    cancel_reason = db.Column(db.String(32), nullable=True)
    previous_session_id = db.Column(db.String(36), db.ForeignKey('match_session.id'), nullable=True, unique=True)
    round_started_at = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=_now)
    updated_at = db.Column(db.Float, nullable=False, default=_now)

    participants = db.relationship(
        'Participant', back_populates='session', order_by='Participant.id', lazy='select'
    )

    def __init__(self, **kwargs):
        super(MatchSession, self).__init__(**kwargs)
        if not self.join_code:
            self.join_code = generate_join_code(int(current_app.config.get('JOIN_CODE_LENGTH', 6)))

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def last_activity(self):
        """Latest session write or human participant poll."""
        seen = [p.last_seen_at for p in self.participants if not p.is_synthetic]
        return max([self.updated_at] + seen)

    def is_expired(self, ttl, now=None):
        if ttl <= 0:
            return False
        now = now if now is not None else time.time()
        return now - self.last_activity() > ttl

    @property
    def pool_items(self):
        return _load_json(self.pool, [])

    @property
    def pool_ids(self):
        return [item['candidate_id'] for item in self.pool_items]

    @property
    def round2_deck_ids(self):
        return _load_json(self.round2_deck, [])

    @property
    def preference_data(self):
        return _load_json(self.preferences, {})

    def pool_item(self, candidate_id):
        if candidate_id is None:
            return None
        for item in self.pool_items:
            if item['candidate_id'] == candidate_id:
                return item
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'join_code': self.join_code,
            'mode': self.mode,
            'status': self.status,
            'round': self.round,
            'min_participants': self.min_participants,
            'max_participants': self.max_participants,
            'round1_limit': self.round1_limit,
            'round2_limit': self.round2_limit,
            'superlikes_per_round': self.superlikes_per_round,
            'host_participant_id': self.host_participant_id,
            'winner_candidate_id': self.winner_candidate_id,
            'cancel_reason': self.cancel_reason,
            'previous_session_id': self.previous_session_id,
            'round_started_at': self.round_started_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    __table_args__ = (db.UniqueConstraint('session_id', 'participant_id', name='uq_participant_session'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey('match_session.id'), nullable=False, index=True)
    participant_id = db.Column(db.String(64), nullable=False)
    display_name = db.Column(db.String(64), nullable=True)
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    is_synthetic = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.Float, nullable=False, default=_now)
    last_seen_at = db.Column(db.Float, nullable=False, default=_now)
    session = db.relationship('MatchSession', back_populates='participants')

    def to_dict(self):
        return {
            'id': self.participant_id,
            'display_name': self.display_name,
            'is_host': self.is_host,
            'is_synthetic': self.is_synthetic,
            'joined_at': self.joined_at,
        }


class Swipe(db.Model):
    __tablename__ = 'swipe'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'participant_id', 'candidate_id', 'round', name='uq_swipe_decision'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey('match_session.id'), nullable=False, index=True)
    participant_id = db.Column(db.String(64), nullable=False)
    candidate_id = db.Column(db.String(64), nullable=False)
    round = db.Column(db.Integer, nullable=False)
    decision = db.Column(db.String(16), nullable=False)
    decided_at = db.Column(db.Float, nullable=False)  # ms, fixed at first arrival
    updated_at = db.Column(db.Float, nullable=False, default=_now)

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'candidate_id': self.candidate_id,
            'round': self.round,
            'decision': self.decision,
            'decided_at': self.decided_at,
        }


class FinalVote(db.Model):
    __tablename__ = 'final_vote'
    __table_args__ = (db.UniqueConstraint('session_id', 'participant_id', name='uq_final_vote'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey('match_session.id'), nullable=False, index=True)
    participant_id = db.Column(db.String(64), nullable=False)
    candidate_id = db.Column(db.String(64), nullable=False)
    cast_at = db.Column(db.Float, nullable=False, default=_now)


class RoundResult(db.Model):
    __tablename__ = 'round_result'
    __table_args__ = (db.UniqueConstraint('session_id', 'round', name='uq_round_result'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey('match_session.id'), nullable=False, index=True)
    round = db.Column(db.Integer, nullable=False)
    outcome = db.Column(db.String(16), nullable=False)  # results, no_match, winner, superlike, finalists
    matches = db.Column(db.Text, nullable=True)  # JSON ranked candidate ids
    winner_candidate_id = db.Column(db.String(64), nullable=True)
    compromise_candidate_id = db.Column(db.String(64), nullable=True)
    computed_at = db.Column(db.Float, nullable=False, default=_now)

    @property
    def match_ids(self):
        return _load_json(self.matches, [])

    def to_dict(self):
        return {
            'round': self.round,
            'outcome': self.outcome,
            'matches': self.match_ids,
            'winner_candidate_id': self.winner_candidate_id,
            'compromise_candidate_id': self.compromise_candidate_id,
            'computed_at': self.computed_at,
        }
