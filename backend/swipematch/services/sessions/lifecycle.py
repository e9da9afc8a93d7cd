"""Session lifecycle: status state machine, guards and host actions.

Pair sessions move ``lobby -> pool_ready -> swiping -> results | no_match``
and, after ``no_match``, ``swiping`` (round 2) ``-> winner``. Group sessions
move ``lobby -> pool_ready -> swiping -> finalist_computation ->
final_voting -> completed``. ``cancelled`` is reachable from every
non-terminal status. Every status write is a compare-and-set, so a request
that loses a race observes the winner's state instead of overwriting it.
"""

import json
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError

from swipematch import db
from swipematch.errors import (
    InvalidRequest, InvalidTransition, NotEnoughParticipants, SessionFull, Unauthorized,
)
from swipematch.models import (
    MatchSession, MODES, MODE_PAIR, LOBBY, POOL_READY, SWIPING, RESULTS,
    NO_MATCH, WINNER, FINALIST_COMPUTATION, FINAL_VOTING, COMPLETED, CANCELLED,
    TERMINAL_STATUSES,
)
from swipematch.socketio_events import emit_state_update
from . import store
from .pool import get_supplier, normalize_pool


PAIR_TRANSITIONS = {
    LOBBY: {POOL_READY, CANCELLED},
    POOL_READY: {SWIPING, CANCELLED},
    SWIPING: {RESULTS, NO_MATCH, WINNER, CANCELLED},
    NO_MATCH: {SWIPING, CANCELLED},
}

GROUP_TRANSITIONS = {
    LOBBY: {POOL_READY, CANCELLED},
    POOL_READY: {SWIPING, CANCELLED},
    SWIPING: {FINALIST_COMPUTATION, COMPLETED, CANCELLED},
    FINALIST_COMPUTATION: {FINAL_VOTING, COMPLETED, CANCELLED},
    FINAL_VOTING: {COMPLETED, CANCELLED},
}


def can_transition(mode: str, current: str, new: str) -> bool:
    table = PAIR_TRANSITIONS if mode == MODE_PAIR else GROUP_TRANSITIONS
    return new in table.get(current, set())


def transition(session: MatchSession, new: str, expected: str = None, **fields) -> bool:
    """Move ``session`` to ``new`` if it is still in ``expected``.

    Raises ``InvalidTransition`` when the state machine forbids the move.
    Returns False when another request already moved the session on.
    """
    expected = expected or session.status
    if not can_transition(session.mode, expected, new):
        raise InvalidTransition(f'Cannot move session from {expected} to {new}')
    if 'round' in fields and fields['round'] < session.round:
        raise InvalidTransition('Rounds never go backwards')
    changed = store.compare_and_set_status(session, expected, new, **fields)
    if changed:
        current_app.logger.info(
            f"[transition] session={session.id} {expected} -> {new} round={session.round}"
        )
        emit_state_update(session.join_code)
    return changed


def require_participant(session: MatchSession, participant_id: str):
    if not participant_id:
        raise Unauthorized('participant_id is required')
    participant = store.find_participant(session, participant_id)
    if not participant:
        raise Unauthorized('Not a participant in this session')
    return participant


def require_host(session: MatchSession, participant_id: str, action: str = 'do that'):
    participant = require_participant(session, participant_id)
    if not participant.is_host:
        raise Unauthorized(f'Only the host may {action}')
    return participant


def load(session_id: str) -> MatchSession:
    """Fetch a session and apply the abandonment policy."""
    session = store.get(session_id)
    abandon_if_idle(session)
    return session


def abandon_if_idle(session: MatchSession, now: float = None) -> bool:
    """Cancel a non-terminal session that has gone quiet for the idle timeout.

    Past the lobby every participant is needed to finish, so one silent
    participant is enough; in the lobby the whole session must be idle.
    """
    timeout = int(current_app.config.get('SESSION_IDLE_TIMEOUT_SEC', 0))
    if timeout <= 0 or session.is_terminal:
        return False
    now = now if now is not None else time.time()
    if now - store.last_activity(session) > timeout:
        silent = 'all'
    elif session.status != LOBBY:
        silent = ','.join(store.silent_participants(session, timeout, now))
    else:
        silent = ''
    if not silent:
        return False
    changed = transition(session, CANCELLED, expected=session.status, cancel_reason='abandoned')
    if changed:
        current_app.logger.info(
            f"[abandoned] session={session.id} idle>{timeout}s silent={silent}"
        )
    return changed


def expire_idle_sessions(now: float = None) -> int:
    """Sweep all non-terminal sessions; returns how many were cancelled."""
    cancelled = 0
    for session in MatchSession.query.filter(MatchSession.status.notin_(TERMINAL_STATUSES)).all():
        if abandon_if_idle(session, now=now):
            cancelled += 1
    return cancelled


def _limits(cfg, mode, min_participants, round1_limit, round2_limit):
    if mode == MODE_PAIR:
        limit1 = int(round1_limit or cfg.get('ROUND1_LIMIT', 25))
        limit2 = int(round2_limit or cfg.get('ROUND2_LIMIT', 15))
        if not 0 < limit2 < limit1:
            raise InvalidRequest('round2_limit must be positive and smaller than round1_limit')
        return 2, 2, limit1, limit2
    min_count = max(2, int(min_participants or cfg.get('GROUP_MIN_PARTICIPANTS', 2)))
    max_count = max(min_count, int(cfg.get('GROUP_MAX_PARTICIPANTS', 12)))
    limit1 = int(round1_limit or cfg.get('GROUP_ROUND_LIMIT', 24))
    if limit1 <= 0:
        raise InvalidRequest('round1_limit must be positive')
    return min_count, max_count, limit1, 0


def create_session(host_id: str, display_name=None, mode: str = MODE_PAIR, min_participants=None,
                   round1_limit=None, round2_limit=None, preferences=None,
                   previous_session_id=None) -> MatchSession:
    cfg = current_app.config
    if not host_id:
        raise InvalidRequest('participant_id is required')
    if mode not in MODES:
        raise InvalidRequest(f'mode must be one of {", ".join(MODES)}')

    try:
        limits = _limits(cfg, mode, min_participants, round1_limit, round2_limit)
    except (TypeError, ValueError):
        raise InvalidRequest('Limits must be whole numbers')
    min_count, max_count, limit1, limit2 = limits

    session = store.create(
        mode=mode,
        status=LOBBY,
        round=1,
        min_participants=min_count,
        max_participants=max_count,
        round1_limit=limit1,
        round2_limit=limit2,
        superlikes_per_round=int(cfg.get('SUPERLIKES_PER_ROUND', 3)),
        host_participant_id=host_id,
        preferences=json.dumps(preferences or {}),
        previous_session_id=previous_session_id,
    )
    store.append_participant(session, host_id, display_name=display_name, is_host=True)
    current_app.logger.info(
        f"[session-create] session={session.id} code={session.join_code} mode={mode} host={host_id}"
    )
    return session


def join_session(join_code: str, participant_id: str, display_name=None):
    """Join by code. Joining again with the same id returns the existing record."""
    if not participant_id:
        raise InvalidRequest('participant_id is required')
    session = store.get_by_join_code(join_code)
    abandon_if_idle(session)
    existing = store.find_participant(session, participant_id)
    if existing:
        store.mark_seen(existing)
        return session, existing, False
    if session.status != LOBBY:
        raise InvalidTransition('Session is no longer accepting participants')
    if session.max_participants and len(session.participants) >= session.max_participants:
        raise SessionFull()
    participant, created = store.append_participant(session, participant_id, display_name=display_name)
    if created:
        current_app.logger.info(f"[join] session={session.id} participant={participant_id}")
        emit_state_update(session.join_code)
    return session, participant, created


def build_pool(session: MatchSession, actor_id: str, overrides=None) -> MatchSession:
    """Host action: ask the pool supplier for candidates, ``lobby -> pool_ready``."""
    require_host(session, actor_id, 'build the pool')
    if session.status != LOBBY:
        if session.status != CANCELLED and session.pool:
            return session
        raise InvalidTransition(f'Cannot build a pool while session is {session.status}')
    if len(session.participants) < session.min_participants:
        raise NotEnoughParticipants(
            f'At least {session.min_participants} participants are required to start'
        )
    preferences = dict(session.preference_data)
    preferences.update(overrides or {})
    items = normalize_pool(get_supplier().build(session.mode, preferences))
    if not items:
        raise InvalidTransition('Candidate pool is empty')
    transition(session, POOL_READY, expected=LOBBY, pool=json.dumps(items))
    return session


def cancel_session(session: MatchSession, actor_id: str) -> MatchSession:
    require_host(session, actor_id, 'cancel the session')
    for _ in range(3):
        if session.status == CANCELLED:
            return session
        if session.is_terminal:
            raise InvalidTransition(f'Session is already {session.status}')
        if transition(session, CANCELLED, expected=session.status, cancel_reason='host'):
            current_app.logger.info(f"[cancel] session={session.id} by={actor_id}")
            return session
    return session


def rematch(session: MatchSession, actor_id: str) -> MatchSession:
    """Host action on a finished session: start over in a brand new session."""
    host = require_host(session, actor_id, 'start a rematch')
    if not session.is_terminal:
        raise InvalidTransition('Rematch is only available once the session has finished')
    existing = rematch_of(session)
    if existing:
        return existing
    preferences = dict(session.preference_data)
    if not preferences.get('candidates'):
        preferences['candidates'] = session.pool_items
    try:
        return create_session(
            host.participant_id,
            display_name=host.display_name,
            mode=session.mode,
            min_participants=session.min_participants,
            round1_limit=session.round1_limit,
            round2_limit=session.round2_limit or None,
            preferences=preferences,
            previous_session_id=session.id,
        )
    except IntegrityError:
        db.session.rollback()
        return rematch_of(session)


def rematch_of(session: MatchSession):
    return MatchSession.query.filter_by(previous_session_id=session.id).first()
