"""Session store: keyed reads and atomic field-scoped writes.

Every multi-writer operation is either write-if-absent (a unique constraint
decides which insert lands; losers roll back and read the stored row) or
compare-and-set on ``status``. Concurrent pollers that race on the same
computation therefore converge on one stored value.
"""

import json
import time
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from swipematch import db
from swipematch.errors import SessionNotFound
from swipematch.models import MatchSession, Participant, Swipe, FinalVote, RoundResult


def create(**fields) -> MatchSession:
    session = MatchSession(**fields)
    db.session.add(session)
    db.session.commit()
    return session


def get(session_id: str) -> MatchSession:
    """Load a session by id, raising ``SessionNotFound`` if unknown or expired."""
    session = MatchSession.query.filter_by(id=session_id).first() if session_id else None
    if not session or is_expired(session):
        raise SessionNotFound()
    return session


def get_by_join_code(join_code: str) -> MatchSession:
    """Return the newest live session using ``join_code``."""
    code = (join_code or '').strip().upper()
    candidates = (
        MatchSession.query.filter_by(join_code=code)
        .order_by(MatchSession.created_at.desc())
        .all()
    )
    for session in candidates:
        if not is_expired(session):
            return session
    raise SessionNotFound()


def last_activity(session: MatchSession) -> float:
    return session.last_activity()


def is_expired(session: MatchSession, now: Optional[float] = None) -> bool:
    return session.is_expired(int(current_app.config.get('SESSION_TTL_SEC', 0)), now)


def silent_participants(session: MatchSession, timeout: int, now: Optional[float] = None):
    """Human participants not seen for longer than ``timeout`` seconds."""
    now = now if now is not None else time.time()
    return [
        p.participant_id for p in session.participants
        if not p.is_synthetic and now - p.last_seen_at > timeout
    ]


def find_participant(session: MatchSession, participant_id: str) -> Optional[Participant]:
    return Participant.query.filter_by(session_id=session.id, participant_id=participant_id).first()


def append_participant(session: MatchSession, participant_id: str, display_name=None,
                       is_host=False, is_synthetic=False) -> Tuple[Participant, bool]:
    """Add a participant unless one with the same id exists.

    Returns ``(participant, created)``.
    """
    existing = find_participant(session, participant_id)
    if existing:
        return existing, False
    participant = Participant(
        session_id=session.id,
        participant_id=participant_id,
        display_name=display_name,
        is_host=is_host,
        is_synthetic=is_synthetic,
    )
    db.session.add(participant)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return find_participant(session, participant_id), False
    db.session.expire(session, ['participants'])
    return participant, True


def mark_seen(participant: Participant) -> None:
    Participant.query.filter_by(id=participant.id).update(
        {'last_seen_at': time.time()}, synchronize_session=False
    )
    db.session.commit()


def get_swipe(session_id: str, participant_id: str, candidate_id: str, round_no: int) -> Optional[Swipe]:
    return Swipe.query.filter_by(
        session_id=session_id, participant_id=participant_id, candidate_id=candidate_id, round=round_no
    ).first()


def upsert_swipe(session_id: str, participant_id: str, candidate_id: str, round_no: int,
                 decision: str, decided_at: float) -> Tuple[Swipe, bool]:
    """Record a decision; ``decided_at`` is only written on first arrival.

    Returns ``(swipe, changed)`` where ``changed`` is False for a replay of the
    stored decision.
    """
    existing = get_swipe(session_id, participant_id, candidate_id, round_no)
    if existing is None:
        swipe = Swipe(
            session_id=session_id,
            participant_id=participant_id,
            candidate_id=candidate_id,
            round=round_no,
            decision=decision,
            decided_at=decided_at,
        )
        db.session.add(swipe)
        try:
            db.session.commit()
            return swipe, True
        except IntegrityError:
            db.session.rollback()
            existing = get_swipe(session_id, participant_id, candidate_id, round_no)
    if existing.decision == decision:
        return existing, False
    Swipe.query.filter_by(id=existing.id).update(
        {'decision': decision, 'updated_at': time.time()}, synchronize_session=False
    )
    db.session.commit()
    db.session.refresh(existing)
    return existing, True


def swipes_for_round(session_id: str, round_no: int):
    return Swipe.query.filter_by(session_id=session_id, round=round_no).order_by(Swipe.id).all()


def swipe_counts(session_id: str, round_no: int) -> dict:
    rows = (
        db.session.query(Swipe.participant_id, db.func.count(Swipe.id))
        .filter(Swipe.session_id == session_id, Swipe.round == round_no)
        .group_by(Swipe.participant_id)
        .all()
    )
    return {participant_id: count for participant_id, count in rows}


def swipe_count(session_id: str, participant_id: str, round_no: int) -> int:
    return Swipe.query.filter_by(session_id=session_id, participant_id=participant_id, round=round_no).count()


def superlike_count(session_id: str, participant_id: str, round_no: int) -> int:
    return Swipe.query.filter_by(
        session_id=session_id, participant_id=participant_id, round=round_no, decision='superlike'
    ).count()


def get_round_result(session_id: str, round_no: int) -> Optional[RoundResult]:
    return RoundResult.query.filter_by(session_id=session_id, round=round_no).first()


def round_results(session_id: str):
    return RoundResult.query.filter_by(session_id=session_id).order_by(RoundResult.round).all()


def write_round_result_if_absent(session_id: str, round_no: int, outcome: str, matches=None,
                                 winner_candidate_id=None, compromise_candidate_id=None) -> RoundResult:
    """Persist a round result unless one is already stored; return the stored one."""
    existing = get_round_result(session_id, round_no)
    if existing:
        return existing
    result = RoundResult(
        session_id=session_id,
        round=round_no,
        outcome=outcome,
        matches=json.dumps(list(matches or [])),
        winner_candidate_id=winner_candidate_id,
        compromise_candidate_id=compromise_candidate_id,
    )
    db.session.add(result)
    try:
        db.session.commit()
        return result
    except IntegrityError:
        db.session.rollback()
        return get_round_result(session_id, round_no)


def final_votes(session_id: str) -> dict:
    rows = FinalVote.query.filter_by(session_id=session_id).order_by(FinalVote.id).all()
    return {v.participant_id: v.candidate_id for v in rows}


def cast_final_vote_if_absent(session_id: str, participant_id: str, candidate_id: str) -> Tuple[FinalVote, bool]:
    """Store a final vote unless the participant already has one.

    Returns ``(vote, created)``; the stored vote is never overwritten.
    """
    existing = FinalVote.query.filter_by(session_id=session_id, participant_id=participant_id).first()
    if existing:
        return existing, False
    vote = FinalVote(session_id=session_id, participant_id=participant_id, candidate_id=candidate_id)
    db.session.add(vote)
    try:
        db.session.commit()
        return vote, True
    except IntegrityError:
        db.session.rollback()
        return FinalVote.query.filter_by(session_id=session_id, participant_id=participant_id).first(), False


def compare_and_set_status(session: MatchSession, expected: str, new: str, **fields) -> bool:
    """Move ``session`` from ``expected`` to ``new`` if nobody else did first.

    Extra column values in ``fields`` are written in the same UPDATE. Returns
    True when this call performed the write. The instance is refreshed either
    way.
    """
    values = dict(fields)
    values['status'] = new
    values['updated_at'] = time.time()
    updated = MatchSession.query.filter_by(id=session.id, status=expected).update(
        values, synchronize_session=False
    )
    db.session.commit()
    db.session.refresh(session)
    return updated == 1
