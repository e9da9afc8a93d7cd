"""Swipe ingestion.

Writes are keyed by (session, participant, candidate, round) and never touch
another participant's rows. A replay of a stored decision is a no-op and
``decided_at`` keeps the value of the first arrival, so client retries cannot
move a candidate in the latency ranking.
"""

import time
from typing import Optional, Tuple

from flask import current_app

from swipematch.errors import (
    InvalidRequest, NotAcceptingSwipes, StaleRound, SuperlikeLimitReached, UnknownCandidate,
)
from swipematch.models import DECISIONS, MatchSession, RoundResult, Swipe, SWIPING
from swipematch.socketio_events import emit_state_update
from . import consensus, lifecycle, rounds, store


def _server_latency_ms(session: MatchSession) -> float:
    started = session.round_started_at or time.time()
    return max(0.0, (time.time() - started) * 1000.0)


def submit_swipe(session: MatchSession, participant_id: str, candidate_id, decision: str,
                 round_no: int, decided_at: Optional[float] = None) -> Tuple[Swipe, Optional[RoundResult]]:
    """Record one decision and settle the round if it just became decidable.

    Returns the stored swipe and the round result, if one exists after this
    call.
    """
    participant = lifecycle.require_participant(session, participant_id)
    if decision not in DECISIONS:
        raise InvalidRequest(f'decision must be one of {", ".join(DECISIONS)}')
    if session.status != SWIPING:
        raise NotAcceptingSwipes(f'Session is {session.status}')
    if round_no != session.round:
        raise StaleRound(f'Session is in round {session.round}')
    candidate_id = str(candidate_id)
    if candidate_id not in rounds.round_deck(session):
        raise UnknownCandidate()

    previous = store.get_swipe(session.id, participant_id, candidate_id, round_no)
    if previous is None:
        required = rounds.required_swipes(session)
        if store.swipe_count(session.id, participant_id, round_no) >= required:
            raise NotAcceptingSwipes(f'Round {round_no} allows {required} swipes')

    if decision == 'superlike':
        already = previous is not None and previous.decision == 'superlike'
        if not already and store.superlike_count(session.id, participant_id, round_no) >= session.superlikes_per_round:
            raise SuperlikeLimitReached()

    if decided_at is None:
        decided_at = _server_latency_ms(session)
    swipe, changed = store.upsert_swipe(
        session.id, participant_id, candidate_id, round_no, decision, float(decided_at)
    )
    store.mark_seen(participant)
    if changed:
        current_app.logger.info(
            f"[swipe] session={session.id} participant={participant_id} candidate={candidate_id} "
            f"round={round_no} decision={swipe.decision}"
        )

    result = None
    if swipe.decision == 'superlike':
        result = _superlike_match(session, swipe)
    if result is None:
        result = rounds.resolve_if_complete(session)
    if changed:
        emit_state_update(session.join_code)
    return swipe, result


def _superlike_match(session: MatchSession, swipe: Swipe) -> Optional[RoundResult]:
    """Short-circuit the round when another participant superliked the same card."""
    round_swipes = store.swipes_for_round(session.id, swipe.round)
    if not consensus.double_superlike(round_swipes, swipe.participant_id, swipe.candidate_id):
        return None
    result = store.write_round_result_if_absent(
        session.id, swipe.round, consensus.OUTCOME_SUPERLIKE,
        matches=[swipe.candidate_id],
        winner_candidate_id=swipe.candidate_id,
    )
    current_app.logger.info(
        f"[superlike-match] session={session.id} round={swipe.round} winner={result.winner_candidate_id}"
    )
    rounds.apply_round_result(session, result)
    return result
